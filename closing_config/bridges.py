"""
Config -> Kernel Bridges.

Functions that turn an EngineConfig into the engine, clock, lock manager
and coordinators the API and CLI run with.  These live in closing_config
(the producer) because the kernel must NEVER import closing_config.

Usage:
    from closing_config import get_active_config
    from closing_config.bridges import build_runtime

    runtime = build_runtime(get_active_config())
    runtime.closing.close_day_all(entity_id, day, actor_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from closing_config.schema import EngineConfig
from closing_kernel.db.engine import build_engine, build_session_factory
from closing_kernel.domain.actors import ActorDirectory, StaticActorDirectory
from closing_kernel.domain.clock import Clock, SystemClock
from closing_kernel.services.lock_manager import (
    AdvisoryLockManager,
    InProcessLockManager,
    LockManager,
)
from closing_services.closing_coordinator import ClosingCoordinator
from closing_services.recalculation_coordinator import RecalculationCoordinator


@dataclass(frozen=True)
class ClosingRuntime:
    """Everything a process needs to serve closing requests."""

    config: EngineConfig
    engine: Engine
    session_factory: sessionmaker[Session]
    clock: Clock
    lock_manager: LockManager
    actors: ActorDirectory
    closing: ClosingCoordinator
    recalculation: RecalculationCoordinator


def build_clock(config: EngineConfig) -> Clock:
    return SystemClock(business_timezone=config.business_timezone)


def build_lock_manager(config: EngineConfig, engine: Engine) -> LockManager:
    """InProcessLockManager for ``memory``, AdvisoryLockManager for ``advisory``."""
    if config.lock_backend == "advisory":
        return AdvisoryLockManager(engine, timeout_seconds=config.lock_timeout_seconds)
    return InProcessLockManager(timeout_seconds=config.lock_timeout_seconds)


def build_runtime(
    config: EngineConfig,
    engine: Engine | None = None,
    clock: Clock | None = None,
    actors: ActorDirectory | None = None,
) -> ClosingRuntime:
    """Wire coordinators from configuration.

    ``engine`` and ``clock`` may be injected (tests); otherwise they are
    built from ``config``.
    """
    engine = engine or build_engine(
        config.database_url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
    )
    session_factory = build_session_factory(engine)
    clock = clock or build_clock(config)
    lock_manager = build_lock_manager(config, engine)

    return ClosingRuntime(
        config=config,
        engine=engine,
        session_factory=session_factory,
        clock=clock,
        lock_manager=lock_manager,
        actors=actors or StaticActorDirectory(),
        closing=ClosingCoordinator(
            session_factory,
            lock_manager=lock_manager,
            clock=clock,
            fanout_max_workers=config.fanout_max_workers,
            fanout_timeout_seconds=config.fanout_timeout_seconds,
        ),
        recalculation=RecalculationCoordinator(
            session_factory,
            lock_manager=lock_manager,
            clock=clock,
        ),
    )
