"""
Per-key locking -- serializes closing work on one (entity, facility type).

Responsibility:
    Daily closing, monthly closing and recalculation of the same key must
    never interleave; different keys run in parallel.  A lock manager hands
    out an exclusive hold per ClosingKey for the duration of one unit of
    work (the coordinator's transaction).

Architecture position:
    Kernel > Services.  Used only by the coordinators in closing_services.

Implementations:
    InProcessLockManager  -- keyed threading.Lock, for a single process
                             (tests, CLI, single-worker deployments).
    AdvisoryLockManager   -- PostgreSQL session-level advisory locks taken
                             with pg_try_advisory_lock on a dedicated
                             connection, polled until the timeout.  Works
                             across processes and hosts.

Failure modes:
    - ConcurrentClosingInProgressError when the lock is not obtained within
      the timeout.  Nothing has been read or written at that point, so the
      caller can retry.
"""

import hashlib
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from closing_kernel.db.engine import is_postgres
from closing_kernel.domain.dtos import ClosingKey
from closing_kernel.exceptions import ConcurrentClosingInProgressError
from closing_kernel.logging_config import get_logger

logger = get_logger("services.lock_manager")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class LockManager(ABC):
    """Hands out exclusive per-key holds."""

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def _acquire(self, key: ClosingKey, timeout: float) -> bool:
        """Try to take the lock within ``timeout`` seconds."""

    @abstractmethod
    def _release(self, key: ClosingKey) -> None:
        ...

    @contextmanager
    def hold(self, key: ClosingKey, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the body of the ``with`` block.

        Raises:
            ConcurrentClosingInProgressError: Lock not obtained in time.
        """
        wait = self.timeout_seconds if timeout is None else timeout
        started = time.monotonic()
        if not self._acquire(key, wait):
            waited = time.monotonic() - started
            logger.warning(
                "closing_lock_timeout",
                extra={
                    "entity_id": key.entity_id,
                    "facility_type_code": key.facility_type_code,
                    "waited_seconds": round(waited, 3),
                },
            )
            raise ConcurrentClosingInProgressError(
                key.entity_id, key.facility_type_code, waited
            )
        logger.debug("closing_lock_acquired", extra={"lock_name": key.lock_name})
        try:
            yield
        finally:
            self._release(key)
            logger.debug("closing_lock_released", extra={"lock_name": key.lock_name})


class InProcessLockManager(LockManager):
    """Keyed threading.Lock registry.

    A key's lock lives only while some thread holds or waits for it.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        super().__init__(timeout_seconds)
        self._registry_lock = threading.Lock()
        self._locks: dict[ClosingKey, threading.Lock] = {}
        self._users: dict[ClosingKey, int] = {}

    def _checkout(self, key: ClosingKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: ClosingKey) -> None:
        with self._registry_lock:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]

    def _acquire(self, key: ClosingKey, timeout: float) -> bool:
        lock = self._checkout(key)
        if timeout <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        if not acquired:
            self._checkin(key)
        return acquired

    def _release(self, key: ClosingKey) -> None:
        with self._registry_lock:
            lock = self._locks[key]
        lock.release()
        self._checkin(key)

    def is_locked(self, key: ClosingKey) -> bool:
        with self._registry_lock:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def registered_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._registry_lock:
            return len(self._locks)


def advisory_lock_id(key: ClosingKey) -> int:
    """Stable signed 64-bit id for ``key`` (pg advisory locks take a bigint)."""
    digest = hashlib.blake2b(key.lock_name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, byteorder="big", signed=True)


class AdvisoryLockManager(LockManager):
    """
    PostgreSQL advisory locks on dedicated connections.

    The lock is session-level: it belongs to the connection that took it,
    not to the coordinator's transaction, so the coordinator may commit
    several times while holding it.  The connection is returned to the pool
    after pg_advisory_unlock.
    """

    POLL_INTERVAL_SECONDS = 0.1

    def __init__(
        self,
        engine: Engine,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        poll_interval: float | None = None,
    ):
        super().__init__(timeout_seconds)
        if not is_postgres(engine):
            raise ValueError(
                f"AdvisoryLockManager requires PostgreSQL, got {engine.dialect.name}"
            )
        self._engine = engine
        self._poll_interval = poll_interval or self.POLL_INTERVAL_SECONDS
        self._connections: dict[ClosingKey, Connection] = {}
        self._guard = threading.Lock()

    def _acquire(self, key: ClosingKey, timeout: float) -> bool:
        lock_id = advisory_lock_id(key)
        conn = self._engine.connect()
        deadline = time.monotonic() + max(timeout, 0)
        try:
            while True:
                acquired = conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                ).scalar()
                conn.commit()
                if acquired:
                    with self._guard:
                        self._connections[key] = conn
                    return True
                if time.monotonic() >= deadline:
                    conn.close()
                    return False
                time.sleep(self._poll_interval)
        except Exception:
            conn.close()
            raise

    def _release(self, key: ClosingKey) -> None:
        with self._guard:
            conn = self._connections.pop(key)
        try:
            conn.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": advisory_lock_id(key)},
            )
            conn.commit()
        finally:
            conn.close()
