"""
closing_services.closing_coordinator -- Locked, transactional closing runs.

Responsibility:
    Wraps the daily and monthly processors with the per-key lock and one
    transaction per key, and fans a closing out over every key of an entity.

Architecture position:
    Services -- orchestration over the kernel processors.  Owns transaction
    boundaries (session_scope per key); the processors only flush.

Invariants enforced:
    - Lock, then transaction: the per-key lock is taken before the session
      opens and released after it commits or rolls back.
    - Fan-out isolation: every key commits independently.  One key's error
      is recorded in the report and never rolls back another key.
    - Idempotent retry: re-running a fan-out reports closed keys as
      ALREADY_CLOSED and only does work for the ones that failed.

Failure modes:
    - Single-key calls propagate the processors' typed errors and
      ConcurrentClosingInProgressError from the lock.
    - Fan-out calls never raise for a key error; keys left when the timeout
      expires or the cancel event is set are reported NOT_ATTEMPTED.

Audit relevance:
    Every fan-out gets a correlation_id bound into the log context of all
    its per-key work; ``closing_fanout_completed`` logs the counts.
"""

from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from closing_kernel.db.engine import session_scope
from closing_kernel.domain.clock import Clock, SystemClock
from closing_kernel.domain.dtos import ClosingKey, ClosingResult, ClosingStatus
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import ClosingKernelError
from closing_kernel.logging_config import LogContext, get_logger
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_kernel.selectors.ledger_selector import LedgerStore, SqlLedgerStore
from closing_kernel.services.daily_closing_service import DailyClosingService
from closing_kernel.services.lock_manager import InProcessLockManager, LockManager
from closing_kernel.services.monthly_closing_service import MonthlyClosingService
from closing_services._closing_types import (
    FanOutReport,
    KeyOutcome,
    KeyOutcomeStatus,
    summarize_outcomes,
)

logger = get_logger("services.closing_coordinator")

LedgerFactory = Callable[[Session], LedgerStore]


class ClosingCoordinator:
    """
    Entry point for daily and monthly closing.

    Contract:
        close_day()/close_month() close one key and return its
        ClosingResult, or raise.  close_day_all()/close_month_all() close
        every key due and return a FanOutReport.

    Non-goals:
        - Does NOT schedule closings; every call is an explicit request.
        - Does NOT rewrite closed periods (see RecalculationCoordinator).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_manager: LockManager | None = None,
        clock: Clock | None = None,
        ledger_factory: LedgerFactory | None = None,
        fanout_max_workers: int = 1,
        fanout_timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._locks = lock_manager or InProcessLockManager()
        self._clock = clock or SystemClock()
        self._ledger_factory = ledger_factory or SqlLedgerStore
        self._max_workers = max(1, fanout_max_workers)
        self._fanout_timeout = fanout_timeout_seconds

    # -------------------------------------------------------------------------
    # Single key
    # -------------------------------------------------------------------------

    def close_day(
        self,
        entity_id: str,
        facility_type_code: str,
        closing_date: date,
        actor_id: UUID,
    ) -> ClosingResult:
        key = ClosingKey(entity_id, facility_type_code)
        with self._locks.hold(key):
            with session_scope(self._session_factory) as session:
                service = DailyClosingService(
                    session, ledger=self._ledger_factory(session), clock=self._clock
                )
                return service.close_day(
                    entity_id, facility_type_code, closing_date, actor_id
                )

    def close_month(
        self,
        entity_id: str,
        facility_type_code: str,
        year: int,
        month: int,
        actor_id: UUID,
    ) -> ClosingResult:
        key = ClosingKey(entity_id, facility_type_code)
        with self._locks.hold(key):
            with session_scope(self._session_factory) as session:
                service = MonthlyClosingService(
                    session, ledger=self._ledger_factory(session), clock=self._clock
                )
                return service.close_month(
                    entity_id, facility_type_code, year, month, actor_id
                )

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def close_day_all(
        self,
        entity_id: str,
        closing_date: date,
        actor_id: UUID,
        cancel_event: threading.Event | None = None,
    ) -> FanOutReport:
        """Close ``closing_date`` for every key of the entity that is due."""
        with session_scope(self._session_factory) as session:
            keys = ClosingSelector(
                session, clock=self._clock, ledger=self._ledger_factory(session)
            ).closing_targets(entity_id, closing_date)

        return self._fan_out(
            entity_id,
            ClosingPeriod.for_day(closing_date),
            keys,
            lambda key: self.close_day(
                key.entity_id, key.facility_type_code, closing_date, actor_id
            ),
            actor_id,
            cancel_event,
        )

    def close_month_all(
        self,
        entity_id: str,
        year: int,
        month: int,
        actor_id: UUID,
        cancel_event: threading.Event | None = None,
    ) -> FanOutReport:
        """Close the month for every key with a closed day in it."""
        with session_scope(self._session_factory) as session:
            keys = ClosingSelector(
                session, clock=self._clock, ledger=self._ledger_factory(session)
            ).keys_with_days_in_month(entity_id, year, month)

        return self._fan_out(
            entity_id,
            ClosingPeriod.for_month(year, month),
            keys,
            lambda key: self.close_month(
                key.entity_id, key.facility_type_code, year, month, actor_id
            ),
            actor_id,
            cancel_event,
        )

    def _fan_out(
        self,
        entity_id: str,
        period: ClosingPeriod,
        keys: list[ClosingKey],
        work: Callable[[ClosingKey], ClosingResult],
        actor_id: UUID,
        cancel_event: threading.Event | None,
    ) -> FanOutReport:
        correlation_id = str(uuid4())
        started_at = self._clock.now()
        deadline = (
            time.monotonic() + self._fanout_timeout
            if self._fanout_timeout is not None
            else None
        )
        stopped = threading.Event()

        def run(key: ClosingKey) -> KeyOutcome:
            if stopped.is_set() or (cancel_event is not None and cancel_event.is_set()) or (
                deadline is not None and time.monotonic() >= deadline
            ):
                stopped.set()
                return KeyOutcome(key.facility_type_code, KeyOutcomeStatus.NOT_ATTEMPTED)
            return self._run_key(key, period, work)

        with LogContext.bind(
            correlation_id=correlation_id, entity_id=entity_id, actor_id=actor_id
        ):
            logger.info(
                "closing_fanout_started",
                extra={
                    "granularity": period.granularity.value,
                    "period": period.code,
                    "key_count": len(keys),
                },
            )

            if self._max_workers == 1 or len(keys) <= 1:
                outcomes = [run(key) for key in keys]
            else:
                with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                    futures = [
                        pool.submit(contextvars.copy_context().run, run, key)
                        for key in keys
                    ]
                    outcomes = [f.result() for f in futures]

            report = FanOutReport(
                entity_id=entity_id,
                granularity=period.granularity,
                period_code=period.code,
                status=summarize_outcomes(o.status for o in outcomes),
                outcomes=tuple(outcomes),
                correlation_id=correlation_id,
                started_at=started_at,
                completed_at=self._clock.now(),
                interrupted=stopped.is_set(),
            )

            logger.info(
                "closing_fanout_completed",
                extra={
                    "granularity": period.granularity.value,
                    "period": period.code,
                    "status": report.status.value,
                    "closed": report.closed_count,
                    "already_closed": report.already_closed_count,
                    "failed": report.failed_count,
                    "not_attempted": report.not_attempted_count,
                },
            )
            return report

    def _run_key(
        self,
        key: ClosingKey,
        period: ClosingPeriod,
        work: Callable[[ClosingKey], ClosingResult],
    ) -> KeyOutcome:
        try:
            result = work(key)
        except ClosingKernelError as exc:
            logger.warning(
                "closing_fanout_key_failed",
                extra={
                    "facility_type_code": key.facility_type_code,
                    "period": period.code,
                    "error_code": exc.code,
                    "error_message": str(exc),
                },
            )
            return KeyOutcome(
                key.facility_type_code,
                KeyOutcomeStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )
        except Exception as exc:
            logger.exception(
                "closing_fanout_key_crashed",
                extra={"facility_type_code": key.facility_type_code, "period": period.code},
            )
            return KeyOutcome(
                key.facility_type_code,
                KeyOutcomeStatus.FAILED,
                error_code="UNHANDLED_EXCEPTION",
                error_message=str(exc),
            )

        status = (
            KeyOutcomeStatus.CLOSED
            if result.status == ClosingStatus.CLOSED
            else KeyOutcomeStatus.ALREADY_CLOSED
        )
        return KeyOutcome(key.facility_type_code, status, record=result.record)
