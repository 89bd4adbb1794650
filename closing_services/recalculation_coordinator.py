"""
closing_services.recalculation_coordinator -- Cascading recomputation of closings.

Responsibility:
    When a past day's ledger is corrected, recompute that day's closing and
    every later closed day of the key, carrying the corrected quantity
    forward, then re-aggregate every affected monthly closing.

Architecture position:
    Services -- orchestration over the kernel processors.  Owns the per-key
    lock for the whole cascade and one transaction per rewritten record.

Two phases:
    PLAN   (read-only) -- recompute every closed day from the start date to
           the key's last closed day, then every closed month ending on or
           after the requested date.  Nothing is written.  A negative
           closing anywhere aborts the recalculation here.
    APPLY  -- rewrite each changed record in its own transaction (record,
           revision row, run progress together), days first, then months.

Invariants enforced:
    - Chain: after a completed run, every closed day's previous_quantity is
      the closing of the day before.
    - No partial forward application past a negative closing: the plan
      fails before the first write.
    - Optimistic check: each write verifies the record still has the
      version the plan was computed against (OptimisticLockError).
    - Resumable: a run interrupted mid-apply keeps last_committed_date;
      the next request for the key restarts the day after it.

Failure modes:
    - ClosingNotFoundError when the start date is not a closed day.
    - ConcurrentClosingInProgressError from the per-key lock.
    - Errors during APPLY mark the run INTERRUPTED and propagate.

Audit relevance:
    Every attempt leaves a recalculation_runs row; every rewritten version
    leaves a closing_record_revisions row pointing at the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from closing_kernel.db.engine import session_scope
from closing_kernel.domain.cascade import propagate_chain
from closing_kernel.domain.clock import Clock, SystemClock
from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    ClosingRecordInfo,
    compute_closing,
)
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import (
    ClosingKernelError,
    ClosingNotFoundError,
    NegativeClosingError,
)
from closing_kernel.logging_config import LogContext, get_logger
from closing_kernel.models.recalculation_run import (
    UNFINISHED_RUN_STATUSES,
    RecalculationRun,
    RecalculationRunStatus,
)
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_kernel.selectors.ledger_selector import SqlLedgerStore
from closing_kernel.services.daily_closing_service import DailyClosingService
from closing_kernel.services.lock_manager import InProcessLockManager, LockManager
from closing_kernel.services.monthly_closing_service import MonthlyClosingService
from closing_services._closing_types import (
    FanOutStatus,
    KeyOutcome,
    KeyOutcomeStatus,
    RecalcBatchReport,
    RecalcEntry,
    RecalcReport,
    RecalcStatus,
    summarize_outcomes,
)
from closing_services.closing_coordinator import LedgerFactory

logger = get_logger("services.recalculation")


@dataclass(frozen=True)
class PlannedStep:
    """One record the cascade recomputed, with the state it was planned against."""
    period: ClosingPeriod
    computation: ClosingComputation
    before: ClosingRecordInfo

    @property
    def changed(self) -> bool:
        return not self.before.matches(self.computation)

    def to_entry(self, applied: bool = False) -> RecalcEntry:
        bump = 1 if applied and self.changed else 0
        return RecalcEntry(
            granularity=self.period.granularity,
            period_code=self.period.code,
            period_start=self.period.start,
            old_closing_quantity=self.before.closing_quantity,
            new_closing_quantity=self.computation.closing_quantity,
            previous_quantity=self.computation.previous_quantity,
            inbound_quantity=self.computation.inbound_quantity,
            outbound_quantity=self.computation.outbound_quantity,
            version_before=self.before.version,
            version_after=self.before.version + bump,
        )


@dataclass
class RecalcPlan:
    """Everything the apply phase needs, computed without writing."""
    key: ClosingKey
    start_date: date
    days: list[PlannedStep] = field(default_factory=list)
    months: list[PlannedStep] = field(default_factory=list)
    failure: NegativeClosingError | None = None

    @property
    def steps(self) -> list[PlannedStep]:
        return self.days + self.months

    @property
    def has_changes(self) -> bool:
        return any(step.changed for step in self.steps)


class RecalculationCoordinator:
    """
    Entry point for recalculation.

    Contract:
        recalculate() returns a RecalcReport for COMPLETED, NOTHING_TO_DO
        and ABORTED outcomes; it raises only for precondition failures,
        lock contention and errors while applying.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_manager: LockManager | None = None,
        clock: Clock | None = None,
        ledger_factory: LedgerFactory | None = None,
    ):
        self._session_factory = session_factory
        self._locks = lock_manager or InProcessLockManager()
        self._clock = clock or SystemClock()
        self._ledger_factory = ledger_factory or SqlLedgerStore

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def recalculate(
        self,
        entity_id: str,
        facility_type_code: str,
        from_date: date,
        actor_id: UUID,
    ) -> RecalcReport:
        """
        Recalculate ``from_date`` and everything after it for one key.

        Raises:
            ClosingNotFoundError: from_date is not a closed day of the key.
            ConcurrentClosingInProgressError: Key locked by other work.
            OptimisticLockError / LedgerUnavailableError: While applying;
                the run is left INTERRUPTED and can be resumed.
        """
        key = ClosingKey(entity_id, facility_type_code)

        with LogContext.bind(
            entity_id=entity_id,
            facility_type_code=facility_type_code,
            actor_id=actor_id,
        ), self._locks.hold(key):
            with session_scope(self._session_factory) as session:
                selector = ClosingSelector(
                    session, clock=self._clock, ledger=self._ledger_factory(session)
                )
                start_record = selector.get_daily(entity_id, facility_type_code, from_date)
                if start_record is None or not start_record.is_closed:
                    logger.warning(
                        "recalculation_start_not_closed",
                        extra={"from_date": from_date},
                    )
                    raise ClosingNotFoundError(
                        entity_id, facility_type_code, from_date.isoformat()
                    )

                unfinished = self._unfinished_run(session, key)
                superseded_id = unfinished.id if unfinished is not None else None
                start_date = from_date
                months_from = from_date
                resumed_from = None
                if unfinished is not None and unfinished.from_date <= from_date:
                    months_from = unfinished.from_date
                    # Days the earlier run never reached still need recomputing
                    if unfinished.resume_point < from_date:
                        start_date = unfinished.resume_point
                        resumed_from = start_date
                        logger.info(
                            "recalculation_resuming",
                            extra={
                                "previous_run_id": unfinished.id,
                                "from_date": from_date,
                                "resume_from": start_date,
                            },
                        )

                plan = self._plan(session, key, start_date, months_from)

            if plan.failure is not None:
                return self._abort(key, from_date, resumed_from, plan, actor_id)

            return self._apply(
                key, from_date, resumed_from, plan, actor_id, superseded_id
            )

    def recalculate_all(
        self,
        entity_id: str,
        from_date: date,
        actor_id: UUID,
    ) -> RecalcBatchReport:
        """Recalculate from ``from_date`` for every key closed on that date."""
        correlation_id = str(uuid4())
        with session_scope(self._session_factory) as session:
            keys = ClosingSelector(
                session, clock=self._clock, ledger=self._ledger_factory(session)
            ).keys_closed_on(entity_id, from_date)

        reports: list[RecalcReport] = []
        failures: list[KeyOutcome] = []
        statuses: list[KeyOutcomeStatus] = []

        with LogContext.bind(correlation_id=correlation_id):
            for key in keys:
                try:
                    report = self.recalculate(
                        key.entity_id, key.facility_type_code, from_date, actor_id
                    )
                except ClosingKernelError as exc:
                    failures.append(
                        KeyOutcome(
                            key.facility_type_code,
                            KeyOutcomeStatus.FAILED,
                            error_code=exc.code,
                            error_message=str(exc),
                        )
                    )
                    statuses.append(KeyOutcomeStatus.FAILED)
                    continue

                reports.append(report)
                if report.status == RecalcStatus.ABORTED:
                    statuses.append(KeyOutcomeStatus.FAILED)
                elif report.status == RecalcStatus.NOTHING_TO_DO:
                    statuses.append(KeyOutcomeStatus.ALREADY_CLOSED)
                else:
                    statuses.append(KeyOutcomeStatus.CLOSED)

            status = summarize_outcomes(statuses)
            logger.info(
                "recalculation_batch_completed",
                extra={
                    "entity_id": entity_id,
                    "from_date": from_date,
                    "status": status.value,
                    "key_count": len(keys),
                    "failed": len(failures),
                },
            )

        return RecalcBatchReport(
            entity_id=entity_id,
            from_date=from_date,
            status=status if keys else FanOutStatus.NOTHING_TO_DO,
            reports=tuple(reports),
            failures=tuple(failures),
            correlation_id=correlation_id,
        )

    # -------------------------------------------------------------------------
    # Plan
    # -------------------------------------------------------------------------

    def _unfinished_run(self, session: Session, key: ClosingKey) -> RecalculationRun | None:
        return session.execute(
            select(RecalculationRun)
            .where(
                RecalculationRun.entity_id == key.entity_id,
                RecalculationRun.facility_type_code == key.facility_type_code,
                RecalculationRun.status.in_(UNFINISHED_RUN_STATUSES),
            )
            .order_by(RecalculationRun.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _plan(
        self,
        session: Session,
        key: ClosingKey,
        start_date: date,
        months_from: date,
    ) -> RecalcPlan:
        ledger = self._ledger_factory(session)
        daily = DailyClosingService(session, ledger=ledger, clock=self._clock)
        monthly = MonthlyClosingService(session, ledger=ledger, clock=self._clock)
        selector = ClosingSelector(session, clock=self._clock, ledger=ledger)

        plan = RecalcPlan(key=key, start_date=start_date)
        days = selector.closed_days(key, start_date)
        if days:
            opening = daily.previous_quantity(
                key, days[0].period_start, first_closing_quantity=days[0].previous_quantity
            )
            inputs = (
                (
                    ClosingPeriod.for_day(d.period_start),
                    ledger.totals(key, d.period_start, d.period_start),
                )
                for d in days
            )
            try:
                for before, step in zip(days, propagate_chain(key, opening, inputs)):
                    plan.days.append(PlannedStep(step.period, step.computation, before))
            except NegativeClosingError as exc:
                plan.failure = exc
                return plan

        day_overrides = {
            step.period.start: step.computation.closing_quantity for step in plan.days
        }
        month_overrides: dict[date, int] = {}
        for before in selector.closed_months_ending_on_or_after(key, months_from):
            period = ClosingPeriod.for_month(before.period_start.year, before.period_start.month)
            carried = monthly.previous_quantity(
                key, period, month_overrides=month_overrides, day_overrides=day_overrides
            )
            try:
                computation = compute_closing(
                    key, period, carried, ledger.totals(key, period.start, period.end)
                )
            except NegativeClosingError as exc:
                plan.failure = exc
                return plan
            month_overrides[period.start] = computation.closing_quantity
            plan.months.append(PlannedStep(period, computation, before))

        return plan

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    def _abort(
        self,
        key: ClosingKey,
        from_date: date,
        resumed_from: date | None,
        plan: RecalcPlan,
        actor_id: UUID,
    ) -> RecalcReport:
        failure = plan.failure
        now = self._clock.now()
        run_id = uuid4()
        with session_scope(self._session_factory) as session:
            session.add(
                RecalculationRun(
                    id=run_id,
                    entity_id=key.entity_id,
                    facility_type_code=key.facility_type_code,
                    from_date=from_date,
                    resumed_from=resumed_from,
                    status=RecalculationRunStatus.ABORTED.value,
                    started_at=now,
                    completed_at=now,
                    failure_code=failure.code,
                    failure_message=str(failure),
                    created_by_id=actor_id,
                )
            )

        logger.warning(
            "recalculation_aborted",
            extra={
                "run_id": run_id,
                "from_date": from_date,
                "failed_at": failure.period_code,
                "closing_quantity": failure.closing_quantity,
                "planned_steps": len(plan.steps),
            },
        )

        return RecalcReport(
            entity_id=key.entity_id,
            facility_type_code=key.facility_type_code,
            from_date=from_date,
            status=RecalcStatus.ABORTED,
            entries=tuple(step.to_entry() for step in plan.steps),
            run_id=run_id,
            resumed_from=resumed_from,
            failed_at=failure.period_code,
            error_code=failure.code,
            message=(
                f"Recalculation stopped at {failure.period_code}: closing quantity "
                f"would be {failure.closing_quantity}. No closing was changed."
            ),
        )

    def _apply(
        self,
        key: ClosingKey,
        from_date: date,
        resumed_from: date | None,
        plan: RecalcPlan,
        actor_id: UUID,
        superseded_id: UUID | None,
    ) -> RecalcReport:
        run_id = uuid4()
        with session_scope(self._session_factory) as session:
            if superseded_id is not None:
                previous = session.get(RecalculationRun, superseded_id)
                previous.status = RecalculationRunStatus.SUPERSEDED.value
                previous.updated_by_id = actor_id
            session.add(
                RecalculationRun(
                    id=run_id,
                    entity_id=key.entity_id,
                    facility_type_code=key.facility_type_code,
                    from_date=from_date,
                    resumed_from=resumed_from,
                    status=RecalculationRunStatus.RUNNING.value,
                    started_at=self._clock.now(),
                    created_by_id=actor_id,
                )
            )

        last_committed: date | None = None
        with LogContext.bind(run_id=run_id):
            logger.info(
                "recalculation_started",
                extra={
                    "from_date": from_date,
                    "start_date": plan.start_date,
                    "planned_days": len(plan.days),
                    "planned_months": len(plan.months),
                },
            )
            try:
                for step in plan.steps:
                    if not step.changed:
                        continue
                    self._apply_step(step, run_id, actor_id)
                    if step.period.is_day:
                        last_committed = step.period.start
            except Exception as exc:
                self._finish_run(
                    run_id,
                    RecalculationRunStatus.INTERRUPTED,
                    actor_id,
                    failure_code=getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                    failure_message=str(exc),
                )
                logger.error(
                    "recalculation_interrupted",
                    extra={"from_date": from_date},
                    exc_info=True,
                )
                raise

            self._finish_run(run_id, RecalculationRunStatus.COMPLETED, actor_id)

            report = RecalcReport(
                entity_id=key.entity_id,
                facility_type_code=key.facility_type_code,
                from_date=from_date,
                status=(
                    RecalcStatus.COMPLETED if plan.has_changes else RecalcStatus.NOTHING_TO_DO
                ),
                entries=tuple(step.to_entry(applied=True) for step in plan.steps),
                run_id=run_id,
                resumed_from=resumed_from,
                last_committed_date=last_committed,
            )
            report = _with_message(report)

            logger.info(
                "recalculation_completed",
                extra={
                    "from_date": from_date,
                    "status": report.status.value,
                    "days_recalculated": report.days_recalculated,
                    "months_recalculated": report.months_recalculated,
                },
            )
            return report

    def _apply_step(self, step: PlannedStep, run_id: UUID, actor_id: UUID) -> None:
        """Rewrite one record and advance the run in a single transaction."""
        key = step.before.key
        with session_scope(self._session_factory) as session:
            ledger = self._ledger_factory(session)
            processor = (
                DailyClosingService(session, ledger=ledger, clock=self._clock)
                if step.period.is_day
                else MonthlyClosingService(session, ledger=ledger, clock=self._clock)
            )
            processor.apply_recalculation(
                key,
                step.period,
                step.computation,
                expected_version=step.before.version,
                actor_id=actor_id,
                recalculation_run_id=run_id,
            )

            run = session.get(RecalculationRun, run_id)
            if step.period.is_day:
                run.last_committed_date = step.period.start
                run.days_recalculated += 1
            else:
                run.months_recalculated += 1
            run.updated_by_id = actor_id

        logger.debug(
            "recalculation_step_committed",
            extra={
                "period": step.period.code,
                "old_closing_quantity": step.before.closing_quantity,
                "new_closing_quantity": step.computation.closing_quantity,
            },
        )

    def _finish_run(
        self,
        run_id: UUID,
        status: RecalculationRunStatus,
        actor_id: UUID,
        failure_code: str | None = None,
        failure_message: str | None = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            run = session.get(RecalculationRun, run_id)
            run.status = status.value
            run.completed_at = self._clock.now()
            run.failure_code = failure_code
            run.failure_message = failure_message[:2000] if failure_message else None
            run.updated_by_id = actor_id


def _with_message(report: RecalcReport) -> RecalcReport:
    if report.status == RecalcStatus.NOTHING_TO_DO:
        message = f"All closings from {report.from_date} already match the ledger."
    else:
        message = (
            f"Recalculated {report.days_recalculated} day(s) and "
            f"{report.months_recalculated} month(s) from "
            f"{report.resumed_from or report.from_date}."
        )
    return replace(report, message=message)
