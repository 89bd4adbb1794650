"""
ClosingProcessor -- shared persistence steps of the daily and monthly processors.

Responsibility:
    Row locking, the idempotency check on re-close, the later-period order
    check, writing a new closing with its first revision, and overwriting a
    closed record during recalculation with an optimistic version check.

Architecture position:
    Kernel > Services -- imperative shell.  Subclassed by
    DailyClosingService and MonthlyClosingService; never used directly.

Invariants enforced:
    - A closed record is rewritten only through apply_recalculation(), which
      bumps the version and appends a revision row in the same flush.
    - Every new closing starts at version 1 with a CLOSE revision.
    - Rows are read FOR UPDATE before they are written (no-op on SQLite,
      where the database serializes writers).

Failure modes:
    - ClosingInputsChangedError when a closed period is re-closed with
      different inputs.
    - ClosingOrderError when a later period of the same granularity is closed.
    - OptimisticLockError when the record version moved under a cascade.
    - ClosingNotFoundError when a cascade targets a record that is gone or
      not closed.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from closing_kernel.domain.clock import Clock, SystemClock
from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    ClosingRecordInfo,
)
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import (
    AlreadyClosedError,
    ClosingInputsChangedError,
    ClosingNotFoundError,
    ClosingOrderError,
    OptimisticLockError,
)
from closing_kernel.logging_config import get_logger
from closing_kernel.models.closing_record import (
    ClosingRecord,
    ClosingRecordRevision,
    RevisionReason,
)
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_kernel.selectors.ledger_selector import LedgerStore, SqlLedgerStore
from closing_kernel.services.base import BaseService

logger = get_logger("services.closing_processor")


class ClosingProcessor(BaseService[ClosingRecord]):
    """
    Base class of the daily and monthly processors.

    Non-goals:
        - Does NOT take the per-key lock; the coordinator holds it around
          the whole transaction.
    """

    def __init__(
        self,
        session: Session,
        ledger: LedgerStore | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ledger = ledger or SqlLedgerStore(session)
        self._selector = ClosingSelector(session, clock=self._clock, ledger=self._ledger)

    # -------------------------------------------------------------------------
    # Row access
    # -------------------------------------------------------------------------

    def _get_for_update(
        self, key: ClosingKey, period: ClosingPeriod
    ) -> ClosingRecord | None:
        return self.session.execute(
            select(ClosingRecord)
            .where(
                ClosingRecord.entity_id == key.entity_id,
                ClosingRecord.facility_type_code == key.facility_type_code,
                ClosingRecord.granularity == period.granularity.value,
                ClosingRecord.period_start == period.start,
            )
            .with_for_update()
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_already_closed(
        self,
        key: ClosingKey,
        period: ClosingPeriod,
        record: ClosingRecord,
        computation: ClosingComputation,
    ) -> None:
        """
        Decide what re-closing a closed period means.

        Raises:
            AlreadyClosedError: Inputs unchanged; nothing to do.
            ClosingInputsChangedError: Ledger or carried quantity moved.
        """
        info = ClosingRecordInfo.from_model(record)
        if info.matches(computation):
            raise AlreadyClosedError(key.entity_id, key.facility_type_code, period.code)

        logger.warning(
            "closing_inputs_changed",
            extra={
                "period": period.code,
                "recorded_closing_quantity": record.closing_quantity,
                "computed_closing_quantity": computation.closing_quantity,
            },
        )
        raise ClosingInputsChangedError(
            key.entity_id,
            key.facility_type_code,
            period.code,
            recorded_closing_quantity=record.closing_quantity,
            computed_closing_quantity=computation.closing_quantity,
        )

    def _ensure_no_later_closing(self, key: ClosingKey, period: ClosingPeriod) -> None:
        later = self.session.execute(
            select(ClosingRecord.period_start)
            .where(
                ClosingRecord.entity_id == key.entity_id,
                ClosingRecord.facility_type_code == key.facility_type_code,
                ClosingRecord.granularity == period.granularity.value,
                ClosingRecord.is_closed.is_(True),
                ClosingRecord.period_start > period.start,
            )
            .order_by(ClosingRecord.period_start.desc())
            .limit(1)
        ).scalar_one_or_none()
        if later is None:
            return

        later_period = (
            ClosingPeriod.for_day(later)
            if period.is_day
            else ClosingPeriod.containing_month(later)
        )
        logger.warning(
            "closing_order_violation",
            extra={"period": period.code, "later_period": later_period.code},
        )
        raise ClosingOrderError(
            key.entity_id, key.facility_type_code, period.code, later_period.code
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write_closing(
        self,
        key: ClosingKey,
        period: ClosingPeriod,
        record: ClosingRecord | None,
        computation: ClosingComputation,
        actor_id: UUID,
    ) -> ClosingRecord:
        """Close ``period`` (creating the row if needed) and record revision 1."""
        now = self._clock.now()
        if record is None:
            record = ClosingRecord(
                entity_id=key.entity_id,
                facility_type_code=key.facility_type_code,
                granularity=period.granularity.value,
                period_start=period.start,
                period_end=period.end,
                created_by_id=actor_id,
            )
            self.session.add(record)

        record.close(
            computation.previous_quantity,
            computation.inbound_quantity,
            computation.outbound_quantity,
            actor_id=actor_id,
            closed_at=now,
        )
        self.session.flush()

        self.session.add(
            ClosingRecordRevision.snapshot(
                record, RevisionReason.CLOSE, actor_id=actor_id, recorded_at=now
            )
        )
        self.session.flush()
        return record

    def apply_recalculation(
        self,
        key: ClosingKey,
        period: ClosingPeriod,
        computation: ClosingComputation,
        expected_version: int,
        actor_id: UUID,
        recalculation_run_id: UUID | None = None,
    ) -> ClosingRecordInfo:
        """
        Overwrite a closed record with recomputed quantities.

        Preconditions: The caller holds the per-key lock and planned
            ``computation`` against the record at ``expected_version``.
        Postconditions: version is expected_version + 1; one RECALCULATE
            revision row exists for the new version.

        Raises:
            ClosingNotFoundError: Record missing or not closed.
            OptimisticLockError: Record version differs from expected_version.
        """
        record = self._get_for_update(key, period)
        if record is None or not record.is_closed:
            raise ClosingNotFoundError(key.entity_id, key.facility_type_code, period.code)

        if record.version != expected_version:
            logger.warning(
                "recalculation_version_conflict",
                extra={
                    "period": period.code,
                    "expected_version": expected_version,
                    "actual_version": record.version,
                },
            )
            raise OptimisticLockError(
                key.entity_id,
                key.facility_type_code,
                period.code,
                expected_version=expected_version,
                actual_version=record.version,
            )

        record.recalculate(
            computation.previous_quantity,
            computation.inbound_quantity,
            computation.outbound_quantity,
            actor_id=actor_id,
        )
        self.session.add(
            ClosingRecordRevision.snapshot(
                record,
                RevisionReason.RECALCULATE,
                actor_id=actor_id,
                recorded_at=self._clock.now(),
                recalculation_run_id=recalculation_run_id,
            )
        )
        self.session.flush()
        return ClosingRecordInfo.from_model(record)
