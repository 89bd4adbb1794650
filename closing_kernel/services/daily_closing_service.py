"""
DailyClosingService -- closes one (entity, facility type) for one business day.

Responsibility:
    Sums the day's ledger movements, carries the previous day's closing
    quantity forward, and persists the resulting closing snapshot.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the ClosingCoordinator
    (single key and fan-out) inside a per-key lock and a transaction the
    coordinator owns.

Invariants enforced:
    - Chain: previous_quantity is the closing quantity of the day before.
    - A key's first-ever closing starts from 0; afterwards a missing
      previous day blocks the close.
    - No closing date after today (business timezone of the injected clock).
    - No closing of a day earlier than an already-closed day of the key.
    - Re-closing with unchanged inputs is a no-op (ALREADY_CLOSED).
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - FutureClosingDateError, PrerequisiteNotClosedError, ClosingOrderError,
      NegativeClosingError, ClosingInputsChangedError (all typed, all
      logged at WARNING).
    - LedgerUnavailableError from the ledger store.

Audit relevance:
    Each close writes the record and its version-1 revision with the actor
    and the clock timestamp; ``daily_closing_completed`` is logged with the
    four quantities.
"""

from datetime import date, timedelta
from uuid import UUID

from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    ClosingRecordInfo,
    ClosingResult,
    ClosingStatus,
    compute_closing,
)
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import (
    AlreadyClosedError,
    FutureClosingDateError,
    NegativeClosingError,
    PrerequisiteNotClosedError,
)
from closing_kernel.logging_config import LogContext, get_logger
from closing_kernel.services.closing_processor import ClosingProcessor

logger = get_logger("services.daily_closing")


class DailyClosingService(ClosingProcessor):
    """
    Daily closing processor.

    Contract:
        close_day() returns a ClosingResult whose status tells new work
        (CLOSED) apart from an idempotent repeat (ALREADY_CLOSED).  All
        rule violations raise typed ClosingError subclasses.

    Non-goals:
        - Does NOT iterate over keys; fan-out is the coordinator's job.
        - Does NOT rewrite closed days; that is recalculation.
    """

    def previous_quantity(
        self,
        key: ClosingKey,
        closing_date: date,
        first_closing_quantity: int = 0,
    ) -> int:
        """
        Quantity carried into ``closing_date``.

        Returns ``first_closing_quantity`` when the key has no closed day
        before ``closing_date`` at all.

        Raises:
            PrerequisiteNotClosedError: The key has earlier closings but the
                day right before ``closing_date`` is not closed.
        """
        prior_day = closing_date - timedelta(days=1)
        prior = self._selector.get_record(key, ClosingPeriod.for_day(prior_day))
        if prior is not None and prior.is_closed:
            return prior.closing_quantity

        if self._selector.latest_closed_day(key, before=closing_date) is None:
            return first_closing_quantity

        logger.warning(
            "daily_closing_prerequisite_missing",
            extra={"closing_date": closing_date, "missing_date": prior_day},
        )
        raise PrerequisiteNotClosedError(
            key.entity_id,
            key.facility_type_code,
            closing_date.isoformat(),
            prior_day.isoformat(),
        )

    def close_day(
        self,
        entity_id: str,
        facility_type_code: str,
        closing_date: date,
        actor_id: UUID,
    ) -> ClosingResult:
        """
        Close one key for one day.

        Args:
            entity_id: Business entity owning the position.
            facility_type_code: Facility type being closed.
            closing_date: Business date to close.
            actor_id: Who is closing.

        Returns:
            ClosingResult with status CLOSED (record created) or
            ALREADY_CLOSED (existing record, unchanged).

        Raises:
            FutureClosingDateError: closing_date is after today.
            ClosingInputsChangedError: Closed already, ledger changed since.
            ClosingOrderError: A later day of the key is already closed.
            PrerequisiteNotClosedError: Previous day not closed.
            NegativeClosingError: previous + inbound - outbound < 0.
        """
        key = ClosingKey(entity_id, facility_type_code)
        period = ClosingPeriod.for_day(closing_date)

        with LogContext.bind(
            entity_id=entity_id,
            facility_type_code=facility_type_code,
            actor_id=actor_id,
        ):
            today = self._clock.today()
            if closing_date > today:
                logger.warning(
                    "daily_closing_future_date",
                    extra={"closing_date": closing_date, "today": today},
                )
                raise FutureClosingDateError(closing_date.isoformat(), today.isoformat())

            record = self._get_for_update(key, period)
            totals = self._ledger.totals(key, closing_date, closing_date)

            if record is not None and record.is_closed:
                carried = self.previous_quantity(
                    key, closing_date, first_closing_quantity=record.previous_quantity
                )
                try:
                    self._check_already_closed(
                        key,
                        period,
                        record,
                        ClosingComputation(
                            carried, totals.inbound_quantity, totals.outbound_quantity
                        ),
                    )
                except AlreadyClosedError:
                    logger.info(
                        "daily_closing_already_closed",
                        extra={"closing_date": closing_date, "version": record.version},
                    )
                    return ClosingResult(
                        status=ClosingStatus.ALREADY_CLOSED,
                        record=ClosingRecordInfo.from_model(record),
                    )

            self._ensure_no_later_closing(key, period)
            carried = self.previous_quantity(key, closing_date)

            try:
                computation = compute_closing(key, period, carried, totals)
            except NegativeClosingError as exc:
                logger.warning(
                    "daily_closing_negative",
                    extra={
                        "closing_date": closing_date,
                        "closing_quantity": exc.closing_quantity,
                    },
                )
                raise

            record = self._write_closing(key, period, record, computation, actor_id)

            logger.info(
                "daily_closing_completed",
                extra={
                    "closing_date": closing_date,
                    "previous_quantity": computation.previous_quantity,
                    "inbound_quantity": computation.inbound_quantity,
                    "outbound_quantity": computation.outbound_quantity,
                    "closing_quantity": computation.closing_quantity,
                },
            )

            return ClosingResult(
                status=ClosingStatus.CLOSED,
                record=ClosingRecordInfo.from_model(record),
            )
