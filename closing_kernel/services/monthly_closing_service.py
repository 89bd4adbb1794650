"""
MonthlyClosingService -- closes one (entity, facility type) for one calendar month.

Responsibility:
    Aggregates the month's ledger movements on top of the quantity carried
    in from the previous month, once the month's last day is closed.  Also
    answers whether a month is closed, which the transaction registration
    path must consult before accepting a movement.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the ClosingCoordinator
    inside a per-key lock and a coordinator-owned transaction, and by the
    recalculation planner (previous-quantity resolution).

Invariants enforced:
    - The daily record of the month's last calendar day must exist and be
      closed before the month can close.
    - previous_quantity: prior month's closing; else the latest closed day
      before the month; else 0.
    - No closing of a month earlier than an already-closed month of the key.
    - Re-closing with unchanged inputs is a no-op (ALREADY_CLOSED).
    - Flush-only: never commits or rolls back the session.

Failure modes:
    - LastDayNotClosedError names the missing last day.
    - ClosingOrderError, NegativeClosingError, ClosingInputsChangedError.
    - MonthClosedError from validate_transaction_date().

Audit relevance:
    A monthly closing that disagrees with its last day's closing quantity
    is still written (the month is computed from the ledger) but logged as
    ``monthly_daily_mismatch`` for investigation.
"""

from datetime import date
from typing import Mapping
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
    LastDayNotClosedError,
    MonthClosedError,
    NegativeClosingError,
)
from closing_kernel.logging_config import LogContext, get_logger
from closing_kernel.services.closing_processor import ClosingProcessor

logger = get_logger("services.monthly_closing")


class MonthlyClosingService(ClosingProcessor):
    """
    Monthly closing processor and closed-month predicate.

    Contract:
        close_month() returns a ClosingResult (CLOSED or ALREADY_CLOSED).
        is_month_closed() / validate_transaction_date() are read-only.
    """

    def previous_quantity(
        self,
        key: ClosingKey,
        period: ClosingPeriod,
        month_overrides: Mapping[date, int] | None = None,
        day_overrides: Mapping[date, int] | None = None,
    ) -> int:
        """
        Quantity carried into month ``period``.

        The override mappings (period start -> closing quantity) let the
        recalculation planner substitute closings it has recomputed but not
        yet written.
        """
        prior = period.previous()
        if month_overrides and prior.start in month_overrides:
            return month_overrides[prior.start]

        prior_record = self._selector.get_record(key, prior)
        if prior_record is not None and prior_record.is_closed:
            return prior_record.closing_quantity

        day_before = self._selector.latest_closed_day(key, before=period.start)
        if day_before is None:
            return 0
        if day_overrides and day_before.period_start in day_overrides:
            return day_overrides[day_before.period_start]
        return day_before.closing_quantity

    def close_month(
        self,
        entity_id: str,
        facility_type_code: str,
        year: int,
        month: int,
        actor_id: UUID,
    ) -> ClosingResult:
        """
        Close one key for one calendar month.

        Raises:
            LastDayNotClosedError: The month's last day is not closed.
            ClosingInputsChangedError: Closed already, inputs changed since.
            ClosingOrderError: A later month of the key is already closed.
            NegativeClosingError: previous + inbound - outbound < 0.
        """
        key = ClosingKey(entity_id, facility_type_code)
        period = ClosingPeriod.for_month(year, month)

        with LogContext.bind(
            entity_id=entity_id,
            facility_type_code=facility_type_code,
            actor_id=actor_id,
        ):
            last_day = self._selector.get_record(key, period.last_day())
            if last_day is None or not last_day.is_closed:
                logger.warning(
                    "monthly_closing_last_day_not_closed",
                    extra={"period": period.code, "missing_date": period.end},
                )
                raise LastDayNotClosedError(
                    entity_id, facility_type_code, period.code, period.end.isoformat()
                )

            record = self._get_for_update(key, period)
            totals = self._ledger.totals(key, period.start, period.end)
            carried = self.previous_quantity(key, period)

            if record is not None and record.is_closed:
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
                        "monthly_closing_already_closed",
                        extra={"period": period.code, "version": record.version},
                    )
                    return ClosingResult(
                        status=ClosingStatus.ALREADY_CLOSED,
                        record=ClosingRecordInfo.from_model(record),
                    )

            self._ensure_no_later_closing(key, period)

            try:
                computation = compute_closing(key, period, carried, totals)
            except NegativeClosingError as exc:
                logger.warning(
                    "monthly_closing_negative",
                    extra={"period": period.code, "closing_quantity": exc.closing_quantity},
                )
                raise

            if computation.closing_quantity != last_day.closing_quantity:
                logger.warning(
                    "monthly_daily_mismatch",
                    extra={
                        "period": period.code,
                        "monthly_closing_quantity": computation.closing_quantity,
                        "last_day_closing_quantity": last_day.closing_quantity,
                    },
                )

            record = self._write_closing(key, period, record, computation, actor_id)

            logger.info(
                "monthly_closing_completed",
                extra={
                    "period": period.code,
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

    def is_month_closed(
        self, entity_id: str, facility_type_code: str, transaction_date: date
    ) -> bool:
        """True if the month containing ``transaction_date`` is closed for the key."""
        return self._selector.is_month_closed(
            entity_id, facility_type_code, transaction_date
        )

    def validate_transaction_date(
        self, entity_id: str, facility_type_code: str, transaction_date: date
    ) -> None:
        """
        Guard for the transaction registration path.

        Raises:
            MonthClosedError: The month containing transaction_date is closed.
        """
        if self.is_month_closed(entity_id, facility_type_code, transaction_date):
            period = ClosingPeriod.containing_month(transaction_date)
            logger.warning(
                "transaction_in_closed_month",
                extra={
                    "entity_id": entity_id,
                    "facility_type_code": facility_type_code,
                    "transaction_date": transaction_date,
                    "period": period.code,
                },
            )
            raise MonthClosedError(
                entity_id,
                facility_type_code,
                period.code,
                transaction_date.isoformat(),
            )
