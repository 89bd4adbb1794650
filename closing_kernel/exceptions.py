"""
Typed Exception Hierarchy for the Closing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A closing engine sits behind an operator console.  The console has to tell
"close the previous day first" apart from "the ledger went negative" apart
from "someone else is closing this key right now".  Parsing message strings
for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        service.close_month(entity_id, facility_type_code, 2024, 3, actor_id)
    except LastDayNotClosedError as e:
        api_response(code=e.code, missing_date=e.missing_date)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ClosingKernelError (base)
    |
    +-- ClosingError
    |   +-- PrerequisiteNotClosedError
    |   |   +-- LastDayNotClosedError
    |   +-- NegativeClosingError
    |   +-- AlreadyClosedError
    |   +-- ClosingOrderError
    |   +-- FutureClosingDateError
    |   +-- ClosingInputsChangedError
    |   +-- ClosingNotFoundError
    |   +-- MonthClosedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentClosingInProgressError
    |   +-- OptimisticLockError
    |
    +-- LedgerError
        +-- LedgerUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                           | When Raised
-------------|--------------------------------|---------------------------------------
Closing      | PREREQUISITE_NOT_CLOSED        | Previous day not closed
             | LAST_DAY_NOT_CLOSED            | Month close before its last day closed
             | NEGATIVE_CLOSING               | previous + in - out < 0
             | ALREADY_CLOSED                 | Same inputs, already closed (OK)
             | CLOSING_ORDER_VIOLATION        | A later period is already closed
             | FUTURE_CLOSING_DATE            | Closing a date after today
             | CLOSING_INPUTS_CHANGED         | Closed period's ledger changed
             | CLOSING_NOT_FOUND              | No closing record for the period
             | MONTH_CLOSED                   | Ledger write into a closed month
-------------|--------------------------------|---------------------------------------
Concurrency  | CONCURRENT_CLOSING_IN_PROGRESS | Per-key lock held by another caller
             | OPTIMISTIC_LOCK_CONFLICT       | Record version moved under a cascade
-------------|--------------------------------|---------------------------------------
Ledger       | LEDGER_UNAVAILABLE             | Ledger read failed; retry

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ALREADY_CLOSED IS SUCCESS:

    The processors raise AlreadyClosedError internally and report it as
    ClosingStatus.ALREADY_CLOSED, so callers can tell "no work done" from
    "work done" without treating either as a failure.

2. RETRYABLE ERRORS:

    ConcurrentClosingInProgressError and LedgerUnavailableError leave no
    partial state behind.  Retry with backoff.

3. NEGATIVE_CLOSING IS FATAL FOR THE KEY:

    The ledger needs manual investigation.  The engine never clamps to zero.
"""


class ClosingKernelError(Exception):
    """
    Base exception for all closing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CLOSING_KERNEL_ERROR"


# Closing-related exceptions


class ClosingError(ClosingKernelError):
    """Base exception for closing-related errors."""

    code: str = "CLOSING_ERROR"


class PrerequisiteNotClosedError(ClosingError):
    """The period a closing depends on has not been closed."""

    code: str = "PREREQUISITE_NOT_CLOSED"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        missing_date: str,
        message: str | None = None,
    ):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.missing_date = missing_date
        super().__init__(
            message
            or (
                f"Cannot close {period_code} for {entity_id}/{facility_type_code}: "
                f"previous day {missing_date} is not closed"
            )
        )


class LastDayNotClosedError(PrerequisiteNotClosedError):
    """Monthly closing attempted before the month's last day was closed."""

    code: str = "LAST_DAY_NOT_CLOSED"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        missing_date: str,
    ):
        super().__init__(
            entity_id,
            facility_type_code,
            period_code,
            missing_date,
            message=(
                f"Cannot close month {period_code} for {entity_id}/{facility_type_code}: "
                f"daily closing of the last day {missing_date} is not completed"
            ),
        )


class NegativeClosingError(ClosingError):
    """Computed closing quantity is negative (ledger integrity problem)."""

    code: str = "NEGATIVE_CLOSING"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        previous_quantity: int,
        inbound_quantity: int,
        outbound_quantity: int,
    ):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.previous_quantity = previous_quantity
        self.inbound_quantity = inbound_quantity
        self.outbound_quantity = outbound_quantity
        self.closing_quantity = previous_quantity + inbound_quantity - outbound_quantity
        super().__init__(
            f"Negative closing quantity {self.closing_quantity} for "
            f"{entity_id}/{facility_type_code} {period_code}: "
            f"previous={previous_quantity}, inbound={inbound_quantity}, "
            f"outbound={outbound_quantity}"
        )


class AlreadyClosedError(ClosingError):
    """Period is already closed with unchanged inputs (idempotent success)."""

    code: str = "ALREADY_CLOSED"

    def __init__(self, entity_id: str, facility_type_code: str, period_code: str):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        super().__init__(
            f"{entity_id}/{facility_type_code} {period_code} is already closed"
        )


class ClosingOrderError(ClosingError):
    """A later period is already closed for the same key."""

    code: str = "CLOSING_ORDER_VIOLATION"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        later_period_code: str,
    ):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.later_period_code = later_period_code
        super().__init__(
            f"Cannot close {period_code} for {entity_id}/{facility_type_code}: "
            f"later period {later_period_code} is already closed"
        )


class FutureClosingDateError(ClosingError):
    """Closing requested for a date after today."""

    code: str = "FUTURE_CLOSING_DATE"

    def __init__(self, closing_date: str, today: str):
        self.closing_date = closing_date
        self.today = today
        super().__init__(
            f"Cannot close {closing_date}: it is after the current date {today}"
        )


class ClosingInputsChangedError(ClosingError):
    """
    A closed period's ledger totals no longer match its record.

    The period must be corrected through recalculation, not re-closed.
    """

    code: str = "CLOSING_INPUTS_CHANGED"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        recorded_closing_quantity: int,
        computed_closing_quantity: int,
    ):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.recorded_closing_quantity = recorded_closing_quantity
        self.computed_closing_quantity = computed_closing_quantity
        super().__init__(
            f"{entity_id}/{facility_type_code} {period_code} is closed with "
            f"quantity {recorded_closing_quantity} but the ledger now gives "
            f"{computed_closing_quantity}; run a recalculation"
        )


class ClosingNotFoundError(ClosingError):
    """No closing record exists for the requested period."""

    code: str = "CLOSING_NOT_FOUND"

    def __init__(self, entity_id: str, facility_type_code: str, period_code: str):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        super().__init__(
            f"No closed record for {entity_id}/{facility_type_code} {period_code}"
        )


class MonthClosedError(ClosingError):
    """A ledger transaction targets a month that is already closed."""

    code: str = "MONTH_CLOSED"

    def __init__(
        self,
        entity_id: str,
        facility_type_code: str,
        period_code: str,
        transaction_date: str,
    ):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.transaction_date = transaction_date
        super().__init__(
            f"Month {period_code} is closed for {entity_id}/{facility_type_code}; "
            f"cannot register a transaction dated {transaction_date}"
        )


# Concurrency exceptions


class ConcurrencyError(ClosingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentClosingInProgressError(ConcurrencyError):
    """Another closing or recalculation holds the lock for this key."""

    code: str = "CONCURRENT_CLOSING_IN_PROGRESS"

    def __init__(self, entity_id: str, facility_type_code: str, waited_seconds: float):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Closing for {entity_id}/{facility_type_code} is already in progress "
            f"(waited {waited_seconds:.1f}s); retry later"
        )


class OptimisticLockError(ConcurrencyError):
    """Record version changed between planning and applying a recalculation."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_id: str, facility_type_code: str, period_code: str,
                 expected_version: int, actual_version: int):
        self.entity_id = entity_id
        self.facility_type_code = facility_type_code
        self.period_code = period_code
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Closing {entity_id}/{facility_type_code} {period_code} was modified: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Ledger exceptions


class LedgerError(ClosingKernelError):
    """Base exception for ledger-store errors."""

    code: str = "LEDGER_ERROR"


class LedgerUnavailableError(LedgerError):
    """The ledger store could not be read."""

    code: str = "LEDGER_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger unavailable during {operation}: {reason}")
