"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow out of the closing
    processors and selectors: ClosingKey (lock/identity), LedgerTotals
    (ledger read result), ClosingComputation (pure arithmetic),
    ClosingRecordInfo (persisted snapshot), ClosingResult (processor output),
    CurrentPosition and DailyClosingDayStatus (query projections).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Processors and selectors return these DTOs, never ORM entities.
    - ClosingComputation.closing_quantity is always previous + in - out;
      ``compute_closing`` refuses to produce a negative one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from closing_kernel.domain.periods import ClosingPeriod, Granularity
from closing_kernel.exceptions import NegativeClosingError

if TYPE_CHECKING:
    from closing_kernel.models.closing_record import ClosingRecord as ClosingRecordModel


@dataclass(frozen=True, order=True)
class ClosingKey:
    """(entity, facility type) pair that owns one closing chain."""

    entity_id: str
    facility_type_code: str

    @property
    def lock_name(self) -> str:
        return f"{self.entity_id}|{self.facility_type_code}"

    def __str__(self) -> str:
        return f"{self.entity_id}/{self.facility_type_code}"


@dataclass(frozen=True)
class LedgerTotals:
    """Inbound/outbound sums over a date range for one key."""

    inbound_quantity: int = 0
    outbound_quantity: int = 0

    @property
    def net(self) -> int:
        return self.inbound_quantity - self.outbound_quantity


@dataclass(frozen=True)
class ClosingComputation:
    """Result of the closing arithmetic for one key and period."""

    previous_quantity: int
    inbound_quantity: int
    outbound_quantity: int

    @property
    def closing_quantity(self) -> int:
        return self.previous_quantity + self.inbound_quantity - self.outbound_quantity


def compute_closing(
    key: ClosingKey,
    period: ClosingPeriod,
    previous_quantity: int,
    totals: LedgerTotals,
) -> ClosingComputation:
    """
    Compute a closing snapshot.

    Raises:
        NegativeClosingError: If previous + inbound - outbound < 0.
    """
    computation = ClosingComputation(
        previous_quantity=previous_quantity,
        inbound_quantity=totals.inbound_quantity,
        outbound_quantity=totals.outbound_quantity,
    )
    if computation.closing_quantity < 0:
        raise NegativeClosingError(
            entity_id=key.entity_id,
            facility_type_code=key.facility_type_code,
            period_code=period.code,
            previous_quantity=previous_quantity,
            inbound_quantity=totals.inbound_quantity,
            outbound_quantity=totals.outbound_quantity,
        )
    return computation


@dataclass(frozen=True)
class ClosingRecordInfo:
    """
    Pure domain representation of a closing record.

    Contract:
        Immutable snapshot of one committed closing.  ``closed_by_name`` is
        only filled in by selectors that resolve actors for display.
    """

    id: UUID
    entity_id: str
    facility_type_code: str
    granularity: Granularity
    period_start: date
    period_end: date
    previous_quantity: int
    inbound_quantity: int
    outbound_quantity: int
    closing_quantity: int
    is_closed: bool
    version: int
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    closed_by_name: str | None = None

    @property
    def key(self) -> ClosingKey:
        return ClosingKey(self.entity_id, self.facility_type_code)

    @property
    def period(self) -> ClosingPeriod:
        return ClosingPeriod(
            start=self.period_start, end=self.period_end, granularity=self.granularity
        )

    @property
    def period_code(self) -> str:
        return self.period.code

    def matches(self, computation: ClosingComputation) -> bool:
        """True if this record was closed with exactly these inputs."""
        return (
            self.previous_quantity == computation.previous_quantity
            and self.inbound_quantity == computation.inbound_quantity
            and self.outbound_quantity == computation.outbound_quantity
        )

    def with_actor_name(self, name: str | None) -> ClosingRecordInfo:
        return replace(self, closed_by_name=name)

    @classmethod
    def from_model(cls, model: ClosingRecordModel) -> ClosingRecordInfo:
        return cls(
            id=model.id,
            entity_id=model.entity_id,
            facility_type_code=model.facility_type_code,
            granularity=Granularity(model.granularity),
            period_start=model.period_start,
            period_end=model.period_end,
            previous_quantity=model.previous_quantity,
            inbound_quantity=model.inbound_quantity,
            outbound_quantity=model.outbound_quantity,
            closing_quantity=model.closing_quantity,
            is_closed=model.is_closed,
            version=model.version,
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
        )


class ClosingStatus(str, Enum):
    """Outcome of a single-key closing call."""

    CLOSED = "closed"  # Work done: record created
    ALREADY_CLOSED = "already_closed"  # No work done: inputs unchanged


@dataclass(frozen=True)
class ClosingResult:
    """Return type of close_day() / close_month()."""

    status: ClosingStatus
    record: ClosingRecordInfo

    @property
    def is_new(self) -> bool:
        return self.status == ClosingStatus.CLOSED


@dataclass(frozen=True)
class CurrentPosition:
    """
    Live, uncommitted inventory position for one key.

    ``base_quantity`` comes from the latest closed day; the recent figures
    are ledger sums strictly after ``latest_closing_date`` up to today.
    """

    entity_id: str
    facility_type_code: str
    base_quantity: int
    recent_inbound: int
    recent_outbound: int
    latest_closing_date: date | None
    as_of: date

    @property
    def current_quantity(self) -> int:
        return self.base_quantity + self.recent_inbound - self.recent_outbound


@dataclass(frozen=True)
class DailyClosingDayStatus:
    """One row of the daily closing calendar: all keys of an entity on a day."""

    closing_date: date
    is_closed: bool
    closed_keys: int
    total_keys: int
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None
    closed_by_name: str | None = None

    @property
    def day_of_month(self) -> int:
        return self.closing_date.day
