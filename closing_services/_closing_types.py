"""
closing_services._closing_types -- Report DTOs for the closing coordinators.

Responsibility:
    Frozen dataclasses describing the outcome of multi-key closing work:
    per-key fan-out outcomes, fan-out reports, recalculation entries and
    reports, and the aggregate of a date-wide recalculation.

Architecture position:
    Services -- orchestration over the kernel processors.  These types live
    in closing_services/ because the coordinators that produce them live
    here; closing_api serializes them.

Invariants enforced:
    - All DTOs are frozen.
    - Report status is derived from the outcomes (summarize_outcomes), so a
      report can never claim COMPLETED while carrying a failed key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterable
from uuid import UUID

from closing_kernel.domain.dtos import ClosingRecordInfo
from closing_kernel.domain.periods import Granularity


class KeyOutcomeStatus(str, Enum):
    """What happened to one key in a fan-out."""

    CLOSED = "closed"
    ALREADY_CLOSED = "already_closed"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"  # Timeout or cancellation reached first


class FanOutStatus(str, Enum):
    """Overall outcome of a multi-key operation."""

    NOTHING_TO_DO = "nothing_to_do"  # No targets, or every key already done
    COMPLETED = "completed"
    PARTIAL = "partial"  # Some keys succeeded, some failed or were skipped
    FAILED = "failed"  # No key succeeded


@dataclass(frozen=True)
class KeyOutcome:
    """Result for one facility type of a fan-out."""
    facility_type_code: str
    status: KeyOutcomeStatus
    record: ClosingRecordInfo | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (KeyOutcomeStatus.CLOSED, KeyOutcomeStatus.ALREADY_CLOSED)


def summarize_outcomes(statuses: Iterable[KeyOutcomeStatus]) -> FanOutStatus:
    statuses = list(statuses)
    if all(s == KeyOutcomeStatus.ALREADY_CLOSED for s in statuses):
        return FanOutStatus.NOTHING_TO_DO
    ok = sum(
        1 for s in statuses
        if s in (KeyOutcomeStatus.CLOSED, KeyOutcomeStatus.ALREADY_CLOSED)
    )
    if ok == len(statuses):
        return FanOutStatus.COMPLETED
    if ok == 0:
        return FanOutStatus.FAILED
    return FanOutStatus.PARTIAL


@dataclass(frozen=True)
class FanOutReport:
    """Return type of close_day_all() / close_month_all()."""
    entity_id: str
    granularity: Granularity
    period_code: str
    status: FanOutStatus
    outcomes: tuple[KeyOutcome, ...]
    correlation_id: str
    started_at: datetime
    completed_at: datetime
    interrupted: bool = False  # Timeout or cancellation stopped the fan-out

    def _count(self, status: KeyOutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def closed_count(self) -> int:
        return self._count(KeyOutcomeStatus.CLOSED)

    @property
    def already_closed_count(self) -> int:
        return self._count(KeyOutcomeStatus.ALREADY_CLOSED)

    @property
    def failed_count(self) -> int:
        return self._count(KeyOutcomeStatus.FAILED)

    @property
    def not_attempted_count(self) -> int:
        return self._count(KeyOutcomeStatus.NOT_ATTEMPTED)

    @property
    def retry_keys(self) -> tuple[str, ...]:
        """Facility types a retry of the same fan-out still has to process."""
        return tuple(o.facility_type_code for o in self.outcomes if not o.succeeded)


class RecalcStatus(str, Enum):
    """Outcome of a single-key recalculation."""

    COMPLETED = "completed"
    ABORTED = "aborted"  # Negative closing found while planning; nothing written
    NOTHING_TO_DO = "nothing_to_do"  # Every recomputed record was unchanged


@dataclass(frozen=True)
class RecalcEntry:
    """One record touched by a recalculation."""
    granularity: Granularity
    period_code: str
    period_start: date
    old_closing_quantity: int
    new_closing_quantity: int
    previous_quantity: int
    inbound_quantity: int
    outbound_quantity: int
    version_before: int
    version_after: int

    @property
    def changed(self) -> bool:
        return self.version_after != self.version_before


@dataclass(frozen=True)
class RecalcReport:
    """Return type of recalculate()."""
    entity_id: str
    facility_type_code: str
    from_date: date
    status: RecalcStatus
    entries: tuple[RecalcEntry, ...] = ()
    run_id: UUID | None = None
    resumed_from: date | None = None
    failed_at: str | None = None
    last_committed_date: date | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def days_recalculated(self) -> int:
        return sum(
            1 for e in self.entries
            if e.granularity == Granularity.DAY and e.changed
        )

    @property
    def months_recalculated(self) -> int:
        return sum(
            1 for e in self.entries
            if e.granularity == Granularity.MONTH and e.changed
        )


@dataclass(frozen=True)
class RecalcBatchReport:
    """Return type of recalculate_all(): one report per key that ran."""
    entity_id: str
    from_date: date
    status: FanOutStatus
    reports: tuple[RecalcReport, ...] = ()
    failures: tuple[KeyOutcome, ...] = field(default_factory=tuple)
    correlation_id: str = ""
