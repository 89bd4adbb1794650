"""
Module: closing_kernel.models.recalculation_run
Responsibility: ORM persistence for recalculation cascade progress, so that an
    interrupted cascade resumes from the day after its last commit.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - last_committed_date only moves forward within a run.
    - At most one run per key is RUNNING at a time (guaranteed by the per-key
      lock held for the whole cascade, not by a constraint).

Audit relevance:
    Every cascade attempt is kept with its outcome and failure details;
    closing_record_revisions point back to the run that wrote them.
"""

from datetime import date, datetime, timedelta
from enum import Enum

from sqlalchemy import Date, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from closing_kernel.db.base import TrackedBase
from closing_kernel.db.types import EntityId, FacilityTypeCode, LongText, ShortCode


class RecalculationRunStatus(str, Enum):
    """Lifecycle of a recalculation run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"  # Plan found a negative closing; nothing applied
    INTERRUPTED = "interrupted"  # Failed mid-apply; resumable
    SUPERSEDED = "superseded"  # Replaced by a later run covering its range


UNFINISHED_RUN_STATUSES = (
    RecalculationRunStatus.RUNNING.value,
    RecalculationRunStatus.INTERRUPTED.value,
)


class RecalculationRun(TrackedBase):
    """One recalculation cascade attempt for one key."""

    __tablename__ = "recalculation_runs"

    __table_args__ = (
        Index("idx_recalc_run_key_status", "entity_id", "facility_type_code", "status"),
    )

    entity_id: Mapped[EntityId] = mapped_column(nullable=False)

    facility_type_code: Mapped[FacilityTypeCode] = mapped_column(nullable=False)

    # Date the caller asked to recalculate from
    from_date: Mapped[date] = mapped_column(Date, nullable=False)

    # First day actually recomputed (later than from_date when resuming)
    resumed_from: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=RecalculationRunStatus.RUNNING.value,
    )

    last_committed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    days_recalculated: Mapped[int] = mapped_column(nullable=False, default=0)

    months_recalculated: Mapped[int] = mapped_column(nullable=False, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    failure_code: Mapped[ShortCode | None] = mapped_column(nullable=True)

    failure_message: Mapped[LongText | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<RecalculationRun {self.entity_id}/{self.facility_type_code} "
            f"from {self.from_date}: {self.status}>"
        )

    @property
    def is_unfinished(self) -> bool:
        return self.status in UNFINISHED_RUN_STATUSES

    @property
    def resume_point(self) -> date:
        """First day a resumed cascade must recompute."""
        if self.last_committed_date is None:
            return self.resumed_from or self.from_date
        return self.last_committed_date + timedelta(days=1)
