"""
Module: closing_kernel.models.closing_record
Responsibility: ORM persistence for closing snapshots and their version history.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One record per (entity_id, facility_type_code, granularity, period_start)
      (uq_closing_record_key).
    - closing_quantity = previous_quantity + inbound_quantity - outbound_quantity
      and all four are non-negative (ck_closing_* check constraints).
    - version starts at 1 and only moves forward, one step per recalculation.
    - Records are never deleted.  Every create and every recalculation appends
      a ClosingRecordRevision row.

Failure modes:
    - IntegrityError on a duplicate closing key (two writers racing without
      the per-key lock).
    - ValueError from close()/recalculate() on lifecycle misuse.

Audit relevance:
    closing_record_revisions holds every version ever committed, with the
    actor and the recalculation run that produced it.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from closing_kernel.db.base import TrackedBase, UUIDString
from closing_kernel.db.types import EntityId, FacilityTypeCode, Quantity, ShortCode


class RevisionReason(str, Enum):
    """Why a closing record version was written."""

    CLOSE = "close"
    RECALCULATE = "recalculate"


class ClosingRecord(TrackedBase):
    """
    Closing snapshot for one key and period.

    Contract:
        Created by the daily or monthly processor on first closing; mutated
        only through recalculate(); never deleted.

    Guarantees:
        - Unique per (entity, facility type, granularity, period start).
        - Quantities satisfy the closing equation (check constraint).
    """

    __tablename__ = "closing_records"

    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "facility_type_code",
            "granularity",
            "period_start",
            name="uq_closing_record_key",
        ),
        CheckConstraint(
            "closing_quantity = previous_quantity + inbound_quantity - outbound_quantity",
            name="ck_closing_equation",
        ),
        CheckConstraint(
            "previous_quantity >= 0 AND inbound_quantity >= 0 "
            "AND outbound_quantity >= 0 AND closing_quantity >= 0",
            name="ck_closing_non_negative",
        ),
        CheckConstraint("version >= 1", name="ck_closing_version"),
        Index("idx_closing_entity_period", "entity_id", "granularity", "period_start"),
    )

    entity_id: Mapped[EntityId] = mapped_column(nullable=False)

    facility_type_code: Mapped[FacilityTypeCode] = mapped_column(nullable=False)

    # "day" or "month"
    granularity: Mapped[ShortCode] = mapped_column(nullable=False)

    # Period boundaries (inclusive)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    previous_quantity: Mapped[Quantity] = mapped_column(nullable=False, default=0)

    inbound_quantity: Mapped[Quantity] = mapped_column(nullable=False, default=0)

    outbound_quantity: Mapped[Quantity] = mapped_column(nullable=False, default=0)

    closing_quantity: Mapped[Quantity] = mapped_column(nullable=False, default=0)

    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    closed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    revisions: Mapped[list["ClosingRecordRevision"]] = relationship(
        back_populates="closing_record",
        order_by="ClosingRecordRevision.version",
    )

    def __repr__(self) -> str:
        return (
            f"<ClosingRecord {self.entity_id}/{self.facility_type_code} "
            f"{self.granularity}:{self.period_start} v{self.version}>"
        )

    def _set_quantities(self, previous: int, inbound: int, outbound: int) -> None:
        self.previous_quantity = previous
        self.inbound_quantity = inbound
        self.outbound_quantity = outbound
        self.closing_quantity = previous + inbound - outbound

    def close(
        self,
        previous: int,
        inbound: int,
        outbound: int,
        actor_id: UUID,
        closed_at: datetime,
    ) -> None:
        """Close the period for the first time.

        Preconditions: record is not closed yet.
        Postconditions: is_closed, closed_at, closed_by_id populated; version 1.

        Note: Requires closed_at timestamp from injected clock.
        """
        if self.is_closed:
            raise ValueError(f"{self!r} is already closed")
        self._set_quantities(previous, inbound, outbound)
        self.is_closed = True
        self.closed_at = closed_at
        self.closed_by_id = actor_id
        self.version = 1

    def recalculate(
        self,
        previous: int,
        inbound: int,
        outbound: int,
        actor_id: UUID,
    ) -> None:
        """Overwrite quantities in place and bump the version.

        closed_at/closed_by_id keep naming the original close; the
        recalculating actor goes to updated_by_id and the revision row.
        """
        if not self.is_closed:
            raise ValueError(f"{self!r} is not closed; nothing to recalculate")
        self._set_quantities(previous, inbound, outbound)
        self.version = self.version + 1
        self.updated_by_id = actor_id


class ClosingRecordRevision(TrackedBase):
    """
    Append-only history row: the state of a closing record at one version.
    """

    __tablename__ = "closing_record_revisions"

    __table_args__ = (
        UniqueConstraint("closing_record_id", "version", name="uq_closing_revision_version"),
    )

    closing_record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("closing_records.id"),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(nullable=False)

    previous_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    inbound_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    outbound_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    closing_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    reason: Mapped[ShortCode] = mapped_column(nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Set when the version was produced by a recalculation run
    recalculation_run_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    closing_record: Mapped[ClosingRecord] = relationship(back_populates="revisions")

    @classmethod
    def snapshot(
        cls,
        record: ClosingRecord,
        reason: RevisionReason,
        actor_id: UUID,
        recorded_at: datetime,
        recalculation_run_id: UUID | None = None,
    ) -> "ClosingRecordRevision":
        return cls(
            closing_record_id=record.id,
            version=record.version,
            previous_quantity=record.previous_quantity,
            inbound_quantity=record.inbound_quantity,
            outbound_quantity=record.outbound_quantity,
            closing_quantity=record.closing_quantity,
            reason=reason.value,
            recorded_at=recorded_at,
            recalculation_run_id=recalculation_run_id,
            created_by_id=actor_id,
        )
