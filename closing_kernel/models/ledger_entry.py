"""
Module: closing_kernel.models.ledger_entry
Responsibility: ORM mapping of the facility inventory ledger -- the inbound and
    outbound quantity movements the closing engine aggregates.
Architecture position: Kernel > Models.  May import from db/ only.

The ledger is owned by the transaction-registration side of the system.  The
closing engine only READS it (through closing_kernel.selectors.ledger_selector).
The mapping lives here so the SQL ledger store and the test-suite share one
table definition.

Invariants enforced:
    - quantity > 0; the sign comes from direction (ck_ledger_quantity_positive).
    - Entries are append-only.  A cancelled movement keeps its row with
      status CANCELLED and drops out of every closing sum.
"""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Date, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from closing_kernel.db.base import TrackedBase
from closing_kernel.db.types import (
    EntityId,
    FacilityTypeCode,
    LongText,
    Quantity,
    ShortCode,
)


class LedgerDirection(str, Enum):
    """Which way a movement changes the position."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class LedgerEntryStatus(str, Enum):
    """Lifecycle of a ledger movement."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class LedgerEntry(TrackedBase):
    """One inbound or outbound facility movement."""

    __tablename__ = "facility_ledger_entries"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_ledger_quantity_positive"),
        Index(
            "idx_ledger_key_date",
            "entity_id",
            "facility_type_code",
            "transaction_date",
        ),
        Index("idx_ledger_entity_date", "entity_id", "transaction_date"),
    )

    entity_id: Mapped[EntityId] = mapped_column(nullable=False)

    facility_type_code: Mapped[FacilityTypeCode] = mapped_column(nullable=False)

    # Business date the movement belongs to (closing granularity is the day)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    direction: Mapped[ShortCode] = mapped_column(nullable=False)

    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    # Registration type (new, move, lost, dispose, ...); informational only
    transaction_type_code: Mapped[ShortCode | None] = mapped_column(nullable=True)

    status: Mapped[ShortCode] = mapped_column(
        nullable=False,
        default=LedgerEntryStatus.ACTIVE.value,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    reference: Mapped[LongText | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.entity_id}/{self.facility_type_code} "
            f"{self.transaction_date} {self.direction} {self.quantity}>"
        )

