"""
Module: closing_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, type annotation map for consistent column
    types, and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Quantities are integers: type_annotation_map maps Python int to
      BigInteger.  Inventory counts are never fractional.
    - Audit timestamps: TrackedBase provides created_at, updated_at,
      created_by_id, and updated_by_id for audit trail completeness.

Audit relevance:
    TrackedBase.created_at and created_by_id record who first closed a period.
    updated_at/updated_by_id move on every recalculation; the per-version
    history itself lives in closing_record_revisions.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from closing_kernel.db.types import (
    ENTITY_ID_LENGTH,
    FACILITY_TYPE_CODE_LENGTH,
    EntityId,
    FacilityTypeCode,
    LongText,
    Quantity,
    ShortCode,
)


class UUIDString(TypeDecorator):
    """UUIDs stored as 36-character strings so SQLite and PostgreSQL share one schema."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for every closing table.

    Column types come from the annotation: ``Mapped[Quantity]`` is a
    BigInteger, ``Mapped[EntityId]`` and ``Mapped[FacilityTypeCode]`` are the
    shared key widths, datetimes are always timezone-aware.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
        Quantity: BigInteger,
        EntityId: String(ENTITY_ID_LENGTH),
        FacilityTypeCode: String(FACILITY_TYPE_CODE_LENGTH),
        ShortCode: String(20),
        LongText: String(2000),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base carrying who created and last changed a row, and when.

    created_by_id is the actor of the first closing (or of the run); it is
    required.  updated_by_id is set by recalculations and stays NULL until
    the first one.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString())


UUID = PyUUID
