"""Database layer - engine, base classes, and column types."""

from closing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from closing_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)
from closing_kernel.db.types import EntityId, FacilityTypeCode, Quantity

__all__ = [
    "build_engine",
    "build_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "EntityId",
    "FacilityTypeCode",
    "Quantity",
]
