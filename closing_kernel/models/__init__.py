"""ORM models for the closing kernel."""

from closing_kernel.models.closing_record import (
    ClosingRecord,
    ClosingRecordRevision,
    RevisionReason,
)
from closing_kernel.models.ledger_entry import (
    LedgerDirection,
    LedgerEntry,
    LedgerEntryStatus,
)
from closing_kernel.models.recalculation_run import (
    RecalculationRun,
    RecalculationRunStatus,
)

__all__ = [
    "ClosingRecord",
    "ClosingRecordRevision",
    "LedgerDirection",
    "LedgerEntry",
    "LedgerEntryStatus",
    "RecalculationRun",
    "RecalculationRunStatus",
    "RevisionReason",
]
