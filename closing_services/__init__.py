"""
closing_services -- Orchestration over the closing kernel.

Coordinators own the per-key lock and the transaction boundaries; the
kernel processors they drive only flush.
"""

from closing_services._closing_types import (
    FanOutReport,
    FanOutStatus,
    KeyOutcome,
    KeyOutcomeStatus,
    RecalcBatchReport,
    RecalcEntry,
    RecalcReport,
    RecalcStatus,
)
from closing_services.closing_coordinator import ClosingCoordinator
from closing_services.recalculation_coordinator import RecalculationCoordinator

__all__ = [
    "ClosingCoordinator",
    "FanOutReport",
    "FanOutStatus",
    "KeyOutcome",
    "KeyOutcomeStatus",
    "RecalcBatchReport",
    "RecalcEntry",
    "RecalcReport",
    "RecalcStatus",
    "RecalculationCoordinator",
]
