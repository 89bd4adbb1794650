"""Closing processors and per-key lock managers."""

from closing_kernel.services.daily_closing_service import DailyClosingService
from closing_kernel.services.lock_manager import (
    AdvisoryLockManager,
    InProcessLockManager,
    LockManager,
)
from closing_kernel.services.monthly_closing_service import MonthlyClosingService

__all__ = [
    "AdvisoryLockManager",
    "DailyClosingService",
    "InProcessLockManager",
    "LockManager",
    "MonthlyClosingService",
]
