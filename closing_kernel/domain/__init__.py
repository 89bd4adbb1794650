"""Pure domain layer: periods, DTOs, clock, actor resolution."""

from closing_kernel.domain.actors import ActorDirectory, StaticActorDirectory
from closing_kernel.domain.cascade import ChainStep, propagate_chain
from closing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    ClosingRecordInfo,
    ClosingResult,
    ClosingStatus,
    CurrentPosition,
    DailyClosingDayStatus,
    LedgerTotals,
    compute_closing,
)
from closing_kernel.domain.periods import (
    ClosingPeriod,
    Granularity,
    iter_days,
    last_day_of,
)

__all__ = [
    "ActorDirectory",
    "ChainStep",
    "Clock",
    "ClosingComputation",
    "ClosingKey",
    "ClosingPeriod",
    "ClosingRecordInfo",
    "ClosingResult",
    "ClosingStatus",
    "CurrentPosition",
    "DailyClosingDayStatus",
    "DeterministicClock",
    "Granularity",
    "LedgerTotals",
    "StaticActorDirectory",
    "SystemClock",
    "compute_closing",
    "iter_days",
    "last_day_of",
    "propagate_chain",
]
