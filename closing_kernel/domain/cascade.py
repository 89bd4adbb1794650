"""
Cascade -- forward propagation of closing quantities through a chain of periods.

Responsibility:
    Given the quantity carried into the first period and the ledger totals of
    every period in order, compute each period's closing so that every
    period's previous quantity is the closing of the one before it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The recalculation
    planner feeds it ledger totals and stops at the first negative closing.

Invariants enforced:
    - Chain: step[i].previous_quantity == step[i-1].closing_quantity.
    - No negative closing is ever yielded; NegativeClosingError is raised
      at the offending period instead.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator

from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    LedgerTotals,
    compute_closing,
)
from closing_kernel.domain.periods import ClosingPeriod


@dataclass(frozen=True)
class ChainStep:
    """One period of a propagated chain."""

    period: ClosingPeriod
    computation: ClosingComputation


def propagate_chain(
    key: ClosingKey,
    opening_quantity: int,
    periods: Iterable[tuple[ClosingPeriod, LedgerTotals]],
) -> Iterator[ChainStep]:
    """
    Yield one ChainStep per period, carrying each closing into the next.

    Steps already yielded stay valid if a later period raises.

    Raises:
        NegativeClosingError: At the first period whose closing would be < 0.
    """
    carried = opening_quantity
    for period, totals in periods:
        computation = compute_closing(key, period, carried, totals)
        yield ChainStep(period=period, computation=computation)
        carried = computation.closing_quantity
