"""Read-only selectors over closing records and the ledger."""

from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_kernel.selectors.ledger_selector import LedgerStore, SqlLedgerStore

__all__ = [
    "ClosingSelector",
    "LedgerStore",
    "SqlLedgerStore",
]
