"""
Module: closing_kernel.selectors.ledger_selector
Responsibility: Read access to the facility inventory ledger.  Produces the
    inbound/outbound sums every closing is computed from, and the set of keys
    with movements on a given day.
Architecture position: Kernel > Selectors.  The processors depend on the
    ``LedgerStore`` protocol; ``SqlLedgerStore`` is the implementation over
    the facility_ledger_entries table.

Invariants enforced:
    - Sums cover ACTIVE entries only; cancelled movements never count.
    - Date ranges are inclusive business dates ([start 00:00, end 23:59:59]).
    - Sums are computed at query time; the ledger has no stored balances.

Failure modes:
    - LedgerUnavailableError wraps any SQLAlchemyError raised while reading,
      so the caller can tell a retryable read failure from a closing rule
      violation.  Nothing is written by this module.
"""

from datetime import date
from typing import Protocol

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from closing_kernel.domain.dtos import ClosingKey, LedgerTotals
from closing_kernel.exceptions import LedgerUnavailableError
from closing_kernel.logging_config import get_logger
from closing_kernel.models.ledger_entry import (
    LedgerDirection,
    LedgerEntry,
    LedgerEntryStatus,
)
from closing_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.ledger")


class LedgerStore(Protocol):
    """What the closing processors need from the ledger."""

    def totals(
        self, key: ClosingKey, start: date | None, end: date
    ) -> LedgerTotals:
        """Inbound/outbound sums for ``key`` over ``start``..``end`` inclusive.

        ``start=None`` means from the beginning of the ledger.
        """
        ...

    def active_keys(self, entity_id: str, day: date) -> list[ClosingKey]:
        """Keys of ``entity_id`` with at least one active movement on ``day``."""
        ...


class SqlLedgerStore(BaseSelector[LedgerEntry]):
    """
    LedgerStore over the facility_ledger_entries table.

    Contract:
        Reads through the caller's session, so the sums see exactly what the
        caller's transaction sees.
    """

    def totals(
        self, key: ClosingKey, start: date | None, end: date
    ) -> LedgerTotals:
        inbound = func.coalesce(
            func.sum(
                case(
                    (LedgerEntry.direction == LedgerDirection.INBOUND.value, LedgerEntry.quantity),
                    else_=0,
                )
            ),
            0,
        )
        outbound = func.coalesce(
            func.sum(
                case(
                    (LedgerEntry.direction == LedgerDirection.OUTBOUND.value, LedgerEntry.quantity),
                    else_=0,
                )
            ),
            0,
        )
        stmt = select(inbound, outbound).where(
            LedgerEntry.entity_id == key.entity_id,
            LedgerEntry.facility_type_code == key.facility_type_code,
            LedgerEntry.status == LedgerEntryStatus.ACTIVE.value,
            LedgerEntry.transaction_date <= end,
        )
        if start is not None:
            stmt = stmt.where(LedgerEntry.transaction_date >= start)

        try:
            row = self.session.execute(stmt).one()
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_read_failed",
                extra={
                    "entity_id": key.entity_id,
                    "facility_type_code": key.facility_type_code,
                    "start": start,
                    "end": end,
                },
                exc_info=True,
            )
            raise LedgerUnavailableError("totals", str(exc)) from exc

        return LedgerTotals(
            inbound_quantity=int(row[0]),
            outbound_quantity=int(row[1]),
        )

    def active_keys(self, entity_id: str, day: date) -> list[ClosingKey]:
        stmt = (
            select(LedgerEntry.facility_type_code)
            .where(
                LedgerEntry.entity_id == entity_id,
                LedgerEntry.transaction_date == day,
                LedgerEntry.status == LedgerEntryStatus.ACTIVE.value,
            )
            .distinct()
            .order_by(LedgerEntry.facility_type_code)
        )
        try:
            codes = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_read_failed",
                extra={"entity_id": entity_id, "day": day},
                exc_info=True,
            )
            raise LedgerUnavailableError("active_keys", str(exc)) from exc

        return [ClosingKey(entity_id, code) for code in codes]
