"""
Module: closing_kernel.selectors.closing_selector
Responsibility: Read-only projections over closing records: single-record
    lookups, the daily and monthly status screens, the daily closing calendar,
    the live inventory position, and the closed-month predicate.
Architecture position: Kernel > Selectors.  Used by the processors (chain
    lookups), the coordinators (fan-out targets) and the HTTP layer.

Invariants enforced:
    - Only committed closing rows are visible (the caller's session decides
      isolation; coordinators read in their own short transactions).
    - current_position() is computed on every call and never persisted.
    - Lists are ordered by period, then facility type code.

Failure modes:
    - LedgerUnavailableError from the ledger store in current_position() and
      closing_targets().

Audit relevance:
    closed_by_name is resolved through the ActorDirectory when one is
    configured; the stored closed_by_id is always returned as well.
"""

from datetime import date, timedelta
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from closing_kernel.domain.actors import ActorDirectory
from closing_kernel.domain.clock import Clock, SystemClock
from closing_kernel.domain.dtos import (
    ClosingKey,
    ClosingRecordInfo,
    CurrentPosition,
    DailyClosingDayStatus,
)
from closing_kernel.domain.periods import (
    ClosingPeriod,
    Granularity,
    iter_days,
    last_day_of,
)
from closing_kernel.models.closing_record import ClosingRecord
from closing_kernel.selectors.base import BaseSelector
from closing_kernel.selectors.ledger_selector import LedgerStore, SqlLedgerStore


class ClosingSelector(BaseSelector[ClosingRecord]):
    """
    Query service for closing records.

    Contract:
        Every public method returns ClosingRecordInfo (or a projection built
        from it), never ORM rows.  Missing records are reported as None or
        an empty list; raising is left to the HTTP layer.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerStore | None = None,
        actors: ActorDirectory | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ledger = ledger or SqlLedgerStore(session)
        self._actors = actors

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _to_dto(self, record: ClosingRecord) -> ClosingRecordInfo:
        info = ClosingRecordInfo.from_model(record)
        if self._actors is not None and info.closed_by_id is not None:
            info = info.with_actor_name(self._actors.display_name(info.closed_by_id))
        return info

    def _to_dtos(self, records: Sequence[ClosingRecord]) -> list[ClosingRecordInfo]:
        return [self._to_dto(r) for r in records]

    def _key_filter(self, key: ClosingKey, granularity: Granularity):
        return (
            ClosingRecord.entity_id == key.entity_id,
            ClosingRecord.facility_type_code == key.facility_type_code,
            ClosingRecord.granularity == granularity.value,
        )

    def _fetch(self, stmt) -> list[ClosingRecord]:
        return list(self.session.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Single-record lookups
    # -------------------------------------------------------------------------

    def get_record(
        self, key: ClosingKey, period: ClosingPeriod
    ) -> ClosingRecordInfo | None:
        record = self.session.execute(
            select(ClosingRecord).where(
                *self._key_filter(key, period.granularity),
                ClosingRecord.period_start == period.start,
            )
        ).scalar_one_or_none()
        return self._to_dto(record) if record is not None else None

    def get_daily(
        self, entity_id: str, facility_type_code: str, closing_date: date
    ) -> ClosingRecordInfo | None:
        return self.get_record(
            ClosingKey(entity_id, facility_type_code),
            ClosingPeriod.for_day(closing_date),
        )

    def get_monthly(
        self, entity_id: str, facility_type_code: str, year: int, month: int
    ) -> ClosingRecordInfo | None:
        return self.get_record(
            ClosingKey(entity_id, facility_type_code),
            ClosingPeriod.for_month(year, month),
        )

    def latest_closed_day(
        self, key: ClosingKey, before: date | None = None
    ) -> ClosingRecordInfo | None:
        """Most recent closed day of ``key``, optionally strictly before ``before``."""
        stmt = select(ClosingRecord).where(
            *self._key_filter(key, Granularity.DAY),
            ClosingRecord.is_closed.is_(True),
        )
        if before is not None:
            stmt = stmt.where(ClosingRecord.period_start < before)
        record = self.session.execute(
            stmt.order_by(ClosingRecord.period_start.desc()).limit(1)
        ).scalar_one_or_none()
        return self._to_dto(record) if record is not None else None

    def latest_closed_month(self, key: ClosingKey) -> ClosingRecordInfo | None:
        record = self.session.execute(
            select(ClosingRecord)
            .where(
                *self._key_filter(key, Granularity.MONTH),
                ClosingRecord.is_closed.is_(True),
            )
            .order_by(ClosingRecord.period_start.desc())
            .limit(1)
        ).scalar_one_or_none()
        return self._to_dto(record) if record is not None else None

    def closed_days(
        self, key: ClosingKey, start: date, end: date | None = None
    ) -> list[ClosingRecordInfo]:
        """Closed days of ``key`` from ``start`` (inclusive), in date order."""
        stmt = select(ClosingRecord).where(
            *self._key_filter(key, Granularity.DAY),
            ClosingRecord.is_closed.is_(True),
            ClosingRecord.period_start >= start,
        )
        if end is not None:
            stmt = stmt.where(ClosingRecord.period_start <= end)
        return self._to_dtos(
            self._fetch(stmt.order_by(ClosingRecord.period_start))
        )

    def closed_months_ending_on_or_after(
        self, key: ClosingKey, day: date
    ) -> list[ClosingRecordInfo]:
        """Closed months of ``key`` whose last day is ``day`` or later, in order."""
        return self._to_dtos(
            self._fetch(
                select(ClosingRecord)
                .where(
                    *self._key_filter(key, Granularity.MONTH),
                    ClosingRecord.is_closed.is_(True),
                    ClosingRecord.period_end >= day,
                )
                .order_by(ClosingRecord.period_start)
            )
        )

    # -------------------------------------------------------------------------
    # Status screens
    # -------------------------------------------------------------------------

    def _entity_records(
        self, entity_id: str, granularity: Granularity, start: date, end: date
    ) -> list[ClosingRecordInfo]:
        return self._to_dtos(
            self._fetch(
                select(ClosingRecord)
                .where(
                    ClosingRecord.entity_id == entity_id,
                    ClosingRecord.granularity == granularity.value,
                    ClosingRecord.period_start >= start,
                    ClosingRecord.period_start <= end,
                )
                .order_by(
                    ClosingRecord.period_start,
                    ClosingRecord.facility_type_code,
                )
            )
        )

    def daily_status_by_month(
        self, entity_id: str, year: int, month: int
    ) -> list[ClosingRecordInfo]:
        """All daily records of the entity in the month, by day then facility type."""
        period = ClosingPeriod.for_month(year, month)
        return self._entity_records(entity_id, Granularity.DAY, period.start, period.end)

    def monthly_status_by_year(
        self, entity_id: str, year: int
    ) -> list[ClosingRecordInfo]:
        """All monthly records of the entity in the year, by month then facility type."""
        return self._entity_records(
            entity_id, Granularity.MONTH, date(year, 1, 1), date(year, 12, 31)
        )

    def daily_status(self, entity_id: str, closing_date: date) -> list[ClosingRecordInfo]:
        """Per-facility-type daily records of one date."""
        return self._entity_records(
            entity_id, Granularity.DAY, closing_date, closing_date
        )

    def monthly_status(
        self, entity_id: str, year: int, month: int
    ) -> list[ClosingRecordInfo]:
        """Per-facility-type monthly records of one month."""
        start = date(year, month, 1)
        return self._entity_records(entity_id, Granularity.MONTH, start, start)

    def daily_closing_calendar(
        self, entity_id: str, year: int, month: int
    ) -> list[DailyClosingDayStatus]:
        """
        One row per calendar day of the month.

        A day counts as closed when every key due for closing that day
        (see closing_targets) has a closed record.  closed_at/closed_by
        come from the most recently closed record of the day.
        """
        by_day: dict[date, list[ClosingRecordInfo]] = {}
        for info in self.daily_status_by_month(entity_id, year, month):
            by_day.setdefault(info.period_start, []).append(info)

        rows: list[DailyClosingDayStatus] = []
        for day in iter_days(date(year, month, 1), last_day_of(year, month)):
            closed = [r for r in by_day.get(day, []) if r.is_closed]
            due = set(self.closing_targets(entity_id, day))
            due.update(r.key for r in closed)
            latest = max(
                (r for r in closed if r.closed_at is not None),
                key=lambda r: r.closed_at,
                default=None,
            )
            rows.append(
                DailyClosingDayStatus(
                    closing_date=day,
                    is_closed=bool(due) and len(closed) == len(due),
                    closed_keys=len(closed),
                    total_keys=len(due),
                    closed_at=latest.closed_at if latest else None,
                    closed_by_id=latest.closed_by_id if latest else None,
                    closed_by_name=latest.closed_by_name if latest else None,
                )
            )
        return rows

    # -------------------------------------------------------------------------
    # Live position and predicates
    # -------------------------------------------------------------------------

    def current_position(
        self, entity_id: str, facility_type_code: str
    ) -> CurrentPosition:
        """
        Latest closed day plus ledger movements after it, through today.

        Without any closed day the base is 0 and the whole ledger up to
        today counts as recent.
        """
        key = ClosingKey(entity_id, facility_type_code)
        today = self._clock.today()
        latest = self.latest_closed_day(key)

        if latest is None:
            base = 0
            latest_date = None
            start = None
        else:
            base = latest.closing_quantity
            latest_date = latest.period_start
            start = latest_date + timedelta(days=1)

        if start is not None and start > today:
            recent_in = recent_out = 0
        else:
            totals = self._ledger.totals(key, start, today)
            recent_in = totals.inbound_quantity
            recent_out = totals.outbound_quantity

        return CurrentPosition(
            entity_id=entity_id,
            facility_type_code=facility_type_code,
            base_quantity=base,
            recent_inbound=recent_in,
            recent_outbound=recent_out,
            latest_closing_date=latest_date,
            as_of=today,
        )

    def is_month_closed(
        self, entity_id: str, facility_type_code: str, transaction_date: date
    ) -> bool:
        period = ClosingPeriod.containing_month(transaction_date)
        record = self.get_record(ClosingKey(entity_id, facility_type_code), period)
        return record is not None and record.is_closed

    # -------------------------------------------------------------------------
    # Fan-out targets
    # -------------------------------------------------------------------------

    def _keys_with_day_records(self, entity_id: str, *conditions) -> list[ClosingKey]:
        codes = self.session.execute(
            select(ClosingRecord.facility_type_code)
            .where(
                ClosingRecord.entity_id == entity_id,
                ClosingRecord.granularity == Granularity.DAY.value,
                ClosingRecord.is_closed.is_(True),
                *conditions,
            )
            .distinct()
            .order_by(ClosingRecord.facility_type_code)
        ).scalars().all()
        return [ClosingKey(entity_id, code) for code in codes]

    def closing_targets(self, entity_id: str, closing_date: date) -> list[ClosingKey]:
        """
        Keys a daily fan-out for ``closing_date`` must close.

        Keys with ledger activity that day, plus keys already closed on an
        earlier day; the latter carry their position forward even on days
        without movements so that the day chain stays unbroken.
        """
        keys = set(self._ledger.active_keys(entity_id, closing_date))
        keys.update(
            self._keys_with_day_records(
                entity_id, ClosingRecord.period_start < closing_date
            )
        )
        return sorted(keys)

    def keys_closed_on(self, entity_id: str, closing_date: date) -> list[ClosingKey]:
        """Keys with a closed daily record on ``closing_date``."""
        return self._keys_with_day_records(
            entity_id, ClosingRecord.period_start == closing_date
        )

    def keys_with_days_in_month(
        self, entity_id: str, year: int, month: int
    ) -> list[ClosingKey]:
        """Keys with at least one closed daily record in the month."""
        period = ClosingPeriod.for_month(year, month)
        return self._keys_with_day_records(
            entity_id,
            ClosingRecord.period_start >= period.start,
            ClosingRecord.period_start <= period.end,
        )
