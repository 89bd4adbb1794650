"""
Closing periods -- calendar arithmetic for daily and monthly closings.

Responsibility:
    Immutable value objects naming the period a closing covers, plus the
    calendar helpers the processors share (last day of month, day ranges).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A DAY period starts and ends on the same date.
    - A MONTH period starts on day 1 and ends on the month's last day.
    - ClosingPeriod is frozen; every arithmetic helper returns a new one.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterator


class Granularity(str, Enum):
    """Closing granularity."""

    DAY = "day"
    MONTH = "month"


def last_day_of(year: int, month: int) -> date:
    """Last calendar day of ``year``-``month``."""
    return date(year, month, calendar.monthrange(year, month)[1])


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


@dataclass(frozen=True, order=True)
class ClosingPeriod:
    """A concrete closing period: one calendar day or one calendar month."""

    start: date
    end: date
    granularity: Granularity

    def __post_init__(self) -> None:
        if self.granularity == Granularity.DAY:
            if self.start != self.end:
                raise ValueError(
                    f"DAY period must start and end on the same date "
                    f"({self.start} != {self.end})"
                )
        else:
            if self.start.day != 1 or self.end != last_day_of(
                self.start.year, self.start.month
            ):
                raise ValueError(
                    f"MONTH period must span a whole calendar month "
                    f"({self.start} .. {self.end})"
                )

    @classmethod
    def for_day(cls, day: date) -> ClosingPeriod:
        return cls(start=day, end=day, granularity=Granularity.DAY)

    @classmethod
    def for_month(cls, year: int, month: int) -> ClosingPeriod:
        if not 1 <= month <= 12:
            raise ValueError(f"month must be between 1 and 12, got {month}")
        return cls(
            start=date(year, month, 1),
            end=last_day_of(year, month),
            granularity=Granularity.MONTH,
        )

    @classmethod
    def containing_month(cls, day: date) -> ClosingPeriod:
        """The MONTH period that contains ``day``."""
        return cls.for_month(day.year, day.month)

    @property
    def is_day(self) -> bool:
        return self.granularity == Granularity.DAY

    @property
    def year(self) -> int:
        return self.start.year

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def code(self) -> str:
        """Stable display code: ``2024-03-05`` for days, ``2024-03`` for months."""
        if self.is_day:
            return self.start.isoformat()
        return f"{self.start.year:04d}-{self.start.month:02d}"

    def previous(self) -> ClosingPeriod:
        if self.is_day:
            return ClosingPeriod.for_day(self.start - timedelta(days=1))
        prior = self.start - timedelta(days=1)
        return ClosingPeriod.for_month(prior.year, prior.month)

    def next(self) -> ClosingPeriod:
        if self.is_day:
            return ClosingPeriod.for_day(self.start + timedelta(days=1))
        following = self.end + timedelta(days=1)
        return ClosingPeriod.for_month(following.year, following.month)

    def last_day(self) -> ClosingPeriod:
        """The DAY period a monthly closing depends on."""
        return ClosingPeriod.for_day(self.end)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def __str__(self) -> str:
        return self.code
