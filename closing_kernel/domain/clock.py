"""
Clock -- injectable time for closings.

Responsibility:
    Processors, selectors and coordinators ask a Clock for "now" (closed_at,
    run timestamps) and "today" (the future-date check, the live position
    window).  Nothing in the kernel calls ``datetime.now()`` directly.

Architecture position:
    Kernel > Domain.  SystemClock is the only place wall-clock time enters.

Invariants enforced:
    - ``now()`` is timezone-aware.
    - ``today()`` is the calendar date in the business timezone, so a
      closing at 08:30 in Seoul is for the Seoul date even though UTC is
      still on the previous day.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of the current instant and of the current business date."""

    def __init__(self, business_timezone: str | tzinfo = timezone.utc):
        self._business_tz = (
            ZoneInfo(business_timezone)
            if isinstance(business_timezone, str)
            else business_timezone
        )

    @property
    def business_timezone(self) -> tzinfo:
        return self._business_tz

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().astimezone(self._business_tz).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and demos.

    Returns ``fixed_time`` (default 2024-01-01 12:00 UTC) until advanced.
    """

    def __init__(
        self,
        fixed_time: datetime | None = None,
        business_timezone: str | tzinfo = timezone.utc,
    ):
        super().__init__(business_timezone)
        self._now = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)
