"""
Closing period arithmetic and the pure closing computation.

Covers ClosingPeriod construction rules, previous/next navigation across
month and year boundaries (leap years included), period codes, and
compute_closing's refusal to produce a negative quantity.
"""

from datetime import date, datetime, timezone

import pytest

from closing_kernel.domain.clock import DeterministicClock
from closing_kernel.domain.dtos import (
    ClosingComputation,
    ClosingKey,
    CurrentPosition,
    LedgerTotals,
    compute_closing,
)
from closing_kernel.domain.periods import (
    ClosingPeriod,
    Granularity,
    iter_days,
    last_day_of,
)
from closing_kernel.exceptions import NegativeClosingError

KEY = ClosingKey("ENT-001", "FRIDGE")


class TestClosingPeriod:

    def test_day_period(self):
        period = ClosingPeriod.for_day(date(2024, 3, 5))
        assert period.is_day
        assert period.start == period.end == date(2024, 3, 5)
        assert period.code == "2024-03-05"

    def test_month_period_spans_whole_month(self):
        period = ClosingPeriod.for_month(2024, 2)
        assert period.granularity == Granularity.MONTH
        assert period.start == date(2024, 2, 1)
        assert period.end == date(2024, 2, 29)
        assert period.code == "2024-02"

    def test_day_period_must_be_single_date(self):
        with pytest.raises(ValueError):
            ClosingPeriod(date(2024, 3, 1), date(2024, 3, 2), Granularity.DAY)

    def test_month_period_must_be_calendar_month(self):
        with pytest.raises(ValueError):
            ClosingPeriod(date(2024, 3, 2), date(2024, 3, 31), Granularity.MONTH)

    def test_invalid_month_rejected(self):
        with pytest.raises(ValueError):
            ClosingPeriod.for_month(2024, 13)

    def test_previous_day_crosses_month(self):
        assert ClosingPeriod.for_day(date(2024, 3, 1)).previous() == ClosingPeriod.for_day(
            date(2024, 2, 29)
        )

    def test_previous_month_crosses_year(self):
        assert ClosingPeriod.for_month(2024, 1).previous() == ClosingPeriod.for_month(2023, 12)

    def test_next_month_crosses_year(self):
        assert ClosingPeriod.for_month(2023, 12).next() == ClosingPeriod.for_month(2024, 1)

    def test_last_day_of_month_period(self):
        assert ClosingPeriod.for_month(2023, 2).last_day() == ClosingPeriod.for_day(
            date(2023, 2, 28)
        )

    def test_containing_month(self):
        assert ClosingPeriod.containing_month(date(2024, 12, 31)).code == "2024-12"

    def test_contains(self):
        period = ClosingPeriod.for_month(2024, 4)
        assert period.contains(date(2024, 4, 30))
        assert not period.contains(date(2024, 5, 1))


class TestCalendarHelpers:

    @pytest.mark.parametrize(
        "year, month, expected",
        [
            (2024, 2, date(2024, 2, 29)),
            (2023, 2, date(2023, 2, 28)),
            (1900, 2, date(1900, 2, 28)),
            (2000, 2, date(2000, 2, 29)),
            (2024, 4, date(2024, 4, 30)),
            (2024, 12, date(2024, 12, 31)),
        ],
    )
    def test_last_day_of(self, year, month, expected):
        assert last_day_of(year, month) == expected

    def test_iter_days_inclusive(self):
        days = list(iter_days(date(2024, 2, 28), date(2024, 3, 1)))
        assert days == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]

    def test_iter_days_empty_when_reversed(self):
        assert list(iter_days(date(2024, 3, 2), date(2024, 3, 1))) == []


class TestComputeClosing:

    def test_closing_equation(self):
        computation = compute_closing(
            KEY, ClosingPeriod.for_day(date(2024, 3, 1)), 10, LedgerTotals(5, 3)
        )
        assert computation == ClosingComputation(10, 5, 3)
        assert computation.closing_quantity == 12

    def test_zero_is_allowed(self):
        computation = compute_closing(
            KEY, ClosingPeriod.for_day(date(2024, 3, 1)), 3, LedgerTotals(0, 3)
        )
        assert computation.closing_quantity == 0

    def test_negative_raises_with_details(self):
        with pytest.raises(NegativeClosingError) as exc_info:
            compute_closing(
                KEY, ClosingPeriod.for_day(date(2024, 3, 1)), 2, LedgerTotals(1, 5)
            )
        exc = exc_info.value
        assert exc.code == "NEGATIVE_CLOSING"
        assert exc.closing_quantity == -2
        assert exc.period_code == "2024-03-01"
        assert exc.facility_type_code == "FRIDGE"


class TestCurrentPosition:

    def test_current_quantity(self):
        position = CurrentPosition(
            entity_id="ENT-001",
            facility_type_code="FRIDGE",
            base_quantity=10,
            recent_inbound=4,
            recent_outbound=6,
            latest_closing_date=date(2024, 3, 29),
            as_of=date(2024, 3, 31),
        )
        assert position.current_quantity == 8


class TestDeterministicClockBusinessDate:

    def test_today_uses_business_timezone(self):
        # 2024-03-31 20:00 UTC is already April 1st in Seoul
        now = datetime(2024, 3, 31, 20, 0, 0, tzinfo=timezone.utc)
        assert DeterministicClock(now).today() == date(2024, 3, 31)
        assert DeterministicClock(now, business_timezone="Asia/Seoul").today() == date(2024, 4, 1)

    def test_advance(self):
        clock = DeterministicClock(datetime(2024, 3, 31, 23, 59, 59, tzinfo=timezone.utc))
        clock.advance(1)
        assert clock.today() == date(2024, 4, 1)
