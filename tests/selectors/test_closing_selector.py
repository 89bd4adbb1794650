"""
Read projections over closing records.

Status screens are ordered by period then facility type; the daily calendar
counts a day as closed only when every key due that day is closed; the live
position adds ledger movements after the latest closed day up to today.
"""

from datetime import date

import pytest

from closing_kernel.domain.dtos import ClosingKey
from closing_kernel.selectors.closing_selector import ClosingSelector

ENTITY = "ENT-001"
FRIDGE = "FRIDGE"
SIGNAGE = "SIGNAGE"


@pytest.fixture
def selector(session, clock, actors):
    return ClosingSelector(session, clock=clock, actors=actors)


class TestRecordLookups:

    def test_missing_record_is_none(self, selector):
        assert selector.get_daily(ENTITY, FRIDGE, date(2024, 3, 1)) is None
        assert selector.get_monthly(ENTITY, FRIDGE, 2024, 3) is None

    def test_get_daily_resolves_actor_name(self, selector, close_days, test_actor_id):
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 1))

        record = selector.get_daily(ENTITY, FRIDGE, date(2024, 3, 1))
        assert record is not None
        assert record.closed_by_id == test_actor_id
        assert record.closed_by_name == "Closing Operator"

    def test_latest_closed_day(self, selector, close_days):
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 4))
        key = ClosingKey(ENTITY, FRIDGE)

        assert selector.latest_closed_day(key).period_start == date(2024, 3, 4)
        assert selector.latest_closed_day(key, before=date(2024, 3, 3)).period_start == date(
            2024, 3, 2
        )
        assert selector.latest_closed_day(key, before=date(2024, 3, 1)) is None

    def test_closed_days_range(self, selector, close_days):
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 5))
        key = ClosingKey(ENTITY, FRIDGE)

        days = selector.closed_days(key, date(2024, 3, 2), date(2024, 3, 4))
        assert [d.period_start.day for d in days] == [2, 3, 4]
        assert len(selector.closed_days(key, date(2024, 3, 3))) == 3


class TestStatusScreens:

    def test_daily_status_by_month_ordering(self, selector, add_ledger, close_days):
        add_ledger(SIGNAGE, date(2024, 3, 1), inbound=1)
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=2)
        close_days(SIGNAGE, date(2024, 3, 1), date(2024, 3, 2))
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 2))

        rows = selector.daily_status_by_month(ENTITY, 2024, 3)
        assert [(r.period_start.day, r.facility_type_code) for r in rows] == [
            (1, FRIDGE),
            (1, SIGNAGE),
            (2, FRIDGE),
            (2, SIGNAGE),
        ]

    def test_daily_status_single_date(self, selector, close_days):
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 2))
        close_days(SIGNAGE, date(2024, 3, 2), date(2024, 3, 2))

        rows = selector.daily_status(ENTITY, date(2024, 3, 2))
        assert [r.facility_type_code for r in rows] == [FRIDGE, SIGNAGE]

    def test_monthly_status_by_year(self, selector, close_days, coordinator, test_actor_id):
        close_days(FRIDGE, date(2024, 1, 31), date(2024, 2, 29))
        coordinator.close_month(ENTITY, FRIDGE, 2024, 1, test_actor_id)
        coordinator.close_month(ENTITY, FRIDGE, 2024, 2, test_actor_id)

        rows = selector.monthly_status_by_year(ENTITY, 2024)
        assert [r.period_code for r in rows] == ["2024-01", "2024-02"]
        assert selector.monthly_status_by_year(ENTITY, 2023) == []

        february = selector.monthly_status(ENTITY, 2024, 2)
        assert len(february) == 1
        assert february[0].facility_type_code == FRIDGE


class TestDailyClosingCalendar:

    def test_one_row_per_day(self, selector):
        rows = selector.daily_closing_calendar(ENTITY, 2024, 2)
        assert len(rows) == 29
        assert rows[0].day_of_month == 1
        assert rows[-1].closing_date == date(2024, 2, 29)
        assert all(not r.is_closed and r.total_keys == 0 for r in rows)

    def test_day_closed_only_when_every_due_key_closed(
        self, selector, add_ledger, coordinator, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=1)
        add_ledger(SIGNAGE, date(2024, 3, 1), inbound=1)
        coordinator.close_day(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        day = selector.daily_closing_calendar(ENTITY, 2024, 3)[0]
        assert day.closed_keys == 1
        assert day.total_keys == 2
        assert not day.is_closed

        coordinator.close_day(ENTITY, SIGNAGE, date(2024, 3, 1), test_actor_id)

        day = selector.daily_closing_calendar(ENTITY, 2024, 3)[0]
        assert day.is_closed
        assert day.closed_keys == 2
        assert day.closed_by_id == test_actor_id
        assert day.closed_by_name == "Closing Operator"
        assert day.closed_at is not None

    def test_carried_keys_are_due_on_quiet_days(
        self, selector, add_ledger, coordinator, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=1)
        coordinator.close_day(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        rows = selector.daily_closing_calendar(ENTITY, 2024, 3)
        assert rows[1].total_keys == 1
        assert not rows[1].is_closed


class TestCurrentPosition:

    def test_no_closing_uses_whole_ledger(self, selector, add_ledger):
        add_ledger(FRIDGE, date(2024, 2, 1), inbound=10)
        add_ledger(FRIDGE, date(2024, 3, 30), outbound=4)

        position = selector.current_position(ENTITY, FRIDGE)
        assert position.base_quantity == 0
        assert position.latest_closing_date is None
        assert position.recent_inbound == 10
        assert position.recent_outbound == 4
        assert position.current_quantity == 6
        assert position.as_of == date(2024, 3, 31)

    def test_base_from_latest_closed_day(self, selector, add_ledger, close_days):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=10)
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 2))
        add_ledger(FRIDGE, date(2024, 3, 2), inbound=99)  # inside the closed range
        add_ledger(FRIDGE, date(2024, 3, 3), inbound=5)
        add_ledger(FRIDGE, date(2024, 3, 31), outbound=2)
        add_ledger(FRIDGE, date(2024, 4, 2), inbound=50)  # after today

        position = selector.current_position(ENTITY, FRIDGE)
        assert position.base_quantity == 10
        assert position.latest_closing_date == date(2024, 3, 2)
        assert position.recent_inbound == 5
        assert position.recent_outbound == 2
        assert position.current_quantity == 13

    def test_closed_through_today(self, selector, add_ledger, close_days):
        add_ledger(FRIDGE, date(2024, 3, 31), inbound=3)
        close_days(FRIDGE, date(2024, 3, 31), date(2024, 3, 31))

        position = selector.current_position(ENTITY, FRIDGE)
        assert position.base_quantity == 3
        assert position.recent_inbound == 0
        assert position.current_quantity == 3


class TestFanOutTargets:

    def test_closing_targets_union_activity_and_carry(
        self, selector, add_ledger, close_days
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=1)
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 1))
        add_ledger(SIGNAGE, date(2024, 3, 2), inbound=1)
        add_ledger("KIOSK", date(2024, 3, 3), inbound=1)

        targets = selector.closing_targets(ENTITY, date(2024, 3, 2))
        assert targets == [ClosingKey(ENTITY, FRIDGE), ClosingKey(ENTITY, SIGNAGE)]

    def test_keys_closed_on_and_in_month(self, selector, close_days):
        close_days(FRIDGE, date(2024, 2, 29), date(2024, 3, 2))
        close_days(SIGNAGE, date(2024, 3, 2), date(2024, 3, 2))

        assert selector.keys_closed_on(ENTITY, date(2024, 3, 1)) == [ClosingKey(ENTITY, FRIDGE)]
        assert selector.keys_with_days_in_month(ENTITY, 2024, 3) == [
            ClosingKey(ENTITY, FRIDGE),
            ClosingKey(ENTITY, SIGNAGE),
        ]
        assert selector.keys_with_days_in_month(ENTITY, 2024, 2) == [ClosingKey(ENTITY, FRIDGE)]
