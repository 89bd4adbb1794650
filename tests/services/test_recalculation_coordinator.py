"""
Cascading recalculation.

Base scenario for FRIDGE: 3/1 in 10, 3/2 out 3, 3/3 in 5, closed daily
(closings 10, 7, 12).  A late correction to a closed day is pushed forward
through every later closed day and every affected month; a correction that
would drive any closing negative aborts before the first write; a run that
fails mid-apply resumes from the day after its last committed day.
"""

from datetime import date

import pytest
from sqlalchemy import select

from closing_kernel.domain.dtos import ClosingComputation, ClosingKey, ClosingStatus
from closing_kernel.domain.periods import ClosingPeriod, Granularity
from closing_kernel.exceptions import (
    ClosingInputsChangedError,
    ClosingNotFoundError,
    LedgerUnavailableError,
    OptimisticLockError,
)
from closing_kernel.models.closing_record import ClosingRecordRevision, RevisionReason
from closing_kernel.models.recalculation_run import (
    RecalculationRun,
    RecalculationRunStatus,
)
from closing_kernel.selectors.closing_selector import ClosingSelector
from closing_kernel.services.closing_processor import ClosingProcessor
from closing_kernel.services.daily_closing_service import DailyClosingService
from closing_services._closing_types import FanOutStatus, RecalcStatus

ENTITY = "ENT-001"
FRIDGE = "FRIDGE"
SIGNAGE = "SIGNAGE"


@pytest.fixture
def march_closed(add_ledger, close_days):
    add_ledger(FRIDGE, date(2024, 3, 1), inbound=10)
    add_ledger(FRIDGE, date(2024, 3, 2), outbound=3)
    add_ledger(FRIDGE, date(2024, 3, 3), inbound=5)
    close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 3))


@pytest.fixture
def read_days(session_factory):
    """(closing_quantity, version) of each FRIDGE day from 3/1, freshly read."""

    def _read(facility_type_code: str = FRIDGE, start: date = date(2024, 3, 1)):
        with session_factory() as s:
            days = ClosingSelector(s).closed_days(ClosingKey(ENTITY, facility_type_code), start)
            return [(d.closing_quantity, d.version) for d in days]

    return _read


def _runs(session_factory):
    with session_factory() as s:
        return s.execute(
            select(RecalculationRun).order_by(RecalculationRun.started_at)
        ).scalars().all()


class TestCascade:

    def test_correction_propagates_to_later_days(
        self, recalculator, march_closed, add_ledger, read_days, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.status == RecalcStatus.COMPLETED
        assert report.days_recalculated == 3
        assert report.months_recalculated == 0
        assert report.last_committed_date == date(2024, 3, 3)
        assert report.resumed_from is None
        assert [e.new_closing_quantity for e in report.entries] == [14, 11, 16]
        assert [e.old_closing_quantity for e in report.entries] == [10, 7, 12]
        assert "3 day(s)" in report.message
        assert read_days() == [(14, 2), (11, 2), (16, 2)]

    def test_chain_links_after_recalculation(
        self, recalculator, march_closed, add_ledger, session_factory, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 2), inbound=1)

        recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        with session_factory() as s:
            days = ClosingSelector(s).closed_days(ClosingKey(ENTITY, FRIDGE), date(2024, 3, 1))
        for earlier, later in zip(days, days[1:]):
            assert later.previous_quantity == earlier.closing_quantity

    def test_unchanged_days_keep_their_version(
        self, recalculator, march_closed, add_ledger, read_days, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 2), inbound=1)

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.days_recalculated == 2
        assert read_days() == [(10, 1), (8, 2), (13, 2)]

    def test_revisions_point_at_run(
        self, recalculator, march_closed, add_ledger, session_factory, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 3), inbound=1)

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 3), test_actor_id)

        with session_factory() as s:
            record = ClosingSelector(s).get_daily(ENTITY, FRIDGE, date(2024, 3, 3))
            revisions = s.execute(
                select(ClosingRecordRevision)
                .where(ClosingRecordRevision.closing_record_id == record.id)
                .order_by(ClosingRecordRevision.version)
            ).scalars().all()

        assert [r.reason for r in revisions] == [
            RevisionReason.CLOSE.value,
            RevisionReason.RECALCULATE.value,
        ]
        assert revisions[0].closing_quantity == 12
        assert revisions[1].closing_quantity == 13
        assert revisions[1].recalculation_run_id == report.run_id

    def test_reclose_after_correction_requires_recalculation(
        self, recalculator, coordinator, march_closed, add_ledger, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)

        with pytest.raises(ClosingInputsChangedError):
            coordinator.close_day(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        result = coordinator.close_day(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)
        assert result.status == ClosingStatus.ALREADY_CLOSED

    def test_nothing_changed(
        self, recalculator, march_closed, read_days, session_factory, test_actor_id
    ):
        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.status == RecalcStatus.NOTHING_TO_DO
        assert report.days_recalculated == 0
        assert report.last_committed_date is None
        assert read_days() == [(10, 1), (7, 1), (12, 1)]
        assert [r.status for r in _runs(session_factory)] == [
            RecalculationRunStatus.COMPLETED.value
        ]

    def test_start_must_be_closed_day(self, recalculator, march_closed, test_actor_id):
        with pytest.raises(ClosingNotFoundError) as exc_info:
            recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 10), test_actor_id)
        assert exc_info.value.period_code == "2024-03-10"

    def test_cancelled_mid_chain_entry_shifts_only_later_days(
        self, recalculator, add_ledger, cancel_ledger, close_days, read_days, test_actor_id
    ):
        for day in range(1, 11):
            add_ledger(FRIDGE, date(2024, 3, day), inbound=5)
        correction_ids = add_ledger(FRIDGE, date(2024, 3, 5), inbound=7)
        close_days(FRIDGE, date(2024, 3, 1), date(2024, 3, 10))
        assert [q for q, _ in read_days()] == [5, 10, 15, 20, 32, 37, 42, 47, 52, 57]

        cancel_ledger(*correction_ids)
        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 5), test_actor_id)

        assert report.status == RecalcStatus.COMPLETED
        assert report.days_recalculated == 6
        assert report.last_committed_date == date(2024, 3, 10)
        assert all(
            e.new_closing_quantity - e.old_closing_quantity == -7 for e in report.entries
        )
        days = read_days()
        assert days[:4] == [(5, 1), (10, 1), (15, 1), (20, 1)]
        assert days[4:] == [(25, 2), (30, 2), (35, 2), (40, 2), (45, 2), (50, 2)]


class TestMonthReaggregation:

    def test_closed_month_is_recomputed(
        self, recalculator, coordinator, add_ledger, close_days, session_factory, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 2, 28), inbound=6)
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=10)
        close_days(FRIDGE, date(2024, 2, 28), date(2024, 3, 2))
        coordinator.close_month(ENTITY, FRIDGE, 2024, 2, test_actor_id)

        add_ledger(FRIDGE, date(2024, 2, 28), outbound=2)
        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 2, 28), test_actor_id)

        assert report.status == RecalcStatus.COMPLETED
        assert report.days_recalculated == 4
        assert report.months_recalculated == 1
        month_entries = [e for e in report.entries if e.granularity == Granularity.MONTH]
        assert month_entries[0].period_code == "2024-02"
        assert month_entries[0].new_closing_quantity == 4

        with session_factory() as s:
            february = ClosingSelector(s).get_monthly(ENTITY, FRIDGE, 2024, 2)
        assert february.closing_quantity == 4
        assert february.outbound_quantity == 2
        assert february.version == 2


class TestAbort:

    def test_negative_closing_aborts_without_writes(
        self, recalculator, march_closed, add_ledger, read_days, session_factory, test_actor_id
    ):
        add_ledger(FRIDGE, date(2024, 3, 2), outbound=20)

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.status == RecalcStatus.ABORTED
        assert report.failed_at == "2024-03-02"
        assert report.error_code == "NEGATIVE_CLOSING"
        assert "No closing was changed" in report.message
        assert read_days() == [(10, 1), (7, 1), (12, 1)]

        runs = _runs(session_factory)
        assert len(runs) == 1
        assert runs[0].status == RecalculationRunStatus.ABORTED.value
        assert runs[0].failure_code == "NEGATIVE_CLOSING"
        assert runs[0].id == report.run_id

    def test_negative_later_day_also_aborts(
        self, recalculator, march_closed, add_ledger, read_days, test_actor_id
    ):
        # 3/1 becomes 2, 3/2 would become -1
        add_ledger(FRIDGE, date(2024, 3, 1), outbound=8)

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.status == RecalcStatus.ABORTED
        assert report.failed_at == "2024-03-02"
        assert read_days() == [(10, 1), (7, 1), (12, 1)]


class TestResume:

    @pytest.fixture
    def fail_on(self, monkeypatch):
        """Make apply_recalculation raise for one period start."""
        original = ClosingProcessor.apply_recalculation

        def _install(day: date):
            def flaky(self, key, period, computation, **kwargs):
                if period.start == day:
                    raise LedgerUnavailableError("totals", "connection reset")
                return original(self, key, period, computation, **kwargs)

            monkeypatch.setattr(ClosingProcessor, "apply_recalculation", flaky)

        return _install

    def test_interrupted_run_resumes_after_last_committed_day(
        self,
        recalculator,
        march_closed,
        add_ledger,
        read_days,
        session_factory,
        fail_on,
        monkeypatch,
        test_actor_id,
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)
        fail_on(date(2024, 3, 3))

        with pytest.raises(LedgerUnavailableError):
            recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert read_days() == [(14, 2), (11, 2), (12, 1)]
        interrupted = _runs(session_factory)[0]
        assert interrupted.status == RecalculationRunStatus.INTERRUPTED.value
        assert interrupted.last_committed_date == date(2024, 3, 2)
        assert interrupted.days_recalculated == 2
        assert interrupted.failure_code == "LEDGER_UNAVAILABLE"

        monkeypatch.undo()
        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)

        assert report.status == RecalcStatus.COMPLETED
        assert report.resumed_from == date(2024, 3, 3)
        assert report.days_recalculated == 1
        assert read_days() == [(14, 2), (11, 2), (16, 2)]

        runs = {r.id: r for r in _runs(session_factory)}
        assert runs[interrupted.id].status == RecalculationRunStatus.SUPERSEDED.value
        assert runs[report.run_id].status == RecalculationRunStatus.COMPLETED.value
        assert runs[report.run_id].resumed_from == date(2024, 3, 3)

    def test_later_start_than_unfinished_run_resumes_earlier_run(
        self, recalculator, march_closed, add_ledger, read_days, fail_on, monkeypatch,
        test_actor_id,
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)
        fail_on(date(2024, 3, 2))
        with pytest.raises(LedgerUnavailableError):
            recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)
        monkeypatch.undo()

        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 3), test_actor_id)

        assert report.resumed_from == date(2024, 3, 2)
        assert read_days() == [(14, 2), (11, 2), (16, 2)]

    def test_correction_on_day_committed_by_interrupted_run(
        self, recalculator, march_closed, add_ledger, read_days, session_factory,
        fail_on, monkeypatch, test_actor_id,
    ):
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)
        fail_on(date(2024, 3, 3))
        with pytest.raises(LedgerUnavailableError):
            recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 1), test_actor_id)
        monkeypatch.undo()
        interrupted = _runs(session_factory)[0]
        assert interrupted.resume_point == date(2024, 3, 3)

        add_ledger(FRIDGE, date(2024, 3, 2), outbound=1)
        report = recalculator.recalculate(ENTITY, FRIDGE, date(2024, 3, 2), test_actor_id)

        assert report.status == RecalcStatus.COMPLETED
        assert report.resumed_from is None
        assert report.days_recalculated == 2
        assert read_days() == [(14, 2), (10, 3), (15, 2)]
        runs = {r.id: r for r in _runs(session_factory)}
        assert runs[interrupted.id].status == RecalculationRunStatus.SUPERSEDED.value


class TestOptimisticCheck:

    def test_stale_version_is_rejected(self, session, clock, march_closed, test_actor_id):
        service = DailyClosingService(session, clock=clock)
        key = ClosingKey(ENTITY, FRIDGE)

        with pytest.raises(OptimisticLockError) as exc_info:
            service.apply_recalculation(
                key,
                ClosingPeriod.for_day(date(2024, 3, 1)),
                ClosingComputation(0, 11, 0),
                expected_version=5,
                actor_id=test_actor_id,
            )
        session.rollback()

        assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
        assert exc_info.value.expected_version == 5
        assert exc_info.value.actual_version == 1

    def test_missing_record_is_not_found(self, session, clock, test_actor_id):
        service = DailyClosingService(session, clock=clock)

        with pytest.raises(ClosingNotFoundError):
            service.apply_recalculation(
                ClosingKey(ENTITY, FRIDGE),
                ClosingPeriod.for_day(date(2024, 3, 9)),
                ClosingComputation(0, 1, 0),
                expected_version=1,
                actor_id=test_actor_id,
            )


class TestRecalculateAll:

    def test_every_key_closed_on_date(
        self, recalculator, march_closed, add_ledger, close_days, test_actor_id
    ):
        add_ledger(SIGNAGE, date(2024, 3, 1), inbound=2)
        close_days(SIGNAGE, date(2024, 3, 1), date(2024, 3, 1))
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)

        batch = recalculator.recalculate_all(ENTITY, date(2024, 3, 1), test_actor_id)

        assert batch.status == FanOutStatus.COMPLETED
        by_code = {r.facility_type_code: r for r in batch.reports}
        assert by_code[FRIDGE].status == RecalcStatus.COMPLETED
        assert by_code[SIGNAGE].status == RecalcStatus.NOTHING_TO_DO
        assert batch.failures == ()
        assert batch.correlation_id

    def test_aborted_key_makes_batch_partial(
        self, recalculator, march_closed, add_ledger, close_days, test_actor_id
    ):
        add_ledger(SIGNAGE, date(2024, 3, 1), inbound=2)
        close_days(SIGNAGE, date(2024, 3, 1), date(2024, 3, 1))
        add_ledger(FRIDGE, date(2024, 3, 1), inbound=4)
        add_ledger(SIGNAGE, date(2024, 3, 1), outbound=5)

        batch = recalculator.recalculate_all(ENTITY, date(2024, 3, 1), test_actor_id)

        assert batch.status == FanOutStatus.PARTIAL
        by_code = {r.facility_type_code: r for r in batch.reports}
        assert by_code[SIGNAGE].status == RecalcStatus.ABORTED

    def test_no_keys_closed_on_date(self, recalculator, test_actor_id):
        batch = recalculator.recalculate_all(ENTITY, date(2024, 3, 1), test_actor_id)
        assert batch.status == FanOutStatus.NOTHING_TO_DO
        assert batch.reports == ()
