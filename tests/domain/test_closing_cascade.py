"""
Chain propagation properties.

For any opening quantity and any sequence of daily totals, propagate_chain
either yields a chain whose links agree (each previous quantity is the
prior closing) or stops with NegativeClosingError at exactly the first
period where the running quantity would drop below zero.
"""

from datetime import date, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from closing_kernel.domain.cascade import propagate_chain
from closing_kernel.domain.dtos import ClosingKey, LedgerTotals
from closing_kernel.domain.periods import ClosingPeriod
from closing_kernel.exceptions import NegativeClosingError

KEY = ClosingKey("ENT-001", "FRIDGE")
START = date(2024, 1, 1)

totals_strategy = st.lists(
    st.tuples(st.integers(0, 500), st.integers(0, 500)),
    min_size=0,
    max_size=40,
)


def _inputs(raw):
    return [
        (ClosingPeriod.for_day(START + timedelta(days=i)), LedgerTotals(inbound, outbound))
        for i, (inbound, outbound) in enumerate(raw)
    ]


class TestPropagateChain:

    def test_simple_chain(self):
        steps = list(
            propagate_chain(KEY, 10, _inputs([(5, 0), (0, 7), (2, 2)]))
        )
        assert [s.computation.closing_quantity for s in steps] == [15, 8, 8]
        assert [s.computation.previous_quantity for s in steps] == [10, 15, 8]

    def test_empty_chain(self):
        assert list(propagate_chain(KEY, 10, [])) == []

    def test_stops_at_first_negative(self):
        seen = []
        with pytest.raises(NegativeClosingError) as exc_info:
            for step in propagate_chain(KEY, 1, _inputs([(0, 1), (0, 1), (5, 0)])):
                seen.append(step)
        assert len(seen) == 1
        assert exc_info.value.period_code == "2024-01-02"

    @settings(max_examples=200, deadline=None)
    @given(opening=st.integers(0, 1000), raw=totals_strategy)
    def test_chain_links_or_first_negative(self, opening, raw):
        running = opening
        first_negative = None
        for i, (inbound, outbound) in enumerate(raw):
            running += inbound - outbound
            if running < 0:
                first_negative = i
                break

        steps = []
        if first_negative is None:
            steps = list(propagate_chain(KEY, opening, _inputs(raw)))
            assert len(steps) == len(raw)
        else:
            with pytest.raises(NegativeClosingError) as exc_info:
                for step in propagate_chain(KEY, opening, _inputs(raw)):
                    steps.append(step)
            assert len(steps) == first_negative
            assert exc_info.value.period_code == (
                START + timedelta(days=first_negative)
            ).isoformat()

        carried = opening
        for step in steps:
            assert step.computation.previous_quantity == carried
            assert step.computation.closing_quantity >= 0
            carried = step.computation.closing_quantity

    @settings(max_examples=100, deadline=None)
    @given(opening=st.integers(0, 1000), raw=totals_strategy)
    def test_final_closing_is_opening_plus_net(self, opening, raw):
        raw = [(inbound + outbound, outbound) for inbound, outbound in raw]
        steps = list(propagate_chain(KEY, opening, _inputs(raw)))
        expected = opening + sum(i - o for i, o in raw)
        if steps:
            assert steps[-1].computation.closing_quantity == expected
