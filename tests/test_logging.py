"""
Structured logging: JSON envelope, request-scoped context, exception fields.

Closing events are read by operators from JSON lines, so every test parses
the emitted line rather than inspecting LogRecord objects.
"""

import json
import logging
import threading
from datetime import date
from io import StringIO
from uuid import uuid4

import pytest

from closing_kernel.domain.periods import ClosingPeriod, Granularity
from closing_kernel.exceptions import LastDayNotClosedError, NegativeClosingError
from closing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def emitted():
    """Configure logging into a buffer; return a callable that parses the lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(handler=handler, level=logging.DEBUG)

    def _lines() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _lines


logger = get_logger("tests.logging")


class TestEnvelope:

    def test_mandatory_fields(self, emitted):
        logger.info("daily_closing_completed")

        (line,) = emitted()
        assert line["level"] == "INFO"
        assert line["message"] == "daily_closing_completed"
        assert line["logger"] == "closing_kernel.tests.logging"
        assert line["ts"].endswith("+00:00")

    def test_extra_fields_are_top_level(self, emitted):
        logger.info("daily_closing_completed", extra={"closing_quantity": 42, "version": 1})

        (line,) = emitted()
        assert line["closing_quantity"] == 42
        assert line["version"] == 1

    def test_closing_values_are_encoded(self, emitted):
        record_id = uuid4()
        logger.info(
            "month_checked",
            extra={
                "record_id": record_id,
                "closing_date": date(2024, 2, 29),
                "granularity": Granularity.MONTH,
                "period": ClosingPeriod.for_month(2024, 2),
            },
        )

        (line,) = emitted()
        assert line["record_id"] == str(record_id)
        assert line["closing_date"] == "2024-02-29"
        assert line["granularity"] == "month"
        assert line["period"] == "2024-02"

    def test_extra_does_not_override_context(self, emitted):
        with LogContext.bind(entity_id="ENT-001"):
            logger.info("fanout_key", extra={"entity_id": "ENT-999"})

        (line,) = emitted()
        assert line["entity_id"] == "ENT-001"


class TestExceptionFields:

    def test_structured_attributes_are_prefixed(self, emitted):
        try:
            raise LastDayNotClosedError("ENT-001", "FRIDGE", "2024-02", "2024-02-29")
        except LastDayNotClosedError:
            logger.warning("monthly_closing_rejected", exc_info=True)

        (line,) = emitted()
        assert line["exc_type"] == "LastDayNotClosedError"
        assert line["exc_code"] == "LAST_DAY_NOT_CLOSED"
        assert line["exc_period_code"] == "2024-02"
        assert line["exc_missing_date"] == "2024-02-29"
        assert "Traceback" in line["traceback"]

    def test_negative_closing_quantities(self, emitted):
        try:
            raise NegativeClosingError("ENT-001", "SIGNAGE", "2024-03-01", 0, 0, 3)
        except NegativeClosingError:
            logger.error("daily_closing_failed", exc_info=True)

        (line,) = emitted()
        assert line["exc_code"] == "NEGATIVE_CLOSING"
        assert line["exc_outbound_quantity"] == 3

    def test_plain_exception(self, emitted):
        try:
            raise RuntimeError("ledger replica went away")
        except RuntimeError:
            logger.exception("closing_fanout_key_failed")

        (line,) = emitted()
        assert line["exc_type"] == "RuntimeError"
        assert "exc_code" not in line


class TestLogContext:

    def test_fields_appear_on_every_line(self, emitted):
        LogContext.set(correlation_id="corr-1", facility_type_code="FRIDGE")
        logger.info("first")
        logger.debug("second")

        lines = emitted()
        assert [line["correlation_id"] for line in lines] == ["corr-1", "corr-1"]
        assert all(line["facility_type_code"] == "FRIDGE" for line in lines)

    def test_empty_context_adds_nothing(self, emitted):
        logger.info("bare")

        (line,) = emitted()
        assert "correlation_id" not in line
        assert "run_id" not in line

    def test_bind_nests_and_restores(self):
        with LogContext.bind(entity_id="ENT-001", correlation_id="outer"):
            with LogContext.bind(correlation_id="inner", run_id="run-1"):
                assert LogContext.get_all() == {
                    "entity_id": "ENT-001",
                    "correlation_id": "inner",
                    "run_id": "run-1",
                }
            assert LogContext.get_all() == {"entity_id": "ENT-001", "correlation_id": "outer"}
        assert LogContext.get_all() == {}

    def test_bind_restores_after_error(self):
        with pytest.raises(ValueError):
            with LogContext.bind(run_id="run-1"):
                raise ValueError("boom")
        assert LogContext.get_all() == {}

    def test_values_are_stringified_and_none_skipped(self):
        actor = uuid4()
        with LogContext.bind(actor_id=actor, correlation_id=None):
            assert LogContext.get_all() == {"actor_id": str(actor)}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant="acme")

    def test_clear(self):
        LogContext.set(entity_id="ENT-001", run_id="r")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_threads_do_not_share_context(self):
        seen = {}
        ready = threading.Event()

        def worker():
            ready.wait(timeout=5)
            seen["worker"] = LogContext.get_all()

        thread = threading.Thread(target=worker)
        thread.start()
        LogContext.set(facility_type_code="FRIDGE")
        ready.set()
        thread.join(timeout=5)

        assert seen["worker"] == {}
        assert LogContext.get_all() == {"facility_type_code": "FRIDGE"}


class TestConfigureLogging:

    def test_second_call_is_ignored(self):
        first = logging.StreamHandler(StringIO())
        second = logging.StreamHandler(StringIO())

        configure_logging(handler=first)
        configure_logging(handler=second)

        assert logging.getLogger("closing_kernel").handlers == [first]

    def test_level_by_name(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream), level="WARNING")

        logger.info("dropped")
        logger.warning("kept")

        messages = [json.loads(line)["message"] for line in stream.getvalue().splitlines()]
        assert messages == ["kept"]

    def test_does_not_propagate_to_root(self, emitted):
        assert logging.getLogger("closing_kernel").propagate is False

    def test_reset_allows_reconfiguration(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        replacement = logging.StreamHandler(StringIO())
        configure_logging(handler=replacement)

        assert logging.getLogger("closing_kernel").handlers == [replacement]
