"""
Tests for incentive_kernel.logging_config.

Covers:
- JSON envelope, extra fields and context fields on every line
- Exception rendering, including kernel exception attributes
- LogContext set / bind / clear semantics
- configure_logging idempotence and the logger hierarchy
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from incentive_kernel.exceptions import InvalidDisputeTransitionError
from incentive_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _isolated_logging():
    """Unconfigure around each test, then hand the suite its DEBUG setup back."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


@pytest.fixture
def json_lines():
    """Configure logging into a buffer; call the fixture value to read it back."""
    buffer = StringIO()

    def _configure(level: int = logging.INFO) -> None:
        handler = logging.StreamHandler(buffer)
        configure_logging(handler=handler, level=level)

    def _read() -> list[dict]:
        return [json.loads(raw) for raw in buffer.getvalue().splitlines() if raw]

    _read.configure = _configure
    _configure()
    return _read


class TestEnvelope:
    def test_mandatory_keys(self, json_lines):
        get_logger("calc").info("calculation_run_started")

        (entry,) = json_lines()
        assert entry["message"] == "calculation_run_started"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "incentive_kernel.calc"
        assert entry["ts"].endswith("+00:00")

    def test_extra_fields_merged(self, json_lines):
        get_logger("calc").info("calculated", extra={"entity_count": 3, "status": "preview"})

        entry = json_lines()[0]
        assert (entry["entity_count"], entry["status"]) == (3, "preview")

    def test_bound_context_merged(self, json_lines):
        LogContext.set(tenant_id="t-1", batch_id="b-9")
        get_logger("calc").info("with_context")

        entry = json_lines()[0]
        assert entry["tenant_id"] == "t-1"
        assert entry["batch_id"] == "b-9"

    def test_context_absent_when_unbound(self, json_lines):
        get_logger("calc").info("bare")

        assert "tenant_id" not in json_lines()[0]

    def test_uuid_and_decimal_rendered_as_strings(self, json_lines):
        batch = uuid4()
        get_logger("calc").info("typed", extra={"batch": batch, "total": Decimal("800.00")})

        entry = json_lines()[0]
        assert entry["batch"] == str(batch)
        assert entry["total"] == "800.00"

    def test_level_filters_debug(self, json_lines):
        log = get_logger("calc")
        log.debug("hidden")
        log.info("shown")
        log.warning("also_shown", extra={"k": "v"})

        assert [e["message"] for e in json_lines()] == ["shown", "also_shown"]


class TestExceptions:
    def test_plain_exception(self, json_lines):
        try:
            raise KeyError("metric")
        except KeyError:
            get_logger("calc").exception("lookup_failed")

        entry = json_lines()[0]
        assert entry["exc_type"] == "KeyError"
        assert "exc_code" not in entry
        assert "Traceback" in entry["traceback"]

    def test_kernel_exception_attributes(self, json_lines):
        try:
            raise InvalidDisputeTransitionError("d-1", "resolved", "investigating")
        except InvalidDisputeTransitionError:
            get_logger("disputes").error("dispute_error", exc_info=True)

        entry = json_lines()[0]
        assert entry["exc_code"] == "INVALID_DISPUTE_TRANSITION"
        assert entry["exc_dispute_id"] == "d-1"
        assert entry["exc_from_status"] == "resolved"
        assert entry["exc_to_status"] == "investigating"


class TestLogContext:
    def test_set_is_additive(self):
        LogContext.set(tenant_id="x")
        LogContext.set(rule_set_id="y", batch_id=None)

        assert LogContext.get_all() == {"tenant_id": "x", "rule_set_id": "y"}

    def test_clear_empties(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()

        assert not LogContext.get_all()

    def test_bind_is_scoped(self):
        LogContext.set(tenant_id="outer")
        with LogContext.bind(tenant_id="inner", batch_id="b"):
            assert LogContext.get_all() == {"tenant_id": "inner", "batch_id": "b"}

        assert LogContext.get_all() == {"tenant_id": "outer"}

    def test_bind_stringifies_and_ignores_unknown(self):
        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant, period="2026-Q1"):
            assert LogContext.get_all() == {"tenant_id": str(tenant)}

        assert LogContext.get_all() == {}

    def test_every_carried_field(self):
        LogContext.set(
            correlation_id="c", tenant_id="t", batch_id="b",
            rule_set_id="r", actor_id="a", trace_id="x",
        )

        assert sorted(LogContext.get_all()) == [
            "actor_id", "batch_id", "correlation_id", "rule_set_id", "tenant_id", "trace_id",
        ]


class TestConfiguration:
    def test_second_configure_ignored(self, json_lines):
        json_lines.configure()

        assert len(logging.getLogger("incentive_kernel").handlers) == 1

    def test_child_logger_names(self):
        assert get_logger("services.calculation").name == "incentive_kernel.services.calculation"

    def test_children_use_root_handler(self):
        reset_logging()
        buffer = StringIO()
        handler = logging.StreamHandler(buffer)
        configure_logging(handler=handler, level=logging.DEBUG)

        get_logger("engines.bands").debug("band_resolved")

        assert json.loads(buffer.getvalue())["logger"] == "incentive_kernel.engines.bands"
        assert isinstance(handler.formatter, StructuredFormatter)
