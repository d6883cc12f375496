"""Structured JSON logging: formatter output, run context binding, setup."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from backoffice_kernel.exceptions import LockHeldError, PeriodAlreadyPostedError
from backoffice_kernel.logging_config import (
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
    """Install a JSON handler on a StringIO; returns a reader of parsed records."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler)

    def read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return read


class TestRecordShape:
    def test_core_fields(self, emitted):
        get_logger("runs.executor").info("run_started")

        (record,) = emitted()
        assert record["message"] == "run_started"
        assert record["level"] == "INFO"
        assert record["logger"] == "backoffice.runs.executor"
        assert record["ts"].endswith("+00:00")

    def test_extra_keys_become_fields(self, emitted):
        get_logger("runs.executor").info(
            "run_item_skipped", extra={"item_key": "2026-01:R1", "reason": "RULE_LOCKED"},
        )

        (record,) = emitted()
        assert record["item_key"] == "2026-01:R1"
        assert record["reason"] == "RULE_LOCKED"

    def test_money_and_ids_are_strings(self, emitted):
        entry_id = uuid4()
        get_logger("kernel.journal").info(
            "journal_posted", extra={"entry_id": entry_id, "total": Decimal("10.50")},
        )

        (record,) = emitted()
        assert record["entry_id"] == str(entry_id)
        assert record["total"] == "10.50"

    def test_debug_is_dropped_at_info(self, emitted):
        logger = get_logger("modules.dunning")
        logger.debug("dunning_step_evaluated")
        logger.warning("dunning_template_missing", extra={"template_code": "REM1"})

        assert [r["message"] for r in emitted()] == ["dunning_template_missing"]


class TestExceptionFields:
    def test_plain_exception(self, emitted):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = emitted()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "Traceback" in record["traceback"]
        assert "exc_code" not in record

    def test_backoffice_error_code_and_attributes(self, emitted):
        try:
            raise PeriodAlreadyPostedError("ACME", "2026-01")
        except PeriodAlreadyPostedError:
            get_logger("modules.revenue").error("revenue_guard_failed", exc_info=True)

        (record,) = emitted()
        assert record["exc_code"] == "PERIOD_ALREADY_POSTED"
        assert record["exc_company"] == "ACME"
        assert record["exc_period_key"] == "2026-01"
        assert record["exc_message"] == "Period 2026-01 is already posted"

    def test_lock_error_attributes(self, emitted):
        try:
            raise LockHeldError("alloc_rule", "ACME", "2026-01:R1")
        except LockHeldError:
            get_logger("kernel.locks").warning("lock_contended", exc_info=True)

        (record,) = emitted()
        assert record["exc_type"] == "LockHeldError"
        assert record["exc_company"] == "ACME"


class TestRunContext:
    def test_bound_fields_stamp_every_record(self, emitted):
        LogContext.set(run_id="run-1", run_type="dunning.run", company="ACME")
        logger = get_logger("runs.executor")
        logger.info("run_started")
        logger.info("run_completed")

        for record in emitted():
            assert record["run_id"] == "run-1"
            assert record["run_type"] == "dunning.run"
            assert record["company"] == "ACME"

    def test_nothing_bound_nothing_emitted(self, emitted):
        get_logger("test").info("bare")

        (record,) = emitted()
        assert "run_id" not in record
        assert "correlation_id" not in record

    def test_none_is_ignored(self):
        LogContext.set(correlation_id=None, company="ACME")
        assert LogContext.get_all() == {"company": "ACME"}

    def test_values_are_stringified(self):
        actor = uuid4()
        LogContext.set(actor_id=actor)
        assert LogContext.get_all() == {"actor_id": str(actor)}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(trace_id="t")
        with pytest.raises(KeyError):
            with LogContext.bind(tenant="x"):
                pass

    def test_clear(self):
        LogContext.set(correlation_id="x", run_id="y")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_overrides_then_restores(self):
        LogContext.set(run_id="outer", company="ACME")
        with LogContext.bind(run_id="inner"):
            assert LogContext.get_all() == {"run_id": "inner", "company": "ACME"}
        assert LogContext.get_all() == {"run_id": "outer", "company": "ACME"}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(correlation_id="temp", actor_id=None):
                assert LogContext.get_all() == {"correlation_id": "temp"}
                raise RuntimeError("abort")
        assert LogContext.get_all() == {}


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _no_handler_installed(self):
        reset_logging()

    def test_first_handler_wins(self):
        first = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert logging.getLogger("backoffice").handlers == [first]
        assert isinstance(first.formatter, StructuredFormatter)

    def test_tree_does_not_propagate_to_root(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert logging.getLogger("backoffice").propagate is False

    def test_reset_allows_reconfiguration(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        reset_logging()
        assert logging.getLogger("backoffice").handlers == []

        second = logging.StreamHandler(StringIO())
        configure_logging(handler=second)
        assert logging.getLogger("backoffice").handlers == [second]

    def test_child_loggers_share_the_handler(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream), level=logging.DEBUG)
        get_logger("modules.alloc.service").debug("hierarchy_test")

        record = json.loads(stream.getvalue().splitlines()[0])
        assert record["logger"] == "backoffice.modules.alloc.service"
