"""Tests for the structured logging system (rental_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from rental_kernel.domain.lifecycle import InvoiceStatus
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import InsufficientStockError
from rental_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "rental_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("order_created", extra={"item_count": 2, "status": "RENTAL_ORDER"})

        record = _parse_log(stream)
        assert record["item_count"] == 2
        assert record["status"] == "RENTAL_ORDER"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(correlation_id="abc-123", order_id="ord-1"):
            get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["order_id"] == "ord-1"

    def test_status_enum_serialized_by_value(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("invoice_posted", extra={"status": InvoiceStatus.PARTIALLY_PAID})

        assert _parse_log(stream)["status"] == "PARTIALLY_PAID"

    def test_money_serialized_as_string(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("fee", extra={"late_fee": Money("300")})

        assert _parse_log(stream)["late_fee"] == "300.00"

    def test_engine_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("prod-1", 3, 1)
        except InsufficientStockError:
            get_logger("test").error("reserve_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_code"] == InsufficientStockError.code
        assert record["exc_product_id"] == "prod-1"
        assert record["exc_requested"] == 3
        assert record["exc_available"] == 1
        assert "traceback" in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"invoice_id": uid})

        assert _parse_log(stream)["invoice_id"] == str(uid)

    def test_debug_suppressed_at_default_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_bind_restores_previous_value(self):
        with LogContext.bind(correlation_id="outer"):
            with LogContext.bind(correlation_id="inner", order_id="ord-1"):
                assert LogContext.current() == {"correlation_id": "inner", "order_id": "ord-1"}
            assert LogContext.current() == {"correlation_id": "outer"}
        assert LogContext.current() == {}

    def test_bind_converts_uuids_to_strings(self):
        uid = uuid4()
        with LogContext.bind(actor_id=uid):
            assert LogContext.current()["actor_id"] == str(uid)
        assert "actor_id" not in LogContext.current()

    def test_bind_skips_none(self):
        with LogContext.bind(job_name=None, invoice_id="inv-1"):
            assert LogContext.current() == {"invoice_id": "inv-1"}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="customer_email"):
            LogContext.bind(customer_email="a@example.com")

    def test_current_is_a_copy(self):
        with LogContext.bind(product_id="prod-1"):
            LogContext.current()["product_id"] = "changed"
            assert LogContext.current()["product_id"] == "prod-1"

    def test_clear(self):
        with LogContext.bind(correlation_id="x", job_name="return_reminders"):
            LogContext.clear()
            assert LogContext.current() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("rental_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers
        assert [h for h in handlers if isinstance(h.formatter, StructuredFormatter)] == [h1]

    def test_get_logger_returns_child(self):
        assert get_logger("services.order").name == "rental_kernel.services.order"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "rental_kernel.deep.nested.module"

    def test_level_name_accepted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("test").debug("verbose")

        assert _parse_log(stream)["message"] == "verbose"

    def test_unknown_level_name_rejected(self):
        with pytest.raises(ValueError, match="LOUD"):
            configure_logging(level="LOUD")
