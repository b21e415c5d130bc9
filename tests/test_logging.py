"""Tests for the structured logging system (goldpos_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from goldpos_kernel.exceptions import OverpaymentError
from goldpos_kernel.logging_config import (
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
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "goldpos.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("transfer_recorded", extra={"transfer_number": "RGT20240301001", "karat": "21K"})

        record = _parse_log(stream)
        assert record["transfer_number"] == "RGT20240301001"
        assert record["karat"] == "21K"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(actor_id="cashier-1", branch_id="BR-01")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["actor_id"] == "cashier-1"
        assert record["branch_id"] == "BR-01"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(reference_number="PAY-1")
        logger.info("test_msg", extra={"reference_number": "PAY-2"})

        record = _parse_log(stream)
        assert record["reference_number"] == "PAY-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_engine_exception_fields_extracted(self):
        """Engine exceptions carry a .code and their structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")

        try:
            raise OverpaymentError("own-1", Decimal("600.00"), Decimal("500.00"))
        except OverpaymentError:
            logger.error("payment_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "OVERPAYMENT"
        assert record["exc_type"] == "OverpaymentError"
        assert record["exc_ownership_id"] == "own-1"
        assert record["exc_amount"] == "600.00"
        assert record["exc_outstanding_amount"] == "500.00"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "actor_id" not in record
        assert "reference_number" not in record

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info("with_ids", extra={"ownership_id": uid, "weight": Decimal("8.696")})

        record = _parse_log(stream)
        assert record["ownership_id"] == str(uid)
        assert record["weight"] == "8.696"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        # Default level is INFO
        logs = _parse_all_logs(stream)
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(branch_id="BR-01")
        with LogContext.bind(branch_id="BR-02"):
            assert LogContext.get_all()["branch_id"] == "BR-02"
        assert LogContext.get_all()["branch_id"] == "BR-01"

    def test_bind_restores_none(self):
        assert "reference_number" not in LogContext.get_all()
        with LogContext.bind(reference_number="SALE-1"):
            assert LogContext.get_all()["reference_number"] == "SALE-1"
        assert "reference_number" not in LogContext.get_all()

    def test_bind_ignores_unknown_and_none(self):
        with LogContext.bind(actor_id=None, unknown_field="x"):
            assert LogContext.get_all() == {}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            reference_number="r",
            branch_id="b",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 4
        assert ctx["reference_number"] == "r"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        reset_logging()
        root = logging.getLogger("goldpos")
        assert root.handlers == []

        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op

        assert root.handlers == [h1]

    def test_get_logger_returns_child(self):
        logger = get_logger("services.gold_balance")
        assert logger.name == "goldpos.services.gold_balance"

    def test_logger_hierarchy(self):
        """Child loggers inherit the goldpos root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("engines.karat")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "goldpos.engines.karat"
