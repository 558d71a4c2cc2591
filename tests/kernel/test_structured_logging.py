"""
Tests for structured JSON logging and request-scoped context.
"""

import json
import logging
import sys
from decimal import Decimal
from uuid import uuid4

import pytest

from hotel_kernel.exceptions import SettlementClosedError
from hotel_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_factory) -> dict:
    return json.loads(StructuredFormatter().format(record_factory()))


def _record(msg="event", extra=None, exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord("hotel_kernel.test", logging.INFO, __file__, 1, msg, (), exc_info)
    for key, value in (extra or {}).items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Each record renders as one JSON object."""

    def test_base_fields(self):
        payload = _format(lambda: _record("settlement_created"))
        assert payload["message"] == "settlement_created"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "hotel_kernel.test"
        assert "ts" in payload

    def test_extra_fields_serialized(self):
        entry_id = uuid4()
        payload = _format(lambda: _record(extra={"amount": Decimal("1.50"), "entry": entry_id}))
        assert payload["amount"] == "1.50"
        assert payload["entry"] == str(entry_id)

    def test_exception_fields_included(self):
        try:
            raise SettlementClosedError("S1", "cancelled", "add_payment")
        except SettlementClosedError:
            payload = _format(lambda: _record(exc_info=sys.exc_info()))
        assert payload["exc_type"] == "SettlementClosedError"
        assert payload["exc_code"] == SettlementClosedError.code
        assert "traceback" in payload


class TestLogContext:
    """Context fields are attached to every record in scope."""

    def test_bind_sets_and_restores(self):
        with LogContext.bind(hotel_id="H1", settlement_id="S1"):
            assert LogContext.get_all() == {"hotel_id": "H1", "settlement_id": "S1"}
        assert LogContext.get_all() == {}

    def test_bind_skips_none(self):
        with LogContext.bind(hotel_id="H1", actor_id=None):
            assert "actor_id" not in LogContext.get_all()

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(hotel_id="H1"):
            with LogContext.bind(hotel_id="H2"):
                assert LogContext.get_all()["hotel_id"] == "H2"
            assert LogContext.get_all()["hotel_id"] == "H1"

    def test_context_appears_in_payload(self):
        with LogContext.bind(correlation_id="req-1"):
            payload = _format(lambda: _record())
        assert payload["correlation_id"] == "req-1"

    def test_logger_namespace(self, captured_logs):
        logger = get_logger("tests.namespace")
        assert logger.name == "hotel_kernel.tests.namespace"
        logger.info("namespaced_event", extra={"n": 1})
        records = [r for r in captured_logs() if r["message"] == "namespaced_event"]
        assert records[0]["n"] == 1

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            with LogContext.bind(room_number="101"):
                pass
        assert LogContext.get_all() == {}
