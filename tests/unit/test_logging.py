"""Unit tests for structured logging."""

import json
import logging
import sys

from rental_handover.infrastructure.logging import (
    CorrelationIdFilter,
    JSONFormatter,
    bind_correlation_id,
    get_correlation_id,
    reset_correlation_id,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("rental_handover.test", logging.INFO, __file__, 10, "Passcode issued", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test cases for JSONFormatter."""

    def test_promotes_booking_fields(self):
        record = make_record(booking_id="b-1", handover_type="pickup", party_role="owner", db_table="bookings")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["msg"] == "Passcode issued"
        assert entry["booking_id"] == "b-1"
        assert entry["handover_type"] == "pickup"
        assert entry["party_role"] == "owner"
        assert entry["context"] == {"db_table": "bookings"}

    def test_scrubs_passcodes(self):
        record = make_record(booking_id="b-1", code="482913")

        output = JSONFormatter().format(record)

        assert "482913" not in output
        assert json.loads(output)["context"]["code"] == "[REDACTED]"

    def test_includes_exception(self):
        try:
            raise ValueError("bad input")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))

        assert entry["error"]["type"] == "ValueError"
        assert entry["error"]["message"] == "bad input"


class TestCorrelationId:
    """Test cases for correlation id binding."""

    def test_bind_and_reset(self):
        token = bind_correlation_id("req-1")
        record = make_record()
        CorrelationIdFilter().filter(record)
        reset_correlation_id(token)

        assert record.correlation_id == "req-1"
        assert get_correlation_id() is None

    def test_generates_missing_id(self):
        token = bind_correlation_id()
        try:
            assert get_correlation_id()
        finally:
            reset_correlation_id(token)
