"""Unit tests for the structured log formatters."""

import json
import logging
import sys

import pytest

from ticket_pipeline.logger import CorrelationAdapter, JSONFormatter, PlainTextFormatter, setup_logger


def make_record(msg="Order received", level=logging.INFO, **extra):
    record = logging.LogRecord("ticket_pipeline.order_service", level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestJSONFormatter:
    def test_basic_fields(self):
        line = JSONFormatter(service_name="ticket-api").format(make_record())

        data = json.loads(line)
        assert data["level"] == "INFO"
        assert data["service"] == "ticket-api"
        assert data["logger"] == "ticket_pipeline.order_service"
        assert data["message"] == "Order received"
        assert data["timestamp"].endswith("Z")
        assert "extra" not in data

    def test_extra_fields_and_correlation_id(self):
        record = make_record(correlation_id=7, queue="ticket-order", attempt=2)

        data = json.loads(JSONFormatter().format(record))

        assert data["correlation_id"] == 7
        assert data["extra"] == {"queue": "ticket-order", "attempt": 2}

    def test_extra_fields_can_be_left_out(self):
        record = make_record(queue="ticket-order")

        data = json.loads(JSONFormatter(include_extra=False).format(record))

        assert "extra" not in data

    def test_exception_is_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]


@pytest.mark.unit
class TestPlainTextFormatter:
    def test_line_layout(self):
        line = PlainTextFormatter(service_name="analytics").format(make_record("Consumer started"))

        assert "INFO [analytics] Consumer started" in line
        assert line.startswith("[")


@pytest.mark.unit
class TestSetupLogger:
    def test_replaces_handlers(self):
        name = "ticket_pipeline_test_setup"
        setup_logger("ticket-api", name=name)
        logger = setup_logger("ticket-api", log_level="debug", log_format="text", name=name)

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, PlainTextFormatter)
        assert logger.level == logging.DEBUG
        assert logger.propagate is False


@pytest.mark.unit
class TestCorrelationAdapter:
    def test_tags_records(self):
        captured = []

        class Capture(logging.Handler):
            def emit(self, record):
                captured.append(record)

        logger = logging.getLogger("ticket_pipeline_test_correlation")
        logger.setLevel(logging.INFO)
        logger.propagate = False
        logger.addHandler(Capture())

        CorrelationAdapter(logger, {"correlation_id": 42}).info("Processing", extra={"redelivered": True})

        [record] = captured
        assert record.correlation_id == 42
        assert record.redelivered is True
