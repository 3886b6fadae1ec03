"""Tests for logging configuration, formatters and component loggers."""

import json
import logging
import sys
from datetime import datetime, timezone

import pytest

from notifier.logging import ComponentLoggerAdapter, get_logger
from notifier.logging.config import (
    SERVICE_NAME,
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from notifier.logging.context import log_context


@pytest.fixture
def logger():
    """Create a test logger with no handlers attached."""
    test_logger = logging.getLogger("test_notifier_logger")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()

    yield test_logger

    test_logger.handlers.clear()


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    apscheduler_level = logging.getLogger("apscheduler").level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("apscheduler").setLevel(apscheduler_level)


def make_record(logger, message="Drain started", **extra):
    return logger.makeRecord(
        "notifier.notifications.queue", logging.INFO, "queue.py", 1, message, (), None, extra=extra
    )


def key_value_formatter() -> KeyValueFormatter:
    return KeyValueFormatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class TestJSONFormatter:
    """Test single-line JSON output."""

    def test_mandatory_fields(self, logger):
        log_obj = json.loads(JSONFormatter().format(make_record(logger)))

        assert log_obj["level"] == "INFO"
        assert log_obj["logger"] == "notifier.notifications.queue"
        assert log_obj["message"] == "Drain started"
        # 2025-11-04T10:30:00.123Z
        assert log_obj["timestamp"].endswith("Z")
        assert len(log_obj["timestamp"]) == 24

    def test_extra_fields(self, logger):
        record = make_record(
            logger,
            event="queue.drain.completed",
            completed=3,
            dry_run=False,
            failed_ids=["q1", "q2"],
        )

        log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["event"] == "queue.drain.completed"
        assert log_obj["completed"] == 3
        assert log_obj["dry_run"] is False
        assert log_obj["failed_ids"] == ["q1", "q2"]
        assert "name" not in log_obj
        assert "levelno" not in log_obj

    def test_non_json_values_are_stringified(self, logger):
        record = make_record(
            logger,
            scheduled_for=datetime(2025, 11, 7, 16, 30, tzinfo=timezone.utc),
            channels=("in_app",),
        )

        log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["scheduled_for"] == "2025-11-07T16:30:00+00:00"
        assert log_obj["channels"] == "('in_app',)"

    def test_exception_is_included(self, logger):
        try:
            raise RuntimeError("relay unavailable")
        except RuntimeError:
            record = logger.makeRecord(
                "test", logging.ERROR, "test.py", 1, "Send failed", (), sys.exc_info()
            )

        log_obj = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: relay unavailable" in log_obj["exc_info"]


class TestKeyValueFormatter:
    """Test human-readable output."""

    def test_basic_line(self, logger):
        output = key_value_formatter().format(make_record(logger))

        assert "[INFO] notifier.notifications.queue: Drain started" in output

    def test_extras_sorted_and_formatted(self, logger):
        record = make_record(
            logger,
            event="queue.drain.completed",
            completed=3,
            dry_run=True,
            error=None,
            reason="relay busy, retrying",
        )

        output = key_value_formatter().format(record)

        assert output.endswith(
            'completed=3 dry_run=true error=null event=queue.drain.completed '
            'reason="relay busy, retrying"'
        )

    def test_service_metadata_is_omitted(self, logger):
        record = make_record(logger)
        ContextualFilter(environment="test").filter(record)

        output = key_value_formatter().format(record)

        assert "service=" not in output
        assert "environment=" not in output


class TestContextualFilter:
    """Test service metadata and scoped context fields."""

    def test_static_fields(self, logger):
        record = make_record(logger)

        assert ContextualFilter(service="notifier-test", environment="staging").filter(record)
        assert record.service == "notifier-test"
        assert record.environment == "staging"

    def test_context_fields(self, logger):
        with log_context(job_name="meeting-reminders", run_id="a1b2c3"):
            record = make_record(logger)
            ContextualFilter().filter(record)

        assert record.job_name == "meeting-reminders"
        assert record.run_id == "a1b2c3"
        assert record.service == SERVICE_NAME

    def test_explicit_extra_wins_over_context(self, logger):
        with log_context(org_id="org-1"):
            record = make_record(logger, org_id="org-2")
            ContextualFilter().filter(record)

        assert record.org_id == "org-2"

    def test_full_pipeline(self, logger):
        with log_context(job_name="process-scheduled-notifications", queue_entry_id="q-1"):
            record = make_record(logger, event="queue.entry.completed")
            ContextualFilter(environment="test").filter(record)
            log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["event"] == "queue.entry.completed"
        assert log_obj["job_name"] == "process-scheduled-notifications"
        assert log_obj["queue_entry_id"] == "q-1"
        assert log_obj["service"] == SERVICE_NAME
        assert log_obj["environment"] == "test"


class TestComponentLogger:
    """Test get_logger and the component adapter."""

    def test_plain_logger_without_component(self):
        assert isinstance(get_logger("notifier.test"), logging.Logger)

    def test_component_is_stamped(self, caplog):
        logger = get_logger("notifier.test", component="queue")
        assert isinstance(logger, ComponentLoggerAdapter)

        with caplog.at_level(logging.INFO, logger="notifier.test"):
            logger.info("Drain started", extra={"event": "queue.drain.started"})

        [record] = caplog.records
        assert record.component == "queue"
        assert record.event == "queue.drain.started"

    def test_call_site_extra_wins(self, caplog):
        logger = get_logger("notifier.test", component="queue")

        with caplog.at_level(logging.INFO, logger="notifier.test"):
            logger.info("Override", extra={"component": "dispatcher"})

        assert caplog.records[0].component == "dispatcher"


class TestConfigureLogging:
    """Test root logger configuration."""

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="LOUD")

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            configure_logging(format_type="xml")

    def test_json_format(self, restore_root_logger):
        configure_logging(level="DEBUG", format_type="json", environment="test")

        [handler] = restore_root_logger.handlers
        assert isinstance(handler.formatter, JSONFormatter)
        assert restore_root_logger.level == logging.DEBUG

    def test_key_value_format(self, restore_root_logger):
        configure_logging(level="info", format_type="key-value")

        [handler] = restore_root_logger.handlers
        assert isinstance(handler.formatter, KeyValueFormatter)
        assert any(isinstance(f, ContextualFilter) for f in handler.filters)

    def test_apscheduler_is_quieted(self, restore_root_logger):
        configure_logging(level="DEBUG")

        assert logging.getLogger("apscheduler").level == logging.WARNING
