"""Tests for structured logging: context propagation, formatters and configuration."""

import json
import logging
import threading
from datetime import datetime, timezone

import pytest

from notifier.logging import ComponentLoggerAdapter, get_logger
from notifier.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from notifier.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)
from notifier.domain.models import NotificationStatus


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


def _record(message="Batch claimed", **extra):
    return logging.getLogger("test").makeRecord(
        "notifier.test", logging.INFO, "test.py", 1, message, (), None, extra=extra or None
    )


class TestLogContext:
    """Tests for the contextvars-backed logging context."""

    def test_context_starts_empty(self):
        assert get_log_context() == {}

    def test_push_and_pop_restore_previous_context(self):
        outer = push_log_context(batch_id="b1")
        inner = push_log_context(notification_id="n1")
        assert get_log_context() == {"batch_id": "b1", "notification_id": "n1"}

        pop_log_context(inner)
        assert get_log_context() == {"batch_id": "b1"}

        pop_log_context(outer)
        assert get_log_context() == {}

    def test_inner_value_shadows_outer(self):
        with log_context(pass_name="dispatch"):
            with log_context(pass_name="reconciliation"):
                assert get_log_context()["pass_name"] == "reconciliation"
            assert get_log_context()["pass_name"] == "dispatch"

    def test_context_restored_after_exception(self):
        with pytest.raises(ValueError):
            with log_context(batch_id="b1"):
                raise ValueError("boom")

        assert get_log_context() == {}

    def test_get_log_context_returns_copy(self):
        with log_context(batch_id="b1"):
            snapshot = get_log_context()
            snapshot["batch_id"] = "changed"
            assert get_log_context() == {"batch_id": "b1"}

    def test_worker_threads_do_not_inherit_context(self):
        """Each scheduler thread starts from its own empty context."""
        seen = {}

        def worker():
            seen["context"] = get_log_context()

        with log_context(batch_id="b1"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert seen["context"] == {}


class TestFormatters:
    """Tests for JSON and key-value formatters."""

    def test_json_formatter_includes_mandatory_and_extra_fields(self):
        record = _record(event="dispatch.batch.claimed", claimed=3, inline=True)

        log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["level"] == "INFO"
        assert log_obj["logger"] == "notifier.test"
        assert log_obj["message"] == "Batch claimed"
        assert log_obj["timestamp"].endswith("Z")
        assert log_obj["event"] == "dispatch.batch.claimed"
        assert log_obj["claimed"] == 3
        assert log_obj["inline"] is True

    def test_json_formatter_serializes_enums_and_datetimes(self):
        moment = datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc)
        record = _record(status=NotificationStatus.SENT, sent_at=moment, other=object())

        log_obj = json.loads(JSONFormatter().format(record))

        assert log_obj["status"] == "sent"
        assert log_obj["sent_at"] == "2025-11-04T12:00:00+00:00"
        assert isinstance(log_obj["other"], str)

    def test_json_formatter_includes_exception(self):
        try:
            raise RuntimeError("smtp down")
        except RuntimeError:
            import sys

            record = logging.getLogger("test").makeRecord(
                "notifier.test", logging.ERROR, "test.py", 1, "failed", (), sys.exc_info()
            )

        log_obj = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: smtp down" in log_obj["exc_info"]

    def test_key_value_formatter_appends_sorted_extras(self):
        formatter = KeyValueFormatter("%(levelname)s %(message)s")
        record = _record(event="notification.submitted", priority="high", note="two words")

        output = formatter.format(record)

        assert output.startswith("INFO Batch claimed ")
        assert output.endswith('event=notification.submitted note="two words" priority=high')

    def test_key_value_formatter_value_rendering(self):
        assert KeyValueFormatter._format_value(True) == "true"
        assert KeyValueFormatter._format_value(None) == "null"
        assert KeyValueFormatter._format_value(NotificationStatus.FAILED) == "failed"
        assert KeyValueFormatter._format_value("a=b") == '"a=b"'

    def test_key_value_formatter_skips_static_fields(self):
        record = _record(event="x")
        ContextualFilter(environment="staging").filter(record)

        output = KeyValueFormatter("%(message)s").format(record)

        assert "service=" not in output
        assert "environment=" not in output


class TestContextualFilter:
    """Tests for static metadata and context merging."""

    def test_adds_service_environment_and_context(self):
        record = _record()
        with log_context(batch_id="b1", notification_id="n1"):
            ContextualFilter(environment="production").filter(record)

        assert record.service == "notification-delivery-engine"
        assert record.environment == "production"
        assert record.batch_id == "b1"
        assert record.notification_id == "n1"

    def test_explicit_extra_wins_over_context(self):
        record = _record(notification_id="explicit")
        with log_context(notification_id="from-context"):
            ContextualFilter().filter(record)

        assert record.notification_id == "explicit"


class TestConfigureLogging:
    """Tests for root logger configuration."""

    def teardown_method(self):
        logging.getLogger().handlers.clear()

    def test_configures_json_handler(self):
        configure_logging(level="DEBUG", format_type="json", environment="test")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert any(isinstance(f, ContextualFilter) for f in root.handlers[0].filters)

    def test_configures_key_value_handler(self):
        configure_logging(level="warning", format_type="key-value")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, KeyValueFormatter)

    def test_quiets_noisy_libraries_below_warning(self):
        configure_logging(level="INFO")

        assert logging.getLogger("apscheduler").level == logging.WARNING

    def test_rejects_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="LOUD")

    def test_rejects_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            configure_logging(format_type="xml")


class TestGetLogger:
    def test_component_adapter_merges_extras(self):
        logger = get_logger("notifier.engine", component="engine")

        assert isinstance(logger, ComponentLoggerAdapter)
        _, kwargs = logger.process("msg", {"extra": {"event": "x"}})
        assert kwargs["extra"] == {"component": "engine", "event": "x"}

    def test_plain_logger_without_component(self):
        logger = get_logger("notifier.engine")

        assert isinstance(logger, logging.Logger)
