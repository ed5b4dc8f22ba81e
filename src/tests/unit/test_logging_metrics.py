"""Unit tests for logging and metrics utilities."""

import logging

import pytest
import structlog
from prometheus_client import CollectorRegistry

from punchclock.config import Settings
from punchclock.utils.logging import (
    REDACTED,
    add_duration_text,
    bind_context,
    get_logger,
    redact_sensitive,
    setup_logging,
    shared_processors,
)
from punchclock.utils.metrics import Metrics, get_metrics


@pytest.fixture
def registry() -> CollectorRegistry:
    """Fresh registry so metric names never collide with the global one."""
    return CollectorRegistry()


class TestGetLogger:
    """Tests for get_logger function."""

    def test_returns_logger(self) -> None:
        logger = get_logger("test_module")

        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_multiple_calls_same_logger(self) -> None:
        assert get_logger("cached_test_module") is get_logger("cached_test_module")


class TestAddDurationText:
    """Tests for the duration rendering processor."""

    def test_adds_human_duration(self) -> None:
        result = add_duration_text(
            logging.getLogger("test"),
            "info",
            {"event": "session_stopped", "duration_seconds": 3725},
        )

        assert result["duration"] == "1h 2m 5s"
        assert result["duration_seconds"] == 3725

    def test_leaves_other_events(self) -> None:
        event = {"event": "session_started", "session_id": 3}
        assert add_duration_text(logging.getLogger("test"), "info", event) == {
            "event": "session_started",
            "session_id": 3,
        }

    def test_keeps_explicit_duration(self) -> None:
        event = {"event": "x", "duration_seconds": 60, "duration": "custom"}
        assert add_duration_text(logging.getLogger("test"), "info", event)["duration"] == "custom"


class TestRedactSensitive:
    """Tests for secret masking in log events."""

    def test_masks_top_level_and_nested_keys(self) -> None:
        result = redact_sensitive(
            logging.getLogger("test"),
            "info",
            {"event": "config_loaded", "api_token": "abc", "database": {"password": "pw", "path": "/tmp/x.db"}},
        )

        assert result["event"] == "config_loaded"
        assert result["api_token"] == REDACTED
        assert result["database"] == {"password": REDACTED, "path": "/tmp/x.db"}

    def test_plain_events_unchanged(self) -> None:
        event = {"event": "session_paused", "session_id": 4, "duration_seconds": 30}
        assert redact_sensitive(logging.getLogger("test"), "info", dict(event)) == event

    def test_runs_in_shared_chain(self) -> None:
        assert redact_sensitive in shared_processors()


class TestBindContext:
    """Tests for context binding."""

    def test_binds_contextvars(self) -> None:
        structlog.contextvars.clear_contextvars()
        bind_context(command="track")

        assert structlog.contextvars.get_contextvars() == {"command": "track"}
        structlog.contextvars.clear_contextvars()


class TestSetupLogging:
    """Tests for logging configuration."""

    def test_sets_level(self) -> None:
        setup_logging(Settings(log_level="ERROR"), use_stderr=True)

        assert logging.getLogger().level == logging.ERROR
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_json_with_file(self, tmp_path) -> None:
        log_file = tmp_path / "punchclock.log"
        setup_logging(Settings(log_format="json", log_level="INFO", log_file=str(log_file)))

        handlers = logging.getLogger().handlers
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
        for handler in handlers:
            if isinstance(handler, logging.FileHandler):
                handler.close()


class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_record_transition(self, registry: CollectorRegistry) -> None:
        metrics = Metrics(registry=registry)

        metrics.record_transition("start", "success", 0.01)
        metrics.record_transition("start", "ActiveSessionExistsError", 0.02)

        assert registry.get_sample_value(
            "tracking_transitions_total", {"operation": "start", "status": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "tracking_transitions_total", {"operation": "start", "status": "ActiveSessionExistsError"}
        ) == 1.0
        assert registry.get_sample_value("tracking_operation_duration_seconds_count", {"operation": "start"}) == 2.0

    def test_record_report(self, registry: CollectorRegistry) -> None:
        metrics = Metrics(registry=registry)

        metrics.record_report("velocity", 0.1)

        assert registry.get_sample_value("reports_generated_total", {"report": "velocity"}) == 1.0

    def test_record_storage_operation(self, registry: CollectorRegistry) -> None:
        metrics = Metrics(registry=registry)

        metrics.record_storage_operation("time_sessions", "create", "success")

        assert registry.get_sample_value(
            "storage_operations_total",
            {"repository": "time_sessions", "operation": "create", "status": "success"},
        ) == 1.0

    def test_info(self, registry: CollectorRegistry) -> None:
        Metrics(registry=registry)

        assert registry.get_sample_value("punchclock_info", {"version": "0.1.0"}) == 1.0

    def test_get_metrics_cached(self) -> None:
        assert get_metrics() is get_metrics()
