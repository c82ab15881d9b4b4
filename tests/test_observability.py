"""Tests for the observability module.

Tests for metrics collection, logging configuration, and error sanitization.
"""
import json
import logging
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from chaos_mcp.observability import (
    ROOT_LOGGER,
    MetricsCollector,
    _sanitize_error_message,
    configure_logging,
    timed_operation,
    traced,
)


class TestErrorMessageSanitization:
    """Tests for error message sanitization."""

    def test_sanitize_none_returns_none(self):
        assert _sanitize_error_message(None) is None

    def test_sanitize_simple_message(self):
        assert _sanitize_error_message("Simple error") == "Simple error"

    def test_sanitize_removes_home_directory(self):
        """Home directory paths should be replaced with ~."""
        home = str(Path.home())
        result = _sanitize_error_message(f"{home}/.chaos/notes/x.md: Permission denied")
        assert home not in result
        assert result.startswith("~")
        assert ".chaos/notes/x.md" in result

    def test_sanitize_removes_newlines(self):
        result = _sanitize_error_message("Line 1\nLine 2\rLine 3")
        assert result == "Line 1 Line 2 Line 3"

    def test_sanitize_truncates_long_messages(self):
        result = _sanitize_error_message("a" * 300)
        assert len(result) == 200
        assert result.endswith("...")

    def test_sanitize_custom_max_length(self):
        result = _sanitize_error_message("a" * 100, max_length=50)
        assert len(result) == 50


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def temp_metrics_file(self, tmp_path):
        return tmp_path / "metrics.json"

    @pytest.fixture
    def metrics_collector(self, temp_metrics_file):
        return MetricsCollector(metrics_file=temp_metrics_file)

    def test_record_successful_operation(self, metrics_collector):
        metrics_collector.record_operation("new_note", 100.0, True)

        op = metrics_collector.get_summary()["operations"]["new_note"]
        assert op["count"] == 1
        assert op["success_count"] == 1
        assert op["error_count"] == 0
        assert op["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        metrics_collector.record_operation("update_note", 50.0, False, "invalid tag")

        op = metrics_collector.get_summary()["operations"]["update_note"]
        assert op["error_count"] == 1
        assert op["last_error"] == "invalid tag"
        assert op["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        metrics_collector.record_operation("search_notes", 100.0, True)
        metrics_collector.record_operation("search_notes", 200.0, True)
        metrics_collector.record_operation("search_notes", 300.0, False, "Error")

        op = metrics_collector.get_summary()["operations"]["search_notes"]
        assert op["count"] == 3
        assert op["avg_duration_ms"] == 200.0
        assert op["min_duration_ms"] == 100.0
        assert op["max_duration_ms"] == 300.0

    def test_save_and_load_metrics(self, temp_metrics_file):
        collector1 = MetricsCollector(metrics_file=temp_metrics_file)
        collector1.record_operation("op1", 100.0, True)
        collector1.record_operation("op2", 200.0, False, "Error")
        assert collector1.save_metrics() is True

        with open(temp_metrics_file) as f:
            data = json.load(f)
        assert set(data["operations"]) == {"op1", "op2"}

        collector2 = MetricsCollector(metrics_file=temp_metrics_file)
        assert collector2.get_summary()["total_operations"] == 0
        assert collector2.load_metrics() is True
        operations = collector2.get_summary()["operations"]
        assert operations["op1"]["count"] == 1
        assert operations["op2"]["error_count"] == 1
        assert operations["op2"]["last_error"] == "Error"

    def test_load_missing_file(self, metrics_collector):
        assert metrics_collector.load_metrics() is False

    def test_load_corrupt_file(self, temp_metrics_file):
        temp_metrics_file.write_text("{broken", encoding="utf-8")
        collector = MetricsCollector(metrics_file=temp_metrics_file)
        assert collector.load_metrics() is False
        assert collector.get_summary()["operations"] == {}

    def test_save_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        collector = MetricsCollector(metrics_file=blocker / "metrics.json")
        collector.record_operation("op", 1.0, True)
        assert collector.save_metrics() is False

    def test_auto_save(self, temp_metrics_file):
        collector = MetricsCollector(metrics_file=temp_metrics_file, auto_save_interval=2)
        collector.record_operation("op", 1.0, True)
        assert not temp_metrics_file.exists()
        collector.record_operation("op", 1.0, True)
        assert temp_metrics_file.exists()

    def test_get_summary(self, metrics_collector):
        metrics_collector.record_operation("op1", 100.0, True)
        metrics_collector.record_operation("op2", 200.0, False, "Error")

        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_success"] == 1
        assert summary["total_errors"] == 1
        assert summary["overall_success_rate"] == 0.5
        assert list(summary["operations"]) == ["op1", "op2"]

    def test_empty_summary(self, metrics_collector):
        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 0
        assert summary["overall_success_rate"] == 1.0


class TestTimedOperation:
    """Tests for timed_operation and traced."""

    @pytest.fixture
    def collector(self, tmp_path):
        collector = MetricsCollector(metrics_file=tmp_path / "m.json")
        with patch("chaos_mcp.observability.metrics", collector):
            yield collector

    def test_timed_operation_records_success(self, collector):
        with timed_operation("chaos_search_notes", query="milk") as op:
            time.sleep(0.01)
            op["result_count"] = 3

        op = collector.get_summary()["operations"]["chaos_search_notes"]
        assert op["success_count"] == 1
        assert op["avg_duration_ms"] >= 10

    def test_timed_operation_records_failure(self, collector):
        with pytest.raises(ValueError):
            with timed_operation("chaos_new_note"):
                raise ValueError("Test error")

        op = collector.get_summary()["operations"]["chaos_new_note"]
        assert op["error_count"] == 1
        assert "Test error" in op["last_error"]

    def test_traced_decorator(self, collector):
        class Service:
            @traced("lookup")
            def lookup(self, note_id):
                return [note_id]

            @traced()
            def explode(self):
                raise RuntimeError("nope")

        service = Service()
        assert service.lookup("abc") == ["abc"]
        with pytest.raises(RuntimeError):
            service.explode()

        operations = collector.get_summary()["operations"]
        assert operations["lookup"]["success_count"] == 1
        assert operations["explode"]["error_count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger(ROOT_LOGGER)
        level = logger.level
        handlers = list(logger.handlers)
        yield
        for handler in list(logger.handlers):
            if handler not in handlers:
                logger.removeHandler(handler)
                handler.close()
        logger.setLevel(level)

    def test_configure_logging_creates_directory(self, tmp_path):
        log_dir = tmp_path / "logs"
        assert configure_logging(log_dir=log_dir, console=False) == log_dir
        assert log_dir.is_dir()

    def test_configure_logging_sets_level(self, tmp_path):
        configure_logging(log_dir=tmp_path / "logs", level=logging.DEBUG, console=False)
        assert logging.getLogger(ROOT_LOGGER).level == logging.DEBUG

    def test_configure_logging_writes_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        configure_logging(log_dir=log_dir, console=False)
        logging.getLogger("chaos_mcp.test").info("hello from test")
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()
        assert "hello from test" in (log_dir / "chaos.log").read_text(encoding="utf-8")

    def test_configure_logging_replaces_handlers(self, tmp_path):
        configure_logging(log_dir=tmp_path / "one", console=False)
        configure_logging(log_dir=tmp_path / "two", console=True)
        ours = [
            h for h in logging.getLogger(ROOT_LOGGER).handlers
            if getattr(h, "_chaos_handler", False)
        ]
        assert len(ours) == 2
