"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from penvault.observability import (
    MetricsCollector,
    configure_logging,
    metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def metrics_collector(self):
        return MetricsCollector()

    def test_record_successful_operation(self, metrics_collector):
        """Test recording a successful operation."""
        metrics_collector.record_operation("test_op", 100.0, True)

        result = metrics_collector.get_metrics()
        assert result["test_op"]["count"] == 1
        assert result["test_op"]["success_count"] == 1
        assert result["test_op"]["error_count"] == 0
        assert result["test_op"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        """Test recording a failed operation with error."""
        metrics_collector.record_operation("test_op", 50.0, False, "Test error")

        result = metrics_collector.get_metrics()
        assert result["test_op"]["error_count"] == 1
        assert result["test_op"]["last_error"] == "Test error"
        assert result["test_op"]["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        metrics_collector.record_operation("test_op", 100.0, True)
        metrics_collector.record_operation("test_op", 200.0, True)
        metrics_collector.record_operation("test_op", 300.0, False, "Error")

        result = metrics_collector.get_metrics()
        assert result["test_op"]["count"] == 3
        assert result["test_op"]["avg_duration_ms"] == 200.0
        assert result["test_op"]["max_duration_ms"] == 300.0

    def test_summary_and_reset(self, metrics_collector):
        metrics_collector.record_operation("op1", 100.0, True)
        metrics_collector.record_operation("op2", 200.0, False, "Error")

        summary = metrics_collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert set(summary["operations_tracked"]) == {"op1", "op2"}

        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    @pytest.fixture(autouse=True)
    def _reset_metrics(self):
        metrics.reset()
        yield
        metrics.reset()

    def test_records_success(self):
        with timed_operation("unit_op", note_id="n_1") as op:
            op["notes_count"] = 3
        assert metrics.get_metrics()["unit_op"]["success_count"] == 1

    def test_records_failure_and_reraises(self):
        with pytest.raises(ValueError):
            with timed_operation("unit_op"):
                raise ValueError("boom")
        result = metrics.get_metrics()["unit_op"]
        assert result["error_count"] == 1
        assert result["last_error"] == "ValueError: boom"

    def test_traced_decorator(self):
        @traced("decorated_op")
        def lookup(note_id=None, password=None):
            return [note_id]

        assert lookup(note_id="n_1", password="secret") == ["n_1"]
        assert metrics.get_metrics()["decorated_op"]["count"] == 1

    def test_traced_does_not_log_other_arguments(self, caplog):
        @traced()
        def unlock(password=None, note_id=None):
            return None

        with caplog.at_level(logging.DEBUG, logger="penvault"):
            unlock(password="hunter2", note_id="n_1")
        assert "hunter2" not in caplog.text
        assert "n_1" in caplog.text
        assert "unlock" in metrics.get_metrics()

    def test_store_operations_are_traced(self, store):
        store.create_note()
        assert metrics.get_metrics()["create_note"]["success_count"] == 1

    def test_traced_picks_up_positional_note_id(self, store, caplog):
        note = store.create_note()
        with caplog.at_level(logging.DEBUG, logger="penvault"):
            store.remove_note(note.id)
        assert f"START remove_note (note_id={note.id})" in caplog.text

    def test_report(self):
        with timed_operation("export_vault"):
            pass
        with pytest.raises(RuntimeError):
            with timed_operation("open_envelope"):
                raise RuntimeError("bad")
        lines = metrics.report()
        assert [line.split("\t")[0] for line in lines] == ["export_vault", "open_envelope"]
        assert "\t1 errors\t" in lines[1]


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture
    def clean_logger(self):
        logger = logging.getLogger("penvault")
        saved = list(logger.handlers), logger.level
        logger.handlers = []
        yield logger
        for handler in logger.handlers:
            handler.close()
        logger.handlers, level = saved
        logger.setLevel(level)

    def test_file_logging(self, clean_logger, temp_dir):
        log_dir = configure_logging(log_dir=temp_dir / "logs", console=False)
        assert log_dir == temp_dir / "logs"
        assert any(isinstance(h, RotatingFileHandler) for h in clean_logger.handlers)

        logging.getLogger("penvault.tests").warning("hello log file")
        for handler in clean_logger.handlers:
            handler.flush()
        assert "hello log file" in (temp_dir / "logs" / "penvault.log").read_text()

    def test_handlers_not_duplicated(self, clean_logger, temp_dir):
        configure_logging(log_dir=temp_dir, console=True)
        configure_logging(log_dir=temp_dir, console=True)
        assert len(clean_logger.handlers) == 2

    def test_console_only(self, clean_logger):
        assert configure_logging(level=logging.DEBUG) is None
        assert clean_logger.level == logging.DEBUG
