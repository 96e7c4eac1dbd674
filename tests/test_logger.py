"""
Tests for logging setup and RunLogger - structured run events.
"""

import json
import logging
from io import StringIO

import pytest

from bootcore.logger import JsonFormatter, RunLogger, configure_logging


@pytest.fixture
def captured_logs():
    """Capture bootcore.events output."""
    output = StringIO()
    events_logger = logging.getLogger("bootcore.events")
    handler = logging.StreamHandler(output)
    handler.setFormatter(logging.Formatter("%(message)s"))
    events_logger.addHandler(handler)
    previous = events_logger.level
    events_logger.setLevel(logging.INFO)

    yield output

    events_logger.removeHandler(handler)
    events_logger.setLevel(previous)


def parse_log_lines(captured_logs) -> list:
    captured_logs.seek(0)
    return [json.loads(line) for line in captured_logs.read().splitlines() if line]


class TestRunLogger:
    """Tests for run event payloads."""

    def test_unit_started(self, captured_logs):
        RunLogger("run-1").unit_started("docker/db-compose", phase_id="docker")

        (log,) = parse_log_lines(captured_logs)
        assert log["event"] == "unit.started"
        assert log["run_id"] == "run-1"
        assert log["unit_id"] == "docker/db-compose"
        assert log["phase_id"] == "docker"
        assert "forced" not in log
        assert "dry_run" not in log

    def test_forced_flag(self, captured_logs):
        RunLogger("run-1").unit_started("docker/db-compose", "docker", forced=True)

        assert parse_log_lines(captured_logs)[0]["forced"] is True

    def test_dry_run_marker(self, captured_logs):
        RunLogger("run-1", dry_run=True).unit_would_execute("database/drizzle", "database", ["drizzle-orm"])

        log = parse_log_lines(captured_logs)[0]
        assert log["event"] == "unit.would_execute"
        assert log["dry_run"] is True
        assert log["packages"] == ["drizzle-orm"]

    def test_unit_completed_duration(self, captured_logs):
        RunLogger("run-1").unit_completed("a/one", "a", "completed", 1.23456, "exit 0")

        log = parse_log_lines(captured_logs)[0]
        assert log["duration_seconds"] == 1.235
        assert log["status"] == "completed"

    def test_failures_log_at_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="bootcore.events"):
            RunLogger("run-1").unit_failed("a/one", "a", "exit code 2")

        assert caplog.records[-1].levelno == logging.ERROR
        assert json.loads(caplog.records[-1].getMessage())["diagnostic"] == "exit code 2"

    def test_run_lifecycle(self, captured_logs):
        events = RunLogger("run-1")
        events.run_started(phases=3, units=4, start_phase="foundation")
        events.phase_skipped("foundation", reason="already completed")
        events.run_completed(executed=2, skipped=2)

        names = [log["event"] for log in parse_log_lines(captured_logs)]
        assert names == ["run.started", "phase.skipped", "run.completed"]


class TestConfigureLogging:
    def test_no_file_by_default(self):
        assert configure_logging() is None

    def test_log_file(self, tmp_path):
        path = configure_logging(log_dir=str(tmp_path / "logs"))
        logging.getLogger("bootcore.test").info("hello from the run")
        for handler in logging.getLogger("bootcore").handlers:
            handler.flush()

        assert path.parent == tmp_path / "logs"
        assert path.name.startswith("bootstrap-") and path.suffix == ".log"
        assert "hello from the run" in path.read_text()

    def test_repeated_calls_do_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()

        marked = [h for h in logging.getLogger("bootcore").handlers if getattr(h, "_bootcore_handler", False)]
        assert len(marked) == 1

    def test_level(self):
        configure_logging(level="debug")
        assert logging.getLogger("bootcore").level == logging.DEBUG


class TestJsonFormatter:
    def test_format(self):
        record = logging.LogRecord("bootcore.state", logging.WARNING, __file__, 1, "bad line %d", (3,), None)

        entry = json.loads(JsonFormatter().format(record))

        assert entry["level"] == "warning"
        assert entry["logger"] == "bootcore.state"
        assert entry["message"] == "bad line 3"
