"""
Logging setup and structured run events.

configure_logging() installs a console handler and, when a log directory is
given, a per-run file ``bootstrap-YYYYmmdd-HHMMSS.log``. It is safe to call
more than once.

RunLogger emits one JSON document per orchestrator event on the
``bootcore.events`` logger so a run can be replayed from its log:

- run.started / run.completed / run.failed
- phase.started / phase.completed / phase.skipped
- unit.started / unit.completed / unit.skipped / unit.would_execute / unit.failed

Usage:
    from bootcore.logger import RunLogger

    events = RunLogger(run_id="2026-10-16T12:00:00")
    events.unit_started("foundation/init-nextjs", phase_id="foundation")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_EVENTS_LOGGER = "bootcore.events"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "info",
    log_format: str = "text",
    log_dir: Optional[str] = None,
) -> Optional[Path]:
    """
    Configure the ``bootcore`` logger hierarchy.

    Args:
        level: debug, info, warning or error
        log_format: "text" for humans, "json" for log shippers
        log_dir: Directory for a per-run log file (no file when None)

    Returns:
        Path of the run log file, or None when file logging is disabled.
    """
    root = logging.getLogger("bootcore")
    root.setLevel(_LEVELS.get(level, logging.INFO))

    # Avoid duplicate handlers if called repeatedly.
    for handler in list(root.handlers):
        if getattr(handler, "_bootcore_handler", False):
            root.removeHandler(handler)
            handler.close()

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console._bootcore_handler = True  # type: ignore[attr-defined]
    root.addHandler(console)

    log_path: Optional[Path] = None
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / f"bootstrap-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        # File output is always plain text or JSON, never colorized.
        file_handler.setFormatter(formatter)
        file_handler._bootcore_handler = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    logging.getLogger(__name__).debug(
        "Logging initialized (level=%s, format=%s, file=%s)", level, log_format, log_path
    )
    return log_path


class RunLogger:
    """
    Structured logger for orchestrator events.

    Each entry carries the run id, the event type and the phase/unit it
    concerns, so log queries can reconstruct the order of execution.
    """

    def __init__(self, run_id: str, dry_run: bool = False):
        self.run_id = run_id
        self.dry_run = dry_run
        self._logger = logging.getLogger(_EVENTS_LOGGER)

    def _emit(
        self,
        event: str,
        level: str = "info",
        phase_id: Optional[str] = None,
        unit_id: Optional[str] = None,
        **extra_fields: Any,
    ) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "run_id": self.run_id,
        }
        if phase_id:
            entry["phase_id"] = phase_id
        if unit_id:
            entry["unit_id"] = unit_id
        if self.dry_run:
            entry["dry_run"] = True
        entry.update({k: v for k, v in extra_fields.items() if v is not None})

        line = json.dumps(entry, default=str)
        if level == "error":
            self._logger.error(line)
        elif level == "warn":
            self._logger.warning(line)
        else:
            self._logger.info(line)

    def run_started(self, phases: int, units: int, start_phase: Optional[str] = None) -> None:
        self._emit("run.started", phases=phases, units=units, start_phase=start_phase)

    def run_completed(self, executed: int, skipped: int) -> None:
        self._emit("run.completed", executed=executed, skipped=skipped)

    def run_failed(self, unit_id: str, phase_id: str, diagnostic: Optional[str]) -> None:
        self._emit(
            "run.failed", level="error", phase_id=phase_id, unit_id=unit_id, diagnostic=diagnostic
        )

    def phase_started(self, phase_id: str, units: int) -> None:
        self._emit("phase.started", phase_id=phase_id, units=units)

    def phase_completed(self, phase_id: str) -> None:
        self._emit("phase.completed", phase_id=phase_id)

    def phase_skipped(self, phase_id: str, reason: str) -> None:
        self._emit("phase.skipped", phase_id=phase_id, reason=reason)

    def unit_started(self, unit_id: str, phase_id: str, forced: bool = False) -> None:
        self._emit("unit.started", phase_id=phase_id, unit_id=unit_id, forced=forced or None)

    def unit_completed(
        self, unit_id: str, phase_id: str, status: str, duration_seconds: float, message: Optional[str] = None
    ) -> None:
        self._emit(
            "unit.completed",
            phase_id=phase_id,
            unit_id=unit_id,
            status=status,
            duration_seconds=round(duration_seconds, 3),
            message=message,
        )

    def unit_skipped(self, unit_id: str, phase_id: str) -> None:
        self._emit("unit.skipped", phase_id=phase_id, unit_id=unit_id, reason="already completed")

    def unit_would_execute(self, unit_id: str, phase_id: str, packages: Optional[list] = None) -> None:
        self._emit("unit.would_execute", phase_id=phase_id, unit_id=unit_id, packages=packages or None)

    def unit_failed(self, unit_id: str, phase_id: str, diagnostic: Optional[str]) -> None:
        self._emit("unit.failed", level="error", phase_id=phase_id, unit_id=unit_id, diagnostic=diagnostic)
