"""
Resume checkpoint for interrupted bootstrap runs.

A checkpoint is a single pointer to the phase (and optionally the unit) a
run should resume from. It only saves re-scanning phases that are known to
be complete; the state store stays authoritative for whether a unit ran.

Persisted as a small key-value file:

    # Bootstrap Checkpoint
    # Saved: 2026-10-16 12:00:00
    CHECKPOINT_PHASE="docker"
    CHECKPOINT_SCRIPT="docker/db-compose"
    CHECKPOINT_TIMESTAMP="1792152000"
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from bootcore.errors import StorageError
from bootcore.state import file_lock

logger = logging.getLogger(__name__)

__all__ = ["Checkpoint", "CheckpointManager"]

_LINE = re.compile(r'^(CHECKPOINT_[A-Z]+)=(?:"(.*)"|(.*))$')


@dataclass(frozen=True)
class Checkpoint:
    """Where to resume."""
    phase_id: str
    unit_id: Optional[str]
    timestamp: int


class CheckpointManager:
    """Reads and writes the single resume checkpoint."""

    def __init__(self, path: Path, clock=time.time):
        self.path = Path(path)
        self._clock = clock

    def save(self, phase_id: str, unit_id: Optional[str] = None) -> Checkpoint:
        """
        Replace the checkpoint atomically (temp file + rename).

        Raises:
            StorageError: If the checkpoint cannot be written
        """
        checkpoint = Checkpoint(phase_id=phase_id, unit_id=unit_id or None, timestamp=int(self._clock()))
        content = (
            "# Bootstrap Checkpoint\n"
            f"# Saved: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f'CHECKPOINT_PHASE="{checkpoint.phase_id}"\n'
            f'CHECKPOINT_SCRIPT="{checkpoint.unit_id or ""}"\n'
            f'CHECKPOINT_TIMESTAMP="{checkpoint.timestamp}"\n'
        )
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with file_lock(self.path, exclusive=True):
                fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".checkpoint-", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(content)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(temp_path, self.path)
                except BaseException:
                    if os.path.exists(temp_path):
                        os.unlink(temp_path)
                    raise
        except OSError as e:
            raise StorageError(self.path, str(e)) from e

        logger.debug("Checkpoint saved: phase=%s unit=%s", phase_id, unit_id or "-")
        return checkpoint

    def load(self) -> Optional[Checkpoint]:
        """
        Read the checkpoint.

        Returns:
            The checkpoint, or None when absent or unusable. A corrupt
            checkpoint is treated as absent since it is only advisory.

        Raises:
            StorageError: If the file cannot be read or is not valid UTF-8
        """
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(self.path, str(e)) from e

        values: Dict[str, str] = {}
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            match = _LINE.match(line)
            if match:
                values[match.group(1)] = match.group(2) if match.group(2) is not None else match.group(3)

        phase_id = values.get("CHECKPOINT_PHASE", "")
        if not phase_id:
            logger.warning("Ignoring checkpoint without a phase: %s", self.path)
            return None
        try:
            timestamp = int(values.get("CHECKPOINT_TIMESTAMP") or 0)
        except ValueError:
            timestamp = 0
        return Checkpoint(
            phase_id=phase_id,
            unit_id=values.get("CHECKPOINT_SCRIPT") or None,
            timestamp=timestamp,
        )

    def clear(self) -> None:
        """Remove the checkpoint (after a fully successful run)."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(self.path, str(e)) from e
        logger.debug("Checkpoint cleared")

    def exists(self) -> bool:
        return self.path.exists()
