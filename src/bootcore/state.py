"""
Durable execution state for bootstrap runs.

The state store is an append-only log of execution records. A record never
changes once written; the current status of a key is the status of its most
recent record. History is kept so that forced re-runs remain auditable.

Persisted format (one record per line, scanned top to bottom):

    # comment lines are ignored
    STATE:initialized:<epoch>
    SCRIPT:<unit-id>:<status>:<epoch>
    PHASE:<phase-id>:<status>:<epoch>

Keys may contain ``/`` and ``:``. The first field is the kind, the last two
are status and timestamp, everything in between is the key.

Appends take an exclusive advisory lock on ``<state-file>.lock`` so two
processes can never interleave partial lines. Running two orchestrators
against the same state is still unsupported.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import os
import sys
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import IO, Dict, Generator, Iterable, List, Optional, Tuple

from bootcore.errors import StorageError

logger = logging.getLogger(__name__)

__all__ = [
    "Status",
    "RecordKind",
    "ExecutionRecord",
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
    "file_lock",
]


# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK if exclusive else msvcrt.LK_NBRLCK, 1)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


@contextlib.contextmanager
def file_lock(path: Path, exclusive: bool = True) -> Generator[IO, None, None]:
    """
    Hold an advisory lock on ``<path>.lock`` for the duration of the block.

    Guards appends and rewrites of ``path`` against other bootcore processes.
    Readers do not take it: a record line is written in a single call.

    Args:
        path: File being protected
        exclusive: Exclusive (write) lock when True, shared otherwise
    """
    lock_path = path.with_name(path.name + ".lock")
    with open(lock_path, "a+") as handle:
        _lock_file(handle, exclusive)
        try:
            yield handle
        finally:
            _unlock_file(handle)


class Status(str, Enum):
    """Status values for units and phases."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.COMPLETED, Status.FAILED, Status.SKIPPED)


class RecordKind(str, Enum):
    """What an execution record refers to."""
    SCRIPT = "SCRIPT"
    PHASE = "PHASE"


@dataclass(frozen=True)
class ExecutionRecord:
    """One persisted fact about a unit's or phase's outcome."""
    kind: RecordKind
    key: str
    status: Status
    timestamp: int  # epoch seconds
    seq: int = 0  # insertion order, breaks timestamp ties

    def to_line(self) -> str:
        return f"{self.kind.value}:{self.key}:{self.status.value}:{self.timestamp}"

    @classmethod
    def from_line(cls, line: str, seq: int = 0) -> Optional["ExecutionRecord"]:
        """Parse a log line. Returns None for lines that are not records."""
        parts = line.split(":")
        if len(parts) < 4:
            return None
        try:
            kind = RecordKind(parts[0])
            status = Status(parts[-2])
            timestamp = int(parts[-1])
        except ValueError:
            return None
        key = ":".join(parts[1:-2])
        if not key:
            return None
        return cls(kind=kind, key=key, status=status, timestamp=timestamp, seq=seq)

    @property
    def when(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)


def _latest(records: Iterable[ExecutionRecord]) -> Optional[ExecutionRecord]:
    """Latest record by timestamp, ties broken by insertion order."""
    best: Optional[ExecutionRecord] = None
    for record in records:
        if best is None or (record.timestamp, record.seq) >= (best.timestamp, best.seq):
            best = record
    return best


class StateStore(abc.ABC):
    """
    Append-only store of execution records.

    Subclasses provide ``_append`` and ``records``; status resolution is a
    sequential scan shared by all backends. Unit counts are small (tens), so
    no index is kept.
    """

    def __init__(self, clock=time.time):
        self._clock = clock

    # -- backend hooks ------------------------------------------------------

    @abc.abstractmethod
    def _append(self, record: ExecutionRecord) -> None:
        """Durably append one record."""

    @abc.abstractmethod
    def records(self) -> List[ExecutionRecord]:
        """All records in insertion order."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Drop every record."""

    @abc.abstractmethod
    def _rewrite(self, keep: List[ExecutionRecord]) -> None:
        """Replace the log with ``keep`` (administrative resets only)."""

    # -- writes -------------------------------------------------------------

    def _record(self, kind: RecordKind, key: str, status: Status) -> ExecutionRecord:
        if not key or "\n" in key:
            raise ValueError(f"Invalid state key: {key!r}")
        record = ExecutionRecord(kind=kind, key=key, status=status, timestamp=int(self._clock()))
        self._append(record)
        logger.debug("Recorded %s", record.to_line())
        return record

    def mark_in_progress(self, unit_id: str) -> ExecutionRecord:
        """Append an ``in_progress`` record for a unit."""
        return self._record(RecordKind.SCRIPT, unit_id, Status.IN_PROGRESS)

    def mark_result(self, unit_id: str, status: Status) -> ExecutionRecord:
        """Append a terminal record (completed, failed or skipped) for a unit."""
        status = Status(status)
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status.value}")
        return self._record(RecordKind.SCRIPT, unit_id, status)

    def mark_phase(self, phase_id: str, status: Status) -> ExecutionRecord:
        """Append a record for a phase."""
        return self._record(RecordKind.PHASE, phase_id, Status(status))

    # -- reads --------------------------------------------------------------

    def history(self, key: str, kind: RecordKind = RecordKind.SCRIPT) -> List[ExecutionRecord]:
        """Every record for ``key`` in insertion order."""
        return [r for r in self.records() if r.kind == kind and r.key == key]

    def latest(self, key: str, kind: RecordKind = RecordKind.SCRIPT) -> Optional[ExecutionRecord]:
        return _latest(self.history(key, kind))

    def status_of(self, unit_id: str) -> Status:
        """Current status of a unit; ``pending`` when never recorded."""
        record = self.latest(unit_id)
        return record.status if record else Status.PENDING

    def phase_status(self, phase_id: str) -> Status:
        """Current status of a phase; ``pending`` when never recorded."""
        record = self.latest(phase_id, RecordKind.PHASE)
        return record.status if record else Status.PENDING

    def has_completed(self, unit_id: str) -> bool:
        """
        True iff the latest record for the unit is ``completed``.

        Missing, failed and in-progress records all return False, so an
        uncertain unit is re-executed rather than silently skipped.
        """
        return self.status_of(unit_id) == Status.COMPLETED

    def has_phase_completed(self, phase_id: str) -> bool:
        return self.phase_status(phase_id) == Status.COMPLETED

    def current(self, kind: RecordKind = RecordKind.SCRIPT) -> Dict[str, ExecutionRecord]:
        """Latest record per key for one kind, in a single scan."""
        latest: Dict[str, ExecutionRecord] = {}
        for record in self.records():
            if record.kind != kind:
                continue
            prev = latest.get(record.key)
            if prev is None or (record.timestamp, record.seq) >= (prev.timestamp, prev.seq):
                latest[record.key] = record
        return latest

    def progress(self, unit_ids: Optional[Iterable[str]] = None) -> Tuple[int, int]:
        """
        Informational (done, total) counters.

        With ``unit_ids`` the total is the number of ids given; otherwise it
        is the number of distinct units ever recorded.
        """
        latest = self.current(RecordKind.SCRIPT)
        if unit_ids is None:
            keys = list(latest)
        else:
            keys = list(unit_ids)
        done = sum(1 for k in keys if k in latest and latest[k].status == Status.COMPLETED)
        return done, len(keys)

    # -- administration -----------------------------------------------------

    def reset_phase(self, phase_id: str, unit_ids: Iterable[str]) -> int:
        """
        Remove every record of a phase and its units.

        Returns:
            Number of records removed
        """
        drop = set(unit_ids)
        before = self.records()
        keep = [
            r for r in before
            if not (r.kind == RecordKind.PHASE and r.key == phase_id)
            and not (r.kind == RecordKind.SCRIPT and r.key in drop)
        ]
        if len(keep) != len(before):
            self._rewrite(keep)
        removed = len(before) - len(keep)
        logger.info("Phase %s reset (%d records removed)", phase_id, removed)
        return removed


class MemoryStateStore(StateStore):
    """In-process store; nothing survives the process."""

    def __init__(self, clock=time.time):
        super().__init__(clock)
        self._records: List[ExecutionRecord] = []

    def _append(self, record: ExecutionRecord) -> None:
        self._records.append(
            ExecutionRecord(record.kind, record.key, record.status, record.timestamp, len(self._records))
        )

    def records(self) -> List[ExecutionRecord]:
        return list(self._records)

    def reset(self) -> None:
        self._records.clear()

    def _rewrite(self, keep: List[ExecutionRecord]) -> None:
        self._records = [
            ExecutionRecord(r.kind, r.key, r.status, r.timestamp, i) for i, r in enumerate(keep)
        ]


_HEADER = """# Bootstrap State File
# Generated: {generated}
# Format: TYPE:KEY:STATUS:TIMESTAMP
#   TYPE: SCRIPT or PHASE
#   KEY: Unit id or phase id
#   STATUS: pending, in_progress, completed, failed, skipped
"""


class FileStateStore(StateStore):
    """
    State store backed by the append-only text log.

    Every append is flushed and fsynced before returning; a failure to do so
    raises StorageError because a run that cannot record progress must stop.
    """

    def __init__(self, path: Path, clock=time.time):
        super().__init__(clock)
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def init(self) -> None:
        """Create the log with its header if it does not exist yet."""
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with file_lock(self.path, exclusive=True):
                if self.path.exists():
                    return
                header = _HEADER.format(generated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
                with open(self.path, "w", encoding="utf-8") as f:
                    f.write(header)
                    f.write(f"STATE:initialized:{int(self._clock())}\n")
                    f.flush()
                    os.fsync(f.fileno())
            logger.debug("Created state file: %s", self.path)
        except OSError as e:
            raise StorageError(self.path, str(e)) from e

    def _append(self, record: ExecutionRecord) -> None:
        self.init()
        try:
            with file_lock(self.path, exclusive=True):
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(record.to_line() + "\n")
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            raise StorageError(self.path, str(e)) from e

    def records(self) -> List[ExecutionRecord]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(self.path, str(e)) from e

        parsed: List[ExecutionRecord] = []
        for lineno, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#") or line.startswith("STATE:"):
                continue
            record = ExecutionRecord.from_line(line, seq=len(parsed))
            if record is None:
                logger.warning("Ignoring malformed state line %d in %s: %r", lineno, self.path, line)
                continue
            parsed.append(record)
        return parsed

    def reset(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(self.path, str(e)) from e
        logger.info("Cleared all bootstrap state")

    def _rewrite(self, keep: List[ExecutionRecord]) -> None:
        """Atomically replace the log (temp file + rename)."""
        self.init()
        try:
            with file_lock(self.path, exclusive=True):
                fd, temp_path = tempfile.mkstemp(
                    dir=self.path.parent, prefix=".bootstrap-state-", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        header = _HEADER.format(generated=datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
                        f.write(header)
                        f.write(f"STATE:initialized:{int(self._clock())}\n")
                        for record in keep:
                            f.write(record.to_line() + "\n")
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(temp_path, self.path)
                except BaseException:
                    if os.path.exists(temp_path):
                        os.unlink(temp_path)
                    raise
        except OSError as e:
            raise StorageError(self.path, str(e)) from e
