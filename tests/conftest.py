"""
Pytest configuration and fixtures for bootcore tests.

No test touches a real package manager or the network: installs go through
FakeRunner, which records every argv and creates ``node_modules/<name>``
the way a real install would.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Generator, List, Optional, Set

import pytest

from bootcore.checkpoint import CheckpointManager
from bootcore.config import reset_config
from bootcore.install import DependencyInstaller, PackageCache, PackageManager, PackageRequest, RetryPolicy
from bootcore.process import CommandResult
from bootcore.state import FileStateStore
from bootcore.unit import UnitResult


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> Generator[None, None, None]:
    """Isolate each test from BOOTCORE_* variables, the config singleton and CLI log handlers."""
    for key in list(os.environ):
        if key.startswith("BOOTCORE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()

    yield

    reset_config()
    root = logging.getLogger("bootcore")
    for handler in list(root.handlers):
        if getattr(handler, "_bootcore_handler", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.NOTSET)


# ============================================================================
# Package Manager Fakes
# ============================================================================


class FakeRunner:
    """
    Stand-in for run_command.

    Args:
        failing: Package names whose install always fails
        flaky: Package name -> number of failing calls before it succeeds
        phantom: Package names that "succeed" without landing in node_modules
    """

    def __init__(self, failing=(), flaky=None, phantom=()):
        self.calls: List[List[str]] = []
        self.failing: Set[str] = set(failing)
        self.flaky: Dict[str, int] = dict(flaky or {})
        self.phantom: Set[str] = set(phantom)
        self.tarballs: Dict[str, str] = {}

    def register_tarball(self, artifact: Path, name: str) -> None:
        self.tarballs[artifact.name] = name

    def _name_of(self, target: str) -> str:
        if target.endswith(".tgz"):
            return self.tarballs[Path(target).name]
        return PackageRequest.parse(target).name

    @staticmethod
    def targets(argv: List[str]) -> List[str]:
        return [a for a in argv[2:] if not a.startswith("-")]

    def __call__(self, argv, *, cwd=None, env=None, timeout=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        names = [self._name_of(t) for t in self.targets(argv)]

        for name in names:
            if name in self.failing:
                return CommandResult(argv, 1, "", f"ERR_PNPM_FETCH_404 {name}")
            if self.flaky.get(name, 0) > 0:
                self.flaky[name] -= 1
                return CommandResult(argv, 1, "", f"ECONNRESET while fetching {name}")

        for name in names:
            if name not in self.phantom:
                (Path(cwd) / "node_modules" / name).mkdir(parents=True, exist_ok=True)
        return CommandResult(argv, 0, "done", "")

    @property
    def remote_calls(self) -> List[List[str]]:
        return [c for c in self.calls if not any(t.endswith(".tgz") for t in self.targets(c))]

    @property
    def cache_calls(self) -> List[List[str]]:
        return [c for c in self.calls if any(t.endswith(".tgz") for t in self.targets(c))]


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# ============================================================================
# Unit Fakes
# ============================================================================


class RecordingUnit:
    """Unit that appends its id to a shared journal when executed."""

    def __init__(
        self,
        unit_id: str,
        phase_id: str,
        journal: List[str],
        result: Optional[UnitResult] = None,
        raises: Optional[BaseException] = None,
        packages=(),
    ):
        self.unit_id = unit_id
        self.phase_id = phase_id
        self.required_packages = tuple(PackageRequest.parse(p) for p in packages)
        self.journal = journal
        self.result = result or UnitResult.completed()
        self.raises = raises
        self.contexts = []

    def execute(self, ctx):
        self.journal.append(self.unit_id)
        self.contexts.append(ctx)
        if self.raises is not None:
            raise self.raises
        return self.result


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def target_dir(tmp_path) -> Path:
    """Project directory being bootstrapped."""
    target = tmp_path / "app"
    target.mkdir()
    return target


@pytest.fixture
def state(tmp_path) -> FileStateStore:
    return FileStateStore(tmp_path / "state" / ".bootstrap-state")


@pytest.fixture
def checkpoint(tmp_path) -> CheckpointManager:
    return CheckpointManager(tmp_path / "state" / ".checkpoint")


@pytest.fixture
def journal() -> List[str]:
    """Execution order shared by RecordingUnits."""
    return []


@pytest.fixture
def make_unit(journal):
    """Build RecordingUnits that share ``journal``."""

    def _make(unit_id: str, phase_id: str, **kwargs) -> RecordingUnit:
        return RecordingUnit(unit_id, phase_id, journal, **kwargs)

    return _make


# ============================================================================
# Installer Fixtures
# ============================================================================


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_artifact(cache_dir, fake_runner):
    """Create ``<stem>-<version>.tgz`` in the cache and teach FakeRunner its name."""

    def _make(name: str, version: str) -> Path:
        stem = PackageRequest(name).cache_stem
        artifact = cache_dir / f"{stem}-{version}.tgz"
        artifact.write_bytes(b"\x1f\x8b fake tarball")
        fake_runner.register_tarball(artifact, name)
        return artifact

    return _make


@pytest.fixture
def installer(target_dir, cache_dir, fake_runner, sleeper) -> DependencyInstaller:
    return DependencyInstaller(
        target_dir=target_dir,
        cache=PackageCache(cache_dir),
        manager=PackageManager(name="pnpm", executable="pnpm"),
        runner=fake_runner,
        policy=RetryPolicy(attempts=3, delay_s=2.0, settle_s=1.0, timeout_s=30.0),
        sleep=sleeper,
    )
