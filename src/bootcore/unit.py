"""
Unit-of-work contract.

A unit is one idempotent setup step. It has a stable id (the state-store
key, unique across the whole plan), belongs to one phase, may declare the
packages it needs, and exposes ``execute(ctx) -> UnitResult``.

Side effects are entirely the unit's business; the orchestrator only looks
at the returned status. ``execute`` must be idempotent at the effect level
even though the orchestrator also skips completed units, so that a lost
state record never causes damage on re-execution.

Units receive everything they need through ExecutionContext; nothing is
read from module-level state.
"""

from __future__ import annotations

import abc
import logging
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from bootcore.contracts.timeouts import UNIT_COMMAND_TIMEOUT_S
from bootcore.install.models import PackageRequest
from bootcore.process import CommandRunner, run_command
from bootcore.state import Status

logger = logging.getLogger(__name__)

__all__ = [
    "ExecutionContext",
    "UnitResult",
    "UnitOfWork",
    "BaseUnit",
    "FunctionUnit",
    "CommandUnit",
    "normalize_packages",
]


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a unit may depend on during one run."""
    target_dir: Path
    run_id: str = ""
    dry_run: bool = False
    force: bool = False
    verbose: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    installer: Optional[object] = None  # DependencyInstaller, for units installing extras

    def for_unit(self, forced: bool) -> "ExecutionContext":
        """Copy with the per-unit force flag."""
        if forced == self.force:
            return self
        return ExecutionContext(
            target_dir=self.target_dir,
            run_id=self.run_id,
            dry_run=self.dry_run,
            force=forced,
            verbose=self.verbose,
            env=dict(self.env),
            installer=self.installer,
        )


@dataclass(frozen=True)
class UnitResult:
    """Outcome of one execute() call."""
    status: Status
    message: Optional[str] = None

    def __post_init__(self):
        # accepts plain strings such as "completed"; unknown values raise ValueError
        object.__setattr__(self, "status", Status(self.status))

    @classmethod
    def completed(cls, message: Optional[str] = None) -> "UnitResult":
        return cls(Status.COMPLETED, message)

    @classmethod
    def failed(cls, message: Optional[str] = None) -> "UnitResult":
        return cls(Status.FAILED, message)

    @classmethod
    def skipped(cls, message: Optional[str] = None) -> "UnitResult":
        return cls(Status.SKIPPED, message)

    @property
    def succeeded(self) -> bool:
        return self.status in (Status.COMPLETED, Status.SKIPPED)


@runtime_checkable
class UnitOfWork(Protocol):
    """What the orchestrator needs from a step."""

    unit_id: str
    phase_id: str
    required_packages: Tuple[PackageRequest, ...]

    def execute(self, ctx: ExecutionContext) -> UnitResult:
        ...


PackageLike = Union[str, PackageRequest]


def normalize_packages(
    packages: Iterable[PackageLike] = (),
    dev_packages: Iterable[PackageLike] = (),
) -> Tuple[PackageRequest, ...]:
    """Accept ``"name@constraint"`` strings or PackageRequest objects."""
    out = []
    for pkg in packages:
        out.append(pkg if isinstance(pkg, PackageRequest) else PackageRequest.parse(pkg))
    for pkg in dev_packages:
        if isinstance(pkg, PackageRequest):
            out.append(PackageRequest(pkg.name, pkg.version_constraint, dev_only=True))
        else:
            out.append(PackageRequest.parse(pkg, dev_only=True))
    return tuple(out)


class BaseUnit(abc.ABC):
    """
    Base class for units.

    Subclasses implement ``run``. ``already_applied`` is the effect-level
    idempotency check: when it returns True, execute() reports completed
    without touching anything.
    """

    def __init__(
        self,
        unit_id: str,
        phase_id: str,
        packages: Iterable[PackageLike] = (),
        dev_packages: Iterable[PackageLike] = (),
        description: str = "",
    ):
        if not unit_id:
            raise ValueError("unit_id is required")
        self.unit_id = unit_id
        self.phase_id = phase_id
        self.required_packages = normalize_packages(packages, dev_packages)
        self.description = description

    def already_applied(self, ctx: ExecutionContext) -> bool:
        return False

    @abc.abstractmethod
    def run(self, ctx: ExecutionContext) -> UnitResult:
        """Perform the step's side effects."""

    def execute(self, ctx: ExecutionContext) -> UnitResult:
        if not ctx.force and self.already_applied(ctx):
            logger.info("%s already applied", self.unit_id)
            return UnitResult.completed("already applied")
        return self.run(ctx)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.unit_id!r}, phase={self.phase_id!r})"


class FunctionUnit(BaseUnit):
    """
    Unit backed by a Python callable.

    The callable receives the context and may return a UnitResult, a bool
    (False means failed) or None (completed).
    """

    def __init__(
        self,
        unit_id: str,
        phase_id: str,
        fn: Callable[[ExecutionContext], Union[UnitResult, bool, None]],
        check: Optional[Callable[[ExecutionContext], bool]] = None,
        **kwargs,
    ):
        super().__init__(unit_id, phase_id, **kwargs)
        self._fn = fn
        self._check = check

    def already_applied(self, ctx: ExecutionContext) -> bool:
        return bool(self._check and self._check(ctx))

    def run(self, ctx: ExecutionContext) -> UnitResult:
        outcome = self._fn(ctx)
        if isinstance(outcome, UnitResult):
            return outcome
        if outcome is False:
            return UnitResult.failed(f"{self.unit_id} returned False")
        return UnitResult.completed()


class CommandUnit(BaseUnit):
    """
    Unit that runs an external command, typically a generator script.

    The command runs in the target directory with ``BOOTSTRAP_*`` variables
    describing the run. Exit code 0 means completed; anything else failed,
    with the command's stderr as the diagnostic.

    Args:
        command: argv list, or a string split with shlex
        creates: Path (relative to the target) whose existence means the
            step was already applied
        timeout_s: Per-invocation timeout
    """

    def __init__(
        self,
        unit_id: str,
        phase_id: str,
        command: Union[str, Sequence[str]],
        creates: Optional[str] = None,
        timeout_s: Optional[float] = UNIT_COMMAND_TIMEOUT_S,
        env: Optional[Dict[str, str]] = None,
        runner: CommandRunner = run_command,
        **kwargs,
    ):
        super().__init__(unit_id, phase_id, **kwargs)
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.argv:
            raise ValueError(f"{unit_id}: empty command")
        self.creates = creates
        self.timeout_s = timeout_s
        self.env = dict(env or {})
        self._runner = runner

    def already_applied(self, ctx: ExecutionContext) -> bool:
        return bool(self.creates) and (ctx.target_dir / self.creates).exists()

    def environment(self, ctx: ExecutionContext) -> Dict[str, str]:
        env = {
            "BOOTSTRAP_TARGET_DIR": str(ctx.target_dir),
            "BOOTSTRAP_UNIT_ID": self.unit_id,
            "BOOTSTRAP_PHASE_ID": self.phase_id,
            "BOOTSTRAP_RUN_ID": ctx.run_id,
            "BOOTSTRAP_DRY_RUN": "true" if ctx.dry_run else "false",
            "BOOTSTRAP_FORCE": "true" if ctx.force else "false",
            "BOOTSTRAP_VERBOSE": "true" if ctx.verbose else "false",
        }
        env.update(ctx.env)
        env.update(self.env)
        return env

    def run(self, ctx: ExecutionContext) -> UnitResult:
        started = time.monotonic()
        result = self._runner(
            self.argv,
            cwd=ctx.target_dir,
            env=self.environment(ctx),
            timeout=self.timeout_s,
        )
        elapsed = time.monotonic() - started
        if result.ok:
            return UnitResult.completed(f"exit 0 in {elapsed:.1f}s")
        return UnitResult.failed(result.diagnostic())
