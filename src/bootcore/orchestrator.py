"""
Phase orchestrator: resumable, fail-fast execution of a phase plan.

A plan is an ordered list of phases, each an ordered list of units, built
statically with PlanBuilder. Running it:

- Starts at the checkpoint phase when a valid checkpoint exists, otherwise
  at the first phase. A checkpoint is only trusted if every phase before it
  is recorded completed; anything else is treated as stale and ignored.
- Skips a phase whose PHASE record is completed unless one of its units
  was since recorded otherwise, and a unit whose latest SCRIPT record is
  completed (no record is written for a skip).
- Otherwise appends ``in_progress``, installs the unit's packages, executes
  it and appends the terminal status.
- Halts the whole run at the first failing unit (UnitExecutionError). The
  phase is recorded failed and the checkpoint keeps pointing at it.
- Saves the checkpoint before each unit and after each phase, and clears it
  once every phase has completed.

Force mode re-executes completed work by appending fresh records; history is
never rewritten. Dry-run performs the same traversal and state checks but
writes nothing, installs nothing and executes nothing.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.trace import Status as SpanStatus, StatusCode

from bootcore.checkpoint import Checkpoint, CheckpointManager
from bootcore.errors import (
    PackageInstallError,
    PackageManagerUnavailableError,
    PlanError,
    StorageError,
    UnitExecutionError,
)
from bootcore.install.models import PackageRequest
from bootcore.logger import RunLogger
from bootcore.state import ExecutionRecord, RecordKind, StateStore, Status
from bootcore.unit import CommandUnit, ExecutionContext, FunctionUnit, UnitOfWork, UnitResult

logger = logging.getLogger(__name__)

__all__ = [
    "Phase",
    "Plan",
    "PlanBuilder",
    "ForceSpec",
    "RunReport",
    "PhaseProgress",
    "PlanStatus",
    "PhaseOrchestrator",
]


# =============================================================================
# Plan
# =============================================================================


@dataclass(frozen=True)
class Phase:
    """An ordered group of units; one stage of environment setup."""
    phase_id: str
    title: str
    units: Tuple[UnitOfWork, ...]

    @property
    def unit_ids(self) -> List[str]:
        return [u.unit_id for u in self.units]


@dataclass(frozen=True)
class Plan:
    """Validated, immutable phase plan."""
    phases: Tuple[Phase, ...]

    def phase(self, phase_id: str) -> Phase:
        for phase in self.phases:
            if phase.phase_id == phase_id:
                return phase
        raise PlanError(f"Phase not found: {phase_id}")

    def index_of(self, phase_id: str) -> int:
        for i, phase in enumerate(self.phases):
            if phase.phase_id == phase_id:
                return i
        raise PlanError(f"Phase not found: {phase_id}")

    def unit(self, unit_id: str) -> Tuple[Phase, UnitOfWork]:
        for phase in self.phases:
            for unit in phase.units:
                if unit.unit_id == unit_id:
                    return phase, unit
        raise PlanError(f"Unit not found: {unit_id}")

    @property
    def unit_ids(self) -> List[str]:
        return [u.unit_id for p in self.phases for u in p.units]

    def packages(self) -> List[PackageRequest]:
        """Every package any unit requires, in plan order."""
        return [pkg for p in self.phases for u in p.units for pkg in u.required_packages]


class PlanBuilder:
    """
    Static registration of phases and units.

    Example:
        plan = (
            PlanBuilder()
            .phase("foundation", "Project Foundation")
            .command("foundation/init-nextjs", "bash scripts/init-nextjs.sh", creates="package.json")
            .command("foundation/init-typescript", "bash scripts/init-typescript.sh",
                     dev_packages=["typescript", "@types/node"])
            .phase("docker", "Docker Infrastructure")
            .command("docker/db-compose", "bash scripts/docker-compose-pg.sh")
            .build()
        )
    """

    def __init__(self):
        self._phases: List[Tuple[str, str, List[UnitOfWork]]] = []

    def phase(self, phase_id: str, title: str = "") -> "PlanBuilder":
        if not phase_id:
            raise PlanError("phase_id is required")
        if any(p[0] == phase_id for p in self._phases):
            raise PlanError(f"Duplicate phase id: {phase_id}")
        self._phases.append((phase_id, title or phase_id, []))
        return self

    def _current(self) -> Tuple[str, str, List[UnitOfWork]]:
        if not self._phases:
            raise PlanError("Declare a phase before adding units")
        return self._phases[-1]

    def unit(self, unit: UnitOfWork) -> "PlanBuilder":
        phase_id, _, units = self._current()
        if unit.phase_id != phase_id:
            raise PlanError(f"Unit {unit.unit_id} belongs to {unit.phase_id}, not {phase_id}")
        units.append(unit)
        return self

    def command(self, unit_id: str, command, **kwargs) -> "PlanBuilder":
        return self.unit(CommandUnit(unit_id, self._current()[0], command, **kwargs))

    def function(self, unit_id: str, fn, **kwargs) -> "PlanBuilder":
        return self.unit(FunctionUnit(unit_id, self._current()[0], fn, **kwargs))

    def build(self) -> Plan:
        seen: Dict[str, str] = {}
        phases = []
        for phase_id, title, units in self._phases:
            for unit in units:
                if unit.unit_id in seen:
                    raise PlanError(
                        f"Duplicate unit id {unit.unit_id} (phases {seen[unit.unit_id]} and {phase_id})"
                    )
                seen[unit.unit_id] = phase_id
            phases.append(Phase(phase_id=phase_id, title=title, units=tuple(units)))
        if not phases:
            raise PlanError("Plan has no phases")
        return Plan(phases=tuple(phases))


# =============================================================================
# Run options and results
# =============================================================================


@dataclass(frozen=True)
class ForceSpec:
    """Which completed work to re-execute."""
    everything: bool = False
    phases: FrozenSet[str] = frozenset()
    units: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, everything: bool = False, phases: Iterable[str] = (), units: Iterable[str] = ()) -> "ForceSpec":
        return cls(everything=everything, phases=frozenset(phases), units=frozenset(units))

    def __bool__(self) -> bool:
        return self.everything or bool(self.phases) or bool(self.units)

    def applies(self, phase_id: str, unit_id: str) -> bool:
        return self.everything or phase_id in self.phases or unit_id in self.units

    def touches(self, phase: Phase) -> bool:
        return self.everything or phase.phase_id in self.phases or any(
            uid in self.units for uid in phase.unit_ids
        )

    def validate(self, plan: Plan) -> None:
        for phase_id in self.phases:
            plan.phase(phase_id)
        for unit_id in self.units:
            plan.unit(unit_id)


@dataclass
class RunReport:
    """What a run did, in order."""
    run_id: str
    dry_run: bool = False
    start_phase: Optional[str] = None
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    would_execute: List[str] = field(default_factory=list)
    completed_phases: List[str] = field(default_factory=list)
    results: Dict[str, UnitResult] = field(default_factory=dict)
    failed_unit: Optional[str] = None
    failed_phase: Optional[str] = None
    diagnostic: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed_unit is None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "start_phase": self.start_phase,
            "executed": list(self.executed),
            "skipped": list(self.skipped),
            "would_execute": list(self.would_execute),
            "completed_phases": list(self.completed_phases),
            "failed_unit": self.failed_unit,
            "failed_phase": self.failed_phase,
            "diagnostic": self.diagnostic,
        }


@dataclass(frozen=True)
class PhaseProgress:
    phase_id: str
    title: str
    status: Status
    done: int
    total: int


@dataclass(frozen=True)
class PlanStatus:
    phases: Tuple[PhaseProgress, ...]
    done: int
    total: int
    checkpoint: Optional[Checkpoint]

    def to_dict(self) -> dict:
        return {
            "progress": {"done": self.done, "total": self.total},
            "phases": [
                {
                    "phase_id": p.phase_id,
                    "title": p.title,
                    "status": p.status.value,
                    "done": p.done,
                    "total": p.total,
                }
                for p in self.phases
            ],
            "checkpoint": (
                {
                    "phase_id": self.checkpoint.phase_id,
                    "unit_id": self.checkpoint.unit_id,
                    "timestamp": self.checkpoint.timestamp,
                }
                if self.checkpoint
                else None
            ),
        }


def _new_run_id() -> str:
    return f"{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:6]}"


def _unsettled(phase: Phase, units: Dict[str, ExecutionRecord]) -> List[Status]:
    """Latest non-completed unit statuses within a phase."""
    return [
        units[uid].status for uid in phase.unit_ids if uid in units and units[uid].status != Status.COMPLETED
    ]


# =============================================================================
# Orchestrator
# =============================================================================


class PhaseOrchestrator:
    """
    Walks a plan against a state store and checkpoint.

    Args:
        plan: The phase plan
        state: Authoritative execution records
        checkpoint: Advisory resume pointer
        installer: DependencyInstaller for units with required packages
        target_dir: Project root handed to units
        env: Extra environment passed to units through the context
    """

    def __init__(
        self,
        plan: Plan,
        state: StateStore,
        checkpoint: CheckpointManager,
        installer=None,
        target_dir: Path = Path("."),
        env: Optional[Dict[str, str]] = None,
    ):
        self.plan = plan
        self.state = state
        self.checkpoint = checkpoint
        self.installer = installer
        self.target_dir = Path(target_dir)
        self.env = dict(env or {})
        self._tracer = trace.get_tracer("bootcore.orchestrator")

    # -- entry points -------------------------------------------------------

    def run(self, dry_run: bool = False, force: Optional[ForceSpec] = None, verbose: bool = False) -> RunReport:
        """
        Run every phase from the resume point.

        Raises:
            UnitExecutionError: At the first failing unit
            StorageError: If progress cannot be recorded
        """
        force = force or ForceSpec()
        force.validate(self.plan)
        start = self.resume_index(force)
        return self._execute(
            self.plan.phases[start:], dry_run, force, verbose, move_checkpoint=True, span_name="bootstrap.run"
        )

    def run_phase(
        self, phase_id: str, dry_run: bool = False, force: Optional[ForceSpec] = None, verbose: bool = False
    ) -> RunReport:
        """Run one phase; the checkpoint is neither read nor moved."""
        force = force or ForceSpec()
        force.validate(self.plan)
        phase = self.plan.phase(phase_id)
        return self._execute((phase,), dry_run, force, verbose, move_checkpoint=False, span_name="bootstrap.run_phase")

    def run_unit(
        self, unit_id: str, dry_run: bool = False, force: Optional[ForceSpec] = None, verbose: bool = False
    ) -> RunReport:
        """Run one unit; no phase records, checkpoint untouched."""
        force = force or ForceSpec()
        force.validate(self.plan)
        phase, unit = self.plan.unit(unit_id)
        report = RunReport(run_id=_new_run_id(), dry_run=dry_run, start_phase=phase.phase_id)
        events = RunLogger(report.run_id, dry_run=dry_run)
        ctx = self._context(report.run_id, dry_run, verbose)
        with self._tracer.start_as_current_span("bootstrap.run_unit") as span:
            span.set_attribute("bootstrap.unit.id", unit_id)
            try:
                self._run_unit(phase, unit, ctx, force, report, events, move_checkpoint=False)
            except UnitExecutionError as e:
                span.set_status(SpanStatus(StatusCode.ERROR, str(e)))
                events.run_failed(e.unit_id, e.phase_id, e.diagnostic)
                raise
        return report

    # -- resume -------------------------------------------------------------

    def resume_index(self, force: Optional[ForceSpec] = None) -> int:
        """
        Index of the first phase to scan.

        The checkpoint is used only when it names a known phase and every
        earlier phase is recorded completed; otherwise scanning starts at 0.
        Forced phases before the checkpoint pull the start back.
        """
        force = force or ForceSpec()
        if force.everything:
            return 0

        cp = self.checkpoint.load()
        if cp is None:
            index = 0
        else:
            try:
                index = self.plan.index_of(cp.phase_id)
            except PlanError:
                logger.warning("Ignoring checkpoint for unknown phase %s", cp.phase_id)
                index = 0
            for phase in self.plan.phases[:index]:
                if not self._phase_settled(phase):
                    logger.warning(
                        "Ignoring stale checkpoint %s: phase %s is not completed", cp.phase_id, phase.phase_id
                    )
                    index = 0
                    break

        if force:
            for i, phase in enumerate(self.plan.phases[:index]):
                if force.touches(phase):
                    return i
        return index

    def _phase_settled(self, phase: Phase) -> bool:
        """
        True when the phase is recorded completed and no unit in it has a
        later non-completed record (e.g. a failed ``run_unit`` afterwards).

        Units without any record do not unsettle the phase.
        """
        if not self.state.has_phase_completed(phase.phase_id):
            return False
        units = self.state.current(RecordKind.SCRIPT)
        return not _unsettled(phase, units)

    # -- status / reset -----------------------------------------------------

    def status(self) -> PlanStatus:
        """Overall and per-phase progress from a single scan of the state."""
        units = self.state.current(RecordKind.SCRIPT)
        phases = self.state.current(RecordKind.PHASE)

        rows = []
        for phase in self.plan.phases:
            done = sum(
                1 for uid in phase.unit_ids if uid in units and units[uid].status == Status.COMPLETED
            )
            record = phases.get(phase.phase_id)
            status = record.status if record else Status.PENDING
            if status == Status.COMPLETED:
                stale = _unsettled(phase, units)
                if stale:
                    status = Status.FAILED if Status.FAILED in stale else stale[0]
            rows.append(
                PhaseProgress(
                    phase_id=phase.phase_id,
                    title=phase.title,
                    status=status,
                    done=done,
                    total=len(phase.units),
                )
            )
        return PlanStatus(
            phases=tuple(rows),
            done=sum(r.done for r in rows),
            total=sum(r.total for r in rows),
            checkpoint=self.checkpoint.load(),
        )

    def reset(self, phase_id: Optional[str] = None) -> None:
        """
        Reset all state, or one phase.

        The checkpoint is cleared either way: after a partial reset it may
        point past the phase that now needs to run again.
        """
        if phase_id is None:
            self.state.reset()
        else:
            phase = self.plan.phase(phase_id)
            self.state.reset_phase(phase.phase_id, phase.unit_ids)
        self.checkpoint.clear()

    # -- traversal ----------------------------------------------------------

    def _context(self, run_id: str, dry_run: bool, verbose: bool) -> ExecutionContext:
        return ExecutionContext(
            target_dir=self.target_dir,
            run_id=run_id,
            dry_run=dry_run,
            verbose=verbose,
            env=dict(self.env),
            installer=self.installer,
        )

    def _execute(
        self,
        phases: Sequence[Phase],
        dry_run: bool,
        force: ForceSpec,
        verbose: bool,
        move_checkpoint: bool,
        span_name: str,
    ) -> RunReport:
        report = RunReport(
            run_id=_new_run_id(),
            dry_run=dry_run,
            start_phase=phases[0].phase_id if phases else None,
        )
        events = RunLogger(report.run_id, dry_run=dry_run)
        ctx = self._context(report.run_id, dry_run, verbose)
        move_checkpoint = move_checkpoint and not dry_run

        events.run_started(
            phases=len(phases), units=sum(len(p.units) for p in phases), start_phase=report.start_phase
        )
        with self._tracer.start_as_current_span(span_name) as span:
            span.set_attribute("bootstrap.run.id", report.run_id)
            span.set_attribute("bootstrap.dry_run", dry_run)
            try:
                for i, phase in enumerate(phases):
                    next_phase = phases[i + 1] if i + 1 < len(phases) else None
                    self._run_phase(phase, next_phase, ctx, force, report, events, move_checkpoint)
            except UnitExecutionError as e:
                span.set_status(SpanStatus(StatusCode.ERROR, str(e)))
                events.run_failed(e.unit_id, e.phase_id, e.diagnostic)
                raise

            if move_checkpoint:
                self.checkpoint.clear()

        events.run_completed(executed=len(report.executed), skipped=len(report.skipped))
        return report

    def _run_phase(
        self,
        phase: Phase,
        next_phase: Optional[Phase],
        ctx: ExecutionContext,
        force: ForceSpec,
        report: RunReport,
        events: RunLogger,
        move_checkpoint: bool,
    ) -> None:
        if not force.touches(phase) and self._phase_settled(phase):
            logger.info("Skipping phase %s (already completed)", phase.phase_id)
            events.phase_skipped(phase.phase_id, reason="already completed")
            for unit in phase.units:
                report.skipped.append(unit.unit_id)
                events.unit_skipped(unit.unit_id, phase.phase_id)
            report.completed_phases.append(phase.phase_id)
            return

        logger.info("=== Running Phase: %s ===", phase.phase_id)
        events.phase_started(phase.phase_id, units=len(phase.units))
        with self._tracer.start_as_current_span("bootstrap.phase") as span:
            span.set_attribute("bootstrap.phase.id", phase.phase_id)
            if not ctx.dry_run:
                self.state.mark_phase(phase.phase_id, Status.IN_PROGRESS)
            try:
                for unit in phase.units:
                    self._run_unit(phase, unit, ctx, force, report, events, move_checkpoint)
            except UnitExecutionError as e:
                span.set_status(SpanStatus(StatusCode.ERROR, str(e)))
                if not ctx.dry_run:
                    self.state.mark_phase(phase.phase_id, Status.FAILED)
                raise

            if not ctx.dry_run:
                self.state.mark_phase(phase.phase_id, Status.COMPLETED)
            if move_checkpoint and next_phase is not None:
                self.checkpoint.save(next_phase.phase_id)

        report.completed_phases.append(phase.phase_id)
        events.phase_completed(phase.phase_id)

    def _run_unit(
        self,
        phase: Phase,
        unit: UnitOfWork,
        ctx: ExecutionContext,
        force: ForceSpec,
        report: RunReport,
        events: RunLogger,
        move_checkpoint: bool,
    ) -> None:
        forced = force.applies(phase.phase_id, unit.unit_id)
        if not forced and self.state.has_completed(unit.unit_id):
            logger.info("Skipping %s (already completed)", unit.unit_id)
            report.skipped.append(unit.unit_id)
            events.unit_skipped(unit.unit_id, phase.phase_id)
            return

        if ctx.dry_run:
            packages = [p.spec for p in unit.required_packages]
            logger.info("Would execute: %s%s", unit.unit_id, f" (packages: {' '.join(packages)})" if packages else "")
            report.would_execute.append(unit.unit_id)
            events.unit_would_execute(unit.unit_id, phase.phase_id, packages)
            return

        if move_checkpoint:
            self.checkpoint.save(phase.phase_id, unit.unit_id)
        self.state.mark_in_progress(unit.unit_id)
        events.unit_started(unit.unit_id, phase.phase_id, forced=forced)
        logger.info(">>> Running: %s", unit.unit_id)

        started = time.monotonic()
        cause: Optional[BaseException] = None
        with self._tracer.start_as_current_span("bootstrap.unit") as span:
            span.set_attribute("bootstrap.unit.id", unit.unit_id)
            span.set_attribute("bootstrap.phase.id", phase.phase_id)
            span.set_attribute("bootstrap.unit.forced", forced)
            try:
                result = self._attempt(unit, ctx.for_unit(forced))
            except StorageError:
                raise
            except (PackageInstallError, PackageManagerUnavailableError) as e:
                cause = e
                result = UnitResult.failed(str(e))
            except Exception as e:
                logger.exception("Unit %s raised", unit.unit_id)
                cause = e
                result = UnitResult.failed(f"{type(e).__name__}: {e}")

            span.set_attribute("bootstrap.unit.status", result.status.value)
            self.state.mark_result(unit.unit_id, result.status)
            report.results[unit.unit_id] = result

            if result.status == Status.FAILED:
                span.set_status(SpanStatus(StatusCode.ERROR, result.message or "failed"))
                logger.error("%s failed: %s", unit.unit_id, result.message or "no diagnostic")
                events.unit_failed(unit.unit_id, phase.phase_id, result.message)
                report.failed_unit = unit.unit_id
                report.failed_phase = phase.phase_id
                report.diagnostic = result.message
                error = UnitExecutionError(unit.unit_id, phase.phase_id, result.message, report)
                if cause is not None:
                    raise error from cause
                raise error

        report.executed.append(unit.unit_id)
        events.unit_completed(
            unit.unit_id, phase.phase_id, result.status.value, time.monotonic() - started, result.message
        )
        logger.info("✓ %s %s", unit.unit_id, result.status.value)

    def _attempt(self, unit: UnitOfWork, ctx: ExecutionContext) -> UnitResult:
        if unit.required_packages:
            if self.installer is None:
                return UnitResult.failed("unit requires packages but no installer is configured")
            self.installer.install_with_retry(list(unit.required_packages))
        result = unit.execute(ctx)
        if not isinstance(result, UnitResult):
            return UnitResult.failed(f"execute() returned {type(result).__name__}, expected UnitResult")
        if result.status not in (Status.COMPLETED, Status.FAILED, Status.SKIPPED):
            return UnitResult.failed(f"execute() returned non-terminal status {result.status.value}")
        return result
