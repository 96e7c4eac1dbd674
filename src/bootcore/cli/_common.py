"""Shared helpers for bootcore CLI commands."""

from __future__ import annotations

import functools
import importlib
import os
import sys
from dataclasses import dataclass
from typing import Callable, Optional

import click

from bootcore import build_orchestrator
from bootcore.config import BootcoreConfig
from bootcore.errors import BootcoreError, PlanError
from bootcore.orchestrator import ForceSpec, PhaseOrchestrator, Plan, PlanBuilder
from bootcore.state import Status

STATUS_ICONS = {
    Status.COMPLETED: ("✓", "green"),
    Status.IN_PROGRESS: ("●", "yellow"),
    Status.FAILED: ("✗", "red"),
    Status.SKIPPED: ("−", "cyan"),
    Status.PENDING: ("○", None),
}


@dataclass
class CliState:
    """Per-invocation state carried on the click context."""
    config: BootcoreConfig
    plan_ref: Optional[str] = None
    verbose: bool = False

    def plan(self) -> Plan:
        if not self.plan_ref:
            raise click.UsageError("No plan given. Use --plan module:callable or set BOOTCORE_PLAN.")
        return load_plan(self.plan_ref)

    def orchestrator(self, plan: Optional[Plan] = None) -> PhaseOrchestrator:
        return build_orchestrator(plan or self.plan(), self.config)


def load_plan(ref: str) -> Plan:
    """
    Resolve ``module:attr`` to a Plan.

    ``attr`` may be a Plan, a PlanBuilder, or a callable returning either.
    The working directory is importable so project-local plan modules work.

    Raises:
        PlanError: If the reference cannot be resolved to a plan
    """
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise PlanError(f"Plan reference must look like module:callable, got {ref!r}")

    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise PlanError(f"Cannot import plan module {module_name!r}: {e}") from e

    target = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise PlanError(f"{module_name!r} has no attribute {attr!r}") from e

    if callable(target) and not isinstance(target, (Plan, PlanBuilder)):
        target = target()
    if isinstance(target, PlanBuilder):
        target = target.build()
    if not isinstance(target, Plan):
        raise PlanError(f"{ref} did not produce a Plan (got {type(target).__name__})")
    return target


def handle_errors(fn: Callable) -> Callable:
    """Report BootcoreError as a ClickException (exit code 1)."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except BootcoreError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def run_options(fn: Callable) -> Callable:
    """Options shared by run, phase and unit."""
    fn = click.option(
        "--force-unit", "force_units", multiple=True, metavar="UNIT", help="Re-execute this unit (repeatable)"
    )(fn)
    fn = click.option(
        "--force-phase", "force_phases", multiple=True, metavar="PHASE", help="Re-execute this phase (repeatable)"
    )(fn)
    fn = click.option("--force", "-f", is_flag=True, help="Re-execute completed units")(fn)
    fn = click.option("--dry-run", "-n", is_flag=True, help="Show what would run without executing")(fn)
    return fn


def force_spec(force: bool, force_phases, force_units) -> ForceSpec:
    return ForceSpec.of(everything=force, phases=force_phases, units=force_units)


def styled_status(status: Status) -> str:
    icon, color = STATUS_ICONS.get(status, ("?", None))
    return click.style(icon, fg=color) if color else icon
