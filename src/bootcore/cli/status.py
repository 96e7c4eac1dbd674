"""bootcore CLI - Inspection and administration (list, status, reset)."""

from __future__ import annotations

import json

import click
import yaml

from bootcore.checkpoint import CheckpointManager
from bootcore.cli._common import CliState, handle_errors, styled_status
from bootcore.state import FileStateStore, RecordKind, Status


@click.command("list")
@click.pass_obj
@handle_errors
def list_plan(obj: CliState):
    """List phases and their units with current status."""
    orchestrator = obj.orchestrator()
    units = orchestrator.state.current(RecordKind.SCRIPT)
    for phase in orchestrator.plan.phases:
        click.echo(click.style(phase.phase_id, bold=True) + f"  {phase.title}")
        for unit in phase.units:
            record = units.get(unit.unit_id)
            status = record.status if record else Status.PENDING
            packages = " ".join(p.spec for p in unit.required_packages)
            suffix = click.style(f"  [{packages}]", dim=True) if packages else ""
            click.echo(f"  {styled_status(status)} {unit.unit_id}{suffix}")


@click.command("status")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="Output format",
)
@click.pass_obj
@handle_errors
def status(obj: CliState, output_format):
    """Show overall and per-phase progress."""
    summary = obj.orchestrator().status()

    if output_format == "json":
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return
    if output_format == "yaml":
        click.echo(yaml.safe_dump(summary.to_dict(), sort_keys=False))
        return

    percent = int(summary.done * 100 / summary.total) if summary.total else 0
    click.echo(click.style("Bootstrap Progress", bold=True) + f": {summary.done}/{summary.total} ({percent}%)")
    click.echo()
    width = max((len(p.phase_id) for p in summary.phases), default=0)
    for row in summary.phases:
        click.echo(
            f"  {styled_status(row.status)} {row.phase_id.ljust(width)}  [{row.done}/{row.total}] {row.status.value}"
        )
    if summary.checkpoint:
        cp = summary.checkpoint
        where = f"phase {cp.phase_id}" + (f" (unit {cp.unit_id})" if cp.unit_id else "")
        click.echo()
        click.echo(f"Resume point: {where}")


@click.command("reset")
@click.option("--phase", "phase_id", default=None, help="Reset only this phase")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
@handle_errors
def reset(obj: CliState, phase_id, yes):
    """Forget recorded progress (all of it, or one phase)."""
    target = f"phase {phase_id}" if phase_id else "all bootstrap state"
    if not yes:
        click.confirm(f"Reset {target}?", abort=True)
    if phase_id is None:
        # a full reset needs no plan, only the state and checkpoint paths
        FileStateStore(obj.config.state_path).reset()
        CheckpointManager(obj.config.checkpoint_path).clear()
    else:
        obj.orchestrator().reset(phase_id)
    click.echo(click.style("✓ ", fg="green") + f"Reset {target}")
