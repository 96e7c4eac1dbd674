"""bootcore CLI - Execution commands (run, phase, unit)."""

from __future__ import annotations

import click

from bootcore.cli._common import CliState, force_spec, handle_errors, run_options
from bootcore.errors import UnitExecutionError
from bootcore.orchestrator import RunReport


def _echo_report(report: RunReport) -> None:
    if report.dry_run:
        click.echo(click.style("DRY RUN", fg="yellow", bold=True) + " - nothing was executed")
        for unit_id in report.would_execute:
            click.echo(f"  Would execute: {unit_id}")
        if not report.would_execute:
            click.echo("  Nothing to do")
        click.echo(f"  Already completed: {len(report.skipped)}")
        return

    click.echo(
        click.style("✓ ", fg="green")
        + f"Executed {len(report.executed)}, skipped {len(report.skipped)} (run {report.run_id})"
    )


def _echo_failure(error: UnitExecutionError) -> None:
    click.echo(click.style("✗ ", fg="red") + f"{error.unit_id} failed in phase {error.phase_id}", err=True)
    if error.diagnostic:
        for line in error.diagnostic.splitlines():
            click.echo(f"    {line}", err=True)
    click.echo("  Fix the issue and re-run to resume from this point.", err=True)


@click.command("run")
@run_options
@click.pass_obj
@handle_errors
def run(obj: CliState, dry_run, force, force_phases, force_units):
    """Run all phases, resuming from the last checkpoint.

    Examples:

        bootcore --plan myplan:build run

        bootcore --plan myplan:build run --dry-run

        bootcore --plan myplan:build run --force-unit foundation/init-nextjs
    """
    orchestrator = obj.orchestrator()
    try:
        report = orchestrator.run(
            dry_run=dry_run, force=force_spec(force, force_phases, force_units), verbose=obj.verbose
        )
    except UnitExecutionError as e:
        _echo_failure(e)
        raise
    _echo_report(report)


@click.command("phase")
@click.argument("phase_id")
@run_options
@click.pass_obj
@handle_errors
def phase(obj: CliState, phase_id, dry_run, force, force_phases, force_units):
    """Run a single phase. The checkpoint is left alone."""
    orchestrator = obj.orchestrator()
    try:
        report = orchestrator.run_phase(
            phase_id, dry_run=dry_run, force=force_spec(force, force_phases, force_units), verbose=obj.verbose
        )
    except UnitExecutionError as e:
        _echo_failure(e)
        raise
    _echo_report(report)


@click.command("unit")
@click.argument("unit_id")
@run_options
@click.pass_obj
@handle_errors
def unit(obj: CliState, unit_id, dry_run, force, force_phases, force_units):
    """Run a single unit. The checkpoint is left alone."""
    orchestrator = obj.orchestrator()
    try:
        report = orchestrator.run_unit(
            unit_id, dry_run=dry_run, force=force_spec(force, force_phases, force_units), verbose=obj.verbose
        )
    except UnitExecutionError as e:
        _echo_failure(e)
        raise
    _echo_report(report)
