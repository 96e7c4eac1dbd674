"""
bootcore CLI - Resumable, phase-ordered project bootstrapping.

Commands:
    bootcore run            Run all phases from the last checkpoint
    bootcore phase          Run a single phase
    bootcore unit           Run a single unit
    bootcore list           List phases and units
    bootcore status         Show progress
    bootcore reset          Forget recorded progress
    bootcore cache          Inspect the package cache (list, preflight)
"""

import click

from bootcore import __version__
from bootcore.config import get_config
from bootcore.logger import configure_logging
from bootcore.telemetry import configure_tracing, flush_tracing

from ._common import CliState
from .cache import cache
from .run import phase, run, unit
from .status import list_plan, reset, status


@click.group()
@click.version_option(version=__version__, prog_name="bootcore")
@click.option(
    "--target",
    "-t",
    type=click.Path(file_okay=False),
    default=None,
    help="Project directory to bootstrap (default: current directory)",
)
@click.option("--state-dir", default=None, help="Where state and checkpoint live (relative to target)")
@click.option(
    "--plan",
    "plan_ref",
    envvar="BOOTCORE_PLAN",
    default=None,
    metavar="MODULE:CALLABLE",
    help="Plan factory, e.g. myproject.bootstrap:build_plan",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None, help="Log output format")
@click.option("--log-dir", type=click.Path(file_okay=False), default=None, help="Write a per-run log file here")
@click.option(
    "--otlp-endpoint",
    envvar="OTEL_EXPORTER_OTLP_ENDPOINT",
    default=None,
    help="Export traces to this OTLP gRPC endpoint",
)
@click.pass_context
def main(ctx, target, state_dir, plan_ref, verbose, log_format, log_dir, otlp_endpoint):
    """bootcore - Build a project environment in resumable phases."""
    overrides = {
        key: value
        for key, value in {
            "target_dir": target,
            "state_dir": state_dir,
            "log_format": log_format,
            "log_dir": log_dir,
            "otlp_endpoint": otlp_endpoint,
        }.items()
        if value is not None
    }
    if verbose:
        overrides["log_level"] = "debug"
    config = get_config(**overrides)

    log_path = configure_logging(config.log_level, config.log_format, config.log_dir)
    if log_path and verbose:
        click.echo(f"Logging to {log_path}", err=True)

    if config.otlp_endpoint:
        configure_tracing(config.otlp_endpoint)
        ctx.call_on_close(flush_tracing)

    ctx.obj = CliState(config=config, plan_ref=plan_ref, verbose=verbose)


main.add_command(run)
main.add_command(phase)
main.add_command(unit)
main.add_command(list_plan)
main.add_command(status)
main.add_command(reset)
main.add_command(cache)


if __name__ == "__main__":
    main()
