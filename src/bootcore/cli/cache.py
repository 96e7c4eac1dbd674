"""bootcore CLI - Package cache commands."""

from __future__ import annotations

import click

from bootcore.cli._common import CliState, handle_errors
from bootcore.install import DependencyInstaller, PackageCache, PackageRequest


@click.group()
def cache():
    """Inspect the local package cache."""
    pass


@cache.command("list")
@click.pass_obj
def cache_list(obj: CliState):
    """List cached package artifacts."""
    config = obj.config
    entries = PackageCache(config.cache_path).entries()
    if not entries:
        click.echo(f"No cached packages in {config.cache_path}")
        return
    for artifact in entries:
        size_kb = artifact.stat().st_size / 1024
        click.echo(f"  {artifact.name}  ({size_kb:.0f} KB)")
    click.echo(f"\n{len(entries)} artifact(s) in {config.cache_path}")


@cache.command("preflight")
@click.argument("packages", nargs=-1)
@click.option("--dev", is_flag=True, help="Treat PACKAGES as dev dependencies")
@click.pass_obj
@handle_errors
def cache_preflight(obj: CliState, packages, dev):
    """Report which packages would come from cache or the network.

    With no PACKAGES, checks every package the plan requires.
    """
    config = obj.config
    if packages:
        requests = [PackageRequest.parse(p, dev_only=dev) for p in packages]
    else:
        requests = obj.plan().packages()

    report = DependencyInstaller.from_config(config).preflight(requests)
    click.echo(f"Package preflight ({config.cache_path}):")
    for line in report.lines():
        if line.startswith("[CACHED]"):
            click.echo("  " + click.style(line, fg="green"))
        elif line.startswith("[NETWORK]"):
            click.echo("  " + click.style(line, fg="yellow"))
        else:
            click.echo(line)
