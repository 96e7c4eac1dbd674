"""
bootcore - Resumable, phase-ordered environment bootstrapping.

A bootstrap plan is an ordered list of phases, each an ordered list of
idempotent units of work. bootcore runs the plan against an append-only state
log so interrupted or failed runs resume where they stopped, and installs the
packages units need from a local artifact cache before falling back to the
registry.

Example usage:
    from bootcore import PlanBuilder, build_orchestrator

    plan = (
        PlanBuilder()
        .phase("foundation", "Project Foundation")
        .command("foundation/init-nextjs", "bash scripts/init-nextjs.sh", creates="package.json")
        .build()
    )
    build_orchestrator(plan).run()
"""

__version__ = "0.1.0"
__all__ = [
    "PlanBuilder",
    "PhaseOrchestrator",
    "ForceSpec",
    "FileStateStore",
    "CheckpointManager",
    "DependencyInstaller",
    "PackageRequest",
    "UnitResult",
    "ExecutionContext",
    "BaseUnit",
    "CommandUnit",
    "FunctionUnit",
    "build_orchestrator",
    "__version__",
]


def build_orchestrator(plan, config=None):
    """Wire a PhaseOrchestrator from configuration (defaults to get_config())."""
    from pathlib import Path

    from bootcore.checkpoint import CheckpointManager
    from bootcore.config import get_config
    from bootcore.install import DependencyInstaller
    from bootcore.orchestrator import PhaseOrchestrator
    from bootcore.state import FileStateStore

    config = config or get_config()
    return PhaseOrchestrator(
        plan=plan,
        state=FileStateStore(config.state_path),
        checkpoint=CheckpointManager(config.checkpoint_path),
        installer=DependencyInstaller.from_config(config),
        target_dir=Path(config.target_dir),
    )


# Lazy imports so ``bootcore --help`` does not pay for the whole package
def __getattr__(name: str):
    if name in ("PlanBuilder", "PhaseOrchestrator", "ForceSpec"):
        from bootcore import orchestrator
        return getattr(orchestrator, name)
    if name == "FileStateStore":
        from bootcore.state import FileStateStore
        return FileStateStore
    if name == "CheckpointManager":
        from bootcore.checkpoint import CheckpointManager
        return CheckpointManager
    if name in ("DependencyInstaller", "PackageRequest"):
        from bootcore import install
        return getattr(install, name)
    if name in ("UnitResult", "ExecutionContext", "BaseUnit", "CommandUnit", "FunctionUnit"):
        from bootcore import unit
        return getattr(unit, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
