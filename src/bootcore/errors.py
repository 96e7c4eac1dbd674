"""
Error taxonomy for bootcore.

- StorageError: state or checkpoint cannot be read or written. Fatal.
- UnitExecutionError: a unit of work failed. Halts the run.
- PackageInstallError: packages failed to install after all attempts.
- VerificationError: packages reported installed but missing on disk.
  Subclass of PackageInstallError, handled identically.
- PackageManagerUnavailableError: no supported package manager on PATH.
- PlanError: the phase plan is malformed or a target does not exist.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

__all__ = [
    "BootcoreError",
    "StorageError",
    "UnitExecutionError",
    "PackageInstallError",
    "VerificationError",
    "PackageManagerUnavailableError",
    "PlanError",
]


class BootcoreError(Exception):
    """Base class for all bootcore errors."""


class StorageError(BootcoreError):
    """Raised when durable state cannot be read or written."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Storage failure at {path}: {reason}")


class UnitExecutionError(BootcoreError):
    """Raised when a unit of work fails and the run halts."""

    def __init__(
        self,
        unit_id: str,
        phase_id: str,
        diagnostic: Optional[str] = None,
        report=None,
    ):
        self.unit_id = unit_id
        self.phase_id = phase_id
        self.diagnostic = diagnostic
        self.report = report
        message = f"Unit {unit_id} (phase {phase_id}) failed"
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(message)


class PackageInstallError(BootcoreError):
    """Raised when one or more packages could not be installed."""

    def __init__(self, failed: Sequence[str], detail: str = ""):
        self.failed: List[str] = list(failed)
        self.detail = detail
        message = f"Failed to install: {', '.join(self.failed)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class VerificationError(PackageInstallError):
    """Raised when installed packages are missing from the install location."""


class PackageManagerUnavailableError(BootcoreError):
    """Raised when none of the supported package managers is available."""

    def __init__(self, candidates: Sequence[str]):
        self.candidates = list(candidates)
        super().__init__(
            "Package manager not available. "
            f"Install one of: {', '.join(self.candidates)}"
        )


class PlanError(BootcoreError):
    """Raised for invalid plans or unknown phase/unit targets."""
