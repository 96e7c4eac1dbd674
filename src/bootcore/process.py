"""Subprocess execution with consistent logging and timeouts."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

__all__ = ["CommandResult", "CommandRunner", "run_command", "format_argv"]

# Exit codes used when the process never produced one
TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True)
class CommandResult:
    argv: list
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self, limit: int = 2000) -> str:
        """Best human-readable explanation of a failure."""
        text = (self.stderr or self.stdout or "").strip()
        if len(text) > limit:
            text = "..." + text[-limit:]
        return text or f"exit code {self.returncode}"


class CommandRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        ...


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(a)) for a in argv)


def run_command(
    argv: Sequence[str],
    *,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run a command, capturing output.

    Never raises for a failing command: a timeout maps to exit code 124 and
    a missing executable to 127, so callers handle every failure through the
    returned result.
    """
    argv_list = [str(a) for a in argv]
    logger.info("CMD %s", format_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(os.environ, **(env or {})),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.error("Command timed out after %ss: %s", timeout, format_argv(argv_list))
        return CommandResult(argv_list, TIMEOUT_EXIT_CODE, "", f"timed out after {timeout}s")
    except FileNotFoundError as e:
        logger.error("Command not found: %s", argv_list[0])
        return CommandResult(argv_list, NOT_FOUND_EXIT_CODE, "", str(e))

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())
    if p.returncode != 0:
        logger.warning("Command failed (%d): %s", p.returncode, format_argv(argv_list))

    return CommandResult(argv_list, p.returncode, p.stdout, p.stderr)
