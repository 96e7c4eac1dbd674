"""
Package manager detection and command construction.

Exactly one external package manager is used per process. It is chosen by
probing the candidates in preference order (``pnpm`` then ``npm`` by
default); when none is available installation is impossible and callers
must fail fast.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from bootcore.errors import PackageManagerUnavailableError

logger = logging.getLogger(__name__)

__all__ = ["PackageManager", "detect_package_manager", "SUPPORTED_MANAGERS"]


@dataclass(frozen=True)
class _Dialect:
    install: tuple
    save_flag: str
    dev_flag: str


SUPPORTED_MANAGERS: Dict[str, _Dialect] = {
    "pnpm": _Dialect(install=("add",), save_flag="--save-prod", dev_flag="-D"),
    "npm": _Dialect(install=("install",), save_flag="--save", dev_flag="--save-dev"),
    "yarn": _Dialect(install=("add",), save_flag="", dev_flag="--dev"),
}


@dataclass(frozen=True)
class PackageManager:
    """A resolved package-manager executable."""
    name: str
    executable: str

    @property
    def _dialect(self) -> _Dialect:
        return SUPPORTED_MANAGERS[self.name]

    def _argv(self, targets: Sequence[str], dev: bool) -> List[str]:
        argv = [self.executable, *self._dialect.install]
        flag = self._dialect.dev_flag if dev else self._dialect.save_flag
        if flag:
            argv.append(flag)
        argv.extend(targets)
        return argv

    def add_command(self, specs: Sequence[str], dev: bool = False) -> List[str]:
        """Batched registry install of ``specs``."""
        return self._argv(specs, dev)

    def add_artifact_command(self, artifact: Path, dev: bool = False) -> List[str]:
        """Install one local tarball."""
        return self._argv([str(artifact)], dev)


def detect_package_manager(
    candidates: Sequence[str] = ("pnpm", "npm"),
    which: Callable[[str], Optional[str]] = shutil.which,
) -> PackageManager:
    """
    Return the first available package manager.

    Raises:
        PackageManagerUnavailableError: If no candidate is on PATH
    """
    for name in candidates:
        if name not in SUPPORTED_MANAGERS:
            logger.warning("Unsupported package manager %r ignored", name)
            continue
        path = which(name)
        if path:
            logger.debug("Using package manager %s (%s)", name, path)
            return PackageManager(name=name, executable=path)
        logger.debug("Package manager %s not found", name)
    raise PackageManagerUnavailableError(candidates)
