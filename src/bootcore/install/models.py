"""Data models for package requests and cache entries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

__all__ = ["PackageRequest", "CacheEntry", "InstallReport", "PreflightReport", "parse_version"]

_VERSION_CORE = re.compile(r"^v?(\d+)(?:\.(\d+|x|\*))?(?:\.(\d+|x|\*))?")


def parse_version(text: str) -> Optional[Tuple[int, ...]]:
    """
    Parse the numeric core of a version (``16.0.3-rc.1`` → ``(16, 0, 3)``).

    Wildcard components end the tuple (``15.x`` → ``(15,)``).
    Returns None when the text does not start with a number.
    """
    match = _VERSION_CORE.match(text.strip())
    if not match:
        return None
    parts: List[int] = []
    for group in match.groups():
        if group is None or group in ("x", "*"):
            break
        parts.append(int(group))
    return tuple(parts)


@dataclass(frozen=True)
class PackageRequest:
    """One package the caller wants installed."""
    name: str
    version_constraint: Optional[str] = None
    dev_only: bool = False

    @classmethod
    def parse(cls, token: str, dev_only: bool = False) -> "PackageRequest":
        """
        Parse ``name`` or ``name@constraint``; scoped names keep their ``@``.

        Examples:
            ``zod`` → (zod, None), ``next@15`` → (next, 15),
            ``@types/node@^20`` → (@types/node, ^20)
        """
        token = token.strip()
        if not token:
            raise ValueError("Empty package token")
        at = token.find("@", 1)
        if at == -1:
            return cls(name=token, dev_only=dev_only)
        name, constraint = token[:at], token[at + 1:]
        return cls(name=name, version_constraint=constraint or None, dev_only=dev_only)

    @property
    def spec(self) -> str:
        """Argument form understood by npm-compatible package managers."""
        if self.version_constraint:
            return f"{self.name}@{self.version_constraint}"
        return self.name

    @property
    def cache_stem(self) -> str:
        """Tarball prefix: ``@scope/name`` → ``scope-name`` (npm pack naming)."""
        return self.name.lstrip("@").replace("/", "-")

    def __str__(self) -> str:
        return self.spec


@dataclass(frozen=True)
class CacheEntry:
    """A pre-fetched package artifact found in the cache directory."""
    name: str
    artifact: Path
    version: Optional[str] = None


@dataclass
class InstallReport:
    """Outcome of one installer call."""
    cached: List[str] = field(default_factory=list)
    remote: List[str] = field(default_factory=list)
    verified: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    attempts: int = 1
    manager: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "cached": list(self.cached),
            "remote": list(self.remote),
            "verified": list(self.verified),
            "failed": list(self.failed),
            "attempts": self.attempts,
            "manager": self.manager,
        }


@dataclass
class PreflightReport:
    """Informational cache status for a list of requests."""
    cached: List[Tuple[PackageRequest, CacheEntry]] = field(default_factory=list)
    network: List[PackageRequest] = field(default_factory=list)

    def lines(self) -> List[str]:
        out = []
        for request, entry in self.cached:
            out.append(f"[CACHED]  {request.name} → {entry.artifact.name}")
        for request in self.network:
            out.append(f"[NETWORK] {request.name}")
        out.append(f"Summary: {len(self.cached)} cached, {len(self.network)} require network")
        return out
