"""
Local package cache lookup.

The cache is a flat directory of tarballs named ``<name>-<version>.tgz``
(scoped packages flatten ``@scope/name`` to ``scope-name``), populated out of
band. Lookups go by name only and entries are trusted as-is: no checksum is
verified.

By default a cache hit wins regardless of the requested version constraint.
With ``strict_versions`` a cached version that does not satisfy the
constraint is treated as a miss, and the package is fetched remotely.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from bootcore.install.models import CacheEntry, PackageRequest, PreflightReport, parse_version

logger = logging.getLogger(__name__)

__all__ = ["PackageCache", "satisfies"]

ARTIFACT_SUFFIX = ".tgz"


def _pad(parts: Tuple[int, ...], width: int = 3) -> Tuple[int, ...]:
    return tuple(parts) + (0,) * (width - len(parts))


def satisfies(version: str, constraint: Optional[str]) -> bool:
    """
    Check a version against an npm-style constraint.

    Supports the forms bootstrap plans use: empty/``*``/``latest``, exact
    (``1.2.3``), partial (``15``, ``15.1``, ``15.x``), caret (``^1.2``),
    tilde (``~1.2.3``) and single comparators (``>=``, ``>``, ``<=``, ``<``).
    Anything else (unions, hyphen ranges, dist-tags) is reported as not
    satisfied so strict mode falls back to the registry.
    """
    if constraint is None:
        return True
    constraint = constraint.strip()
    if constraint in ("", "*", "x", "latest"):
        return True
    if any(c in constraint for c in " |"):
        return False

    have = parse_version(version)
    if not have:
        return False
    have3 = _pad(have)

    for op in (">=", "<=", ">", "<"):
        if constraint.startswith(op):
            want = parse_version(constraint[len(op):])
            if not want:
                return False
            want3 = _pad(want)
            return {
                ">=": have3 >= want3,
                "<=": have3 <= want3,
                ">": have3 > want3,
                "<": have3 < want3,
            }[op]

    if constraint.startswith("^"):
        want = parse_version(constraint[1:])
        if not want:
            return False
        want3 = _pad(want)
        if have3 < want3:
            return False
        # Leftmost non-zero component is locked.
        if want3[0] != 0 or len(want) == 1:
            return have3[0] == want3[0]
        if want3[1] != 0 or len(want) == 2:
            return have3[:2] == want3[:2]
        return have3 == want3

    if constraint.startswith("~"):
        want = parse_version(constraint[1:])
        if not want:
            return False
        want3 = _pad(want)
        if have3 < want3:
            return False
        if len(want) == 1:
            return have3[0] == want3[0]
        return have3[:2] == want3[:2]

    want = parse_version(constraint.lstrip("="))
    if not want:
        return False
    # Partial versions match as a prefix; full versions exactly.
    return have3[: len(want)] == tuple(want)


class PackageCache:
    """Naming-convention lookup against a cache directory."""

    def __init__(self, cache_dir: Path, strict_versions: bool = False):
        self.cache_dir = Path(cache_dir)
        self.strict_versions = strict_versions

    def _candidates(self, request: PackageRequest) -> List[CacheEntry]:
        if not self.cache_dir.is_dir():
            return []
        prefix = f"{request.cache_stem}-"
        entries = []
        for artifact in self.cache_dir.glob(f"{prefix}*{ARTIFACT_SUFFIX}"):
            if not artifact.is_file():
                continue
            version = artifact.name[len(prefix):-len(ARTIFACT_SUFFIX)]
            # "react-dom-18.2.0.tgz" must not match "react".
            if not version[:1].isdigit():
                continue
            entries.append(CacheEntry(name=request.name, artifact=artifact, version=version))
        entries.sort(key=lambda e: (_pad(parse_version(e.version or "") or ()), e.artifact.name), reverse=True)
        return entries

    def find(self, request: PackageRequest) -> Optional[CacheEntry]:
        """
        Newest cached artifact for the request, or None.

        In strict mode the newest artifact satisfying the constraint.
        """
        candidates = self._candidates(request)
        if not candidates:
            return None
        if not self.strict_versions:
            return candidates[0]
        for entry in candidates:
            if satisfies(entry.version or "", request.version_constraint):
                return entry
        logger.info(
            "Cache has %s but none satisfies %r (strict mode)",
            request.name,
            request.version_constraint,
        )
        return None

    def entries(self) -> List[Path]:
        """All cached artifacts, sorted by name."""
        if not self.cache_dir.is_dir():
            return []
        return sorted(p for p in self.cache_dir.glob(f"*{ARTIFACT_SUFFIX}") if p.is_file())

    def preflight(self, requests: Iterable[PackageRequest]) -> PreflightReport:
        """Report which requests would be served from cache. Never fails."""
        report = PreflightReport()
        for request in requests:
            entry = self.find(request)
            if entry is not None:
                report.cached.append((request, entry))
            else:
                report.network.append(request)
        return report
