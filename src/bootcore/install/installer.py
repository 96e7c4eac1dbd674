"""
Cache-first dependency installer.

install() runs in five steps:

1. Partition requests into cached (artifact found locally) and remote.
2. Install every cached artifact one at a time. A failure is recorded and
   the remaining artifacts are still attempted.
3. Install remote requests in one batched package-manager invocation per
   dependency group (regular, dev).
4. Verify every requested package exists under ``<target>/node_modules``.
5. Raise one PackageInstallError naming every failed package, if any.

install_with_retry() wraps install() with a fixed delay between attempts and
a settle pause after success, so the package manager releases its file locks
before the next unit starts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.trace import Status as SpanStatus, StatusCode

from bootcore.contracts.timeouts import (
    DEFAULT_INSTALL_RETRIES,
    DEFAULT_INSTALL_RETRY_DELAY_S,
    DEFAULT_INSTALL_SETTLE_S,
    DEFAULT_INSTALL_TIMEOUT_S,
)
from bootcore.errors import PackageInstallError, VerificationError
from bootcore.install.cache import PackageCache
from bootcore.install.manager import PackageManager, detect_package_manager
from bootcore.install.models import CacheEntry, InstallReport, PackageRequest, PreflightReport
from bootcore.process import CommandRunner, run_command

logger = logging.getLogger(__name__)

__all__ = ["RetryPolicy", "DependencyInstaller"]


@dataclass(frozen=True)
class RetryPolicy:
    """
    How install_with_retry() retries.

    The delay is fixed, not exponential. timeout_s bounds each
    package-manager invocation so a hung install cannot stall the run.
    """
    attempts: int = DEFAULT_INSTALL_RETRIES
    delay_s: float = DEFAULT_INSTALL_RETRY_DELAY_S
    settle_s: float = DEFAULT_INSTALL_SETTLE_S
    timeout_s: float = DEFAULT_INSTALL_TIMEOUT_S

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            attempts=config.install_retries,
            delay_s=config.install_retry_delay_s,
            settle_s=config.install_settle_s,
            timeout_s=config.install_timeout_s,
        )


def _dedupe(requests: Sequence[PackageRequest]) -> List[PackageRequest]:
    """First request per package name wins."""
    seen: Dict[str, PackageRequest] = {}
    for request in requests:
        if request.name in seen:
            if seen[request.name] != request:
                logger.warning("Duplicate request for %s ignored: %s", request.name, request)
            continue
        seen[request.name] = request
    return list(seen.values())


class DependencyInstaller:
    """
    Installs packages into a target project, preferring cached artifacts.

    Args:
        target_dir: Project root (where node_modules lives)
        cache: Local artifact cache
        manager: Package manager to use; probed lazily when None
        candidates: Package managers to probe, in preference order
        runner: Command runner (injectable for tests)
        policy: Default retry policy
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        target_dir: Path,
        cache: PackageCache,
        manager: Optional[PackageManager] = None,
        candidates: Sequence[str] = ("pnpm", "npm"),
        runner: CommandRunner = run_command,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.target_dir = Path(target_dir)
        self.cache = cache
        self._manager = manager
        self._candidates = tuple(candidates)
        self._runner = runner
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._tracer = trace.get_tracer("bootcore.install")

    @classmethod
    def from_config(cls, config, **kwargs) -> "DependencyInstaller":
        return cls(
            target_dir=Path(config.target_dir),
            cache=PackageCache(config.cache_path, strict_versions=config.strict_versions),
            candidates=config.package_managers,
            policy=RetryPolicy.from_config(config),
            **kwargs,
        )

    @property
    def manager(self) -> PackageManager:
        """The package manager, probed on first use."""
        if self._manager is None:
            self._manager = detect_package_manager(self._candidates)
            logger.info("Package manager: %s", self._manager.name)
        return self._manager

    # -- planning -----------------------------------------------------------

    def partition(
        self, requests: Sequence[PackageRequest]
    ) -> Tuple[List[Tuple[PackageRequest, CacheEntry]], List[PackageRequest]]:
        """Split requests into (cached, remote). Cache wins when both could serve."""
        cached: List[Tuple[PackageRequest, CacheEntry]] = []
        remote: List[PackageRequest] = []
        for request in _dedupe(requests):
            entry = self.cache.find(request)
            if entry is not None:
                cached.append((request, entry))
            else:
                remote.append(request)
        return cached, remote

    def preflight(self, requests: Sequence[PackageRequest]) -> PreflightReport:
        return self.cache.preflight(_dedupe(requests))

    # -- verification -------------------------------------------------------

    def verify(self, name: str) -> bool:
        """True if the package is present in the target's node_modules."""
        return (self.target_dir / "node_modules" / name).is_dir()

    # -- installation -------------------------------------------------------

    def _run(self, argv: List[str], timeout_s: float):
        return self._runner(argv, cwd=self.target_dir, timeout=timeout_s)

    def install(self, requests: Sequence[PackageRequest], timeout_s: Optional[float] = None) -> InstallReport:
        """
        Install requests once (no retry).

        Returns:
            InstallReport when every package installed and verified

        Raises:
            PackageInstallError: Listing every failed package
            VerificationError: When the only failures are missing packages
            PackageManagerUnavailableError: When no package manager exists
        """
        report = InstallReport()
        if not requests:
            return report

        timeout_s = timeout_s if timeout_s is not None else self.policy.timeout_s
        manager = self.manager
        report.manager = manager.name

        cached, remote = self.partition(requests)
        install_failed: List[str] = []

        for request, entry in cached:
            logger.info("Installing from cache: %s", entry.artifact.name)
            result = self._run(manager.add_artifact_command(entry.artifact, dev=request.dev_only), timeout_s)
            if result.ok:
                report.cached.append(request.name)
            else:
                logger.error("Failed to install %s from cache: %s", entry.artifact.name, result.diagnostic())
                install_failed.append(request.name)

        for dev in (False, True):
            group = [r for r in remote if r.dev_only == dev]
            if not group:
                continue
            specs = [r.spec for r in group]
            logger.info("Installing %sfrom network: %s", "dev deps " if dev else "", " ".join(specs))
            result = self._run(manager.add_command(specs, dev=dev), timeout_s)
            if result.ok:
                report.remote.extend(r.name for r in group)
            else:
                logger.error("Failed network install: %s: %s", " ".join(specs), result.diagnostic())
                install_failed.extend(r.name for r in group)

        missing: List[str] = []
        for request, _ in cached:
            self._verify_into(request.name, install_failed, missing, report)
        for request in remote:
            self._verify_into(request.name, install_failed, missing, report)

        report.failed = install_failed + missing
        if install_failed:
            raise PackageInstallError(report.failed)
        if missing:
            raise VerificationError(missing, "not found after install")

        logger.info("All packages installed successfully (%d cached, %d remote)", len(report.cached), len(report.remote))
        return report

    def _verify_into(self, name: str, install_failed: List[str], missing: List[str], report: InstallReport) -> None:
        if name in install_failed:
            return
        if self.verify(name):
            report.verified.append(name)
        else:
            logger.error("Package %s missing from %s", name, self.target_dir / "node_modules")
            missing.append(name)

    def install_with_retry(
        self,
        requests: Sequence[PackageRequest],
        policy: Optional[RetryPolicy] = None,
    ) -> InstallReport:
        """
        Call install() up to ``policy.attempts`` times.

        PackageManagerUnavailableError is not retried.

        Raises:
            PackageInstallError: The last attempt's error when all attempts fail
        """
        policy = policy or self.policy
        if not requests:
            return InstallReport(attempts=0)

        with self._tracer.start_as_current_span("bootstrap.install") as span:
            span.set_attribute("bootstrap.install.packages", [r.spec for r in requests])
            last_error: Optional[PackageInstallError] = None
            for attempt in range(1, policy.attempts + 1):
                try:
                    report = self.install(requests, timeout_s=policy.timeout_s)
                except PackageInstallError as e:
                    last_error = e
                    logger.warning("Install attempt %d/%d failed for: %s", attempt, policy.attempts, ", ".join(e.failed))
                    if attempt < policy.attempts:
                        self._sleep(policy.delay_s)
                    continue
                report.attempts = attempt
                span.set_attribute("bootstrap.install.attempts", attempt)
                if policy.settle_s > 0:
                    self._sleep(policy.settle_s)
                return report

            span.set_attribute("bootstrap.install.attempts", policy.attempts)
            span.set_status(SpanStatus(StatusCode.ERROR, str(last_error)))
            raise last_error
