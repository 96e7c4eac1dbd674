"""
Cache-first package installation.

Wraps an npm-compatible package manager with a local artifact cache, batched
registry installs, post-install verification and a fixed-delay retry loop.

Example:
    from bootcore.install import DependencyInstaller, PackageCache, PackageRequest

    installer = DependencyInstaller(
        target_dir=Path("./my-app"),
        cache=PackageCache(Path("./.download-cache/npm")),
    )
    installer.install_with_retry([PackageRequest("zod"), PackageRequest.parse("vitest@^2", dev_only=True)])
"""

from bootcore.install.cache import PackageCache, satisfies
from bootcore.install.installer import DependencyInstaller, RetryPolicy
from bootcore.install.manager import PackageManager, detect_package_manager
from bootcore.install.models import CacheEntry, InstallReport, PackageRequest, PreflightReport

__all__ = [
    "CacheEntry",
    "DependencyInstaller",
    "InstallReport",
    "PackageCache",
    "PackageManager",
    "PackageRequest",
    "PreflightReport",
    "RetryPolicy",
    "detect_package_manager",
    "satisfies",
]
