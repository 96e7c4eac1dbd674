"""
Centralized configuration for bootcore.

Uses Pydantic BaseSettings for environment variable integration
and validation. All configurable values should be defined here.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (BOOTCORE_*)
3. .env file
4. Default values

Example:
    from bootcore.config import get_config

    config = get_config()
    print(config.state_path)  # <state_dir>/.bootstrap-state

    # Override at runtime
    config = get_config(target_dir="/tmp/my-app", strict_versions=True)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bootcore.contracts.timeouts import (
    DEFAULT_INSTALL_RETRIES,
    DEFAULT_INSTALL_RETRY_DELAY_S,
    DEFAULT_INSTALL_SETTLE_S,
    DEFAULT_INSTALL_TIMEOUT_S,
)


class BootcoreConfig(BaseSettings):
    """
    Central configuration for bootcore.

    All settings can be overridden via environment variables
    prefixed with BOOTCORE_.

    Example:
        export BOOTCORE_TARGET_DIR=./my-app
        export BOOTCORE_INSTALL_RETRIES=5
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOTCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Target project
    target_dir: str = Field(
        default=".",
        description="Root of the project being bootstrapped",
    )

    # State persistence
    state_dir: str = Field(
        default=".bootcore",
        description="Directory holding the state log and checkpoint (relative to target_dir)",
    )
    state_file_name: str = Field(
        default=".bootstrap-state",
        description="File name of the append-only state log",
    )
    checkpoint_file_name: str = Field(
        default=".checkpoint",
        description="File name of the resume checkpoint",
    )

    # Package installation
    cache_dir: str = Field(
        default=".download-cache/npm",
        description="Directory of pre-fetched package tarballs (relative to target_dir)",
    )
    package_managers: List[str] = Field(
        default_factory=lambda: ["pnpm", "npm"],
        description="Package managers in order of preference",
    )
    install_retries: int = Field(
        default=DEFAULT_INSTALL_RETRIES,
        ge=1,
        description="Install attempts before giving up",
    )
    install_retry_delay_s: float = Field(
        default=DEFAULT_INSTALL_RETRY_DELAY_S,
        ge=0,
        description="Fixed delay between install attempts",
    )
    install_settle_s: float = Field(
        default=DEFAULT_INSTALL_SETTLE_S,
        ge=0,
        description="Pause after a successful install",
    )
    install_timeout_s: float = Field(
        default=DEFAULT_INSTALL_TIMEOUT_S,
        gt=0,
        description="Timeout for a single package-manager invocation",
    )
    strict_versions: bool = Field(
        default=False,
        description="Ignore cache entries whose version does not satisfy the request",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for bootcore",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format",
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for per-run log files (disabled when unset)",
    )

    # Tracing
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP gRPC endpoint for trace export (disabled when unset)",
    )

    @field_validator("target_dir", "state_dir", "cache_dir", "log_dir")
    @classmethod
    def expand_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ and environment variables in paths."""
        if v is None:
            return v
        return os.path.expanduser(os.path.expandvars(v))

    @field_validator("package_managers")
    @classmethod
    def require_manager(cls, v: List[str]) -> List[str]:
        """At least one package manager must be listed."""
        if not v:
            raise ValueError("package_managers must not be empty")
        return v

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        if p.is_absolute():
            return p
        return Path(self.target_dir) / p

    @property
    def state_path(self) -> Path:
        """Full path of the state log."""
        return self._resolve(self.state_dir) / self.state_file_name

    @property
    def checkpoint_path(self) -> Path:
        """Full path of the checkpoint file."""
        return self._resolve(self.state_dir) / self.checkpoint_file_name

    @property
    def cache_path(self) -> Path:
        """Full path of the package cache directory."""
        return self._resolve(self.cache_dir)


# Global singleton
_config: Optional[BootcoreConfig] = None


def get_config(**overrides) -> BootcoreConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        BootcoreConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = BootcoreConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
