"""
Shared contracts for bootcore.

Constants used by the installer, unit commands and telemetry so that the
defaults stay consistent with BootcoreConfig.
"""

from bootcore.contracts.timeouts import (
    DEFAULT_INSTALL_RETRIES,
    DEFAULT_INSTALL_RETRY_DELAY_S,
    DEFAULT_INSTALL_SETTLE_S,
    DEFAULT_INSTALL_TIMEOUT_S,
    OTEL_FLUSH_TIMEOUT_MS,
    UNIT_COMMAND_TIMEOUT_S,
)

__all__ = [
    "DEFAULT_INSTALL_RETRIES",
    "DEFAULT_INSTALL_RETRY_DELAY_S",
    "DEFAULT_INSTALL_SETTLE_S",
    "DEFAULT_INSTALL_TIMEOUT_S",
    "OTEL_FLUSH_TIMEOUT_MS",
    "UNIT_COMMAND_TIMEOUT_S",
]
