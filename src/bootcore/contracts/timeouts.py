"""
Timeout and retry constants for bootcore.

Defaults for the installer retry policy and subprocess bounds live here;
BootcoreConfig exposes the install values as overridable settings.
"""

from __future__ import annotations

# =============================================================================
# Package Installation
# =============================================================================

# Number of install attempts before giving up
DEFAULT_INSTALL_RETRIES = 3

# Fixed delay between failed install attempts (not exponential)
DEFAULT_INSTALL_RETRY_DELAY_S = 2.0

# Pause after a successful install so the package manager releases its locks
DEFAULT_INSTALL_SETTLE_S = 2.0

# Upper bound for a single package-manager invocation
DEFAULT_INSTALL_TIMEOUT_S = 600.0

# =============================================================================
# Unit Commands
# =============================================================================

# Default timeout for unit commands (None means wait for exit)
UNIT_COMMAND_TIMEOUT_S = None

# =============================================================================
# OTel Provider Timeouts
# =============================================================================

# Timeout for force_flush on the TracerProvider before exit
OTEL_FLUSH_TIMEOUT_MS = 5000
