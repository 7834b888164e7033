"""Custom exception hierarchy for dropcloud.

All dropcloud-specific exceptions inherit from DropcloudError, enabling
callers to catch every library failure with a single except clause.
"""

from __future__ import annotations


class DropcloudError(Exception):
    """Base exception for all dropcloud errors."""


class ConfigurationError(DropcloudError, ValueError):
    """Raised for invalid configuration or missing required settings."""


class DigitalOceanError(DropcloudError):
    """Error from the DigitalOcean API."""


class BootstrapError(DropcloudError):
    """Raised when a droplet could not be turned into a connected worker."""


class BootstrapTimeoutError(BootstrapError, TimeoutError):
    """Raised when SSH did not become available before the pool deadline."""

    def __init__(self, elapsed: float, limit: float) -> None:
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(
            f"Timed out after {int(elapsed)} seconds of waiting for ssh to become "
            f"available (max timeout configured is {int(limit)})"
        )


class AuthenticationError(BootstrapError):
    """Raised when the droplet rejects the pool's private key."""


class InitScriptError(BootstrapError):
    """Raised when the template's init script exits non-zero."""

    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(f"init script failed: exit code={exit_code}")


class RuntimeInstallError(BootstrapError):
    """Raised when no package manager could install the agent runtime."""


class DropletStateError(BootstrapError):
    """Raised when a droplet reaches a status it will not recover from."""

    def __init__(self, droplet_id: int, status: str) -> None:
        self.droplet_id = droplet_id
        self.status = status
        super().__init__(f"Droplet {droplet_id} has unexpected status: {status}")


class LabelExpressionError(DropcloudError, ValueError):
    """Raised when a label expression cannot be parsed."""
