"""Centralized constants and enums for dropcloud.

All magic strings, remote paths, and default timings live here so the
admission, bootstrap and teardown code agree on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Droplet States
# =============================================================================


class DropletStatus(StrEnum):
    """Droplet lifecycle status as reported by the DigitalOcean API."""

    NEW = "new"
    ACTIVE = "active"
    OFF = "off"
    ARCHIVE = "archive"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> DropletStatus:
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def occupies_capacity(self) -> bool:
        """Whether a droplet in this status counts against instance caps."""
        return self in (DropletStatus.NEW, DropletStatus.ACTIVE, DropletStatus.UNKNOWN)


class NetworkType(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


# =============================================================================
# Naming
# =============================================================================

DROPLET_PREFIX: Final = "jenkins"

# =============================================================================
# Pool Defaults
# =============================================================================

DEFAULT_TIMEOUT_MINUTES: Final = 5
DEFAULT_CONNECTION_RETRY_WAIT: Final = 10
SSH_CONNECT_TIMEOUT: Final = 10.0

# =============================================================================
# Template Defaults
# =============================================================================

DEFAULT_USERNAME: Final = "root"
DEFAULT_WORKSPACE: Final = "/jenkins"
DEFAULT_SSH_PORT: Final = 22
DEFAULT_NUM_EXECUTORS: Final = 1
DEFAULT_IDLE_TERMINATION_MINUTES: Final = 10

# =============================================================================
# Remote Paths
# =============================================================================

INIT_MARKER: Final = "~/.hudson-run-init"
INIT_SCRIPT_DIR: Final = "/tmp"
INIT_SCRIPT_NAME: Final = "init.sh"
AGENT_DIR: Final = "/tmp"
AGENT_NAME: Final = "agent.jar"
CLOUD_INIT_DONE: Final = "/var/lib/cloud/instance/boot-finished"

# =============================================================================
# Runtime
# =============================================================================

RUNTIME_PROBE: Final = "java -fullversion"
RUNTIME_VERSIONS: Final = ("21", "17", "11")

# =============================================================================
# Timings
# =============================================================================

DESTROY_RETRY_SECONDS: Final = 10.0
SHORT_CHECK_CYCLE: Final = 6.0
LONG_CHECK_CYCLE: Final = 60.0
