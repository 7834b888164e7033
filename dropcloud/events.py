"""Algebraic Data Type (ADT) for dropcloud lifecycle events.

Events cover the whole life of a worker:
- Admission: DropletProvisioning, DropletCreated, CapacityReached
- Setup: BootstrapStarting, BootstrapProgress, BootstrapCompleted, BootstrapFailed
- Teardown: WorkerReclaimed, DestroyRequested, DropletDestroyed
- Errors: Error

Consumers pattern-match on them:

    match event:
        case DropletCreated(name=name, droplet_id=id):
            print(f"{name} is droplet {id}")
        case BootstrapFailed(name=name, reason=reason):
            alert(name, reason)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

# =============================================================================
# Admission Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class DropletProvisioning:
    """A worker was planned and its droplet is about to be created."""

    cloud: str
    template: str
    name: str


@dataclass(frozen=True, slots=True)
class DropletCreated:
    """The provider accepted the droplet creation."""

    cloud: str
    name: str
    droplet_id: int


@dataclass(frozen=True, slots=True)
class CapacityReached:
    """Provisioning stopped because the pool is at its cap."""

    cloud: str
    local: int
    remote: int
    cap: int


# =============================================================================
# Setup Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class BootstrapStarting:
    """Bootstrap starting on a worker."""

    name: str
    droplet_id: int


@dataclass(frozen=True, slots=True)
class BootstrapProgress:
    """Bootstrap moved to a new state."""

    name: str
    state: str


@dataclass(frozen=True, slots=True)
class BootstrapCompleted:
    """The agent is running and its channel was handed off."""

    name: str
    duration: float


@dataclass(frozen=True, slots=True)
class BootstrapFailed:
    """Bootstrap gave up; the worker is removed and its droplet destroyed."""

    name: str
    reason: str


# =============================================================================
# Teardown Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class WorkerReclaimed:
    """The retention policy removed an idle worker."""

    name: str
    mode: str


@dataclass(frozen=True, slots=True)
class DestroyRequested:
    """A droplet was queued for deletion."""

    droplet_id: int


@dataclass(frozen=True, slots=True)
class DropletDestroyed:
    """A queued droplet is confirmed gone."""

    droplet_id: int
    already_gone: bool = False


# =============================================================================
# Error Events
# =============================================================================


@dataclass(frozen=True, slots=True)
class Error:
    """Error occurred."""

    message: str
    name: str | None = None


# =============================================================================
# Union Type (ADT)
# =============================================================================

DropcloudEvent = (
    DropletProvisioning
    | DropletCreated
    | CapacityReached
    | BootstrapStarting
    | BootstrapProgress
    | BootstrapCompleted
    | BootstrapFailed
    | WorkerReclaimed
    | DestroyRequested
    | DropletDestroyed
    | Error
)

EventCallback = Callable[[DropcloudEvent], None] | None


__all__ = [
    # Admission
    "DropletProvisioning",
    "DropletCreated",
    "CapacityReached",
    # Setup
    "BootstrapStarting",
    "BootstrapProgress",
    "BootstrapCompleted",
    "BootstrapFailed",
    # Teardown
    "WorkerReclaimed",
    "DestroyRequested",
    "DropletDestroyed",
    # Errors
    "Error",
    # Union type
    "DropcloudEvent",
    "EventCallback",
]
