"""dropcloud - Elastic DigitalOcean worker pools for build orchestrators.

Example:

    from dropcloud import DestroyWorker, DropletCloud, InMemoryRegistry, resolve_cloud
    from dropcloud.host import file_payload

    registry = InMemoryRegistry()
    destroyer = DestroyWorker()
    cloud = DropletCloud(
        resolve_cloud("do1"),
        registry=registry,
        destroyer=destroyer,
        payload=file_payload("agent.jar"),
    )

    for planned in cloud.provision("linux && docker", 2):
        node = planned.future.result()
"""

# Logging setup (disables the library logger until configured)
from dropcloud.logging import LogConfig, setup_logging, teardown_logging

# Callback system
from dropcloud.callback import Callback, compose, emit, only, submit, use_callback

# Admission
from dropcloud.cloud import DropletCloud, PlannedNode

# Configuration
from dropcloud.config import load_config, resolve_cloud, resolve_clouds

# Provider
from dropcloud.client import DigitalOceanGateway

# Teardown
from dropcloud.destroyer import DestroyWorker

# Events (ADT)
from dropcloud.events import (
    BootstrapCompleted,
    BootstrapFailed,
    BootstrapProgress,
    BootstrapStarting,
    CapacityReached,
    DestroyRequested,
    DropcloudEvent,
    DropletCreated,
    DropletDestroyed,
    DropletProvisioning,
    Error,
    WorkerReclaimed,
)

# Errors
from dropcloud.exceptions import (
    AuthenticationError,
    BootstrapError,
    BootstrapTimeoutError,
    ConfigurationError,
    DigitalOceanError,
    DropcloudError,
    DropletStateError,
    InitScriptError,
    LabelExpressionError,
    RuntimeInstallError,
)

# Host interfaces
from dropcloud.host import InMemoryRegistry, NodeRegistry

# Bootstrap
from dropcloud.launcher import BootstrapLauncher, BootstrapState

# Reclamation
from dropcloud.retention import RetentionMode, RetentionMonitor, RetentionStrategy

# Types
from dropcloud.types import CloudConfig, Droplet, SlaveTemplate, WorkerComputer, WorkerNode

__version__ = "0.1.0"

__all__ = [
    # Admission
    "DropletCloud",
    "PlannedNode",
    # Bootstrap
    "BootstrapLauncher",
    "BootstrapState",
    # Reclamation
    "RetentionMode",
    "RetentionMonitor",
    "RetentionStrategy",
    # Teardown
    "DestroyWorker",
    # Provider
    "DigitalOceanGateway",
    # Host
    "InMemoryRegistry",
    "NodeRegistry",
    # Types
    "CloudConfig",
    "Droplet",
    "SlaveTemplate",
    "WorkerComputer",
    "WorkerNode",
    # Configuration
    "load_config",
    "resolve_cloud",
    "resolve_clouds",
    # Logging
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    # Callback system
    "Callback",
    "compose",
    "emit",
    "only",
    "submit",
    "use_callback",
    # Events (ADT)
    "DropcloudEvent",
    "DropletProvisioning",
    "DropletCreated",
    "CapacityReached",
    "BootstrapStarting",
    "BootstrapProgress",
    "BootstrapCompleted",
    "BootstrapFailed",
    "WorkerReclaimed",
    "DestroyRequested",
    "DropletDestroyed",
    "Error",
    # Errors
    "DropcloudError",
    "ConfigurationError",
    "LabelExpressionError",
    "DigitalOceanError",
    "BootstrapError",
    "BootstrapTimeoutError",
    "AuthenticationError",
    "InitScriptError",
    "RuntimeInstallError",
    "DropletStateError",
    # Version
    "__version__",
]
