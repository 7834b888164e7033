"""Core types for dropcloud.

Pools (``CloudConfig``) and templates (``SlaveTemplate``) are immutable
configuration; ``Droplet`` is the provider's view of a VM, rebuilt from the
API on every fetch; ``WorkerNode`` and ``WorkerComputer`` are the
in-process representation of a provisioned worker.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from dropcloud.constants import (
    DEFAULT_CONNECTION_RETRY_WAIT,
    DEFAULT_IDLE_TERMINATION_MINUTES,
    DEFAULT_NUM_EXECUTORS,
    DEFAULT_SSH_PORT,
    DEFAULT_TIMEOUT_MINUTES,
    DEFAULT_USERNAME,
    DEFAULT_WORKSPACE,
    DropletStatus,
    NetworkType,
)
from dropcloud.exceptions import ConfigurationError
from dropcloud.host import LabelMatcher
from dropcloud.labels import parse_label_set
from dropcloud.naming import (
    is_instance_of_cloud,
    is_instance_of_template,
    is_valid_cloud_name,
    is_valid_template_name,
)
from dropcloud.retention import RetentionMode

if TYPE_CHECKING:
    from dropcloud.destroyer import DestroyWorker
    from dropcloud.ssh import ChannelStream

log = logger.bind(component="types")


# =============================================================================
# Remote VM Record
# =============================================================================


@dataclass(frozen=True, slots=True)
class Network:
    ip_address: str
    type: NetworkType | str


@dataclass(frozen=True, slots=True)
class Droplet:
    """The provider's view of a droplet at the time it was fetched."""

    id: int
    name: str
    status: DropletStatus
    networks: tuple[Network, ...] = ()
    image: str | None = None
    size: str | None = None
    region: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Droplet:
        networks = tuple(
            Network(ip_address=n.get("ip_address", ""), type=n.get("type", ""))
            for n in (data.get("networks") or {}).get("v4", [])
        )
        image = data.get("image") or {}
        region = data.get("region") or {}
        image_ref = image.get("slug") or image.get("id")
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            status=DropletStatus.parse(data.get("status")),
            networks=networks,
            image=str(image_ref) if image_ref is not None else None,
            size=data.get("size_slug"),
            region=region.get("slug"),
        )

    def ip_address(self, network_type: NetworkType) -> str | None:
        """First IPv4 address of the given type, if one is assigned yet."""
        for network in self.networks:
            if network.type == network_type:
                return network.ip_address
        return None

    @property
    def occupies_capacity(self) -> bool:
        return self.status.occupies_capacity


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class SlaveTemplate:
    """One flavor of worker a pool can create.

    Attributes:
        name: Template name, part of every droplet name it creates.
        image: Image slug or numeric image id.
        size: Droplet size slug (e.g. ``s-1vcpu-1gb``).
        region: Region slug (e.g. ``nyc3``).
        username: Remote admin user used for SSH.
        workspace: Remote workspace path handed to the agent.
        ssh_port: SSH port on the droplet.
        num_executors: Concurrent work units the worker accepts.
        idle_termination_minutes: 0 never reclaims, negative reclaims as soon
            as idle, positive reclaims after that many idle minutes.
        instance_cap: Maximum droplets for this template, 0 for unlimited.
        labels: Whitespace separated labels this template satisfies.
        labelless_jobs_allowed: Whether label-less demands may use it.
        one_shot: Reclaim the worker after a single unit of work.
    """

    name: str
    image: str
    size: str
    region: str
    username: str = DEFAULT_USERNAME
    workspace: str = DEFAULT_WORKSPACE
    ssh_port: int = DEFAULT_SSH_PORT
    num_executors: int = DEFAULT_NUM_EXECUTORS
    idle_termination_minutes: int = DEFAULT_IDLE_TERMINATION_MINUTES
    instance_cap: int = 0
    labels: str = ""
    labelless_jobs_allowed: bool = False
    monitoring: bool = False
    tags: str = ""
    user_data: str = ""
    init_script: str = ""
    jvm_opts: str = ""
    one_shot: bool = False

    def __post_init__(self) -> None:
        if not is_valid_template_name(self.name):
            raise ConfigurationError(
                f"Template name '{self.name}' must consist of A-Z, a-z, 0-9 and . symbols"
            )
        if self.instance_cap < 0:
            raise ConfigurationError(f"Template '{self.name}': instance cap must be a positive number")
        if self.num_executors < 1:
            raise ConfigurationError(f"Template '{self.name}': executors must be at least 1")

    @property
    def label_set(self) -> frozenset[str]:
        return parse_label_set(self.labels)

    @property
    def tag_list(self) -> list[str]:
        return [t for t in self.tags.replace(",", " ").split() if t]

    def matches(self, label: str | None, matcher: LabelMatcher) -> bool:
        """Whether a demand for ``label`` may be satisfied by this template."""
        if label is None:
            return not self.label_set or self.labelless_jobs_allowed
        return matcher(label, self.label_set)

    def count_local(self, cloud_name: str, node_names: Iterable[str]) -> int:
        return sum(1 for n in node_names if is_instance_of_template(n, cloud_name, self.name))

    def count_remote(self, cloud_name: str, droplets: Iterable[Droplet]) -> int:
        return sum(
            1
            for d in droplets
            if d.occupies_capacity and is_instance_of_template(d.name, cloud_name, self.name)
        )

    def is_instance_cap_reached(
        self, cloud_name: str, node_names: Iterable[str], droplets: Iterable[Droplet],
    ) -> bool:
        if self.instance_cap == 0:
            return False
        local = self.count_local(cloud_name, node_names)
        remote = self.count_remote(cloud_name, droplets)
        return max(local, remote) >= self.instance_cap


@dataclass(frozen=True, slots=True)
class CloudConfig:
    """A capacity pool backed by one DigitalOcean account.

    Attributes:
        name: Pool name, part of every droplet name it creates.
        token: DigitalOcean API token.
        private_key: PEM private key matching ``ssh_key_id``.
        ssh_key_id: Provider id of the SSH key installed on new droplets.
        instance_cap: Maximum droplets for the whole pool, 0 for unlimited.
        use_private_networking: Connect over the private address.
        timeout_minutes: Bootstrap deadline.
        connection_retry_wait: Seconds between bootstrap attempts.
        templates: Templates tried in order.
    """

    name: str
    token: str
    private_key: str
    ssh_key_id: int = 0
    instance_cap: int = 0
    use_private_networking: bool = False
    timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES
    connection_retry_wait: int = DEFAULT_CONNECTION_RETRY_WAIT
    templates: tuple[SlaveTemplate, ...] = ()

    def __post_init__(self) -> None:
        if not is_valid_cloud_name(self.name):
            raise ConfigurationError(
                f"Cloud name '{self.name}' must consist of A-Z, a-z, 0-9 and . symbols"
            )
        if self.instance_cap < 0:
            raise ConfigurationError("Instance cap must be a positive number")
        names = [t.name for t in self.templates]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Cloud '{self.name}' has duplicate template names: {names}")

    @property
    def network_type(self) -> NetworkType:
        return NetworkType.PRIVATE if self.use_private_networking else NetworkType.PUBLIC

    @property
    def template_instance_cap(self) -> int | None:
        """Sum of template caps, None when any template is unlimited."""
        total = 0
        for t in self.templates:
            if t.instance_cap == 0:
                return None
            total += t.instance_cap
        return total

    @property
    def effective_instance_cap(self) -> int | None:
        """Tightest of the pool cap and the template sum, None when unbounded."""
        caps = [c for c in (self.instance_cap or None, self.template_instance_cap) if c is not None]
        return min(caps) if caps else None


# =============================================================================
# Workers
# =============================================================================


@dataclass(slots=True)
class WorkerNode:
    """A provisioned worker as registered with the orchestrator."""

    name: str
    cloud_name: str
    template_name: str
    droplet_id: int
    private_key: str
    remote_fs: str = DEFAULT_WORKSPACE
    remote_admin: str = DEFAULT_USERNAME
    ssh_port: int = DEFAULT_SSH_PORT
    num_executors: int = DEFAULT_NUM_EXECUTORS
    idle_termination_minutes: int = DEFAULT_IDLE_TERMINATION_MINUTES
    labels: str = ""
    init_script: str = ""
    jvm_opts: str = ""
    one_shot: bool = False
    created_at: float = field(default_factory=time.time)
    retention_mode: RetentionMode = field(init=False)
    computer: WorkerComputer | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.retention_mode = RetentionMode.resolve(self.idle_termination_minutes, self.one_shot)
        if not self.remote_admin:
            self.remote_admin = DEFAULT_USERNAME

    @classmethod
    def from_template(
        cls,
        template: SlaveTemplate,
        *,
        name: str,
        cloud_name: str,
        droplet_id: int,
        private_key: str,
    ) -> WorkerNode:
        return cls(
            name=name,
            cloud_name=cloud_name,
            template_name=template.name,
            droplet_id=droplet_id,
            private_key=private_key,
            remote_fs=template.workspace,
            remote_admin=template.username,
            ssh_port=template.ssh_port,
            num_executors=template.num_executors,
            idle_termination_minutes=template.idle_termination_minutes,
            labels=template.labels,
            init_script=template.init_script,
            jvm_opts=template.jvm_opts,
            one_shot=template.one_shot,
        )

    @property
    def label_set(self) -> frozenset[str]:
        return parse_label_set(self.labels)

    def is_instance_of(self, cloud_name: str) -> bool:
        return is_instance_of_cloud(self.name, cloud_name)


class WorkerComputer:
    """Runtime side of a worker: idleness, schedulability and control channel.

    The orchestrator reports work with ``task_accepted`` / ``task_completed``;
    the retention strategy reads ``is_idle`` and ``idle_start``. Removing the
    node from the registry calls ``on_removed``, which queues the droplet for
    destruction.
    """

    def __init__(
        self,
        node: WorkerNode,
        *,
        token: str,
        destroyer: DestroyWorker | None = None,
        connector: Callable[[WorkerComputer], bool] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._node: WorkerNode | None = node
        self._token = token
        self._destroyer = destroyer
        self._connector = connector
        self._clock = clock
        self._lock = threading.Lock()
        self._busy = 0
        self._has_run_work = False
        self._idle_start = clock()
        self._offline_cause: str | None = None
        self._channel: ChannelStream | None = None
        self._on_channel_closed: Callable[[], None] | None = None
        self.droplet_id = node.droplet_id
        self.name = node.name
        node.computer = self

    @property
    def node(self) -> WorkerNode | None:
        return self._node

    # -------------------------------------------------------------------------
    # Idleness
    # -------------------------------------------------------------------------

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return self._busy == 0

    @property
    def idle_start(self) -> float:
        with self._lock:
            return self._idle_start

    @property
    def has_run_work(self) -> bool:
        """Whether the worker has ever accepted a task."""
        with self._lock:
            return self._has_run_work

    def task_accepted(self) -> None:
        with self._lock:
            self._busy += 1
            self._has_run_work = True

    def task_completed(self) -> None:
        with self._lock:
            self._busy = max(0, self._busy - 1)
            if self._busy == 0:
                self._idle_start = self._clock()

    # -------------------------------------------------------------------------
    # Schedulability
    # -------------------------------------------------------------------------

    @property
    def is_temporarily_offline(self) -> bool:
        with self._lock:
            return self._offline_cause is not None

    @property
    def offline_cause(self) -> str | None:
        with self._lock:
            return self._offline_cause

    def set_temporarily_offline(self, offline: bool, cause: str | None = None) -> None:
        with self._lock:
            self._offline_cause = (cause or "offline") if offline else None

    # -------------------------------------------------------------------------
    # Control channel
    # -------------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._channel is not None and not self._channel.closed

    @property
    def channel(self) -> ChannelStream | None:
        with self._lock:
            return self._channel

    def set_channel(self, channel: ChannelStream, on_closed: Callable[[], None]) -> None:
        with self._lock:
            self._channel = channel
            self._on_channel_closed = on_closed

    def close_channel(self) -> None:
        with self._lock:
            channel, on_closed = self._channel, self._on_channel_closed
            self._channel = None
            self._on_channel_closed = None
        if channel is not None:
            channel.close()
        if on_closed is not None:
            on_closed()

    def connect(self) -> bool:
        """Bootstrap the worker through the configured launcher."""
        if self._connector is None:
            raise RuntimeError(f"No launcher configured for {self.name}")
        return self._connector(self)

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def on_removed(self) -> None:
        log.info("Worker {name} removed, deleting droplet {id}", name=self.name, id=self.droplet_id)
        self._node = None
        self.close_channel()
        if self._destroyer is not None:
            self._destroyer.request_destroy(self._token, self.droplet_id)


__all__ = [
    "CloudConfig",
    "Droplet",
    "Network",
    "SlaveTemplate",
    "WorkerComputer",
    "WorkerNode",
]
