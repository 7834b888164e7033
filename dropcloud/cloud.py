"""Admission control for a pool of DigitalOcean workers.

``DropletCloud.provision`` is called by the orchestrator whenever demand
exceeds the available executors. Every decision is taken under the pool
lock against a fresh inventory from the provider, and every creation
re-checks the cap under the same lock right before it happens, so
concurrent rounds can never push the pool past its cap. Bootstrap runs
after the lock is released.
"""

from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from dropcloud import labels
from dropcloud.callback import emit, submit
from dropcloud.client import DigitalOceanGateway
from dropcloud.events import CapacityReached, DropletCreated, DropletProvisioning, Error
from dropcloud.exceptions import ConfigurationError, LabelExpressionError
from dropcloud.host import AgentPayload, LabelMatcher, NodeRegistry
from dropcloud.launcher import BootstrapLauncher
from dropcloud.naming import generate_droplet_name, is_instance_of_cloud
from dropcloud.types import CloudConfig, Droplet, SlaveTemplate, WorkerComputer, WorkerNode

if TYPE_CHECKING:
    from dropcloud.destroyer import DestroyWorker

log = logger.bind(component="cloud")


@dataclass(frozen=True, slots=True)
class PlannedNode:
    """A worker promised to the orchestrator.

    ``future`` resolves to the registered node, or None if the pool filled
    up before the droplet could be created.
    """

    display_name: str
    future: Future[WorkerNode | None]
    num_executors: int


class DropletCloud:
    """A capacity pool of droplets created from an ordered list of templates.

    Args:
        config: Pool configuration.
        registry: Orchestrator node registry.
        destroyer: Destroy worker removed nodes are queued on.
        payload: Agent bytes for the default launcher.
        gateway: Provider gateway, defaults to one for ``config.token``.
        launcher: Bootstrap launcher, defaults to one built from the above.
        executor: Runs provisioning units, defaults to a thread pool. Units are
            submitted under the pool lock and must run on other threads.
        matcher: Label expression predicate.
    """

    def __init__(
        self,
        config: CloudConfig,
        *,
        registry: NodeRegistry,
        destroyer: DestroyWorker,
        payload: AgentPayload | None = None,
        gateway: DigitalOceanGateway | None = None,
        launcher: BootstrapLauncher | None = None,
        executor: Executor | None = None,
        matcher: LabelMatcher = labels.matches,
    ) -> None:
        self.config = config
        self._registry = registry
        self._destroyer = destroyer
        self._gateway = gateway or DigitalOceanGateway(config.token)
        if launcher is None:
            if payload is None:
                raise ConfigurationError(f"Cloud '{config.name}' needs an agent payload or a launcher")
            launcher = BootstrapLauncher(config, gateway=self._gateway, registry=registry, payload=payload)
        self._launcher = launcher
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(thread_name_prefix=f"dropcloud-{config.name}")
        self._matcher = matcher
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def gateway(self) -> DigitalOceanGateway:
        return self._gateway

    # =========================================================================
    # Templates
    # =========================================================================

    def get_template(self, name: str) -> SlaveTemplate | None:
        for template in self.config.templates:
            if template.name == name:
                return template
        return None

    def templates_for(self, label: str | None) -> list[SlaveTemplate]:
        return [t for t in self.config.templates if t.matches(label, self._matcher)]

    def can_provision(self, label: str | None) -> bool:
        """Whether any template could satisfy ``label``. Advisory, takes no lock."""
        try:
            return bool(self.templates_for(label))
        except LabelExpressionError as e:
            log.warning("Cannot match {label} on {cloud}: {err}", label=label, cloud=self.name, err=e)
            return False

    # =========================================================================
    # Admission
    # =========================================================================

    def provision(self, label: str | None, excess_workload: int) -> list[PlannedNode]:
        """Plan workers for up to ``excess_workload`` executors.

        Returns fewer (possibly no) planned nodes when the pool or every
        matching template is at its cap. Never raises.
        """
        planned: list[PlannedNode] = []
        with self._lock:
            try:
                excess = excess_workload
                while excess > 0:
                    droplets = self._gateway.list_droplets()
                    if self._capacity_reached(droplets):
                        break

                    template = self._select_template(label, droplets)
                    if template is None:
                        log.info("No template of {cloud} can take {label} right now", cloud=self.name, label=label)
                        break

                    name = generate_droplet_name(self.name, template.name)
                    future = submit(self._executor, self._provision_one, template, name)
                    planned.append(PlannedNode(name, future, template.num_executors))
                    excess -= template.num_executors
            except Exception as e:
                log.error("Failed to provision for {label} on {cloud}: {err}", label=label, cloud=self.name, err=e)
                emit(Error(message=f"Failed to provision on {self.name}: {e}"))
                return []
        return planned

    def _provision_one(self, template: SlaveTemplate, name: str) -> WorkerNode | None:
        with self._lock:
            droplets = self._gateway.list_droplets()
            if self._capacity_reached(droplets) or template.is_instance_cap_reached(
                self.name, self._node_names(), droplets
            ):
                log.info("Cap reached on {cloud}, abandoning {name}", cloud=self.name, name=name)
                return None

            emit(DropletProvisioning(cloud=self.name, template=template.name, name=name))
            try:
                droplet = self._gateway.create_droplet(
                    name=name,
                    image=template.image,
                    size=template.size,
                    region=template.region,
                    ssh_key_id=self.config.ssh_key_id,
                    tags=template.tag_list,
                    user_data=template.user_data or None,
                    monitoring=template.monitoring,
                    private_networking=self.config.use_private_networking,
                )
            except Exception as e:
                log.error("Failed to create {name}: {err}", name=name, err=e)
                emit(Error(message=str(e), name=name))
                raise
            emit(DropletCreated(cloud=self.name, name=name, droplet_id=droplet.id))

            node = WorkerNode.from_template(
                template,
                name=name,
                cloud_name=self.name,
                droplet_id=droplet.id,
                private_key=self.config.private_key,
            )
            computer = WorkerComputer(
                node,
                token=self.config.token,
                destroyer=self._destroyer,
                connector=self._launcher.launch,
            )
            self._registry.add_node(node)

        computer.connect()
        return node

    def _node_names(self) -> list[str]:
        return [n.name for n in self._registry.nodes()]

    def _capacity_reached(self, droplets: list[Droplet]) -> bool:
        cap = self.config.effective_instance_cap
        if cap is None:
            return False
        local = sum(1 for n in self._node_names() if is_instance_of_cloud(n, self.name))
        remote = sum(1 for d in droplets if d.occupies_capacity and is_instance_of_cloud(d.name, self.name))
        if max(local, remote) >= cap:
            log.info(
                "Cap of {cap} reached on {cloud} (local={local}, remote={remote})",
                cap=cap, cloud=self.name, local=local, remote=remote,
            )
            emit(CapacityReached(cloud=self.name, local=local, remote=remote, cap=cap))
            return True
        return False

    def _select_template(self, label: str | None, droplets: list[Droplet]) -> SlaveTemplate | None:
        names = self._node_names()
        for template in self.templates_for(label):
            if not template.is_instance_cap_reached(self.name, names, droplets):
                return template
        return None

    # =========================================================================
    # Inventory
    # =========================================================================

    def droplets(self) -> list[Droplet]:
        """Droplets on the account that belong to this pool."""
        return [d for d in self._gateway.list_droplets() if is_instance_of_cloud(d.name, self.name)]

    def close(self) -> None:
        if self._owns_executor and isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=False)


__all__ = ["DropletCloud", "PlannedNode"]
