"""Bootstrap of a freshly created droplet into a connected worker.

The launcher waits for the droplet to become active and reachable, logs in
with the pool's key, runs the template's init script once, makes sure the
agent runtime is installed, then starts the agent and hands its channel to
the worker's computer. Any failure removes the worker, which queues its
droplet for destruction.
"""

from __future__ import annotations

import time
import traceback
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import paramiko
from loguru import logger
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception_type, wait_fixed

from dropcloud.callback import emit
from dropcloud.constants import (
    AGENT_DIR,
    AGENT_NAME,
    CLOUD_INIT_DONE,
    INIT_MARKER,
    INIT_SCRIPT_DIR,
    INIT_SCRIPT_NAME,
    RUNTIME_VERSIONS,
    SSH_CONNECT_TIMEOUT,
    DropletStatus,
)
from dropcloud.events import BootstrapCompleted, BootstrapFailed, BootstrapProgress, BootstrapStarting
from dropcloud.exceptions import BootstrapTimeoutError, DigitalOceanError, DropletStateError, InitScriptError
from dropcloud.installers import DEFAULT_INSTALLERS, RuntimeInstaller, has_runtime, install_runtime
from dropcloud.logging import bootstrap_sink
from dropcloud.ssh import Connector, Session, Sink, connect

if TYPE_CHECKING:
    from dropcloud.host import AgentPayload, NodeRegistry
    from dropcloud.types import CloudConfig, Droplet, WorkerComputer, WorkerNode

log = logger.bind(component="launcher")

CLOUD_INIT_WAIT = (
    f"while [ ! -f {CLOUD_INIT_DONE} ]; do echo 'Waiting for cloud-init...'; sleep 1; done"
)


class BootstrapState(StrEnum):
    WAITING_FOR_VM_ACTIVE = "waiting-for-vm-active"
    WAITING_FOR_NETWORK = "waiting-for-network"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    RUNNING_INIT = "running-init"
    VERIFYING_RUNTIME = "verifying-runtime"
    INSTALLING_RUNTIME = "installing-runtime"
    HANDOFF = "handoff"
    DONE = "done"
    ABORTED = "aborted"


class DropletSource(Protocol):
    def get_droplet(self, droplet_id: int) -> Droplet | None: ...


class _NotReady(Exception):
    """Droplet or SSH not ready yet - retry."""


def _utc_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


class BootstrapLauncher:
    """Turns droplets of one pool into connected workers.

    Args:
        cloud: Pool configuration (deadline, retry wait, networking).
        gateway: Source of fresh droplet records.
        registry: Registry failed workers are removed from.
        payload: Returns the agent bytes to upload.
        connector: Opens an SSH session to ``(host, port, timeout)``.
        installers: Runtime installers, tried in order.
        versions: Acceptable runtime versions, most preferred first.
        clock: Monotonic clock for the bootstrap deadline.
        sleep: Used between attempts.
    """

    def __init__(
        self,
        cloud: CloudConfig,
        *,
        gateway: DropletSource,
        registry: NodeRegistry,
        payload: AgentPayload,
        connector: Connector = connect,
        installers: Sequence[RuntimeInstaller] = DEFAULT_INSTALLERS,
        versions: Sequence[str] = RUNTIME_VERSIONS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cloud = cloud
        self._gateway = gateway
        self._registry = registry
        self._payload = payload
        self._connector = connector
        self._installers = tuple(installers)
        self._versions = tuple(versions)
        self._clock = clock
        self._sleep = sleep

    def launch(self, computer: WorkerComputer, sink: Sink | None = None) -> bool:
        """Bootstrap the computer's droplet and hand off the agent channel.

        Returns:
            True once the agent channel is set on the computer.
        """
        node = computer.node
        out: Sink = sink or bootstrap_sink(computer.name)

        if node is None:
            out("No real node is available. ABORT")
            return False

        started = self._clock()
        out(f"Start time: {_utc_now()}")
        emit(BootstrapStarting(name=node.name, droplet_id=node.droplet_id))

        session: Session | None = None
        successful = False
        try:
            session = self._wait_for_ssh(node, out)

            self._progress(node, BootstrapState.AUTHENTICATING)
            out(f"Authenticating as {node.remote_admin}")
            session.authenticate(node.remote_admin, node.private_key)

            self._progress(node, BootstrapState.RUNNING_INIT)
            self._run_init_script(session, node, out)

            out("Waiting for cloud init to finish")
            session.exec(CLOUD_INIT_WAIT, out)
            out("Cloud init is done")

            self._ensure_runtime(session, node, out)

            self._progress(node, BootstrapState.HANDOFF)
            self._handoff(session, computer, node, out)
            successful = True

            self._progress(node, BootstrapState.DONE)
            emit(BootstrapCompleted(name=node.name, duration=self._clock() - started))
            return True
        except Exception as e:
            log.warning("Failed to launch {name}: {err}", name=node.name, err=e)
            self._progress(node, BootstrapState.ABORTED)
            emit(BootstrapFailed(name=node.name, reason=str(e)))
            out(traceback.format_exc())
            try:
                self._registry.remove_node(node)
            except Exception:
                out(traceback.format_exc())
            return False
        finally:
            out(f"Done setting up at: {_utc_now()}")
            out(f"Done in {int(self._clock() - started)} seconds")
            if session is not None and not successful:
                session.close()

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _progress(self, node: WorkerNode, state: BootstrapState) -> None:
        log.debug("{name}: {state}", name=node.name, state=state)
        emit(BootstrapProgress(name=node.name, state=str(state)))

    def _wait_for_ssh(self, node: WorkerNode, out: Sink) -> Session:
        limit = self.cloud.timeout_minutes * 60
        wait = self.cloud.connection_retry_wait
        started = self._clock()

        def deadline_reached(_: RetryCallState) -> bool:
            return self._clock() - started >= limit

        retrying = Retrying(
            stop=deadline_reached,
            wait=wait_fixed(wait),
            retry=retry_if_exception_type(_NotReady),
            sleep=self._sleep,
        )
        try:
            return retrying(self._try_connect, node, out, wait)
        except RetryError:
            raise BootstrapTimeoutError(self._clock() - started, limit) from None

    def _try_connect(self, node: WorkerNode, out: Sink, wait: float) -> Session:
        try:
            droplet = self._gateway.get_droplet(node.droplet_id)
        except DigitalOceanError as e:
            out("Failed to get droplet. Retrying")
            raise _NotReady from e
        if droplet is None:
            out("Droplet not found yet. Retrying")
            raise _NotReady

        match droplet.status:
            case DropletStatus.OFF | DropletStatus.ARCHIVE:
                raise DropletStateError(droplet.id, droplet.status)
            case DropletStatus.NEW | DropletStatus.UNKNOWN:
                self._progress(node, BootstrapState.WAITING_FOR_VM_ACTIVE)
                out(f"Waiting for droplet to enter ACTIVE state. Sleeping {wait} seconds.")
                raise _NotReady

        host = droplet.ip_address(self.cloud.network_type)
        if not host or host == "0.0.0.0":
            self._progress(node, BootstrapState.WAITING_FOR_NETWORK)
            out("No ip address yet, your host is most likely waiting for an ip address.")
            raise _NotReady

        self._progress(node, BootstrapState.CONNECTING)
        out(f"Connecting to {host} on port {node.ssh_port}.")
        try:
            session = self._connector(host, node.ssh_port, SSH_CONNECT_TIMEOUT)
        except (OSError, EOFError, paramiko.SSHException) as e:
            out(f"Waiting for SSH to come up. Sleeping {wait} seconds.")
            raise _NotReady from e
        out("Connected via SSH.")
        return session

    def _run_init_script(self, session: Session, node: WorkerNode, out: Sink) -> None:
        script = (node.init_script or "").strip()
        if not script:
            return
        if session.exec(f"test -e {INIT_MARKER}", out) == 0:
            return

        out("Executing init script")
        path = f"{INIT_SCRIPT_DIR}/{INIT_SCRIPT_NAME}"
        session.put(script.encode("utf-8"), path, mode=0o700)
        code = session.exec_pty(path, out)
        if code != 0:
            out(f"init script failed: exit code={code}")
            raise InitScriptError(code)
        session.exec_pty(f"touch {INIT_MARKER}", out)

    def _ensure_runtime(self, session: Session, node: WorkerNode, out: Sink) -> None:
        self._progress(node, BootstrapState.VERIFYING_RUNTIME)
        out("Verifying that java exists")
        if has_runtime(session, out):
            return
        self._progress(node, BootstrapState.INSTALLING_RUNTIME)
        install_runtime(session, self._installers, self._versions, out)

    def _handoff(self, session: Session, computer: WorkerComputer, node: WorkerNode, out: Sink) -> None:
        agent = f"{AGENT_DIR}/{AGENT_NAME}"
        out(f"Copying {AGENT_NAME}")
        session.put(self._payload(), agent)

        command = " ".join(part for part in ("java", node.jvm_opts.strip(), "-jar", agent) if part)
        out(f"Launching agent: {command}")
        stream = session.start(command)
        computer.set_channel(stream, session.close)


__all__ = ["CLOUD_INIT_WAIT", "BootstrapLauncher", "BootstrapState", "DropletSource"]
