from __future__ import annotations

import io
import threading
import time
from dataclasses import replace

import paramiko
import pytest

from dropcloud.constants import DropletStatus, NetworkType
from dropcloud.exceptions import DigitalOceanError
from dropcloud.naming import generate_droplet_name
from dropcloud.types import CloudConfig, Droplet, Network, SlaveTemplate


def make_template(name: str = "small", **overrides) -> SlaveTemplate:
    fields = dict(image="ubuntu-22-04-x64", size="s-1vcpu-1gb", region="nyc3")
    fields.update(overrides)
    return SlaveTemplate(name=name, **fields)


def make_config(*templates: SlaveTemplate, **overrides) -> CloudConfig:
    fields = dict(
        name="do1",
        token="token-1",
        private_key="-----BEGIN KEY-----",
        ssh_key_id=42,
        templates=templates or (make_template(),),
    )
    fields.update(overrides)
    return CloudConfig(**fields)


def make_droplet(
    droplet_id: int,
    name: str | None = None,
    status: DropletStatus = DropletStatus.ACTIVE,
    ip: str | None = "203.0.113.10",
    private_ip: str | None = None,
) -> Droplet:
    networks = []
    if ip is not None:
        networks.append(Network(ip_address=ip, type=NetworkType.PUBLIC))
    if private_ip is not None:
        networks.append(Network(ip_address=private_ip, type=NetworkType.PRIVATE))
    return Droplet(
        id=droplet_id,
        name=name or generate_droplet_name("do1", "small"),
        status=status,
        networks=tuple(networks),
    )


class FakeClock:
    """Wall clock and sleep that only move when told to."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """In-memory DigitalOcean account, safe to share between threads."""

    def __init__(self, droplets: list[Droplet] | None = None, *, create_delay: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._droplets: dict[int, Droplet] = {d.id: d for d in droplets or []}
        self._next_id = 1000
        self.create_delay = create_delay
        self.created: list[str] = []
        self.deleted: list[int] = []
        self.delete_calls: list[int] = []
        self.list_calls = 0
        self.fail_list = False
        self.fail_create = False
        self.fail_delete: set[int] = set()

    def add(self, droplet: Droplet) -> None:
        with self._lock:
            self._droplets[droplet.id] = droplet

    def set_status(self, droplet_id: int, status: DropletStatus) -> None:
        with self._lock:
            self._droplets[droplet_id] = replace(self._droplets[droplet_id], status=status)

    def list_droplets(self) -> list[Droplet]:
        with self._lock:
            self.list_calls += 1
            if self.fail_list:
                raise DigitalOceanError("Failed to list droplets: 503")
            return list(self._droplets.values())

    def get_droplet(self, droplet_id: int) -> Droplet | None:
        with self._lock:
            return self._droplets.get(droplet_id)

    def create_droplet(self, *, name: str, **_: object) -> Droplet:
        if self.create_delay:
            time.sleep(self.create_delay)
        with self._lock:
            if self.fail_create:
                raise DigitalOceanError(f"Failed to create droplet {name}: 422")
            self._next_id += 1
            droplet = Droplet(id=self._next_id, name=name, status=DropletStatus.NEW)
            self._droplets[droplet.id] = droplet
            self.created.append(name)
            return droplet

    def delete_droplet(self, droplet_id: int) -> None:
        with self._lock:
            self.delete_calls.append(droplet_id)
            if droplet_id in self.fail_delete:
                raise DigitalOceanError(f"Failed to delete droplet {droplet_id}: 422")
            self._droplets.pop(droplet_id, None)
            self.deleted.append(droplet_id)


class FakeStream:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Scripted SSH session; ``results`` maps command prefixes to exit codes."""

    def __init__(self, results: dict[str, int] | None = None, default: int = 0) -> None:
        self.results = results or {}
        self.default = default
        self.commands: list[str] = []
        self.pty_commands: list[str] = []
        self.uploads: dict[str, tuple[bytes, int | None]] = {}
        self.authenticated: tuple[str, str] | None = None
        self.auth_error: Exception | None = None
        self.started: str | None = None
        self.stream = FakeStream()
        self.closed = False

    def _result(self, command: str) -> int:
        for prefix, code in self.results.items():
            if command.startswith(prefix):
                return code
        return self.default

    def authenticate(self, username: str, private_key: str) -> None:
        if self.auth_error is not None:
            raise self.auth_error
        self.authenticated = (username, private_key)

    def exec(self, command: str, sink=None) -> int:
        self.commands.append(command)
        return self._result(command)

    def exec_pty(self, command: str, sink=None) -> int:
        self.pty_commands.append(command)
        return self._result(command)

    def put(self, data: bytes, remote_path: str, mode: int | None = None) -> None:
        self.uploads[remote_path] = (data, mode)

    def start(self, command: str) -> FakeStream:
        self.started = command
        return self.stream

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def rsa_pem() -> str:
    buf = io.StringIO()
    paramiko.RSAKey.generate(2048).write_private_key(buf)
    return buf.getvalue()
