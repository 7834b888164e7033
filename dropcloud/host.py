"""Interfaces dropcloud expects from the orchestrator that hosts it.

The orchestrator owns the node registry and the agent binary; dropcloud
only needs the narrow surface below. ``InMemoryRegistry`` is a complete
implementation used by the CLI and the tests, and a reasonable base for a
real integration.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger

if TYPE_CHECKING:
    from dropcloud.types import WorkerNode

log = logger.bind(component="host")

type LabelMatcher = Callable[[str, frozenset[str]], bool]
type AgentPayload = Callable[[], bytes]


@runtime_checkable
class NodeRegistry(Protocol):
    """The orchestrator's view of registered workers."""

    def nodes(self) -> list[WorkerNode]: ...

    def get_node(self, name: str) -> WorkerNode | None: ...

    def add_node(self, node: WorkerNode) -> None: ...

    def remove_node(self, node: WorkerNode) -> None: ...


class InMemoryRegistry:
    """Thread-safe registry; removal tells the worker's computer it is gone."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._nodes: dict[str, WorkerNode] = {}

    def nodes(self) -> list[WorkerNode]:
        with self._lock:
            return list(self._nodes.values())

    def get_node(self, name: str) -> WorkerNode | None:
        with self._lock:
            return self._nodes.get(name)

    def add_node(self, node: WorkerNode) -> None:
        with self._lock:
            self._nodes[node.name] = node
        log.debug("Registered {name}", name=node.name)

    def remove_node(self, node: WorkerNode) -> None:
        with self._lock:
            removed = self._nodes.pop(node.name, None)
        if removed is None:
            return
        log.debug("Unregistered {name}", name=node.name)
        if removed.computer is not None:
            removed.computer.on_removed()

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)


def file_payload(path: str | Path) -> AgentPayload:
    """Agent payload read from a local file at upload time."""
    p = Path(path).expanduser()

    def read() -> bytes:
        return p.read_bytes()

    return read


def static_payload(data: bytes) -> AgentPayload:
    return lambda: data


__all__ = [
    "AgentPayload",
    "InMemoryRegistry",
    "LabelMatcher",
    "NodeRegistry",
    "file_payload",
    "static_payload",
]
