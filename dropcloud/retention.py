"""Idle reclamation: deciding when a worker is removed and its droplet destroyed.

Each worker carries a ``RetentionMode`` resolved once from its template:

- ``ONE_SHOT``: reclaimed as soon as it is idle after accepting work. The
  worker is taken offline first so nothing new is scheduled on it.
- ``DISABLED``: never reclaimed (idle termination of 0 minutes).
- ``IDLE_MINUTES``: reclaimed after that many idle minutes.
- ``ASAP``: reclaimed whenever it is idle (negative idle termination).

``RetentionMonitor`` polls every registered worker on its strategy's cycle.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from dropcloud.callback import emit
from dropcloud.constants import LONG_CHECK_CYCLE, SHORT_CHECK_CYCLE
from dropcloud.events import WorkerReclaimed

if TYPE_CHECKING:
    from dropcloud.host import NodeRegistry
    from dropcloud.types import WorkerComputer, WorkerNode

log = logger.bind(component="retention")

ONE_SHOT_OFFLINE_CAUSE = "One-shot worker finished its work"


class RetentionMode(StrEnum):
    ONE_SHOT = "one-shot"
    DISABLED = "disabled"
    IDLE_MINUTES = "idle-minutes"
    ASAP = "asap"

    @classmethod
    def resolve(cls, idle_minutes: int, one_shot: bool) -> RetentionMode:
        if one_shot:
            return cls.ONE_SHOT
        if idle_minutes == 0:
            return cls.DISABLED
        if idle_minutes > 0:
            return cls.IDLE_MINUTES
        return cls.ASAP


class RetentionStrategy:
    """Reclamation policy for one worker.

    Args:
        idle_minutes: Idle termination minutes from the template.
        one_shot: Whether the worker runs a single unit of work.
        registry: Registry the worker is removed from once reclaimed.
        clock: Wall clock in seconds, comparable with ``idle_start``.
    """

    def __init__(
        self,
        idle_minutes: int,
        one_shot: bool = False,
        *,
        registry: NodeRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.idle_minutes = idle_minutes
        self.mode = RetentionMode.resolve(idle_minutes, one_shot)
        self._registry = registry
        self._clock = clock

    @classmethod
    def for_node(
        cls,
        node: WorkerNode,
        registry: NodeRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> RetentionStrategy:
        return cls(node.idle_termination_minutes, node.one_shot, registry=registry, clock=clock)

    def check_cycle(self) -> float:
        """Seconds until the next check."""
        if self.mode in (RetentionMode.ASAP, RetentionMode.ONE_SHOT):
            return SHORT_CHECK_CYCLE
        return LONG_CHECK_CYCLE

    def is_idle_for_too_long(self, computer: WorkerComputer) -> bool:
        if computer.node is None:
            return False

        match self.mode:
            case RetentionMode.ONE_SHOT:
                if not computer.is_idle or not computer.has_run_work:
                    return False
                if not computer.is_temporarily_offline:
                    computer.set_temporarily_offline(True, ONE_SHOT_OFFLINE_CAUSE)
                return True
            case RetentionMode.DISABLED:
                return False
            case RetentionMode.ASAP:
                return computer.is_idle
            case RetentionMode.IDLE_MINUTES:
                idle_for = self._clock() - computer.idle_start
                return computer.is_idle and idle_for > self.idle_minutes * 60

    def check(self, computer: WorkerComputer) -> float:
        """Reclaim the worker if it has been idle for too long.

        Returns:
            Seconds until the next check.
        """
        node = computer.node
        if node is None or not computer.is_idle:
            return self.check_cycle()

        if computer.is_online and self.is_idle_for_too_long(computer):
            log.info("Reclaiming idle worker {name} ({mode})", name=node.name, mode=self.mode)
            emit(WorkerReclaimed(name=node.name, mode=str(self.mode)))
            if self._registry is None:
                raise RuntimeError(f"No registry to remove {node.name} from")
            self._registry.remove_node(node)
        return self.check_cycle()

    def start(self, computer: WorkerComputer) -> None:
        """Connect a newly registered worker."""
        computer.connect()


class RetentionMonitor:
    """Daemon thread that applies each worker's strategy on its own cycle.

    Example:
        monitor = RetentionMonitor(registry)
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        registry: NodeRegistry,
        *,
        tick: float = 1.0,
        clock: Callable[[], float] = time.time,
        name: str = "dropcloud-retention",
    ) -> None:
        self._registry = registry
        self._tick = tick
        self._clock = clock
        self._strategies: dict[str, RetentionStrategy] = {}
        self._due: dict[str, float] = {}
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self.loop, name=name, daemon=True)

    def strategy_for(self, node: WorkerNode) -> RetentionStrategy:
        strategy = self._strategies.get(node.name)
        if strategy is None:
            strategy = RetentionStrategy.for_node(node, self._registry, self._clock)
            self._strategies[node.name] = strategy
        return strategy

    def run_once(self) -> None:
        """Check every worker whose cycle has elapsed."""
        now = self._clock()
        nodes = self._registry.nodes()
        live = {n.name for n in nodes}

        for node in nodes:
            computer = node.computer
            if computer is None or self._due.get(node.name, 0.0) > now:
                continue
            try:
                delay = self.strategy_for(node).check(computer)
            except Exception as e:
                log.exception("Retention check failed for {name}: {err}", name=node.name, err=e)
                delay = LONG_CHECK_CYCLE
            self._due[node.name] = now + delay

        for name in list(self._strategies):
            if name not in live:
                self._strategies.pop(name, None)
                self._due.pop(name, None)

    def start(self) -> None:
        self.thread.start()

    def loop(self) -> None:
        while not self.stop_event.wait(self._tick):
            self.run_once()

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        if self.thread.is_alive():
            self.thread.join(timeout)


__all__ = [
    "ONE_SHOT_OFFLINE_CAUSE",
    "RetentionMode",
    "RetentionMonitor",
    "RetentionStrategy",
]
