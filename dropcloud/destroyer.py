"""Asynchronous droplet deletion with retries.

The provider transiently refuses to delete droplets (most often ones that
are still being created). Deletions are therefore queued and a daemon
thread keeps retrying them until the droplet is confirmed gone, either by a
successful delete or by its absence from the account's inventory.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from dropcloud.callback import emit
from dropcloud.client import DigitalOceanGateway
from dropcloud.constants import DESTROY_RETRY_SECONDS
from dropcloud.events import DestroyRequested, DropletDestroyed
from dropcloud.exceptions import DigitalOceanError
from dropcloud.types import Droplet

log = logger.bind(component="destroyer")


class DestroyGateway(Protocol):
    def delete_droplet(self, droplet_id: int) -> None: ...

    def list_droplets(self) -> list[Droplet]: ...


type GatewayFactory = Callable[[str], DestroyGateway]


class DestroyWorker:
    """Pending-destroy set of ``(token, droplet_id)`` drained by a daemon thread.

    Entries are keyed by droplet id, so requesting the same droplet twice
    queues it once. The thread starts on the first request.

    Example:
        destroyer = DestroyWorker()
        destroyer.request_destroy(token, 1234)
        ...
        destroyer.stop()
    """

    def __init__(
        self,
        gateway_factory: GatewayFactory = DigitalOceanGateway,
        *,
        retry_wait: float = DESTROY_RETRY_SECONDS,
        name: str = "dropcloud-destroyer",
    ) -> None:
        self._gateway_factory = gateway_factory
        self._retry_wait = retry_wait
        self._name = name
        self._cond = threading.Condition()
        self._pending: dict[int, str] = {}
        self._woken = False
        self._stopped = False
        self._thread: threading.Thread | None = None

    def request_destroy(self, token: str, droplet_id: int) -> None:
        """Queue a droplet for deletion. Safe to call repeatedly."""
        with self._cond:
            if self._stopped:
                log.warning("Destroy worker stopped, dropping request for droplet {id}", id=droplet_id)
                return
            added = droplet_id not in self._pending
            if added:
                self._pending[droplet_id] = token
                self._woken = True
                self._cond.notify_all()
            self._ensure_started()
        if added:
            log.info("Queued droplet {id} for deletion", id=droplet_id)
            emit(DestroyRequested(droplet_id=droplet_id))

    def pending(self) -> list[tuple[str, int]]:
        with self._cond:
            return [(token, droplet_id) for droplet_id, token in self._pending.items()]

    def process_pending(self) -> bool:
        """Run one deletion pass over a snapshot of the pending set.

        Returns:
            True if every snapshotted droplet was confirmed gone.
        """
        with self._cond:
            self._woken = False
            snapshot = sorted(self._pending.items(), key=lambda kv: kv[1])

        ok = True
        for token, entries in itertools.groupby(snapshot, key=lambda kv: kv[1]):
            gateway = self._gateway_factory(token)
            inventory: set[int] | None = None
            fetched = False

            for droplet_id, _ in entries:
                try:
                    gateway.delete_droplet(droplet_id)
                except DigitalOceanError as e:
                    log.warning("Failed to delete droplet {id}: {err}", id=droplet_id, err=e)
                    if not fetched:
                        inventory = self._inventory(gateway)
                        fetched = True
                    if inventory is not None and droplet_id not in inventory:
                        log.info("Droplet {id} no longer exists", id=droplet_id)
                        self._remove(droplet_id, already_gone=True)
                    else:
                        ok = False
                    continue

                log.info("Deleted droplet {id}", id=droplet_id)
                self._remove(droplet_id)

        return ok

    def stop(self, timeout: float | None = None) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _inventory(self, gateway: DestroyGateway) -> set[int] | None:
        try:
            return {d.id for d in gateway.list_droplets()}
        except DigitalOceanError as e:
            log.warning("Could not list droplets to confirm deletion: {err}", err=e)
            return None

    def _remove(self, droplet_id: int, already_gone: bool = False) -> None:
        with self._cond:
            self._pending.pop(droplet_id, None)
        emit(DropletDestroyed(droplet_id=droplet_id, already_gone=already_gone))

    def _ensure_started(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._thread.start()

    def _loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._stopped or bool(self._pending))
                if self._stopped:
                    return

            try:
                ok = self.process_pending()
            except Exception as e:
                log.exception("Destroy pass failed: {err}", err=e)
                ok = False

            if not ok:
                with self._cond:
                    self._cond.wait_for(lambda: self._stopped or self._woken, timeout=self._retry_wait)
                    if self._stopped:
                        return


__all__ = ["DestroyGateway", "DestroyWorker", "GatewayFactory"]
