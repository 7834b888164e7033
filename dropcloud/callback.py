"""Callback-based event dispatch for dropcloud.

Callbacks receive events and may return derived events, which are queued
and dispatched after the callback returns so no callback lock is held
across dispatches.

The active callback lives in a context variable. Worker threads started by
dropcloud copy the submitting context, so a callback installed around
``provision()`` also sees the bootstrap events of the workers it planned.

Example:
    from dropcloud.callback import emit, use_callback

    def on_event(event):
        match event:
            case BootstrapFailed(name=name):
                print(f"{name} failed")

    with use_callback(on_event):
        cloud.provision("linux", 2)
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from concurrent.futures import Executor, Future
from contextvars import ContextVar, copy_context
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from dropcloud.events import DropcloudEvent

type CallbackResult = DropcloudEvent | Sequence[DropcloudEvent] | None
type Callback = Callable[[DropcloudEvent], CallbackResult]

_callback: ContextVar[Callback | None] = ContextVar("dropcloud_cb", default=None)

log = logger.bind(component="callback")


def _normalize(result: CallbackResult) -> list[DropcloudEvent]:
    if result is None:
        return []
    if isinstance(result, Sequence) and not isinstance(result, str):
        return list(result)
    return [result]  # type: ignore[list-item]


def emit(event: DropcloudEvent) -> None:
    """Emit event to the current context's callback.

    Derived events are processed breadth-first. A failing callback is logged
    and never propagates into provisioning or bootstrap code.
    """
    cb = _callback.get()
    if cb is None:
        return

    queue: deque[DropcloudEvent] = deque([event])
    while queue:
        current = queue.popleft()
        try:
            derived = cb(current)
        except Exception as e:
            log.warning("Event callback failed on {event}: {err}", event=type(current).__name__, err=e)
            continue
        queue.extend(_normalize(derived))


def compose(*callbacks: Callback) -> Callback:
    """Combine multiple callbacks into one; derived events are concatenated."""
    match callbacks:
        case []:
            return lambda _: None
        case [single]:
            return single
        case _:

            def combined(event: DropcloudEvent) -> list[DropcloudEvent]:
                results: list[DropcloudEvent] = []
                for cb in callbacks:
                    results.extend(_normalize(cb(event)))
                return results

            return combined


@contextmanager
def use_callback(cb: Callback) -> Iterator[None]:
    """Context manager that sets the active callback."""
    token = _callback.set(cb)
    try:
        yield
    finally:
        _callback.reset(token)


def only(*event_types: type[DropcloudEvent]) -> Callable[[Callback], Callback]:
    """Decorator that filters a callback to only receive specific event types.

    Example:
        @only(BootstrapFailed, Error)
        def alert(event):
            page_oncall(event)
    """

    def decorator(cb: Callback) -> Callback:
        def filtered(event: DropcloudEvent) -> CallbackResult:
            if isinstance(event, event_types):
                return cb(event)
            return None

        return filtered

    return decorator


def submit[T](executor: Executor, fn: Callable[..., T], *args: Any) -> Future[T]:
    """Submit ``fn`` to ``executor`` running in a copy of the current context.

    Events the unit emits reach the callback active at submission time.
    """
    return executor.submit(copy_context().run, fn, *args)


__all__ = ["Callback", "CallbackResult", "compose", "emit", "only", "submit", "use_callback"]
