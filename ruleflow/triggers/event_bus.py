"""In-process pub/sub event sink for scheduler and input lifecycle events.

Subscribers are plain callables (sync or async) taking the payload dict. The
bus snapshots the subscriber list before iterating, so a callback may
subscribe or unsubscribe while an event is being emitted.
"""

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

# ── Well-known event names ─────────────────────────────────────────────────
EVENT_JOB_STARTED   = "job:started"
EVENT_JOB_COMPLETED = "job:completed"
EVENT_JOB_FAILED    = "job:failed"
EVENT_INIT_COMPLETED = "init:completed"

# Wildcard subscription: receives every event as ``cb(event, data)``
ANY_EVENT = "*"


class EventBus:
    """Lightweight, in-process pub/sub bus.

    Usage::

        bus = EventBus()
        bus.subscribe("job:failed", my_handler)
        await bus.emit("job:failed", {"job": "nightly", "flow": "cleanup"})
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable]] = {}

    def subscribe(self, event: str, callback: Callable) -> None:
        """Register *callback* for *event*, or for every event with ``"*"``."""
        self._subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Callable) -> None:
        """Remove the first occurrence of *callback* from *event*. Silently ignores missing."""
        callbacks = self._subscribers.get(event, [])
        try:
            callbacks.remove(callback)
        except ValueError:
            pass

    async def emit(self, event: str, data: Any = None) -> None:
        """Emit *event* to all subscribers.

        Exceptions raised by individual subscribers are logged and swallowed so
        that one failing handler cannot block the rest.
        """
        targets = [(cb, False) for cb in self._subscribers.get(event, [])]
        targets += [(cb, True) for cb in self._subscribers.get(ANY_EVENT, [])]
        for cb, wildcard in targets:
            try:
                result = cb(event, data) if wildcard else cb(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("EventBus subscriber raised for event=%r", event)


async def emit_event(sink, event: str, data: Any) -> None:
    """Send *event* to an optional sink exposing ``emit(event, data)``, sync or async."""
    if sink is None:
        return
    try:
        result = sink.emit(event, data)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Event sink raised for event=%r", event)
