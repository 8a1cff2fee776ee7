"""EventBus — process-wide publish/subscribe for generation events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict[str, Any]], Any]


class EventBus:
    """Fan events out to every subscriber, in publication order.

    Handlers are called synchronously inside ``emit``. A handler that returns
    an awaitable (an ``async def`` handler) has it scheduled on the running
    loop. A failing handler is logged and never affects the publisher or the
    other subscribers.

    Usage::

        bus = EventBus()
        unsubscribe = bus.subscribe(lambda name, payload: print(name, payload))
        bus.emit("backlog-modify:event", {"type": "progress", "content": "..."})
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        logger.debug("emit %s type=%s", event_name, payload.get("type"))
        for handler in list(self._handlers):
            try:
                result = handler(event_name, payload)
            except Exception:
                logger.warning("Event handler %r failed for %s", handler, event_name, exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, event_name)

    def _schedule(self, awaitable: Any, event_name: str) -> None:
        async def run() -> None:
            try:
                await awaitable
            except Exception:
                logger.warning("Async event handler failed for %s", event_name, exc_info=True)

        task = asyncio.get_running_loop().create_task(run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

