"""In-process pub/sub for typed session and lifecycle events."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from chatkeep.events.payloads import ChatkeepEvent, EventPayload

Handler = Callable[[EventPayload], None | Awaitable[None]]


def _event_of(key: ChatkeepEvent | type[EventPayload]) -> ChatkeepEvent:
    return key if isinstance(key, ChatkeepEvent) else key.event


class EventBus:
    """
    Routes each published payload to the handlers subscribed to its event.

    Sync handlers run inline within ``publish()``. Async handlers run as tasks
    owned by the bus; ``drain()`` waits for all of them. A handler that raises,
    synchronously or inside its task, is logged and never affects the
    publisher or the other handlers.

    Example::

        bus = EventBus()
        bus.subscribe(CleanupCompleted, lambda p: print(p.total_duration))
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: defaultdict[ChatkeepEvent, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("chatkeep.events")

    def subscribe(self, event: ChatkeepEvent | type[EventPayload], handler: Handler) -> None:
        """Register ``handler`` for an event, given as the enum member or payload class."""
        self._handlers[_event_of(event)].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._wildcard.append(handler)

    def unsubscribe(self, event: ChatkeepEvent | type[EventPayload], handler: Handler) -> None:
        """Remove a handler. No-op if it was never registered."""
        with contextlib.suppress(ValueError):
            self._handlers[_event_of(event)].remove(handler)

    @property
    def pending(self) -> int:
        """Async handler tasks that have not finished yet."""
        return len(self._pending)

    def publish(self, payload: EventPayload) -> None:
        for handler in [*self._handlers[payload.event], *self._wildcard]:
            self._deliver(handler, payload)

    async def drain(self) -> None:
        """Wait until every scheduled async handler has finished."""
        while self._pending:
            await asyncio.gather(*self._pending)

    def _deliver(self, handler: Handler, payload: EventPayload) -> None:
        try:
            outcome = handler(payload)
        except Exception as exc:
            self._report(handler, payload, exc)
            return
        if not inspect.isawaitable(outcome):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning(
                "event_handler_dropped", event=str(payload.event), handler=_name(handler)
            )
            if inspect.iscoroutine(outcome):
                outcome.close()
            return

        task = loop.create_task(self._run(handler, payload, outcome))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(
        self, handler: Handler, payload: EventPayload, awaitable: Awaitable[Any]
    ) -> None:
        try:
            await awaitable
        except Exception as exc:
            self._report(handler, payload, exc)

    def _report(self, handler: Handler, payload: EventPayload, exc: Exception) -> None:
        self._logger.error(
            "event_handler_error",
            event=str(payload.event),
            handler=_name(handler),
            error=str(exc),
        )


def _name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
