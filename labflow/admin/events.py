"""Event bus: async pub/sub for workflow SystemEvents.

Every accepted or rejected workflow operation is published here and fanned
out to subscribers (the audit trail first of all).

Usage:
    # Emit an event from anywhere:
    from labflow.admin.events import emit

    await emit(SystemEvent(
        event_type=EventType.CRF_CREATED,
        entity_id=crf.id,
        data={"samples": crf.sample_ids},
    ))

    # Register a subscriber at startup:
    from labflow.admin.events import subscribe

    subscribe(my_handler)  # async def my_handler(event: SystemEvent) -> None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from labflow.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Type alias for event handler functions
EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue-backed dispatcher.

    While started, ``emit`` only enqueues and a background worker delivers,
    so a slow subscriber never holds up a workflow operation. Before
    ``start`` (scripts, tests) events are delivered inline.
    """

    def __init__(self) -> None:
        self._global: list[EventHandler] = []
        self._by_type: dict[EventType, list[EventHandler]] = {}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        """Register a handler for all events, or only for ``event_types``."""
        if event_types is None:
            self._global.append(handler)
            logger.info("Registered global event subscriber: %s", handler.__name__)
            return
        for et in event_types:
            self._by_type.setdefault(et, []).append(handler)
        logger.info(
            "Registered event subscriber %s for types: %s",
            handler.__name__,
            [t.value for t in event_types],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._global:
            self._global.remove(handler)
        for handlers in self._by_type.values():
            if handler in handlers:
                handlers.remove(handler)

    def clear(self) -> None:
        self._global.clear()
        self._by_type.clear()

    async def emit(self, event: SystemEvent) -> None:
        if self._queue is not None and self.running:
            await self._queue.put(event)
        else:
            await self.dispatch(event)
        logger.debug("Event emitted: %s (entity=%s)", event.event_type.value, event.entity_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver one event to every matching handler, isolating failures."""
        handlers = [*self._global, *self._by_type.get(event.event_type, [])]
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for event %s: %s",
                    handler.__name__,
                    event.event_type.value,
                    result,
                )

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error in event worker")
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        logger.info(
            "Event bus started with %d global + %d typed subscribers",
            len(self._global),
            sum(len(v) for v in self._by_type.values()),
        )

    async def stop(self) -> None:
        """Drain pending events, then cancel the worker."""
        if self._queue is not None and self.running:
            await self._queue.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")


# Module-level bus and shortcuts
event_bus = EventBus()


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    event_bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    event_bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await event_bus.emit(event)


async def start_event_system() -> None:
    """Call during FastAPI lifespan startup."""
    await event_bus.start()


async def stop_event_system() -> None:
    """Call during FastAPI lifespan shutdown."""
    await event_bus.stop()
