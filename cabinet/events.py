"""Appointment lifecycle event bus.

The scheduler only announces *that* a booking was made, moved, closed or
removed. Whatever acts on it (the audit trail, reminder e-mails, SMS or
push dispatchers) registers a handler here at startup.

Usage:
    from cabinet.events import emit, subscribe

    subscribe(send_reminder, event_types=[EventType.APPOINTMENT_BOOKED])

    await emit(SystemEvent(
        event_type=EventType.APPOINTMENT_BOOKED,
        appointment_id=appointment.id,
    ))

`emit` only enqueues, so a slow or broken notifier can never hold the
request transaction (and its owner locks) open. Events are delivered in
emission order by a single worker task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any

from cabinet.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


class EventBus:
    """Queue-backed pub/sub with handlers filtered by event type."""

    def __init__(self) -> None:
        # None key = handler wants every event type
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Registration ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        """Register `handler` for `event_types`, or for every event when None."""
        keys: list[EventType | None] = [None] if event_types is None else list(event_types)
        for key in keys:
            self._handlers.setdefault(key, []).append(handler)
        logger.info(
            "Subscribed %s to %s",
            getattr(handler, "__name__", repr(handler)),
            "all events" if event_types is None else ", ".join(k.value for k in keys if k is not None),
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        for handlers in self._handlers.values():
            while handler in handlers:
                handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._handlers.get(None, []), *self._handlers.get(event_type, [])]

    # ── Delivery ────────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Enqueue `event`; the worker is started on first use if needed."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Queued %s for appointment %s", event.event_type.value, event.appointment_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Run every matching handler now. One failing handler never stops the others."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed on %s (appointment=%s): %r",
                    getattr(handler, "__name__", repr(handler)),
                    event.event_type.value,
                    event.appointment_id,
                    result,
                )

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    # ── Worker lifecycle ────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="appointment-events")

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Event worker error on %s", event.event_type.value)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info("Event bus started (%d handler registrations)", sum(map(len, self._handlers.values())))

    async def stop(self) -> None:
        """Deliver everything still queued, then cancel the worker."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event bus stopped")


# Module-level singleton, used through the functions below.
bus = EventBus()

subscribe = bus.subscribe
unsubscribe = bus.unsubscribe
dispatch = bus.dispatch


async def emit(event: SystemEvent) -> None:
    await bus.emit(event)


async def start_event_system() -> None:
    await bus.start()


async def stop_event_system() -> None:
    await bus.stop()
