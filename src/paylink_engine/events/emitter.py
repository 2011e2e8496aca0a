"""Async event emitter for lifecycle side effects.

Handlers are isolated: a failing handler is logged and never affects
other handlers or the state change that produced the event.

In background mode ``emit`` schedules handlers as tracked tasks and
returns immediately, so slow notifiers never delay a payer's response.
Background events are still delivered in emission order: each batch
starts only after the previous one finished. ``drain`` waits for
outstanding handlers, which is done on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from paylink_engine.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)

AsyncEventHandler = Callable[[DomainEvent], Awaitable[None]]


@dataclass
class HandlerRegistration:
    """Registration of an event handler."""

    handler: AsyncEventHandler
    event_types: set[str] | None  # None = all events
    categories: set[EventCategory] | None  # None = all categories


class AsyncEventEmitter:
    """Asynchronous event emitter.

    Usage:
        emitter = AsyncEventEmitter()

        async def send_receipt(event: PaymentReceived) -> None:
            await notifier.send_payment_received_email(...)

        emitter.on(PaymentReceived, send_receipt)
        await emitter.emit(event)
    """

    def __init__(self, *, background: bool = False) -> None:
        self._handlers: list[HandlerRegistration] = []
        self.background = background
        self._pending: set[asyncio.Task[list[Exception]]] = set()
        self._last: asyncio.Task[list[Exception]] | None = None

    def on(
        self,
        event_type: type[T] | list[type[T]],
        handler: AsyncEventHandler,
    ) -> None:
        """Register handler for specific event type(s)."""
        if isinstance(event_type, list):
            types = {t.__name__ for t in event_type}
        else:
            types = {event_type.__name__}
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=types, categories=None)
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: AsyncEventHandler,
    ) -> None:
        """Register handler for event category(ies)."""
        cats = set(category) if isinstance(category, list) else {category}
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=cats)
        )

    def on_all(self, handler: AsyncEventHandler) -> None:
        self._handlers.append(
            HandlerRegistration(handler=handler, event_types=None, categories=None)
        )

    def off(self, handler: AsyncEventHandler) -> None:
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    @property
    def pending(self) -> int:
        """Number of handler batches still running in background mode."""
        return len(self._pending)

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Emit an event to all matching handlers.

        Returns the exceptions raised by handlers. In background mode the
        handlers have not run yet, so the list is always empty.
        """
        if self.background:
            task = asyncio.create_task(self._dispatch_after(self._last, event))
            self._last = task
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return []
        return await self._dispatch(event)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for background handlers to finish."""
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning("%d event handler batches still running after drain", len(not_done))

    async def _dispatch_after(
        self, previous: asyncio.Task[list[Exception]] | None, event: DomainEvent
    ) -> list[Exception]:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        return await self._dispatch(event)

    async def _dispatch(self, event: DomainEvent) -> list[Exception]:
        event_type = event.event_type
        event_category = event.category

        tasks: list[asyncio.Task[None]] = []
        for reg in self._handlers:
            if reg.event_types and event_type not in reg.event_types:
                continue
            if reg.categories and event_category not in reg.categories:
                continue
            tasks.append(asyncio.create_task(self._call_handler(reg.handler, event)))

        errors: list[Exception] = []
        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    errors.append(result)
        return errors

    async def _call_handler(self, handler: AsyncEventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Async handler %s failed for event %s",
                handler,
                event.event_type,
            )
            raise
