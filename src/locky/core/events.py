"""Observer registry for lock lifecycle events."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Union

from .models import LockEvent, LockEventType
from locky.utils.logging import get_logger


Listener = Callable[[LockEvent], Union[None, Awaitable[None]]]


@dataclass(slots=True, eq=False)
class _Subscription:
    queue: "asyncio.Queue[LockEvent]"
    event_type: Optional[LockEventType]


class EventHub:
    """Per-engine event dispatch.

    Listeners registered with :meth:`on` run in registration order, inline
    with the operation that produced the event. :meth:`subscribe` offers the
    same events as an async iterator fed by a bounded queue.
    """

    def __init__(self) -> None:
        self._listeners: Dict[LockEventType, List[Listener]] = defaultdict(list)
        self._subscriptions: Set[_Subscription] = set()
        self.logger = get_logger("locky.events")

    def on(self, event_type: LockEventType | str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        kind = LockEventType(event_type)
        self._listeners[kind].append(listener)
        return lambda: self.off(kind, listener)

    def off(self, event_type: LockEventType | str, listener: Listener) -> None:
        listeners = self._listeners.get(LockEventType(event_type), [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event_type: LockEventType | str) -> int:
        return len(self._listeners.get(LockEventType(event_type), []))

    async def emit(self, event: LockEvent) -> None:
        for listener in list(self._listeners.get(event.type, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.logger.exception("Listener %r failed on %s event", listener, event.type.value)

        for subscription in list(self._subscriptions):
            if subscription.event_type is not None and subscription.event_type != event.type:
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop the oldest event so the newest one is always delivered.
                try:
                    subscription.queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                subscription.queue.put_nowait(event)

    async def subscribe(
        self,
        event_type: LockEventType | str | None = None,
        *,
        max_queue: int = 100,
    ) -> AsyncIterator[LockEvent]:
        """Yield events as they are emitted, optionally filtered by type."""
        kind = LockEventType(event_type) if event_type is not None else None
        queue: "asyncio.Queue[LockEvent]" = asyncio.Queue(max_queue)
        subscription = _Subscription(queue=queue, event_type=kind)
        self._subscriptions.add(subscription)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscriptions.discard(subscription)
