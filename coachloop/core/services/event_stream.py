"""Typed fan-out of orchestrator events to independent subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from coachloop.contracts import OrchestratorEvent, OrchestratorEventType

logger = logging.getLogger(__name__)


class Subscription:
    """One subscriber's bounded queue. Iterate it, or call `get()`."""

    def __init__(self, stream: EventStream, maxsize: int) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[OrchestratorEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: OrchestratorEvent) -> None:
        if self._queue.full():
            # Slow consumer: drop its oldest event, never block the publisher
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> OrchestratorEvent:
        return self._queue.get_nowait()

    async def get(self) -> OrchestratorEvent:
        return await self._queue.get()

    def drain(self) -> list[OrchestratorEvent]:
        events: list[OrchestratorEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def close(self) -> None:
        self.closed = True
        self._stream.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[OrchestratorEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[OrchestratorEvent]:
        while not self.closed:
            yield await self._queue.get()


class EventStream:
    """Per-subscriber bounded queues.

    KISS: publishing is synchronous and never awaits; a subscriber that falls
    behind loses its oldest events rather than slowing the loop.
    """

    def __init__(self, *, max_queue_size: int = 256) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: list[Subscription] = []

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._max_queue_size)
        self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: OrchestratorEvent) -> None:
        for sub in list(self._subscribers):
            sub.offer(event)
        logger.debug(
            "event_published",
            extra={"type": event.type, "subscribers": len(self._subscribers)},
        )

    def emit(
        self,
        event_type: OrchestratorEventType,
        payload: dict[str, Any] | None = None,
        *,
        match_id: str | None = None,
    ) -> OrchestratorEvent:
        event = OrchestratorEvent(type=event_type, match_id=match_id, payload=payload or {})
        self.publish(event)
        return event
