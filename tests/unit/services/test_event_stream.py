"""Unit tests for EventStream."""

from __future__ import annotations

import asyncio

import pytest

from coachloop.contracts import OrchestratorEventType
from coachloop.core.services.event_stream import EventStream


def test_every_subscriber_gets_every_event() -> None:
    stream = EventStream()
    first, second = stream.subscribe(), stream.subscribe()

    stream.emit(OrchestratorEventType.DECISION_MADE, {"decision_id": "d1"}, match_id="m")

    for sub in (first, second):
        (event,) = sub.drain()
        assert event.type == OrchestratorEventType.DECISION_MADE
        assert event.payload == {"decision_id": "d1"}
        assert event.match_id == "m"


def test_slow_subscriber_loses_oldest_events_only() -> None:
    stream = EventStream(max_queue_size=2)
    slow = stream.subscribe()

    for n in range(4):
        stream.emit(OrchestratorEventType.HEALTH_CHECK, {"n": n})

    assert slow.dropped == 2
    assert [e.payload["n"] for e in slow.drain()] == [2, 3]


def test_closed_subscription_stops_receiving() -> None:
    stream = EventStream()
    sub = stream.subscribe()

    sub.close()
    stream.emit(OrchestratorEventType.ERROR, {"code": "x"})

    assert stream.subscriber_count == 0
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_subscription_is_async_iterable() -> None:
    stream = EventStream()
    sub = stream.subscribe()
    stream.emit(OrchestratorEventType.STATE_CHANGED, {"n": 1})
    stream.emit(OrchestratorEventType.OUTPUT_GENERATED, {"n": 2})

    received = []
    async for event in sub:
        received.append(event.type)
        if len(received) == 2:
            break

    assert received == [OrchestratorEventType.STATE_CHANGED, OrchestratorEventType.OUTPUT_GENERATED]
    waiter = asyncio.create_task(sub.get())
    stream.emit(OrchestratorEventType.USER_FEEDBACK)
    assert (await asyncio.wait_for(waiter, 1.0)).type == OrchestratorEventType.USER_FEEDBACK
