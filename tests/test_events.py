from __future__ import annotations

import asyncio

import pytest

from locky.core.events import EventHub
from locky.core.models import LockEvent, LockEventType


@pytest.mark.asyncio
async def test_listeners_receive_events_in_registration_order():
    hub = EventHub()
    calls = []
    hub.on("lock", lambda event: calls.append(("first", event.resource)))
    hub.on(LockEventType.LOCK, lambda event: calls.append(("second", event.resource)))

    await hub.emit(LockEvent(type=LockEventType.LOCK, resource="r1", locker="u1"))
    await hub.emit(LockEvent(type=LockEventType.UNLOCK, resource="r1"))

    assert calls == [("first", "r1"), ("second", "r1")]


@pytest.mark.asyncio
async def test_async_listener_is_awaited():
    hub = EventHub()
    seen = []

    async def listener(event):
        await asyncio.sleep(0)
        seen.append(event.resource)

    hub.on("expire", listener)
    await hub.emit(LockEvent(type=LockEventType.EXPIRE, resource="r1"))
    assert seen == ["r1"]


@pytest.mark.asyncio
async def test_unsubscribe_and_off():
    hub = EventHub()
    seen = []
    remove = hub.on("unlock", seen.append)
    hub.on("unlock", seen.append)
    assert hub.listener_count("unlock") == 2

    remove()
    hub.off("unlock", seen.append)
    hub.off("unlock", seen.append)
    assert hub.listener_count("unlock") == 0

    await hub.emit(LockEvent(type=LockEventType.UNLOCK, resource="r1"))
    assert seen == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    hub = EventHub()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    hub.on("lock", broken)
    hub.on("lock", seen.append)
    await hub.emit(LockEvent(type=LockEventType.LOCK, resource="r1", locker="u1"))
    assert [event.resource for event in seen] == ["r1"]


def test_unknown_event_type_is_rejected():
    with pytest.raises(ValueError):
        EventHub().on("explode", print)


@pytest.mark.asyncio
async def test_subscribe_filters_by_type(engine):
    received = []

    async def consume():
        async for event in engine.subscribe("lock"):
            received.append((event.resource, event.locker))
            if len(received) == 2:
                break

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)

    await engine.lock([{"resource": "a", "locker": "u1"}])
    await engine.unlock(["a"])
    await engine.lock([{"resource": "b", "locker": "u2"}])
    await asyncio.wait_for(task, timeout=1)

    assert received == [("a", "u1"), ("b", "u2")]


@pytest.mark.asyncio
async def test_subscribe_drops_oldest_on_overflow():
    hub = EventHub()
    stream = hub.subscribe(max_queue=2)
    first = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)

    for resource in ("r1", "r2", "r3", "r4"):
        await hub.emit(LockEvent(type=LockEventType.UNLOCK, resource=resource))

    assert (await first).resource == "r3"
    assert (await stream.__anext__()).resource == "r4"
    await stream.aclose()


def test_event_record_serializes_error():
    from locky.core.exceptions import BackendError

    record = LockEvent(type=LockEventType.ERROR, error=BackendError("down")).to_record()
    assert record["type"] == "error"
    assert record["error"] == "down"
    assert "resource" not in record
