from __future__ import annotations

import asyncio
import contextlib
from typing import List, Optional, Tuple

import fakeredis
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from locky.core.engine import LockEngine
from locky.core.models import LockEvent, LockEventType
from locky.core.store import RedisStore


class EventRecorder:
    """Collects every event emitted by an engine as comparable tuples."""

    def __init__(self, engine: LockEngine) -> None:
        self.events: List[LockEvent] = []
        for event_type in LockEventType:
            engine.on(event_type, self.events.append)

    def of(self, event_type: LockEventType) -> List[Tuple[Optional[str], ...]]:
        found = []
        for event in self.events:
            if event.type is not event_type:
                continue
            if event_type is LockEventType.LOCK:
                found.append((event.resource, event.locker))
            else:
                found.append((event.resource,))
        return found

    @property
    def errors(self) -> List[LockEvent]:
        return [event for event in self.events if event.type is LockEventType.ERROR]


class _BrokenPipeline:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        raise RedisConnectionError("Connection refused")


class BrokenRedis:
    """Client double whose connection is down: every command fails."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return fail

    def pipeline(self, transaction=True):
        return _BrokenPipeline()

    async def aclose(self):
        return None


class _HangingPipeline(_BrokenPipeline):
    def __init__(self, release: asyncio.Event) -> None:
        self._release = release

    async def execute(self):
        await self._release.wait()
        raise RedisConnectionError("Connection closed")


class HangingRedis(BrokenRedis):
    """Client double whose batches never answer until it is closed."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.closed = False

    def pipeline(self, transaction=True):
        return _HangingPipeline(self.release)

    async def smembers(self, name):
        return {"test:lock:resource:article1"}

    async def aclose(self):
        self.closed = True
        self.release.set()


@contextlib.contextmanager
def outage(store: RedisStore):
    client = store._redis
    store._redis = BrokenRedis()
    try:
        yield
    finally:
        store._redis = client


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def connection_factory(server):
    return lambda: fakeredis.FakeAsyncRedis(server=server, decode_responses=True)


@pytest_asyncio.fixture
async def redis_client(connection_factory):
    client = connection_factory()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def engine(connection_factory):
    engine = LockEngine(ttl_ms=50, namespace="test", connection_factory=connection_factory, autostart=False)
    yield engine
    await engine.close()


@pytest.fixture
def recorder(engine):
    return EventRecorder(engine)
