from __future__ import annotations

import pytest
import pytest_asyncio
from redis.exceptions import RedisError

from locky.core.exceptions import BackendError
from locky.core.store import (
    CommandPair,
    Delete,
    Expire,
    Get,
    Overwrite,
    RedisStore,
    RemainingTtl,
    SetAdd,
    SetIfAbsent,
    SetMembers,
    SetRemove,
)

from conftest import outage


@pytest_asyncio.fixture
async def store(connection_factory):
    store = RedisStore(factory=connection_factory)
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_execute_single_command(store):
    assert await store.execute(SetIfAbsent("k1", "v1")) is True
    assert await store.execute(Get("k1")) == "v1"
    assert await store.execute(Get("missing")) is None


@pytest.mark.asyncio
async def test_batch_results_follow_submission_order(store):
    results = await store.execute_batch(
        [
            SetIfAbsent("k1", "first"),
            SetIfAbsent("k1", "second"),
            Overwrite("k2", "v2"),
            Get("k1"),
            Get("k2"),
            Delete("k2"),
            Delete("k2"),
        ]
    )
    assert results == [True, False, True, "first", "v2", True, False]


@pytest.mark.asyncio
async def test_empty_batch_skips_backend(store):
    with outage(store):
        assert await store.execute_batch([]) == []


@pytest.mark.asyncio
async def test_set_commands(store):
    results = await store.execute_batch(
        [SetAdd("s", "a"), SetAdd("s", "a"), SetAdd("s", "b"), SetRemove("s", "b"), SetMembers("s")]
    )
    assert results == [1, 0, 1, 1, ["a"]]


@pytest.mark.asyncio
async def test_ttl_commands(store):
    await store.execute(SetIfAbsent("with-ttl", "v", ttl_ms=10_000))
    await store.execute(Overwrite("no-ttl", "v"))
    ttl, persistent, missing = await store.execute_batch(
        [RemainingTtl("with-ttl"), RemainingTtl("no-ttl"), RemainingTtl("missing")]
    )
    assert 0 < ttl <= 10_000
    assert persistent == -1
    assert missing == -2
    assert await store.execute_batch([Expire("no-ttl", 5_000), Expire("missing", 5_000)]) == [True, False]


@pytest.mark.asyncio
async def test_pairs_are_regrouped(store):
    await store.execute(Overwrite("taken", "someone"))
    results = await store.execute_pairs(
        [
            CommandPair(membership=SetAdd("s", "free"), key=SetIfAbsent("free", "me")),
            CommandPair(membership=SetAdd("s", "taken"), key=SetIfAbsent("taken", "me")),
        ]
    )
    assert [(r.membership, r.key) for r in results] == [(1, True), (1, False)]


@pytest.mark.asyncio
async def test_backend_failure_is_wrapped(store):
    with outage(store):
        with pytest.raises(BackendError) as excinfo:
            await store.execute(Get("k"))
        assert isinstance(excinfo.value.__cause__, RedisError)

        with pytest.raises(BackendError):
            await store.execute_batch([Get("k"), Get("other")])

    assert await store.execute(Get("k")) is None


@pytest.mark.asyncio
async def test_closed_store_rejects_commands(connection_factory):
    store = RedisStore(factory=connection_factory)
    await store.close()
    await store.close()
    assert store.closed
    with pytest.raises(BackendError):
        await store.execute(Get("k"))
    with pytest.raises(BackendError):
        await store.execute_batch([Get("k")])


def test_store_from_url_is_lazy():
    store = RedisStore("redis://localhost:6390/3")
    assert not store.closed


def test_factory_rejects_connection_kwargs(connection_factory):
    with pytest.raises(TypeError):
        RedisStore(factory=connection_factory, socket_timeout=1)
