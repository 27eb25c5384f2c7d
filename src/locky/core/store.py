"""Redis command adapter executing single commands and atomic batches."""

from __future__ import annotations

import abc
import os
from dataclasses import dataclass
from typing import Any, Callable, List, NamedTuple, Optional, Sequence

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .exceptions import BackendError
from locky.utils.logging import get_logger


DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# PTTL reply for a key that does not exist.
TTL_KEY_MISSING = -2

ConnectionFactory = Callable[[], Redis]


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


@dataclass(frozen=True, slots=True)
class Command(abc.ABC):
    """One backend operation bound to its key.

    ``apply`` issues the operation on a client (returns an awaitable) or on a
    pipeline (queues it); ``parse`` normalizes the raw reply.
    """

    key: str

    @abc.abstractmethod
    def apply(self, target: Any) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def parse(self, raw: Any) -> Any:
        return raw


@dataclass(frozen=True, slots=True)
class SetAdd(Command):
    member: str

    def apply(self, target: Any) -> Any:
        return target.sadd(self.key, self.member)

    def parse(self, raw: Any) -> int:
        return int(raw)


@dataclass(frozen=True, slots=True)
class SetRemove(Command):
    member: str

    def apply(self, target: Any) -> Any:
        return target.srem(self.key, self.member)

    def parse(self, raw: Any) -> int:
        return int(raw)


@dataclass(frozen=True, slots=True)
class SetMembers(Command):
    def apply(self, target: Any) -> Any:
        return target.smembers(self.key)

    def parse(self, raw: Any) -> List[str]:
        return sorted(_decode(member) for member in raw or ())


@dataclass(frozen=True, slots=True)
class Get(Command):
    def apply(self, target: Any) -> Any:
        return target.get(self.key)

    def parse(self, raw: Any) -> Optional[str]:
        return _decode(raw)


@dataclass(frozen=True, slots=True)
class SetIfAbsent(Command):
    """SET NX: only succeeds when the key does not exist yet."""

    value: str
    ttl_ms: Optional[int] = None

    def apply(self, target: Any) -> Any:
        return target.set(self.key, self.value, nx=True, px=self.ttl_ms or None)

    def parse(self, raw: Any) -> bool:
        return bool(raw)


@dataclass(frozen=True, slots=True)
class Overwrite(Command):
    """Plain SET replacing any current value."""

    value: str
    ttl_ms: Optional[int] = None

    def apply(self, target: Any) -> Any:
        return target.set(self.key, self.value, px=self.ttl_ms or None)

    def parse(self, raw: Any) -> bool:
        return bool(raw)


@dataclass(frozen=True, slots=True)
class Delete(Command):
    def apply(self, target: Any) -> Any:
        return target.delete(self.key)

    def parse(self, raw: Any) -> bool:
        return int(raw) > 0


@dataclass(frozen=True, slots=True)
class Expire(Command):
    ttl_ms: int

    def apply(self, target: Any) -> Any:
        return target.pexpire(self.key, self.ttl_ms)

    def parse(self, raw: Any) -> bool:
        return bool(raw)


@dataclass(frozen=True, slots=True)
class RemainingTtl(Command):
    """PTTL in milliseconds; -1 without expiry, -2 when the key is missing."""

    def apply(self, target: Any) -> Any:
        return target.pttl(self.key)

    def parse(self, raw: Any) -> int:
        return int(raw)


@dataclass(frozen=True, slots=True)
class CommandPair:
    """Two commands forming one logical action, e.g. track + write a lock."""

    membership: Command
    key: Command


class PairResult(NamedTuple):
    membership: Any
    key: Any


class RedisStore:
    """Thin async adapter over a ``redis.asyncio`` client.

    Batches are sent as one MULTI/EXEC pipeline, so other clients never see
    a partially applied batch. No retries happen here.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        factory: Optional[ConnectionFactory] = None,
        **connection_kwargs: Any,
    ) -> None:
        if factory is not None and connection_kwargs:
            raise TypeError("A connection factory builds its own client; connection kwargs would be ignored")
        if factory is not None:
            self._redis = factory()
        else:
            connection_kwargs.setdefault("decode_responses", True)
            self._redis = Redis.from_url(
                url or os.getenv("REDIS_URL", DEFAULT_REDIS_URL), **connection_kwargs
            )
        self._closed = False
        self.logger = get_logger("locky.store")

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise BackendError("RedisStore is closed")

    async def execute(self, command: Command) -> Any:
        self._ensure_open()
        try:
            raw = await command.apply(self._redis)
        except RedisError as exc:
            raise BackendError(f"{type(command).__name__} on {command.key!r} failed: {exc}") from exc
        return command.parse(raw)

    async def execute_batch(self, commands: Sequence[Command]) -> List[Any]:
        """Run ``commands`` atomically; results come back in submission order."""
        self._ensure_open()
        if not commands:
            return []
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for command in commands:
                    command.apply(pipe)
                raw_results = await pipe.execute()
        except RedisError as exc:
            raise BackendError(f"Batch of {len(commands)} commands failed: {exc}") from exc
        if len(raw_results) != len(commands):
            raise BackendError(
                f"Batch returned {len(raw_results)} results for {len(commands)} commands"
            )
        self.logger.debug("Executed batch of %d commands", len(commands))
        return [command.parse(raw) for command, raw in zip(commands, raw_results)]

    async def execute_pairs(self, pairs: Sequence[CommandPair]) -> List[PairResult]:
        """Run command pairs in one batch and regroup the replies per pair."""
        commands: List[Command] = []
        for pair in pairs:
            commands.append(pair.membership)
            commands.append(pair.key)
        results = iter(await self.execute_batch(commands))
        return [PairResult(membership, key) for membership, key in zip(results, results)]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._redis.aclose()
        except RedisError as exc:
            raise BackendError(f"Failed to close connection: {exc}") from exc
