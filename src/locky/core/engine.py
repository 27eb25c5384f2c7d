"""Lock lifecycle engine on top of a shared Redis store."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from .events import EventHub, Listener
from .exceptions import BackendError
from .keys import KeyFormatter
from .models import LockEvent, LockEventType, LockRequest
from .settings import LockySettings
from .store import (
    TTL_KEY_MISSING,
    CommandPair,
    ConnectionFactory,
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
from locky.utils.logging import get_logger


LockItem = Union[LockRequest, Mapping[str, Any], Sequence[str]]


class LockEngine:
    """Acquire, release, extend and expire resource locks.

    Ownership is decided by the store: a lock key is written with SET NX, so
    when several engines race for one resource exactly one of them reports a
    ``lock`` event for it. The active-lock set only caches which keys are
    believed held; :meth:`sweep` reconciles it with keys that expired.

    Backend failures never propagate out of the public operations. They are
    reported as an ``error`` event and the operation returns ``False`` (or
    ``None`` for queries).
    """

    def __init__(
        self,
        *,
        ttl_ms: Optional[int] = None,
        namespace: Optional[str] = None,
        set_name: Optional[str] = None,
        store: Optional[RedisStore] = None,
        redis_url: Optional[str] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        autostart: bool = True,
        **connection_kwargs: Any,
    ) -> None:
        if ttl_ms is not None and ttl_ms < 0:
            raise ValueError("ttl_ms must be positive, zero or None")
        if store is not None and (redis_url or connection_factory or connection_kwargs):
            raise TypeError("Pass either a store or connection settings, not both")
        self.ttl_ms = ttl_ms or None
        self.formatter = KeyFormatter(namespace)
        self.set_name = set_name or self.formatter.set_name()
        self.store = store or RedisStore(redis_url, factory=connection_factory, **connection_kwargs)
        self.events = EventHub()
        self.logger = get_logger("locky.engine")
        self._sweep_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._closed = False
        if autostart:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass  # no loop yet; start() arms the sweep later
            else:
                self.start()

    @classmethod
    def from_settings(
        cls,
        settings: LockySettings,
        *,
        connection_factory: Optional[ConnectionFactory] = None,
        autostart: bool = True,
    ) -> "LockEngine":
        return cls(
            ttl_ms=settings.ttl_ms,
            namespace=settings.namespace,
            set_name=settings.set_name,
            redis_url=settings.redis_url,
            connection_factory=connection_factory,
            autostart=autostart,
        )

    @property
    def sweep_interval(self) -> Optional[float]:
        """Seconds between two sweeps, half the TTL; None without TTL."""
        if not self.ttl_ms:
            return None
        return self.ttl_ms / 2 / 1000

    @property
    def closed(self) -> bool:
        return self._closed

    # -- observers -------------------------------------------------------

    def on(self, event_type: LockEventType | str, listener: Listener) -> Callable[[], None]:
        return self.events.on(event_type, listener)

    def off(self, event_type: LockEventType | str, listener: Listener) -> None:
        self.events.off(event_type, listener)

    def subscribe(
        self, event_type: LockEventType | str | None = None, *, max_queue: int = 100
    ) -> AsyncIterator[LockEvent]:
        return self.events.subscribe(event_type, max_queue=max_queue)

    async def _emit(self, event_type: LockEventType, **payload: Any) -> None:
        await self.events.emit(LockEvent(type=event_type, **payload))

    async def _fail(self, operation: str, exc: BackendError) -> None:
        self.logger.warning("%s failed: %s", operation, exc)
        await self._emit(LockEventType.ERROR, error=exc)

    # -- operations ------------------------------------------------------

    async def lock(self, collection: Iterable[LockItem], *, force: bool = False) -> bool:
        """Try to lock every ``{resource, locker}`` pair in one atomic batch.

        Returns True when the batch ran, whatever the number of pairs that
        were actually acquired; listen to ``lock`` events to learn which.
        """
        requests = [LockRequest.coerce(item) for item in collection]
        write = Overwrite if force else SetIfAbsent
        pairs = [
            CommandPair(
                membership=SetAdd(self.set_name, self.formatter.resource_to_key(request.resource)),
                key=write(self.formatter.resource_to_key(request.resource), request.locker, self.ttl_ms),
            )
            for request in requests
        ]
        try:
            results = await self.store.execute_pairs(pairs)
        except BackendError as exc:
            await self._fail("lock", exc)
            return False

        acquired = [request for request, result in zip(requests, results) if result.key]
        self.logger.debug("Locked %d of %d resources (force=%s)", len(acquired), len(requests), force)
        for request in acquired:
            await self._emit(LockEventType.LOCK, resource=request.resource, locker=request.locker)
        return True

    async def unlock(self, resources: Iterable[str]) -> bool:
        """Release ``resources``. Ownership is not checked."""
        resources = list(resources)
        pairs = [
            CommandPair(
                membership=SetRemove(self.set_name, self.formatter.resource_to_key(resource)),
                key=Delete(self.formatter.resource_to_key(resource)),
            )
            for resource in resources
        ]
        try:
            results = await self.store.execute_pairs(pairs)
        except BackendError as exc:
            await self._fail("unlock", exc)
            return False

        released = [resource for resource, result in zip(resources, results) if result.key]
        self.logger.debug("Unlocked %d of %d resources", len(released), len(resources))
        for resource in released:
            await self._emit(LockEventType.UNLOCK, resource=resource)
        return True

    async def get_locks(self) -> Optional[List[str]]:
        """Lock keys currently in the active set, stale entries included."""
        try:
            return await self.store.execute(SetMembers(self.set_name))
        except BackendError as exc:
            await self._fail("get_locks", exc)
            return None

    async def get_lockers(self, resources: Iterable[str]) -> Optional[List[Optional[str]]]:
        """Current locker of each resource, None where it is not locked."""
        commands = [Get(self.formatter.resource_to_key(resource)) for resource in resources]
        try:
            return await self.store.execute_batch(commands)
        except BackendError as exc:
            await self._fail("get_lockers", exc)
            return None

    async def extend(self, entries: Iterable[str]) -> bool:
        """Reset the TTL of each entry; entries may be resources or lock keys."""
        if not self.ttl_ms:
            return True
        keys = [self.formatter.to_key(entry) for entry in entries]
        commands = [Expire(key, self.ttl_ms) for key in keys]
        try:
            results = await self.store.execute_batch(commands)
        except BackendError as exc:
            await self._fail("extend", exc)
            return False

        for key, refreshed in zip(keys, results):
            if refreshed:
                await self._emit(LockEventType.EXTEND, resource=self.formatter.key_to_resource(key))
        return True

    async def sweep(self, locks: Optional[Sequence[str]] = None) -> Optional[List[str]]:
        """Detect lock keys that expired and drop them from the active set.

        Returns the expired resources, or None when the store failed.
        """
        if not self.ttl_ms:
            return []
        if locks is None:
            locks = await self.get_locks()
            if locks is None:
                return None
        keys = list(locks)
        try:
            ttls = await self.store.execute_batch([RemainingTtl(key) for key in keys])
        except BackendError as exc:
            await self._fail("sweep", exc)
            return None

        expired = [key for key, ttl in zip(keys, ttls) if ttl == TTL_KEY_MISSING]
        if not expired:
            return []
        self.logger.debug("Sweep found %d expired locks", len(expired))
        try:
            removed = await self.store.execute_batch([SetRemove(self.set_name, key) for key in expired])
        except BackendError as exc:
            await self._fail("sweep", exc)
            return None

        # Only the sweep whose SREM removed the member reports it, so
        # overlapping sweeps (here or in other engines) expire a lock once.
        resources = [self.formatter.key_to_resource(key) for key, count in zip(expired, removed) if count]
        for resource in resources:
            await self._emit(LockEventType.EXPIRE, resource=resource)
        return resources

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Arm the periodic sweep. Does nothing without TTL or once closed."""
        if self._closed or self.sweep_interval is None:
            return
        if self._sweep_task and not self._sweep_task.done():
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name=f"locky-sweep-{self.set_name}")
        self.logger.debug("Sweeping %s every %.3fs", self.set_name, self.sweep_interval)

    async def _sweep_loop(self) -> None:
        interval = self.sweep_interval
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.sweep()
            except Exception:  # pragma: no cover - keep the timer alive
                self.logger.exception("Unexpected failure during sweep")

    async def close(self) -> None:
        """Disarm future sweeps and close the store connection. Safe to call twice.

        A sweep already waiting on the store is neither awaited nor cancelled;
        once the connection is closed it ends with an ``error`` event.
        """
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        self._sweep_task = None
        try:
            await self.store.close()
        except BackendError as exc:
            await self._fail("close", exc)

    async def __aenter__(self) -> "LockEngine":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
