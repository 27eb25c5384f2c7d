#!/usr/bin/env python3
"""Two editors competing for the same articles.

Requires a Redis server reachable through REDIS_URL (defaults to
redis://localhost:6379/0).
"""

import asyncio

from locky import LockEngine, LockEvent
from locky.utils.logging import get_logger

logger = get_logger("ArticleLocksExample")


def report(event: LockEvent) -> None:
    logger.info("%s %s %s", event.type.value, event.resource, event.locker or "")


async def main():
    alice = LockEngine(ttl_ms=2000, namespace="example")
    bob = LockEngine(ttl_ms=2000, namespace="example")
    for engine in (alice, bob):
        for event_type in ("lock", "unlock", "extend", "expire", "error"):
            engine.on(event_type, report)

    async with alice, bob:
        # Only one of the two claims on article1 wins.
        await asyncio.gather(
            alice.lock([{"resource": "article1", "locker": "alice"}]),
            bob.lock([{"resource": "article1", "locker": "bob"}, {"resource": "article2", "locker": "bob"}]),
        )
        logger.info("Owners: %s", await alice.get_lockers(["article1", "article2"]))

        # Keep bob's locks alive for a while, then let them lapse.
        await asyncio.sleep(1.5)
        await bob.extend(await bob.get_locks())
        await alice.unlock(["article1"])
        await asyncio.sleep(3)
        logger.info("Remaining locks: %s", await alice.get_locks())


if __name__ == "__main__":
    asyncio.run(main())
