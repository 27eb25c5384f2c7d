"""CLI entrypoint to inspect and manipulate locks."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from locky.core.engine import LockEngine
from locky.core.exceptions import SettingsError
from locky.core.models import LockEvent, LockEventType, LockRequest
from locky.core.settings import LockySettings
from locky.core.store import ConnectionFactory
from locky.services.audit_logger import AuditLogger
from locky.utils.env import get_bool_env
from locky.utils.logging import get_logger, set_level


logger = get_logger("locky.cli", rich=not get_bool_env("LOCKY_PLAIN_LOGS"))


def _parse_pair(raw: str) -> LockRequest:
    resource, sep, locker = raw.partition("=")
    if not sep or not resource or not locker:
        raise argparse.ArgumentTypeError(f"expected RESOURCE=LOCKER, got {raw!r}")
    return LockRequest(resource=resource, locker=locker)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="locky", description="Manage resource locks stored in Redis.")
    parser.add_argument("--config", type=Path, help="Path to settings YAML (defaults to environment)")
    parser.add_argument("--redis-url", help="Redis connection URL")
    parser.add_argument("--namespace", help="Key namespace shared by cooperating engines")
    parser.add_argument("--ttl-ms", type=int, help="Lock lifetime in milliseconds (0 disables expiry)")
    parser.add_argument("--set", dest="set_name", help="Override the active-lock set name")
    parser.add_argument("--audit-log", type=Path, help="Append every lock event to this JSON Lines file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")

    commands = parser.add_subparsers(dest="command", required=True)

    lock = commands.add_parser("lock", help="Lock resources")
    lock.add_argument("pairs", nargs="+", type=_parse_pair, metavar="RESOURCE=LOCKER")
    lock.add_argument("--force", action="store_true", help="Overwrite existing owners")

    unlock = commands.add_parser("unlock", help="Unlock resources")
    unlock.add_argument("resources", nargs="+")

    commands.add_parser("locks", help="List lock keys in the active set")

    lockers = commands.add_parser("lockers", help="Show the locker of each resource")
    lockers.add_argument("resources", nargs="+")

    extend = commands.add_parser("extend", help="Refresh the TTL of resources or lock keys")
    extend.add_argument("entries", nargs="+")

    commands.add_parser("sweep", help="Detect expired locks once")
    commands.add_parser("watch", help="Sweep periodically and print events until interrupted")
    return parser


def load_settings(args: argparse.Namespace) -> LockySettings:
    settings = LockySettings.from_file(args.config) if args.config else LockySettings.from_env()
    overrides = {
        "redis_url": args.redis_url,
        "namespace": args.namespace,
        "ttl_ms": args.ttl_ms,
        "set_name": args.set_name,
    }
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return settings
    try:
        return LockySettings.model_validate(settings.model_dump() | updates)
    except ValidationError as exc:
        raise SettingsError(f"Invalid command line settings: {exc}") from exc


def _print_event(event: LockEvent) -> None:
    print(json.dumps(event.to_record()), flush=True)


async def run(
    args: argparse.Namespace,
    *,
    connection_factory: Optional[ConnectionFactory] = None,
) -> int:
    settings = load_settings(args)
    engine = LockEngine.from_settings(
        settings, connection_factory=connection_factory, autostart=args.command == "watch"
    )
    for event_type in LockEventType:
        engine.on(event_type, _print_event)
    if args.audit_log:
        AuditLogger(args.audit_log).attach(engine)

    try:
        if args.command == "lock":
            ok = await engine.lock(args.pairs, force=args.force)
        elif args.command == "unlock":
            ok = await engine.unlock(args.resources)
        elif args.command == "locks":
            locks = await engine.get_locks()
            ok = locks is not None
            if ok:
                print(json.dumps(locks))
        elif args.command == "lockers":
            lockers = await engine.get_lockers(args.resources)
            ok = lockers is not None
            if ok:
                print(json.dumps([[resource, locker] for resource, locker in zip(args.resources, lockers)]))
        elif args.command == "extend":
            ok = await engine.extend(args.entries)
        elif args.command == "sweep":
            ok = await engine.sweep() is not None
        elif args.command == "watch":
            if engine.sweep_interval is None:
                logger.error("watch requires a TTL (--ttl-ms or LOCKY_TTL_MS)")
                return 2
            engine.start()
            logger.info("Watching %s every %.3fs. Press Ctrl+C to exit.", engine.set_name, engine.sweep_interval)
            try:
                while True:
                    await asyncio.sleep(3600)
            except asyncio.CancelledError:
                logger.info("Received shutdown signal")
            ok = True
        else:  # pragma: no cover - argparse enforces choices
            raise ValueError(f"Unknown command {args.command!r}")
    finally:
        await engine.close()
    return 0 if ok else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_level(logging.DEBUG, "locky.cli", "locky.engine", "locky.store", "locky.events")
    try:
        return asyncio.run(run(args))
    except SettingsError as exc:
        logger.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
