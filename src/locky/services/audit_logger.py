"""Structured audit logger writing JSON Lines for lock events."""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from locky.core.engine import LockEngine
from locky.core.models import LockEvent, LockEventType


class AuditLogger:
    """Persist every lock lifecycle event as one JSON line."""

    def __init__(self, path: Optional[Path] = None) -> None:
        target = path or Path(os.getenv("LOCKY_AUDIT_LOG", "artifacts/locky-audit.log"))
        target.parent.mkdir(parents=True, exist_ok=True)
        self._path = target
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def attach(self, engine: LockEngine) -> Callable[[], None]:
        """Listen to every event type of ``engine``; returns a detach callable."""
        removers: List[Callable[[], None]] = [
            engine.on(event_type, self.log) for event_type in LockEventType
        ]

        def detach() -> None:
            for remove in removers:
                remove()

        return detach

    async def log(self, event: LockEvent) -> None:
        record: Dict[str, Any] = event.to_record()
        async with self._lock:
            await asyncio.to_thread(self._append_line, record)

    def _append_line(self, record: Dict[str, Any]) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=True))
            fh.write("\n")
