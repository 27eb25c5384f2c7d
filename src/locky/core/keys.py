"""Key naming for lock entries and the active-lock set."""

from __future__ import annotations

from typing import Optional

SEPARATOR = ":"


class KeyFormatter:
    """Maps resources to Redis keys, optionally under a namespace.

    Layout::

        [namespace:]lock:resource:<resource>
        [namespace:]lock:currents
    """

    def __init__(self, namespace: Optional[str] = None) -> None:
        self.namespace = namespace or None
        self._prefix = self._join("lock", "resource") + SEPARATOR

    def _join(self, *parts: str) -> str:
        return SEPARATOR.join(part for part in (self.namespace, *parts) if part)

    @property
    def prefix(self) -> str:
        return self._prefix

    def resource_to_key(self, resource: str) -> str:
        return f"{self._prefix}{resource}"

    def key_to_resource(self, key: str) -> str:
        """Strip the lock prefix from ``key``. Only defined for our own keys."""
        if key.startswith(self._prefix):
            return key[len(self._prefix):]
        return key

    def is_key(self, value: str) -> bool:
        return value.startswith(self._prefix)

    def to_key(self, entry: str) -> str:
        """Accept either a resource or an already formatted lock key."""
        return entry if self.is_key(entry) else self.resource_to_key(entry)

    def set_name(self) -> str:
        return self._join("lock", "currents")
