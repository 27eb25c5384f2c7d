"""Exception types raised by the locking layer."""

from __future__ import annotations


class LockyError(Exception):
    """Base class for every error raised by locky."""


class BackendError(LockyError):
    """A command or batch could not be executed against the store."""


class SettingsError(LockyError, ValueError):
    """Configuration could not be loaded or failed validation."""
