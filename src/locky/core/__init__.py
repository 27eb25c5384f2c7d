"""Core locking primitives."""

from .engine import LockEngine
from .events import EventHub
from .exceptions import BackendError, LockyError, SettingsError
from .keys import KeyFormatter
from .models import LockEvent, LockEventType, LockRequest
from .settings import LockySettings
from .store import CommandPair, RedisStore

__all__ = [
    "LockEngine",
    "EventHub",
    "BackendError",
    "LockyError",
    "SettingsError",
    "KeyFormatter",
    "LockEvent",
    "LockEventType",
    "LockRequest",
    "LockySettings",
    "CommandPair",
    "RedisStore",
]
