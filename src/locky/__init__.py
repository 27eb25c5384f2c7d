"""Resource locks on a shared Redis store with expiry sweeping and lifecycle events."""

from .core import (
    BackendError,
    LockEngine,
    LockEvent,
    LockEventType,
    LockRequest,
    LockySettings,
)

__all__ = [
    "__version__",
    "BackendError",
    "LockEngine",
    "LockEvent",
    "LockEventType",
    "LockRequest",
    "LockySettings",
]

__version__ = "0.1.0"
