"""Data models shared across the locking runtime."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import BackendError


class LockEventType(str, Enum):
    """Lifecycle transitions reported by the lock engine."""

    LOCK = "lock"
    UNLOCK = "unlock"
    EXTEND = "extend"
    EXPIRE = "expire"
    ERROR = "error"


class LockRequest(BaseModel):
    """A resource to lock and the locker claiming it."""

    resource: str
    locker: str

    @classmethod
    def coerce(cls, item: Union["LockRequest", Mapping[str, Any], Sequence[str]]) -> "LockRequest":
        if isinstance(item, LockRequest):
            return item
        if isinstance(item, Mapping):
            return cls.model_validate(item)
        resource, locker = item
        return cls(resource=resource, locker=locker)


class LockEvent(BaseModel):
    """Payload delivered to listeners for every lifecycle transition."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: LockEventType
    resource: Optional[str] = None
    locker: Optional[str] = None
    error: Optional[BackendError] = None
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    def to_record(self) -> dict:
        record = self.model_dump(mode="json", exclude={"error"}, exclude_none=True)
        if self.error is not None:
            record["error"] = str(self.error)
        return record
