"""Runtime settings loader."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import SettingsError
from .store import DEFAULT_REDIS_URL
from locky.utils.env import get_int_env, get_str_env


class LockySettings(BaseModel):
    redis_url: str = DEFAULT_REDIS_URL
    ttl_ms: Optional[int] = Field(default=None, ge=0)  # None or 0 disables expiry
    namespace: Optional[str] = None
    set_name: Optional[str] = None  # overrides the derived "<namespace>:lock:currents"

    @field_validator("namespace", "set_name")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @classmethod
    def from_file(cls, path: Path) -> "LockySettings":
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise SettingsError(f"Unable to read settings from {path}: {exc}") from exc
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(f"Invalid locky settings: {exc}") from exc

    @classmethod
    def from_env(cls) -> "LockySettings":
        try:
            return cls(
                redis_url=get_str_env("REDIS_URL", default=DEFAULT_REDIS_URL),
                ttl_ms=get_int_env("LOCKY_TTL_MS"),
                namespace=get_str_env("LOCKY_NAMESPACE"),
                set_name=get_str_env("LOCKY_SET"),
            )
        except ValueError as exc:
            raise SettingsError(f"Invalid locky environment: {exc}") from exc
