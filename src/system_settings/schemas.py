"""Pydantic schemas for system settings."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from .models import SystemSetting


class SettingResponse(BaseModel):
    """A setting and its current value."""

    key: str
    value: Any
    updated_at: datetime
    updated_by: UUID | None = None

    @classmethod
    def from_setting(cls, setting: SystemSetting) -> "SettingResponse":
        """Create response from SystemSetting entity."""
        return cls(
            key=setting.key,
            value=setting.value,
            updated_at=setting.updated_at,
            updated_by=setting.updated_by,
        )


class UpdateSettingRequest(BaseModel):
    """New value for a setting."""

    value: Any
