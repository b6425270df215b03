"""System setting models and Cassandra schema.

Settings are stored as JSON text keyed by name. Known keys have defaults,
so a fresh cluster behaves as if every setting held its default value.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from src.access.models import ensure_utc_aware


if TYPE_CHECKING:
    from cassandra.cluster import Row


class SettingKey(str, Enum):
    """Known system settings."""

    STUDENTS_ACCESS = "students_access"
    STUDENT_ONBOARDING_ENABLED = "student_onboarding_enabled"
    TEACHER_ONBOARDING_ENABLED = "teacher_onboarding_enabled"
    PARENT_CONSENT_REQUIRED = "parent_consent_required"


class StudentsAccessMode(str, Enum):
    """Who may enter the student portal."""

    ALL = "all"  # Anyone
    INVITE_ONLY = "invite_only"  # Invitation/lobby code or login
    AUTHED_ONLY = "authed_only"  # Login required


DEFAULT_SETTINGS: dict[SettingKey, Any] = {
    SettingKey.STUDENTS_ACCESS: StudentsAccessMode.ALL.value,
    SettingKey.STUDENT_ONBOARDING_ENABLED: False,
    SettingKey.TEACHER_ONBOARDING_ENABLED: True,
    SettingKey.PARENT_CONSENT_REQUIRED: False,
}


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

SYSTEM_SETTINGS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.system_settings (
    key TEXT,
    value TEXT,
    updated_at TIMESTAMP,
    updated_by UUID,
    PRIMARY KEY (key)
)
"""

SYSTEM_SETTINGS_TABLES_CQL = [SYSTEM_SETTINGS_TABLE_CQL]


# ==============================================================================
# Entities
# ==============================================================================


@dataclass
class SystemSetting:
    """A stored setting value."""

    key: str
    value: Any
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_by: UUID | None = None

    @classmethod
    def from_row(cls, row: "Row", value: Any) -> "SystemSetting":
        """Create instance from Cassandra row with decoded value."""
        return cls(
            key=row.key,
            value=value,
            updated_at=ensure_utc_aware(row.updated_at) or datetime.now(UTC),
            updated_by=row.updated_by,
        )


def validate_setting_value(key: SettingKey, value: Any) -> Any:
    """Normalize a value for a known key.

    Raises:
        ValueError: If the value does not fit the setting
    """
    if key == SettingKey.STUDENTS_ACCESS:
        return StudentsAccessMode(value).value
    if not isinstance(value, bool):
        msg = f"{key.value} must be a boolean"
        raise ValueError(msg)
    return value
