"""System settings module.

Runtime switches stored in Cassandra, such as the student portal access mode.
"""

from .models import (
    DEFAULT_SETTINGS,
    SYSTEM_SETTINGS_TABLES_CQL,
    SettingKey,
    StudentsAccessMode,
    SystemSetting,
)


__all__ = [
    "DEFAULT_SETTINGS",
    "SYSTEM_SETTINGS_TABLES_CQL",
    "SettingKey",
    "StudentsAccessMode",
    "SystemSetting",
]
