"""Dependency injection for the system settings module."""

from typing import Annotated

from fastapi import Depends

from .service import SystemSettingsService


# Module-level reference to be overridden by main.py
_settings_service_getter = None


def set_settings_service_getter(getter):
    """Set the system settings service getter function.

    Called by main.py during app initialization.
    """
    global _settings_service_getter  # noqa: PLW0603 - Required for DI pattern
    _settings_service_getter = getter


def get_settings_service() -> SystemSettingsService:
    """Get SystemSettingsService instance."""
    if _settings_service_getter is None:
        raise RuntimeError(
            "SystemSettingsService not configured - call set_settings_service_getter first"
        )
    return _settings_service_getter()


SettingsServiceDep = Annotated[SystemSettingsService, Depends(get_settings_service)]
