# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""System settings service.

Reads go through a short-TTL Redis cache when Redis is connected. Writes
invalidate the cached value. Cassandra errors propagate to the caller.
"""

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from redis.exceptions import RedisError

from src.access.errors import SettingNotFoundError
from src.core.logging import get_logger
from src.core.redis import settings_cache_key

from .models import DEFAULT_SETTINGS, SettingKey, SystemSetting, validate_setting_value


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from redis.asyncio import Redis


logger = get_logger(__name__)


def _parse_key(key: str | SettingKey) -> SettingKey:
    try:
        return SettingKey(key)
    except ValueError as e:
        raise SettingNotFoundError(f"Unknown setting: {key}") from e


class SystemSettingsService:
    """Service for reading and updating system settings."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        redis: "Redis | None" = None,
        cache_ttl: int = 30,
    ):
        """Initialize with Cassandra session and optional Redis."""
        self.session = session
        self.keyspace = keyspace
        self.redis = redis
        self.cache_ttl = cache_ttl
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._get_setting = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.system_settings WHERE key = ?"
        )
        self._upsert_setting = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.system_settings
            (key, value, updated_at, updated_by)
            VALUES (?, ?, ?, ?)
        """)

    # ==========================================================================
    # Cache
    # ==========================================================================

    async def _cache_get(self, key: SettingKey) -> str | None:
        if not self.redis:
            return None
        try:
            return await self.redis.get(settings_cache_key(key.value))
        except RedisError as e:
            logger.warning("settings_cache_unavailable", key=key.value, error=str(e))
            return None

    async def _cache_set(self, key: SettingKey, raw: str) -> None:
        if not self.redis:
            return
        try:
            await self.redis.setex(settings_cache_key(key.value), self.cache_ttl, raw)
        except RedisError as e:
            logger.warning("settings_cache_unavailable", key=key.value, error=str(e))

    async def _cache_delete(self, key: SettingKey) -> None:
        if not self.redis:
            return
        try:
            await self.redis.delete(settings_cache_key(key.value))
        except RedisError as e:
            logger.warning("settings_cache_unavailable", key=key.value, error=str(e))

    # ==========================================================================
    # Public API
    # ==========================================================================

    async def get_setting(self, key: str | SettingKey) -> SystemSetting:
        """Stored setting, or its default when never written.

        Raises:
            SettingNotFoundError: If the key is unknown
        """
        setting_key = _parse_key(key)

        result = await self.session.aexecute(self._get_setting, [setting_key.value])
        row = result.one()
        if not row:
            return SystemSetting(
                key=setting_key.value, value=DEFAULT_SETTINGS[setting_key]
            )

        try:
            value = json.loads(row.value)
        except (TypeError, json.JSONDecodeError):
            logger.warning("setting_value_malformed", key=setting_key.value)
            value = DEFAULT_SETTINGS[setting_key]
        return SystemSetting.from_row(row, value)

    async def get(self, key: str | SettingKey) -> Any:
        """Current value of a setting (cached)."""
        setting_key = _parse_key(key)

        cached = await self._cache_get(setting_key)
        if cached is not None:
            return json.loads(cached)

        setting = await self.get_setting(setting_key)
        await self._cache_set(setting_key, json.dumps(setting.value))
        return setting.value

    async def set(
        self, key: str | SettingKey, value: Any, admin_id: UUID | None = None
    ) -> SystemSetting:
        """Update a setting and invalidate its cached value.

        Raises:
            SettingNotFoundError: If the key is unknown
            ValueError: If the value does not fit the setting
        """
        setting_key = _parse_key(key)
        normalized = validate_setting_value(setting_key, value)

        setting = SystemSetting(
            key=setting_key.value,
            value=normalized,
            updated_at=datetime.now(UTC),
            updated_by=admin_id,
        )
        await self.session.aexecute(
            self._upsert_setting,
            [setting.key, json.dumps(normalized), setting.updated_at, admin_id],
        )
        await self._cache_delete(setting_key)

        logger.info(
            "system_setting_updated",
            key=setting.key,
            value=normalized,
            admin_id=str(admin_id) if admin_id else None,
        )
        return setting
