"""Tests for the system settings service and its Redis cache."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest
from cassandra.cluster import Session
from redis.exceptions import ConnectionError as RedisConnectionError

from src.access.errors import SettingNotFoundError
from src.system_settings.models import SettingKey, validate_setting_value
from src.system_settings.service import SystemSettingsService


@pytest.fixture
def mock_session():
    """Mock Cassandra session."""
    session = Mock(spec=Session)
    session.prepare = Mock(return_value=Mock())
    result = Mock()
    result.one.return_value = None
    session.aexecute = AsyncMock(return_value=result)
    return session


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    redis_mock = AsyncMock()
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    return redis_mock


@pytest.fixture
def service(mock_session, mock_redis) -> SystemSettingsService:
    return SystemSettingsService(
        session=mock_session, keyspace="test_keyspace", redis=mock_redis, cache_ttl=30
    )


def stored(mock_session, key: str, value) -> None:
    row = Mock(
        key=key,
        value=json.dumps(value),
        updated_at=datetime(2026, 10, 1),
        updated_by=None,
    )
    mock_session.aexecute.return_value.one.return_value = row


class TestGet:
    @pytest.mark.asyncio
    async def test_default_when_never_written(self, service):
        assert await service.get("students_access") == "all"
        assert await service.get(SettingKey.TEACHER_ONBOARDING_ENABLED) is True

    @pytest.mark.asyncio
    async def test_reads_cassandra_and_fills_cache(self, service, mock_session, mock_redis):
        stored(mock_session, "students_access", "invite_only")

        value = await service.get("students_access")

        assert value == "invite_only"
        mock_redis.setex.assert_awaited_once_with(
            "system_settings:students_access", 30, json.dumps("invite_only")
        )

    @pytest.mark.asyncio
    async def test_cache_hit_skips_cassandra(self, service, mock_session, mock_redis):
        mock_redis.get.return_value = json.dumps("authed_only")

        assert await service.get("students_access") == "authed_only"
        mock_session.aexecute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_down_falls_back_to_cassandra(
        self, service, mock_session, mock_redis
    ):
        mock_redis.get.side_effect = RedisConnectionError("refused")
        mock_redis.setex.side_effect = RedisConnectionError("refused")
        stored(mock_session, "parent_consent_required", True)

        assert await service.get("parent_consent_required") is True

    @pytest.mark.asyncio
    async def test_without_redis(self, mock_session):
        service = SystemSettingsService(session=mock_session, keyspace="test_keyspace")
        stored(mock_session, "students_access", "invite_only")

        assert await service.get("students_access") == "invite_only"

    @pytest.mark.asyncio
    async def test_cassandra_errors_propagate(self, service, mock_session):
        mock_session.aexecute.side_effect = ConnectionError("no hosts")

        with pytest.raises(ConnectionError):
            await service.get("students_access")

    @pytest.mark.asyncio
    async def test_malformed_value_uses_default(self, service, mock_session):
        row = Mock(key="students_access", value="{oops", updated_at=None, updated_by=None)
        mock_session.aexecute.return_value.one.return_value = row

        setting = await service.get_setting("students_access")

        assert setting.value == "all"

    @pytest.mark.asyncio
    async def test_unknown_key(self, service):
        with pytest.raises(SettingNotFoundError):
            await service.get("dark_mode")


class TestSet:
    @pytest.mark.asyncio
    async def test_set_writes_and_invalidates(self, service, mock_session, mock_redis):
        admin_id = uuid4()

        setting = await service.set("students_access", "invite_only", admin_id)

        assert setting.value == "invite_only"
        assert setting.updated_by == admin_id
        params = mock_session.aexecute.await_args.args[1]
        assert params[0] == "students_access"
        assert params[1] == json.dumps("invite_only")
        mock_redis.delete.assert_awaited_once_with("system_settings:students_access")

    @pytest.mark.asyncio
    async def test_set_survives_redis_failure(self, service, mock_redis):
        mock_redis.delete.side_effect = RedisConnectionError("refused")

        setting = await service.set("student_onboarding_enabled", True)

        assert setting.value is True

    @pytest.mark.asyncio
    async def test_invalid_mode(self, service, mock_session):
        with pytest.raises(ValueError):
            await service.set("students_access", "closed")
        mock_session.aexecute.assert_not_awaited()


class TestValidateSettingValue:
    def test_mode_values(self) -> None:
        assert validate_setting_value(SettingKey.STUDENTS_ACCESS, "authed_only") == (
            "authed_only"
        )

    @pytest.mark.parametrize("value", ["true", 1, None])
    def test_flags_must_be_boolean(self, value) -> None:
        with pytest.raises(ValueError, match="must be a boolean"):
            validate_setting_value(SettingKey.PARENT_CONSENT_REQUIRED, value)
