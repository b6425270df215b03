"""Health endpoints for the access API.

Readiness only depends on Cassandra. Without Redis the settings cache is
bypassed and every gate check reads Cassandra.
"""

from fastapi import APIRouter
from redis.exceptions import RedisError

from src.config import get_settings
from src.core.database import AsyncCassandraConnection
from src.core.logging import get_logger
from src.core.redis import get_redis


logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


async def _redis_reachable() -> bool:
    client = get_redis()
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning("health_redis_ping_failed", error=str(e))
        return False


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Process is up."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness() -> dict[str, str | bool]:
    """Entitlement stores reachable; degraded when Cassandra is down."""
    settings = get_settings()
    cassandra_connected = AsyncCassandraConnection.is_connected()
    redis_connected = await _redis_reachable()
    return {
        "status": "ready" if cassandra_connected else "degraded",
        "environment": settings.environment,
        "cassandra": cassandra_connected,
        "redis": redis_connected,
        "settings_cache": "redis" if redis_connected else "disabled",
    }


@router.get("")
async def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
