"""Redis connection shared by the lock store and the versioned cache."""

from urllib.parse import urlsplit, urlunsplit

from redis.asyncio import Redis

from earnflow.core.logging import get_logger

logger = get_logger(__name__)

# Global Redis instance (initialized in lifespan)
_redis: Redis | None = None


def get_redis() -> Redis:
    """Get the global Redis instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized")
    return _redis


def redact_url(redis_url: str) -> str:
    """Drop the password from a Redis URL before logging it."""
    parts = urlsplit(redis_url)
    if parts.password is None:
        return redis_url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    user = parts.username or ""
    return urlunsplit(parts._replace(netloc=f"{user}:***@{host}"))


async def init_redis(redis_url: str, socket_timeout: float | None = 5.0) -> Redis:
    """Connect and verify with PING.

    The global is only set once the server has answered, so a failed start
    never leaves a half-initialized client behind.
    """
    global _redis
    client = Redis.from_url(
        redis_url,
        decode_responses=False,
        socket_timeout=socket_timeout,
        health_check_interval=30,
    )
    await client.ping()
    _redis = client
    logger.info("Redis connected", url=redact_url(redis_url))
    return client


async def close_redis() -> None:
    """Close the global Redis instance."""
    global _redis
    if _redis:
        await _redis.aclose()
        logger.info("Redis disconnected")
        _redis = None
