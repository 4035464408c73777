"""Redis client for idempotency keys.

A client that times out on `POST /transactions` cannot know whether the deal
was created. Retrying with the same Idempotency-Key either replays the first
result or, if the first call is still running, is rejected.

Usage:
    from safedeal.infrastructure.redis_client import get_redis, IdempotencyStore

    store = IdempotencyStore(get_redis())
    previous = await store.claim("transactions", key)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from safedeal.config import get_settings
from safedeal.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

PENDING_MARKER = "__pending__"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class IdempotencyStore:
    """Claim / complete / release protocol over Redis SET NX."""

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or get_settings().redis_idempotency_ttl_seconds

    @staticmethod
    def _key(scope: str, key: str) -> str:
        return f"idempotency:{scope}:{key}"

    async def claim(self, scope: str, key: str) -> str | None:
        """Claim a key for a new operation.

        Returns None when the caller now owns the key, otherwise the stored
        value: PENDING_MARKER while the first call is in flight, or the id
        of the resource it produced.
        """
        claimed = await self._redis.set(
            self._key(scope, key), PENDING_MARKER, nx=True, ex=self._ttl
        )
        if claimed:
            return None
        value = await self._redis.get(self._key(scope, key))
        logger.info("idempotency.replay", scope=scope, key=key, state=value)
        return value if value is not None else PENDING_MARKER

    async def complete(self, scope: str, key: str, result_id: str) -> None:
        """Record the produced resource id for later replays."""
        await self._redis.set(self._key(scope, key), result_id, ex=self._ttl)

    async def release(self, scope: str, key: str) -> None:
        """Forget a claim whose operation failed so the client may retry."""
        await self._redis.delete(self._key(scope, key))
