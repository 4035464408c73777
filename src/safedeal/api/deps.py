"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the idempotency store, caller capabilities and configuration.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from fastapi import Depends, Header

from safedeal.config import Settings, get_settings
from safedeal.infrastructure.database.engine import get_async_session
from safedeal.infrastructure.redis_client import IdempotencyStore, get_redis
from safedeal.services.sync_gateway import SyncGateway

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_gateway(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> SyncGateway:
    """Provide a SyncGateway bound to the current session."""
    return SyncGateway(session, settings)


def get_idempotency_store(
    settings: Settings = Depends(get_app_settings),
) -> IdempotencyStore | None:
    """Provide the idempotency store, or None when Redis is not available."""
    try:
        redis = get_redis()
    except RuntimeError:
        return None
    return IdempotencyStore(redis, settings.redis_idempotency_ttl_seconds)


def is_arbitrator(
    x_arbitrator_key: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> bool:
    """True when the request carries the configured arbitrator key."""
    if not settings.arbitrator_api_key or not x_arbitrator_key:
        return False
    return hmac.compare_digest(x_arbitrator_key, settings.arbitrator_api_key)
