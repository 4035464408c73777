"""Shared test fixtures for the SafeDeal test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - A session factory and a per-test session
    - Test settings with the auto-confirm policy and arbitration key set
    - Factory helpers for deals and conversations
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from safedeal.config import Settings
from safedeal.domain.permissions import Actor
from safedeal.infrastructure.database.engine import make_session_factory
from safedeal.infrastructure.database.orm_models import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

BUYER = "user-buyer"
SELLER = "user-seller"
OUTSIDER = "user-outsider"
ARBITRATOR_KEY = "test-arbitrator-key"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings independent of any .env file on the machine running the tests."""
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        poll_interval_seconds=10,
        message_page_size=5,
        message_max_length=200,
        auto_confirm_enabled=True,
        auto_confirm_grace_period_hours=168,
        arbitrator_api_key=ARBITRATOR_KEY,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def buyer() -> Actor:
    return Actor(user_id=BUYER)


@pytest.fixture
def seller() -> Actor:
    return Actor(user_id=SELLER)


@pytest.fixture
def outsider() -> Actor:
    return Actor(user_id=OUTSIDER)


@pytest.fixture
def arbitrator() -> Actor:
    return Actor(user_id="user-arbiter", is_arbitrator=True)


@pytest.fixture
def sample_transaction_data() -> dict:
    """Return a valid transaction creation data dict."""
    return {
        "listing_id": "listing-42",
        "buyer_id": BUYER,
        "seller_id": SELLER,
        "amount": 5000,
    }
