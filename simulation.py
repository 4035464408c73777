#!/usr/bin/env python3
"""SafeDeal — End-to-End Simulation.

Drives the SyncGateway with BuyerBot and SellerBot clients, the way polling
apps would:

    Scenario 1: Happy Path
        - Buyer opens a deal (5000) -> pending
        - Buyer pays, seller ships with a tracking number
        - Buyer confirms delivery, then receipt -> completed

    Scenario 2: Skipped Step
        - Seller tries pending -> shipped directly -> rejected (invalid transition)

    Scenario 3: Chat and Read Receipts
        - Buyer writes "Здравствуйте" into a new conversation
        - Seller polls: one unread message
        - Seller marks it read -> unread 0, buyer sees the receipt

    Scenario 4: Lost Race
        - Buyer and seller both act on version 2; the second writer gets a
          conflict, re-fetches and retries

Usage:
    # With PostgreSQL from DATABASE_URL:
    uv run python simulation.py

    # Without a database server (SQLite in-memory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 3
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from safedeal.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from safedeal.domain.exceptions import ConflictError, InvalidTransitionError  # noqa: E402
from safedeal.domain.permissions import Actor  # noqa: E402
from safedeal.infrastructure.database.engine import (  # noqa: E402
    make_session_factory,
    session_scope,
)
from safedeal.services.sync_gateway import SyncGateway, TransactionAction  # noqa: E402

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from safedeal.infrastructure.database.orm_models import Transaction

# Module-level state
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _engine, _session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import create_async_engine
        from sqlalchemy.pool import StaticPool

        from safedeal.infrastructure.database.orm_models import Base

        _engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        _session_factory = make_session_factory(_engine)
        logger.info("database.sqlite_initialized")
    else:
        from safedeal.infrastructure.database.engine import get_session_factory, init_db

        await init_db()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
    else:
        from safedeal.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None


def unit_of_work():
    """One request's worth of work: a session committed on exit."""
    return session_scope(_session_factory)


# ---------------------------------------------------------------------------
# Client bots
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """A polling client acting as one user."""

    user_id: str

    @property
    def actor(self) -> Actor:
        return Actor(user_id=self.user_id)

    async def fetch(self, transaction_id: uuid.UUID) -> Transaction:
        async with unit_of_work() as session:
            return await SyncGateway(session).fetch_transaction(transaction_id, self.actor)

    async def act(
        self,
        transaction_id: uuid.UUID,
        target_status: str,
        expected_version: int,
        payload: dict | None = None,
    ) -> Transaction:
        async with unit_of_work() as session:
            transaction = await SyncGateway(session).apply_transaction_action(
                transaction_id,
                self.actor,
                TransactionAction(target_status, expected_version, payload),
            )
        print(f"  {self.user_id}: -> {transaction.status} (v{transaction.version})")
        return transaction

    async def send(self, conversation_id: uuid.UUID, text: str) -> int:
        async with unit_of_work() as session:
            message = await SyncGateway(session).send_message(
                conversation_id, self.user_id, text
            )
        print(f"  {self.user_id} says #{message.sequence}: {message.text}")
        return message.sequence

    async def poll(self, conversation_id: uuid.UUID, cursor: int = 0):
        async with unit_of_work() as session:
            return await SyncGateway(session).fetch_messages(
                conversation_id, self.user_id, cursor
            )


@dataclass
class BuyerBot(ClientBot):
    user_id: str = "buyer-B"

    async def open_deal(self, seller_id: str, listing_id: str, amount: int) -> Transaction:
        async with unit_of_work() as session:
            transaction = await SyncGateway(session).create_transaction(
                listing_id=listing_id,
                buyer_id=self.user_id,
                seller_id=seller_id,
                amount=amount,
            )
        print(f"  {self.user_id}: opened deal {transaction.id} -> {transaction.status}")
        return transaction


@dataclass
class SellerBot(ClientBot):
    user_id: str = "seller-S"


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_history(bot: ClientBot, transaction_id: uuid.UUID) -> None:
    """Print the full status history for a deal."""
    async with unit_of_work() as session:
        entries = await SyncGateway(session).fetch_transaction_history(
            transaction_id, bot.actor
        )
    print("\n  Status history:")
    for entry in entries:
        print(f"    {entry.sequence}. {entry.status} (by {entry.actor} as {entry.actor_role})")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path, pending to completed")
    buyer, seller = BuyerBot(), SellerBot()

    section("Step 1: Buyer opens a deal")
    deal = await buyer.open_deal(seller.user_id, "listing-bike", 5000)

    section("Step 2: Buyer pays")
    deal = await buyer.act(deal.id, "paid", deal.version, {"payment_method": "card"})

    section("Step 3: Seller ships")
    deal = await seller.act(deal.id, "shipped", deal.version, {"tracking_number": "RU123"})
    print(f"  Tracking number: {deal.tracking_number}")

    section("Step 4: Buyer confirms delivery and receipt")
    deal = await buyer.act(deal.id, "delivered", deal.version)
    deal = await buyer.act(deal.id, "completed", deal.version)
    print(f"  Terminal: {deal.status.is_terminal}, completed at {deal.completed_at}")

    await print_history(buyer, deal.id)


# ===========================================================================
# Scenario 2: Skipped Step
# ===========================================================================
async def scenario_2_skipped_step() -> None:
    banner("SCENARIO 2: Seller ships an unpaid deal")
    buyer, seller = BuyerBot(), SellerBot()

    deal = await buyer.open_deal(seller.user_id, "listing-lamp", 1200)
    try:
        await seller.act(deal.id, "shipped", deal.version)
    except InvalidTransitionError as exc:
        print(f"  Rejected: {exc.message}")

    deal = await seller.fetch(deal.id)
    print(f"  Status unchanged: {deal.status} (v{deal.version})")


# ===========================================================================
# Scenario 3: Chat and Read Receipts
# ===========================================================================
async def scenario_3_chat() -> None:
    banner("SCENARIO 3: Chat, unread counters and read receipts")
    buyer, seller = BuyerBot(), SellerBot()

    async with unit_of_work() as session:
        conversation = await SyncGateway(session).open_conversation(
            "listing-sofa", buyer.user_id, seller.user_id
        )

    section("Step 1: Buyer writes")
    sequence = await buyer.send(conversation.id, "Здравствуйте")

    section("Step 2: Seller polls")
    page = await seller.poll(conversation.id)
    print(f"  {len(page.messages)} new, unread={page.unread_count}, cursor={page.next_cursor}")

    section("Step 3: Seller marks read")
    async with unit_of_work() as session:
        conversation = await SyncGateway(session).mark_read(
            conversation.id, seller.user_id, sequence
        )
    print(f"  unread={conversation.unread_count[seller.user_id]}")

    section("Step 4: Buyer sees the receipt")
    page = await buyer.poll(conversation.id, cursor=sequence)
    print(f"  {len(page.messages)} new, peer read up to #{page.peer_read_upto}")


# ===========================================================================
# Scenario 4: Lost Race
# ===========================================================================
async def scenario_4_lost_race() -> None:
    banner("SCENARIO 4: Two writers on the same version")
    buyer, seller = BuyerBot(), SellerBot()

    deal = await buyer.open_deal(seller.user_id, "listing-desk", 8000)
    deal = await buyer.act(deal.id, "paid", deal.version)
    stale_version = deal.version

    await seller.act(deal.id, "shipped", stale_version, {"tracking_number": "RU777"})
    try:
        await buyer.act(deal.id, "disputed", stale_version, {"reason": "changed my mind"})
    except ConflictError as exc:
        print(f"  Conflict: now at v{exc.current_version}; re-fetching")
        deal = await buyer.fetch(deal.id)
        await buyer.act(deal.id, "disputed", deal.version, {"reason": "wrong item shipped"})

    await print_history(buyer, deal.id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_skipped_step,
    3: scenario_3_chat,
    4: scenario_4_lost_race,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when ``scenario`` is 0."""
    await init_database(use_sqlite=use_sqlite)
    try:
        if scenario == 0:
            for run_one in SCENARIOS.values():
                await run_one()
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario]()
        else:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="SafeDeal Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, use_sqlite=args.sqlite))
