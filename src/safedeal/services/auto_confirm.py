"""Auto-confirmation of delivered deals.

A buyer who never presses "confirm receipt" must not hold the seller's money
forever. Once a deal has sat in ``delivered`` for the configured grace period,
the SYSTEM actor completes it through the normal transition path, so the
history records who did it and the version check still applies.

The policy is off when ``auto_confirm_enabled`` is false. Each deal is
confirmed in its own unit of work; a deal that moved on in the meantime
(disputed, confirmed by the buyer) is skipped.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from safedeal.config import Settings, get_settings
from safedeal.domain.enums import TransactionStatus
from safedeal.domain.exceptions import ConflictError
from safedeal.domain.permissions import Actor
from safedeal.infrastructure.database.engine import session_scope
from safedeal.infrastructure.database.repositories import TransactionRepository
from safedeal.logging_config import get_logger
from safedeal.services.transaction_service import TransactionService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

SWEEP_BATCH_SIZE = 100


async def auto_confirm_delivered(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> list[uuid.UUID]:
    """Complete every deal whose ``delivered`` entry is older than the grace period.

    Returns the ids that were completed by this sweep.
    """
    settings = settings or get_settings()
    if not settings.auto_confirm_enabled:
        return []

    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=settings.auto_confirm_grace_period_hours)

    async with session_scope(session_factory) as session:
        due = await TransactionRepository(session).find_in_status_since(
            TransactionStatus.DELIVERED, cutoff, limit=SWEEP_BATCH_SIZE
        )
        due_ids = [transaction.id for transaction in due]

    confirmed: list[uuid.UUID] = []
    for transaction_id in due_ids:
        try:
            if await _confirm_one(session_factory, transaction_id):
                confirmed.append(transaction_id)
        except ConflictError:
            logger.warning("auto_confirm.gave_up", transaction_id=str(transaction_id))
        except Exception:
            # One broken deal must not hold up the rest of the batch.
            logger.exception("auto_confirm.failed", transaction_id=str(transaction_id))

    if due_ids:
        logger.info("auto_confirm.swept", due=len(due_ids), confirmed=len(confirmed))
    return confirmed


@retry(
    retry=retry_if_exception_type(ConflictError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    reraise=True,
)
async def _confirm_one(
    session_factory: async_sessionmaker[AsyncSession] | None,
    transaction_id: uuid.UUID,
) -> bool:
    """Re-read and complete one deal; ConflictError triggers a fresh attempt."""
    async with session_scope(session_factory) as session:
        service = TransactionService(session)
        transaction = await service.get(transaction_id)
        if transaction.status != TransactionStatus.DELIVERED:
            return False
        await service.transition(
            transaction.id,
            Actor.system(),
            TransactionStatus.COMPLETED.value,
            expected_version=transaction.version,
            payload={"note": "auto-confirmed after grace period"},
        )
        logger.info("auto_confirm.completed", transaction_id=str(transaction_id))
        return True


async def run_auto_confirm_loop(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    settings: Settings | None = None,
) -> None:
    """Sweep forever at the configured interval. Cancelled on app shutdown."""
    settings = settings or get_settings()
    interval = settings.auto_confirm_sweep_interval_seconds
    logger.info(
        "auto_confirm.loop_started",
        interval_seconds=interval,
        grace_hours=settings.auto_confirm_grace_period_hours,
    )
    while True:
        try:
            await auto_confirm_delivered(session_factory, settings)
        except asyncio.CancelledError:
            raise
        except Exception:
            # A failed sweep is retried on the next tick.
            logger.exception("auto_confirm.sweep_failed")
        await asyncio.sleep(interval)
