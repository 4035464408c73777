"""Safe-deal REST API routes.

Every mutation goes through the SyncGateway, which delegates to the
TransactionService; the auto-confirm job calls the same service, so both
paths enforce the same edge, role and version checks.

Routes:
    POST   /api/v1/transactions                  — Open a deal (pending)
    GET    /api/v1/transactions                  — List a user's deals
    GET    /api/v1/transactions/{id}             — Get one deal
    GET    /api/v1/transactions/{id}/history     — Status history since a version
    POST   /api/v1/transactions/{id}/transition  — Move a deal to a new status
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from safedeal.api.deps import get_db_session, get_gateway, get_idempotency_store, is_arbitrator
from safedeal.domain.enums import TransactionRoleFilter
from safedeal.domain.exceptions import DuplicateOperationError
from safedeal.domain.permissions import Actor
from safedeal.infrastructure.database.orm_models import Transaction
from safedeal.infrastructure.redis_client import PENDING_MARKER, IdempotencyStore
from safedeal.logging_config import get_logger
from safedeal.schemas.transaction import (
    CreateTransactionRequest,
    StatusEntryResponse,
    TransactionResponse,
    TransitionRequest,
)
from safedeal.services.sync_gateway import SyncGateway, TransactionAction

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])
logger = get_logger(__name__)

IDEMPOTENCY_SCOPE = "transactions"


def _to_response(
    gateway: SyncGateway, transaction: Transaction, actor: Actor
) -> TransactionResponse:
    response = TransactionResponse.model_validate(transaction)
    response.allowed_targets = gateway.allowed_targets(transaction, actor)
    return response


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Open a safe deal",
)
async def create_transaction(
    request: CreateTransactionRequest,
    gateway: SyncGateway = Depends(get_gateway),
    session: AsyncSession = Depends(get_db_session),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
    idempotency_key: str | None = Header(default=None, max_length=128),
) -> TransactionResponse:
    """Create a deal in ``pending`` and link it to the listing's conversation.

    With an Idempotency-Key header a retried request returns the deal the
    first request created.
    """
    buyer = Actor(user_id=request.buyer_id)

    if idempotency_key and store is not None:
        previous = await store.claim(IDEMPOTENCY_SCOPE, idempotency_key)
        if previous == PENDING_MARKER:
            raise DuplicateOperationError(idempotency_key)
        if previous is not None:
            transaction = await gateway.fetch_transaction(uuid.UUID(previous), buyer)
            return _to_response(gateway, transaction, buyer)

    try:
        transaction = await gateway.create_transaction(
            listing_id=request.listing_id,
            buyer_id=request.buyer_id,
            seller_id=request.seller_id,
            amount=request.amount,
        )
        if idempotency_key and store is not None:
            # The key may only ever point at a committed deal.
            await session.commit()
    except Exception:
        if idempotency_key and store is not None:
            await store.release(IDEMPOTENCY_SCOPE, idempotency_key)
        raise

    if idempotency_key and store is not None:
        await store.complete(IDEMPOTENCY_SCOPE, idempotency_key, str(transaction.id))
    return _to_response(gateway, transaction, buyer)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List a user's deals",
)
async def list_transactions(
    user_id: str = Query(..., min_length=1),
    role: TransactionRoleFilter = Query(default=TransactionRoleFilter.ALL),
    gateway: SyncGateway = Depends(get_gateway),
) -> list[TransactionResponse]:
    """Deals where the user is buyer, seller or either; newest first."""
    viewer = Actor(user_id=user_id)
    transactions = await gateway.fetch_transactions(user_id, role)
    return [_to_response(gateway, tx, viewer) for tx in transactions]


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a deal",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    user_id: str = Query(..., min_length=1),
    arbitrator: bool = Depends(is_arbitrator),
    gateway: SyncGateway = Depends(get_gateway),
) -> TransactionResponse:
    viewer = Actor(user_id=user_id, is_arbitrator=arbitrator)
    transaction = await gateway.fetch_transaction(transaction_id, viewer)
    return _to_response(gateway, transaction, viewer)


@router.get(
    "/{transaction_id}/history",
    response_model=list[StatusEntryResponse],
    summary="Get status history",
)
async def get_transaction_history(
    transaction_id: uuid.UUID,
    user_id: str = Query(..., min_length=1),
    since_version: int = Query(default=0, ge=0),
    arbitrator: bool = Depends(is_arbitrator),
    gateway: SyncGateway = Depends(get_gateway),
) -> list[StatusEntryResponse]:
    """Entries with sequence > since_version; poll with the last version seen."""
    viewer = Actor(user_id=user_id, is_arbitrator=arbitrator)
    entries = await gateway.fetch_transaction_history(transaction_id, viewer, since_version)
    return [StatusEntryResponse.model_validate(entry) for entry in entries]


# ---------------------------------------------------------------------------
# Transition
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/transition",
    response_model=TransactionResponse,
    summary="Move a deal to a new status",
    responses={
        403: {"description": "Actor holds no role allowed on this edge"},
        409: {"description": "Stale expected_version; re-fetch and retry"},
        422: {"description": "Edge not in the transition table"},
    },
)
async def transition_transaction(
    transaction_id: uuid.UUID,
    request: TransitionRequest,
    arbitrator: bool = Depends(is_arbitrator),
    gateway: SyncGateway = Depends(get_gateway),
) -> TransactionResponse:
    actor = Actor(user_id=request.actor_id, is_arbitrator=arbitrator)
    transaction = await gateway.apply_transaction_action(
        transaction_id,
        actor,
        TransactionAction(
            target_status=request.target_status,
            expected_version=request.expected_version,
            payload=request.payload,
        ),
    )
    return _to_response(gateway, transaction, actor)
