"""Pydantic schemas for the transaction API.

Separate from the ORM models to keep the API shape independent of the
table layout. Status and version are derived on the ORM side
(``status_history[-1]``) and read through ``from_attributes``.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from safedeal.domain.enums import TransactionStatus

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransactionRequest(BaseModel):
    """Request body for opening a safe deal on a listing."""

    model_config = ConfigDict(extra="forbid")

    listing_id: str = Field(..., min_length=1, max_length=64, examples=["listing-42"])
    buyer_id: str = Field(..., min_length=1, max_length=64, examples=["user-buyer"])
    seller_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Owner of the listing, as resolved by the caller",
        examples=["user-seller"],
    )
    amount: int = Field(
        ...,
        strict=True,
        description="Deal amount in minor currency units",
        examples=[150000],
    )


class TransitionRequest(BaseModel):
    """Request body for moving a deal to a new status."""

    model_config = ConfigDict(extra="forbid")

    actor_id: str = Field(..., min_length=1, max_length=64)
    target_status: str = Field(..., examples=["paid"])
    expected_version: int = Field(
        ...,
        ge=1,
        description="Version the client last read; stale versions are rejected with 409",
    )
    payload: dict | None = Field(
        default=None,
        description=(
            'Optional edge data, e.g. {"tracking_number": "RR123"} for shipped, '
            '{"reason": "..."} for disputed/cancelled, {"note": "..."} for arbitration'
        ),
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class StatusEntryResponse(BaseModel):
    """One entry of a deal's append-only status history."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    status: TransactionStatus
    actor: str
    actor_role: str
    payload: dict | None = None
    created_at: datetime


class TransactionResponse(BaseModel):
    """Response schema for a safe deal."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: str
    buyer_id: str
    seller_id: str
    conversation_id: uuid.UUID | None
    amount: int
    status: TransactionStatus
    version: int
    payment_method: str | None
    tracking_number: str | None
    cancel_reason: str | None
    dispute_reason: str | None
    dispute_details: str | None
    resolution_note: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    status_history: list[StatusEntryResponse]
    allowed_targets: list[str] = Field(
        default_factory=list,
        description="Statuses the requesting user may move the deal to right now",
    )
