"""Pydantic schemas for conversations, messages and the polling contract."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OpenConversationRequest(BaseModel):
    """Get or create the conversation between two users about a listing."""

    model_config = ConfigDict(extra="forbid")

    listing_id: str = Field(..., min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1, max_length=64)
    peer_id: str = Field(..., min_length=1, max_length=64)


class SendMessageRequest(BaseModel):
    """Request body for appending a message."""

    model_config = ConfigDict(extra="forbid")

    sender_id: str = Field(..., min_length=1, max_length=64)
    text: str = Field(..., description="Message body; whitespace-only text is rejected")
    client_message_id: str | None = Field(
        default=None,
        max_length=64,
        description="Device-generated key; resending with the same key returns the original",
    )


class MarkReadRequest(BaseModel):
    """Request body for a read receipt."""

    model_config = ConfigDict(extra="forbid")

    reader_id: str = Field(..., min_length=1, max_length=64)
    upto_sequence: int = Field(..., ge=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class LastMessageResponse(BaseModel):
    text: str | None
    sender_id: str | None
    timestamp: datetime


class ConversationResponse(BaseModel):
    """Conversation snapshot as listed to a participant."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: str
    participants: list[str]
    last_sequence: int
    last_message: LastMessageResponse | None
    unread_count: dict[str, int]
    read_upto: dict[str, int]
    last_activity_at: datetime
    created_at: datetime


class MessageResponse(BaseModel):
    """Response schema for a chat message."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    sequence: int
    sender_id: str
    text: str
    read: bool
    read_at: datetime | None
    client_message_id: str | None
    created_at: datetime


class MessagePageResponse(BaseModel):
    """One poll of a conversation's messages."""

    model_config = ConfigDict(from_attributes=True)

    messages: list[MessageResponse]
    next_cursor: int
    has_more: bool
    peer_read_upto: int
    unread_count: int
    poll_interval_seconds: int


class SyncConfigResponse(BaseModel):
    """Polling parameters advertised to clients."""

    poll_interval_seconds: int
    message_page_size: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
