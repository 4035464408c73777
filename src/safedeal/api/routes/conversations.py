"""Conversation and message REST API routes (the polling surface).

Routes:
    POST   /api/v1/conversations                  — Get or create a conversation
    GET    /api/v1/conversations                  — A user's conversations
    GET    /api/v1/conversations/{id}/messages    — Messages after a cursor
    POST   /api/v1/conversations/{id}/messages    — Send a message
    POST   /api/v1/conversations/{id}/read        — Read receipt up to a sequence
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from safedeal.api.deps import get_gateway
from safedeal.schemas.conversation import (
    ConversationResponse,
    MarkReadRequest,
    MessagePageResponse,
    MessageResponse,
    OpenConversationRequest,
    SendMessageRequest,
)
from safedeal.services.sync_gateway import SyncGateway

router = APIRouter(prefix="/api/v1/conversations", tags=["Conversations"])


@router.post(
    "",
    response_model=ConversationResponse,
    summary="Get or create a conversation",
)
async def open_conversation(
    request: OpenConversationRequest,
    gateway: SyncGateway = Depends(get_gateway),
) -> ConversationResponse:
    conversation = await gateway.open_conversation(
        request.listing_id, request.user_id, request.peer_id
    )
    return ConversationResponse.model_validate(conversation)


@router.get(
    "",
    response_model=list[ConversationResponse],
    summary="List a user's conversations",
)
async def list_conversations(
    user_id: str = Query(..., min_length=1),
    gateway: SyncGateway = Depends(get_gateway),
) -> list[ConversationResponse]:
    """Full snapshot, most recent activity first. Clients replace their local copy."""
    conversations = await gateway.fetch_conversations(user_id)
    return [ConversationResponse.model_validate(c) for c in conversations]


@router.get(
    "/{conversation_id}/messages",
    response_model=MessagePageResponse,
    summary="Poll messages after a cursor",
)
async def list_messages(
    conversation_id: uuid.UUID,
    user_id: str = Query(..., min_length=1),
    cursor: int = Query(default=0, ge=0),
    gateway: SyncGateway = Depends(get_gateway),
) -> MessagePageResponse:
    """Read-only: fetching never marks anything as read."""
    page = await gateway.fetch_messages(conversation_id, user_id, cursor)
    return MessagePageResponse.model_validate(page)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    summary="Send a message",
)
async def send_message(
    conversation_id: uuid.UUID,
    request: SendMessageRequest,
    gateway: SyncGateway = Depends(get_gateway),
) -> MessageResponse:
    message = await gateway.send_message(
        conversation_id,
        request.sender_id,
        request.text,
        client_message_id=request.client_message_id,
    )
    return MessageResponse.model_validate(message)


@router.post(
    "/{conversation_id}/read",
    response_model=ConversationResponse,
    summary="Mark messages read up to a sequence",
)
async def mark_read(
    conversation_id: uuid.UUID,
    request: MarkReadRequest,
    gateway: SyncGateway = Depends(get_gateway),
) -> ConversationResponse:
    conversation = await gateway.mark_read(
        conversation_id, request.reader_id, request.upto_sequence
    )
    return ConversationResponse.model_validate(conversation)
