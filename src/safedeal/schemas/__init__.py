"""Pydantic API schemas."""

from safedeal.schemas.conversation import (
    ConversationResponse,
    HealthResponse,
    MarkReadRequest,
    MessagePageResponse,
    MessageResponse,
    OpenConversationRequest,
    SendMessageRequest,
    SyncConfigResponse,
)
from safedeal.schemas.transaction import (
    CreateTransactionRequest,
    StatusEntryResponse,
    TransactionResponse,
    TransitionRequest,
)

__all__ = [
    "ConversationResponse",
    "CreateTransactionRequest",
    "HealthResponse",
    "MarkReadRequest",
    "MessagePageResponse",
    "MessageResponse",
    "OpenConversationRequest",
    "SendMessageRequest",
    "StatusEntryResponse",
    "SyncConfigResponse",
    "TransactionResponse",
    "TransitionRequest",
]
