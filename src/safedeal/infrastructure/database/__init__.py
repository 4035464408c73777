"""Database infrastructure — engine, ORM models, and repositories."""

from safedeal.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    session_scope,
)
from safedeal.infrastructure.database.orm_models import (
    Base,
    Conversation,
    Message,
    Transaction,
    TransactionStatusEntry,
)
from safedeal.infrastructure.database.repositories import (
    ConversationRepository,
    MessageRepository,
    StatusHistoryRepository,
    TransactionRepository,
)

__all__ = [
    "Base",
    "Conversation",
    "Message",
    "Transaction",
    "TransactionStatusEntry",
    "ConversationRepository",
    "MessageRepository",
    "StatusHistoryRepository",
    "TransactionRepository",
    "get_async_session",
    "init_db",
    "close_db",
    "session_scope",
]
