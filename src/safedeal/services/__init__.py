"""Application services — use case orchestration."""

from safedeal.services.conversation_service import ConversationManager
from safedeal.services.message_store import MessageStore
from safedeal.services.sync_gateway import MessagePage, SyncGateway, TransactionAction
from safedeal.services.transaction_service import TransactionService

__all__ = [
    "ConversationManager",
    "MessagePage",
    "MessageStore",
    "SyncGateway",
    "TransactionAction",
    "TransactionService",
]
