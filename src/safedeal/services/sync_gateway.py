"""Sync/Polling Gateway — the contract polling clients consume.

Clients never get pushed anything. They re-poll on a fixed interval and
reconcile locally, so every read here is side-effect free and cursor
bounded, and the only writes are explicit calls (send, mark read,
transaction actions). Each method runs inside the caller's database
transaction; composite writes (append + unread bump, flip + unread
decrement) therefore commit or roll back together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from safedeal.config import Settings, get_settings
from safedeal.domain.enums import TransactionRoleFilter
from safedeal.logging_config import get_logger
from safedeal.services.conversation_service import ConversationManager
from safedeal.services.message_store import MessageStore
from safedeal.services.transaction_service import TransactionService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from safedeal.domain.permissions import Actor
    from safedeal.infrastructure.database.orm_models import (
        Conversation,
        Message,
        Transaction,
        TransactionStatusEntry,
    )

logger = get_logger(__name__)


@dataclass
class MessagePage:
    """One incremental poll of a conversation.

    Attributes:
        messages: New messages, oldest first.
        next_cursor: Pass back on the next poll; unchanged when nothing is new.
        has_more: More messages are waiting beyond this page.
        peer_read_upto: Highest sequence the other participant has read.
        unread_count: The viewer's unread counter at the time of the poll.
        poll_interval_seconds: How long the client should wait before polling again.
    """

    messages: list[Message] = field(default_factory=list)
    next_cursor: int = 0
    has_more: bool = False
    peer_read_upto: int = 0
    unread_count: int = 0
    poll_interval_seconds: int = 10


@dataclass(frozen=True)
class TransactionAction:
    """A requested status change as sent by a client."""

    target_status: str
    expected_version: int
    payload: dict | None = None


class SyncGateway:
    """Routes client requests to the transaction service or the conversation side."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._transactions = TransactionService(session)
        self._conversations = ConversationManager(session)
        self._messages = MessageStore(session, max_length=self._settings.message_max_length)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def open_conversation(self, listing_id: str, user_id: str, peer_id: str) -> Conversation:
        """Get or lazily create the conversation between two users about a listing."""
        return await self._conversations.get_or_create(listing_id, user_id, peer_id)

    async def fetch_conversations(self, user_id: str) -> list[Conversation]:
        """Full snapshot of a user's conversations, most recent activity first."""
        return await self._conversations.list_for_user(user_id)

    async def fetch_messages(
        self,
        conversation_id: uuid.UUID,
        viewer_id: str,
        cursor: int = 0,
    ) -> MessagePage:
        """Messages after ``cursor`` (0 = from the beginning). Read-only."""
        conversation = await self._conversations.get(conversation_id)
        self._conversations.require_participant(conversation, viewer_id)

        page_size = self._settings.message_page_size
        batch = await self._messages.list_since(conversation_id, cursor, limit=page_size + 1)
        has_more = len(batch) > page_size
        messages = batch[:page_size]

        # Counters are read after the page so they are never behind it.
        conversation = await self._conversations.get(conversation_id)
        peer = conversation.other_participant(viewer_id)
        return MessagePage(
            messages=messages,
            next_cursor=messages[-1].sequence if messages else cursor,
            has_more=has_more,
            peer_read_upto=conversation.read_upto[peer],
            unread_count=conversation.unread_count[viewer_id],
            poll_interval_seconds=self._settings.poll_interval_seconds,
        )

    async def send_message(
        self,
        conversation_id: uuid.UUID,
        sender_id: str,
        text: str,
        client_message_id: str | None = None,
    ) -> Message:
        """Append a message and bump the recipient's unread counter, as one unit.

        A repeat with the same ``client_message_id`` returns the original
        message without appending again.
        """
        # Row lock first: serializes appends and the idempotency lookup below.
        conversation = await self._conversations.get(conversation_id, for_update=True)

        if client_message_id:
            previous = await self._messages.find_by_client_id(
                conversation_id, sender_id, client_message_id
            )
            if previous is not None:
                logger.info(
                    "message.replayed",
                    conversation_id=str(conversation_id),
                    sequence=previous.sequence,
                )
                return previous

        message = await self._messages.append(
            conversation_id, sender_id, text, client_message_id=client_message_id
        )
        await self._conversations.on_message_appended(conversation, message)
        return message

    async def mark_read(
        self,
        conversation_id: uuid.UUID,
        reader_id: str,
        upto_sequence: int,
    ) -> Conversation:
        """Flip the peer's messages up to ``upto_sequence`` and settle the counters."""
        conversation = await self._conversations.get(conversation_id)
        self._conversations.require_participant(conversation, reader_id)

        flipped = await self._messages.mark_read(conversation_id, reader_id, upto_sequence)
        await self._conversations.on_messages_read(
            conversation, reader_id, flipped, upto_sequence=upto_sequence
        )
        return await self._conversations.refresh(conversation)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        listing_id: str,
        buyer_id: str,
        seller_id: str,
        amount: int,
    ) -> Transaction:
        """Open a deal and link it to the buyer/seller conversation for the listing."""
        conversation = await self._conversations.get_or_create(listing_id, buyer_id, seller_id)
        # Concurrent opens for the same listing and pair queue on this row, so the
        # one-active-deal check below cannot pass twice.
        await self._conversations.get(conversation.id, for_update=True)
        return await self._transactions.create(
            listing_id=listing_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=amount,
            conversation_id=conversation.id,
        )

    async def fetch_transaction(self, transaction_id: uuid.UUID, viewer: Actor) -> Transaction:
        return await self._transactions.get_for_viewer(transaction_id, viewer)

    async def fetch_transactions(
        self,
        user_id: str,
        role: TransactionRoleFilter = TransactionRoleFilter.ALL,
    ) -> list[Transaction]:
        return await self._transactions.list_for_user(user_id, role)

    async def fetch_transaction_history(
        self,
        transaction_id: uuid.UUID,
        viewer: Actor,
        since_version: int = 0,
    ) -> list[TransactionStatusEntry]:
        await self._transactions.get_for_viewer(transaction_id, viewer)
        return await self._transactions.get_history(transaction_id, since_version)

    async def apply_transaction_action(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        action: TransactionAction,
    ) -> Transaction:
        """Delegate a status change to the transaction service."""
        return await self._transactions.transition(
            transaction_id,
            actor,
            action.target_status,
            expected_version=action.expected_version,
            payload=action.payload,
        )

    def allowed_targets(self, transaction: Transaction, actor: Actor) -> list[str]:
        return self._transactions.allowed_targets(transaction, actor)
