"""Conversation Manager — conversation identity and its derived bookkeeping.

A conversation is identified by (listing, unordered participant pair).
Its last-message snapshot, unread counters and read receipts are derived
state with exactly two writers, on_message_appended and on_messages_read,
both single atomic UPDATE statements issued inside the caller's database
transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from safedeal.domain.exceptions import (
    ConversationNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from safedeal.infrastructure.database.orm_models import Conversation
from safedeal.infrastructure.database.repositories import ConversationRepository
from safedeal.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from safedeal.infrastructure.database.orm_models import Message

logger = get_logger(__name__)


class ConversationManager:
    """Owns conversations: lookup, lazy creation, unread/receipt bookkeeping."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = ConversationRepository(session)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def get_or_create(self, listing_id: str, user_a: str, user_b: str) -> Conversation:
        """Return the conversation for (listing, {user_a, user_b}), creating it if needed."""
        if not listing_id:
            raise ValidationError("listing_id is required", field="listing_id")
        if not user_a or not user_b:
            raise ValidationError("Both participants are required", field="participants")
        if user_a == user_b:
            raise ValidationError(
                "Cannot start a conversation with yourself", field="participants"
            )

        first, second = sorted((user_a, user_b))
        existing = await self._repo.find_by_pair(listing_id, first, second)
        if existing is not None:
            return existing

        try:
            async with self._session.begin_nested():
                conversation = await self._repo.create(
                    Conversation(
                        listing_id=listing_id,
                        participant_a=first,
                        participant_b=second,
                    )
                )
        except IntegrityError:
            # Another request created it between our lookup and insert.
            existing = await self._repo.find_by_pair(listing_id, first, second)
            if existing is None:
                raise
            return existing

        logger.info(
            "conversation.created",
            conversation_id=str(conversation.id),
            listing_id=listing_id,
        )
        return conversation

    async def get(self, conversation_id: uuid.UUID, for_update: bool = False) -> Conversation:
        conversation = await self._repo.get_by_id(conversation_id, for_update=for_update)
        if conversation is None:
            raise ConversationNotFoundError(str(conversation_id))
        return conversation

    @staticmethod
    def require_participant(conversation: Conversation, user_id: str) -> None:
        if not conversation.has_participant(user_id):
            raise PermissionDeniedError(user_id, f"access conversation {conversation.id}")

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        """Conversations by most recent activity, ties by id."""
        return await self._repo.list_for_user(user_id)

    # ------------------------------------------------------------------
    # Derived-state writers
    # ------------------------------------------------------------------

    async def on_message_appended(self, conversation: Conversation, message: Message) -> None:
        """Update the last-message snapshot and bump the recipient's unread counter."""
        recipient = conversation.other_participant(message.sender_id)
        await self._repo.apply_message(
            conversation.id,
            recipient_slot=conversation.slot_of(recipient),
            text=message.text,
            sender_id=message.sender_id,
            sent_at=message.created_at,
        )

    async def on_messages_read(
        self,
        conversation: Conversation,
        reader_id: str,
        count: int,
        upto_sequence: int | None = None,
    ) -> None:
        """Decrement the reader's unread by ``count`` (floored at zero), advance the receipt."""
        if count < 0:
            raise ValidationError("count must be >= 0", field="count")
        await self._repo.apply_read(
            conversation.id,
            reader_slot=conversation.slot_of(reader_id),
            count=count,
            upto_sequence=upto_sequence,
        )
        if count:
            logger.info(
                "conversation.read",
                conversation_id=str(conversation.id),
                reader_id=reader_id,
                count=count,
            )

    async def refresh(self, conversation: Conversation) -> Conversation:
        """Re-read the row so the snapshot includes this transaction's updates."""
        return await self.get(conversation.id)
