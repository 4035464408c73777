"""Message Store — append-only chat messages with per-message read state.

Each conversation has its own strictly increasing sequence; the sequence is
the pagination cursor clients poll with. Appends for one conversation are
serialized on the conversation row (SELECT ... FOR UPDATE, then an atomic
counter bump), so concurrent senders never share or reorder a sequence.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from safedeal.config import get_settings
from safedeal.domain.exceptions import ConversationNotFoundError, ValidationError
from safedeal.infrastructure.database.orm_models import Message
from safedeal.infrastructure.database.repositories import (
    ConversationRepository,
    MessageRepository,
)
from safedeal.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class MessageStore:
    """Appends, lists and marks messages of a conversation."""

    def __init__(self, session: AsyncSession, max_length: int | None = None) -> None:
        self._messages = MessageRepository(session)
        self._conversations = ConversationRepository(session)
        self._max_length = max_length or get_settings().message_max_length

    async def append(
        self,
        conversation_id: uuid.UUID,
        sender_id: str,
        text: str,
        client_message_id: str | None = None,
    ) -> Message:
        """Append a message at the next sequence number.

        Raises:
            ValidationError: Empty/whitespace or over-long text, or a sender
                who is not a participant.
            ConversationNotFoundError: Unknown conversation.
        """
        body = (text or "").strip()
        if not body:
            raise ValidationError("Message text must not be empty", field="text")
        if len(body) > self._max_length:
            raise ValidationError(
                f"Message text exceeds {self._max_length} characters", field="text"
            )

        conversation = await self._conversations.get_by_id(conversation_id, for_update=True)
        if conversation is None:
            raise ConversationNotFoundError(str(conversation_id))
        if not conversation.has_participant(sender_id):
            raise ValidationError(
                f"Sender {sender_id} is not a participant of conversation {conversation_id}",
                field="sender_id",
            )

        sequence = await self._messages.next_sequence(conversation_id)
        message = await self._messages.create(
            Message(
                conversation_id=conversation_id,
                sequence=sequence,
                sender_id=sender_id,
                text=body,
                read=False,
                client_message_id=client_message_id,
                created_at=datetime.now(UTC),
            )
        )
        logger.info(
            "message.appended",
            conversation_id=str(conversation_id),
            sequence=sequence,
            sender_id=sender_id,
        )
        return message

    async def find_by_client_id(
        self,
        conversation_id: uuid.UUID,
        sender_id: str,
        client_message_id: str,
    ) -> Message | None:
        """Return the message a device already sent under this idempotency key."""
        return await self._messages.get_by_client_id(
            conversation_id, sender_id, client_message_id
        )

    async def list_since(
        self,
        conversation_id: uuid.UUID,
        cursor: int = 0,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages with sequence > cursor, oldest first, at most ``limit``."""
        if cursor < 0:
            raise ValidationError("Cursor must be >= 0", field="cursor")
        return await self._messages.list_since(conversation_id, cursor, limit)

    async def mark_read(
        self,
        conversation_id: uuid.UUID,
        reader_id: str,
        upto_sequence: int,
    ) -> int:
        """Mark the other side's messages up to ``upto_sequence`` as read.

        Returns the number of messages that flipped; a repeat call with the
        same or a smaller sequence flips nothing.
        """
        if upto_sequence < 0:
            raise ValidationError("upto_sequence must be >= 0", field="upto_sequence")
        flipped = await self._messages.mark_read(
            conversation_id, reader_id, upto_sequence, read_at=datetime.now(UTC)
        )
        if flipped:
            logger.info(
                "message.marked_read",
                conversation_id=str(conversation_id),
                reader_id=reader_id,
                upto=upto_sequence,
                count=flipped,
            )
        return flipped
