"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Counters (message sequence, unread counts, read receipts, transaction
version) are only ever changed with single UPDATE statements whose new value
is computed by the database, never read-modify-write in Python.
Reads use populate_existing so a snapshot returned after a write reflects
the row, not whatever the identity map held.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, case, func, or_, select, update

from safedeal.domain.enums import ACTIVE_STATUSES, TransactionRoleFilter, TransactionStatus
from safedeal.infrastructure.database.orm_models import (
    Conversation,
    Message,
    Transaction,
    TransactionStatusEntry,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession


def _latest_entry_join():
    """Join condition selecting each transaction's current (last) status entry."""
    return and_(
        TransactionStatusEntry.transaction_id == Transaction.id,
        TransactionStatusEntry.sequence == Transaction.version,
    )


class TransactionRepository:
    """Data access for safe transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: Transaction) -> Transaction:
        """Insert a new transaction together with its initial history entry."""
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_by_id(self, transaction_id: uuid.UUID) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active(self, listing_id: str, buyer_id: str) -> Transaction | None:
        """Return the buyer's in-flight deal for a listing, if any."""
        result = await self._session.execute(
            select(Transaction)
            .join(TransactionStatusEntry, _latest_entry_join())
            .where(
                Transaction.listing_id == listing_id,
                Transaction.buyer_id == buyer_id,
                TransactionStatusEntry.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: str,
        role: TransactionRoleFilter = TransactionRoleFilter.ALL,
    ) -> list[Transaction]:
        """Fetch a user's deals, newest first."""
        if role == TransactionRoleFilter.BUYER:
            condition = Transaction.buyer_id == user_id
        elif role == TransactionRoleFilter.SELLER:
            condition = Transaction.seller_id == user_id
        else:
            condition = or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id)
        result = await self._session.execute(
            select(Transaction)
            .where(condition)
            .order_by(Transaction.created_at.desc(), Transaction.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_in_status_since(
        self,
        status: TransactionStatus,
        entered_before: datetime,
        limit: int = 100,
    ) -> list[Transaction]:
        """Deals currently in ``status`` that entered it before the cutoff."""
        result = await self._session.execute(
            select(Transaction)
            .join(TransactionStatusEntry, _latest_entry_join())
            .where(
                TransactionStatusEntry.status == status.value,
                TransactionStatusEntry.created_at <= entered_before,
            )
            .order_by(TransactionStatusEntry.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def compare_and_swap(
        self,
        transaction_id: uuid.UUID,
        expected_version: int,
        values: dict,
    ) -> bool:
        """Bump the version iff it still equals ``expected_version``.

        ``values`` are the transition-owned fields to write in the same
        statement (tracking number, reasons). Returns False on a lost race.
        """
        result = await self._session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.version == expected_version,
            )
            .values(
                version=Transaction.version + 1,
                updated_at=datetime.now(UTC),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def current_version(self, transaction_id: uuid.UUID) -> int | None:
        result = await self._session.execute(
            select(Transaction.version).where(Transaction.id == transaction_id)
        )
        return result.scalar_one_or_none()


class StatusHistoryRepository:
    """Data access for the append-only transaction status log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        transaction_id: uuid.UUID,
        sequence: int,
        status: TransactionStatus,
        actor: str,
        actor_role: str,
        payload: dict | None = None,
    ) -> TransactionStatusEntry:
        """Append a history entry. This is the ONLY write operation allowed."""
        entry = TransactionStatusEntry(
            transaction_id=transaction_id,
            sequence=sequence,
            status=status.value,
            actor=actor,
            actor_role=actor_role,
            payload=payload,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_since(
        self,
        transaction_id: uuid.UUID,
        since_sequence: int = 0,
    ) -> list[TransactionStatusEntry]:
        """Entries with sequence > since_sequence in chronological order."""
        result = await self._session.execute(
            select(TransactionStatusEntry)
            .where(
                TransactionStatusEntry.transaction_id == transaction_id,
                TransactionStatusEntry.sequence > since_sequence,
            )
            .order_by(TransactionStatusEntry.sequence.asc())
        )
        return list(result.scalars().all())


class ConversationRepository:
    """Data access for conversations and their denormalized bookkeeping."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, conversation: Conversation) -> Conversation:
        self._session.add(conversation)
        await self._session.flush()
        return conversation

    async def get_by_id(
        self,
        conversation_id: uuid.UUID,
        for_update: bool = False,
    ) -> Conversation | None:
        """Fetch a conversation; ``for_update`` takes the row lock (no-op on SQLite)."""
        stmt = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_pair(
        self,
        listing_id: str,
        participant_a: str,
        participant_b: str,
    ) -> Conversation | None:
        """Look up by canonical (a < b) participant order."""
        result = await self._session.execute(
            select(Conversation).where(
                Conversation.listing_id == listing_id,
                Conversation.participant_a == participant_a,
                Conversation.participant_b == participant_b,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        """Most recent activity first; ties broken by id for determinism."""
        result = await self._session.execute(
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_a == user_id,
                    Conversation.participant_b == user_id,
                )
            )
            .order_by(Conversation.last_activity_at.desc(), Conversation.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def apply_message(
        self,
        conversation_id: uuid.UUID,
        recipient_slot: str,
        text: str,
        sender_id: str,
        sent_at: datetime,
    ) -> None:
        """Refresh the last-message snapshot and add one to the recipient's unread."""
        unread_col = Conversation.unread_a if recipient_slot == "a" else Conversation.unread_b
        await self._session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                {
                    unread_col: unread_col + 1,
                    Conversation.last_message_text: text,
                    Conversation.last_message_sender_id: sender_id,
                    Conversation.last_message_at: sent_at,
                    Conversation.last_activity_at: sent_at,
                }
            )
            .execution_options(synchronize_session=False)
        )

    async def apply_read(
        self,
        conversation_id: uuid.UUID,
        reader_slot: str,
        count: int,
        upto_sequence: int | None,
    ) -> None:
        """Subtract ``count`` from the reader's unread (floored at 0) and advance the receipt."""
        if reader_slot == "a":
            unread_col, upto_col = Conversation.unread_a, Conversation.read_upto_a
        else:
            unread_col, upto_col = Conversation.unread_b, Conversation.read_upto_b
        values: dict = {
            unread_col: case((unread_col - count < 0, 0), else_=unread_col - count),
        }
        if upto_sequence is not None:
            # Receipt never moves backwards and never points past the last message.
            target = case(
                (Conversation.last_sequence < upto_sequence, Conversation.last_sequence),
                else_=upto_sequence,
            )
            values[upto_col] = case((upto_col < target, target), else_=upto_col)
        await self._session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )


class MessageRepository:
    """Data access for chat messages."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_sequence(self, conversation_id: uuid.UUID) -> int:
        """Atomically reserve the next per-conversation sequence number."""
        result = await self._session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_sequence=Conversation.last_sequence + 1)
            .returning(Conversation.last_sequence)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one()

    async def create(self, message: Message) -> Message:
        self._session.add(message)
        await self._session.flush()
        return message

    async def get_by_client_id(
        self,
        conversation_id: uuid.UUID,
        sender_id: str,
        client_message_id: str,
    ) -> Message | None:
        result = await self._session.execute(
            select(Message).where(
                Message.conversation_id == conversation_id,
                Message.sender_id == sender_id,
                Message.client_message_id == client_message_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_since(
        self,
        conversation_id: uuid.UUID,
        cursor: int = 0,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages with sequence > cursor, oldest first."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.sequence > cursor)
            .order_by(Message.sequence.asc())
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(
        self,
        conversation_id: uuid.UUID,
        reader_id: str,
        upto_sequence: int,
        read_at: datetime,
    ) -> int:
        """Flip unread messages from the other side up to a sequence. Returns rows flipped."""
        result = await self._session.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != reader_id,
                Message.sequence <= upto_sequence,
                Message.read.is_(False),
            )
            .values(read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_unread(self, conversation_id: uuid.UUID, reader_id: str) -> int:
        """Ground truth for a reader's unread counter."""
        result = await self._session.execute(
            select(func.count())
            .select_from(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != reader_id,
                Message.read.is_(False),
            )
        )
        return result.scalar_one()
