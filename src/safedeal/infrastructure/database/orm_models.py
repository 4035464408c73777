"""SQLAlchemy 2.0 ORM models for SafeDeal.

Four tables:
    1. transactions                — Safe deals between a buyer and a seller.
    2. transaction_status_entries  — Append-only status history (the audit trail).
    3. conversations               — One chat thread per (listing, participant pair).
    4. messages                    — Append-only chat messages with read flags.

Design decisions:
    - UUIDs as primary keys for transactions/conversations/messages; user and
      listing ids are opaque strings owned by external services.
    - Amounts are integers in minor currency units (no floating point).
    - A transaction's status is NOT a column. It is the status of the last
      history entry; `version` is the sequence of that entry and is the
      optimistic-concurrency token.
    - Conversation participants are stored in canonical order
      (participant_a < participant_b) so the unique constraint covers the
      unordered pair. Unread counters and read receipts are per slot.
    - Portable column types (Uuid, JSON with a JSONB variant) so the same
      models run on PostgreSQL and on SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from safedeal.domain.enums import TransactionStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in TransactionStatus)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A safe deal: the buyer pays into escrow, the seller ships, the buyer confirms."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Parties & subject ---
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("conversations.id"),
        nullable=True,
        comment="Buyer/seller conversation for the listing",
    )

    # --- Financials (immutable after insert) ---
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Deal amount in minor currency units",
    )

    # --- Concurrency token ---
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Sequence of the latest status entry; bumped by compare-and-swap",
    )

    # --- Fields written only by status transitions ---
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Relationships ---
    status_history: Mapped[list[TransactionStatusEntry]] = relationship(
        "TransactionStatusEntry",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionStatusEntry.sequence.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        CheckConstraint("buyer_id <> seller_id", name="ck_transaction_distinct_parties"),
        CheckConstraint("version >= 1", name="ck_transaction_version"),
        Index("idx_transaction_buyer", "buyer_id", "created_at"),
        Index("idx_transaction_seller", "seller_id", "created_at"),
        Index("idx_transaction_listing", "listing_id"),
    )

    @property
    def status(self) -> TransactionStatus:
        """Current status: always the status of the last history entry."""
        if not self.status_history:
            raise RuntimeError(f"Transaction {self.id} has no status history")
        return TransactionStatus(self.status_history[-1].status)

    @property
    def completed_at(self) -> datetime | None:
        for entry in reversed(self.status_history):
            if entry.status == TransactionStatus.COMPLETED:
                return entry.created_at
        return None

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} v{self.version} "
            f"amount={self.amount} {self.buyer_id}->{self.seller_id}>"
        )


# ---------------------------------------------------------------------------
# 2. transaction_status_entries (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TransactionStatusEntry(Base):
    """Immutable record of one status a transaction entered.

    APPEND-ONLY. Entry N has sequence N; the unique constraint on
    (transaction_id, sequence) means two writers racing from the same version
    cannot both land.
    """

    __tablename__ = "transaction_status_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="User id that triggered the change, or SYSTEM",
    )
    actor_role: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment="Action payload: tracking number, reasons, arbitration note",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    transaction: Mapped[Transaction] = relationship(
        "Transaction",
        back_populates="status_history",
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "sequence", name="uq_status_entry_sequence"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_status_entry_status"),
        CheckConstraint("sequence >= 1", name="ck_status_entry_sequence"),
        Index("idx_status_entry_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionStatusEntry tx={self.transaction_id} "
            f"#{self.sequence} {self.status} by {self.actor}>"
        )


# ---------------------------------------------------------------------------
# 3. conversations
# ---------------------------------------------------------------------------
class Conversation(Base):
    """Chat thread between two users about one listing.

    last_message_*, unread_* and read_upto_* are a materialized view over
    the messages table. They are written only by ConversationManager's
    on_message_appended / on_messages_read, with atomic SQL expressions.
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_a: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_b: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Message sequence counter (per-conversation serialization point) ---
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Per-participant bookkeeping ---
    unread_a: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unread_b: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    read_upto_a: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    read_upto_b: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Last message snapshot ---
    last_message_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_sender_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Timestamps ---
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        comment="Last message time, or creation time before the first message",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "listing_id", "participant_a", "participant_b", name="uq_conversation_pair"
        ),
        CheckConstraint("participant_a < participant_b", name="ck_conversation_order"),
        CheckConstraint("unread_a >= 0 AND unread_b >= 0", name="ck_conversation_unread"),
        Index("idx_conversation_a_activity", "participant_a", "last_activity_at"),
        Index("idx_conversation_b_activity", "participant_b", "last_activity_at"),
    )

    @property
    def participants(self) -> tuple[str, str]:
        return (self.participant_a, self.participant_b)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def slot_of(self, user_id: str) -> str:
        """Return "a" or "b" for a participant."""
        if user_id == self.participant_a:
            return "a"
        if user_id == self.participant_b:
            return "b"
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")

    def other_participant(self, user_id: str) -> str:
        return self.participant_b if self.slot_of(user_id) == "a" else self.participant_a

    @property
    def unread_count(self) -> dict[str, int]:
        return {self.participant_a: self.unread_a, self.participant_b: self.unread_b}

    @property
    def read_upto(self) -> dict[str, int]:
        return {self.participant_a: self.read_upto_a, self.participant_b: self.read_upto_b}

    @property
    def last_message(self) -> dict | None:
        if self.last_message_at is None:
            return None
        return {
            "text": self.last_message_text,
            "sender_id": self.last_message_sender_id,
            "timestamp": self.last_message_at,
        }

    def __repr__(self) -> str:
        return (
            f"<Conversation id={self.id} listing={self.listing_id} "
            f"{self.participant_a}<->{self.participant_b} seq={self.last_sequence}>"
        )


# ---------------------------------------------------------------------------
# 4. messages
# ---------------------------------------------------------------------------
class Message(Base):
    """One chat message. Immutable except for the false -> true `read` flip."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_message_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Sender-device idempotency key",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_message_sequence"),
        UniqueConstraint(
            "conversation_id", "sender_id", "client_message_id", name="uq_message_client_id"
        ),
        CheckConstraint("sequence >= 1", name="ck_message_sequence"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message conv={self.conversation_id} #{self.sequence} "
            f"from={self.sender_id} read={self.read}>"
        )


event.listen(Transaction, "before_update", _set_updated_at)
