"""initial schema: transactions, status history, conversations, messages

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("listing_id", sa.String(64), nullable=False),
        sa.Column("participant_a", sa.String(64), nullable=False),
        sa.Column("participant_b", sa.String(64), nullable=False),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_a", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_b", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("read_upto_a", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("read_upto_b", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_message_text", sa.Text(), nullable=True),
        sa.Column("last_message_sender_id", sa.String(64), nullable=True),
        sa.Column("last_message_at", _TS, nullable=True),
        sa.Column("last_activity_at", _TS, nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.UniqueConstraint(
            "listing_id", "participant_a", "participant_b", name="uq_conversation_pair"
        ),
        sa.CheckConstraint("participant_a < participant_b", name="ck_conversation_order"),
        sa.CheckConstraint("unread_a >= 0 AND unread_b >= 0", name="ck_conversation_unread"),
    )
    op.create_index(
        "idx_conversation_a_activity", "conversations", ["participant_a", "last_activity_at"]
    )
    op.create_index(
        "idx_conversation_b_activity", "conversations", ["participant_b", "last_activity_at"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("listing_id", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seller_id", sa.String(64), nullable=False),
        sa.Column(
            "conversation_id", sa.Uuid(), sa.ForeignKey("conversations.id"), nullable=True
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("tracking_number", sa.String(64), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("dispute_details", sa.Text(), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        sa.CheckConstraint("buyer_id <> seller_id", name="ck_transaction_distinct_parties"),
        sa.CheckConstraint("version >= 1", name="ck_transaction_version"),
    )
    op.create_index("idx_transaction_buyer", "transactions", ["buyer_id", "created_at"])
    op.create_index("idx_transaction_seller", "transactions", ["seller_id", "created_at"])
    op.create_index("idx_transaction_listing", "transactions", ["listing_id"])

    op.create_table(
        "transaction_status_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Uuid(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("actor_role", sa.String(16), nullable=False),
        sa.Column("payload", _JSON, nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.UniqueConstraint("transaction_id", "sequence", name="uq_status_entry_sequence"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'shipped', 'delivered', "
            "'completed', 'disputed', 'cancelled')",
            name="ck_status_entry_status",
        ),
        sa.CheckConstraint("sequence >= 1", name="ck_status_entry_sequence"),
    )
    op.create_index(
        "idx_status_entry_status_created",
        "transaction_status_entries",
        ["status", "created_at"],
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.Uuid(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", _TS, nullable=True),
        sa.Column("client_message_id", sa.String(64), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_message_sequence"),
        sa.UniqueConstraint(
            "conversation_id", "sender_id", "client_message_id", name="uq_message_client_id"
        ),
        sa.CheckConstraint("sequence >= 1", name="ck_message_sequence"),
    )


def downgrade() -> None:
    op.drop_table("messages")
    op.drop_index("idx_status_entry_status_created", table_name="transaction_status_entries")
    op.drop_table("transaction_status_entries")
    op.drop_index("idx_transaction_listing", table_name="transactions")
    op.drop_index("idx_transaction_seller", table_name="transactions")
    op.drop_index("idx_transaction_buyer", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_conversation_b_activity", table_name="conversations")
    op.drop_index("idx_conversation_a_activity", table_name="conversations")
    op.drop_table("conversations")
