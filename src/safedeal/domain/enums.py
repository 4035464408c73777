"""Domain enumerations for SafeDeal.

These enums define the canonical states and roles used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TransactionStatus(enum.StrEnum):
    """Lifecycle states of a safe (escrow) transaction.

    Transitions are enforced by TransactionStateMachine and the role table
    in domain/permissions.py.
    """

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Whether the deal is still in flight (used for the one-active-deal guard)."""
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.CANCELLED})

ACTIVE_STATUSES = frozenset(
    {
        TransactionStatus.PENDING,
        TransactionStatus.PAID,
        TransactionStatus.SHIPPED,
        TransactionStatus.DELIVERED,
    }
)


class ActorRole(enum.StrEnum):
    """Roles an actor can hold relative to one transaction.

    BUYER and SELLER come from the transaction's own ids; ARBITRATOR and
    SYSTEM are capabilities of the caller, not of any stored user.
    """

    BUYER = "buyer"
    SELLER = "seller"
    ARBITRATOR = "arbitrator"
    SYSTEM = "system"


class TransactionRoleFilter(enum.StrEnum):
    """Filter for listing a user's transactions."""

    BUYER = "buyer"
    SELLER = "seller"
    ALL = "all"
