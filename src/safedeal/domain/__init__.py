"""Domain layer — pure business logic with zero framework dependencies."""

from safedeal.domain.enums import (
    ActorRole,
    TransactionRoleFilter,
    TransactionStatus,
)
from safedeal.domain.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SafeDealError,
    ValidationError,
)
from safedeal.domain.permissions import Actor, authorize_transition, resolve_roles
from safedeal.domain.state_machine import (
    TransactionStateMachine,
    validate_transition,
)

__all__ = [
    "ActorRole",
    "TransactionRoleFilter",
    "TransactionStatus",
    "ConflictError",
    "InvalidTransitionError",
    "NotFoundError",
    "PermissionDeniedError",
    "SafeDealError",
    "ValidationError",
    "Actor",
    "authorize_transition",
    "resolve_roles",
    "TransactionStateMachine",
    "validate_transition",
]
