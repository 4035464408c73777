"""Domain exceptions for SafeDeal.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class SafeDealError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "SAFEDEAL_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(SafeDealError):
    """Malformed input: empty text, non-positive amount, self-dealing pair."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class ActiveTransactionExistsError(ValidationError):
    """Raised when a buyer already has an in-flight deal for the listing."""

    def __init__(self, listing_id: str, transaction_id: str) -> None:
        super().__init__(
            message=f"Active transaction already exists for listing {listing_id}",
            field="listing_id",
        )
        self.code = "ACTIVE_TRANSACTION_EXISTS"
        self.transaction_id = transaction_id


# --- Lookup Errors ---


class NotFoundError(SafeDealError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__("Transaction", transaction_id)
        self.code = "TRANSACTION_NOT_FOUND"


class ConversationNotFoundError(NotFoundError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__("Conversation", conversation_id)
        self.code = "CONVERSATION_NOT_FOUND"


# --- Authorization Errors ---


class PermissionDeniedError(SafeDealError):
    """Raised when the actor lacks the role required for an action.

    Named to avoid shadowing the builtin PermissionError.
    """

    def __init__(self, actor_id: str, action: str) -> None:
        super().__init__(
            message=f"Actor {actor_id} is not allowed to {action}",
            code="PERMISSION_DENIED",
        )
        self.actor_id = actor_id
        self.action = action


# --- State Machine Errors ---


class InvalidTransitionError(SafeDealError):
    """Raised when a status edge is not in the transition table.

    Example: pending -> shipped (must be paid first).
    """

    def __init__(self, current_status: str, target_status: str) -> None:
        super().__init__(
            message=f"Invalid status transition: {current_status} -> {target_status}",
            code="INVALID_TRANSITION",
        )
        self.current_status = current_status
        self.target_status = target_status


class ConflictError(SafeDealError):
    """Raised when the stored version moved on since the caller last read it.

    The only error clients are expected to recover from automatically:
    re-fetch the transaction and retry against the new version.
    """

    def __init__(
        self,
        transaction_id: str,
        expected_version: int,
        current_version: int | None = None,
    ) -> None:
        super().__init__(
            message=(
                f"Transaction {transaction_id} changed since version "
                f"{expected_version}; re-fetch and retry"
            ),
            code="CONFLICT",
        )
        self.transaction_id = transaction_id
        self.expected_version = expected_version
        self.current_version = current_version


# --- Idempotency Errors ---


class DuplicateOperationError(SafeDealError):
    """Raised when an idempotency key is reused while the first call is in flight."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.idempotency_key = idempotency_key
