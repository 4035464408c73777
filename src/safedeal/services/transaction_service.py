"""Transaction Service — the safe-deal lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (edge guard)
    - Domain permissions (role guard)
    - Repositories (data access, version compare-and-swap)
    - Status history (audit trail and source of the current status)

Both the HTTP routes and the auto-confirm job call into this service,
ensuring a single source of truth for all business rules.

Check order for a transition:
    not found -> stale version (ConflictError) -> unknown edge
    (InvalidTransitionError) -> missing role (PermissionDeniedError) -> write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from safedeal.domain.enums import ActorRole, TransactionRoleFilter, TransactionStatus
from safedeal.domain.exceptions import (
    ActiveTransactionExistsError,
    ConflictError,
    PermissionDeniedError,
    TransactionNotFoundError,
    ValidationError,
)
from safedeal.domain.permissions import (
    EDGE_ROLES,
    Actor,
    authorize_transition,
    can_view,
    resolve_roles,
)
from safedeal.domain.state_machine import allowed_targets, validate_transition
from safedeal.infrastructure.database.orm_models import (
    Transaction,
    TransactionStatusEntry,
)
from safedeal.infrastructure.database.repositories import (
    StatusHistoryRepository,
    TransactionRepository,
)
from safedeal.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_S = TransactionStatus


class TransactionService:
    """Manages the safe-transaction lifecycle."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = TransactionRepository(session)
        self._history = StatusHistoryRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        listing_id: str,
        buyer_id: str,
        seller_id: str,
        amount: int,
        conversation_id: uuid.UUID | None = None,
    ) -> Transaction:
        """Create a deal in ``pending``. History entry #1 is attributed to the buyer."""
        if not listing_id:
            raise ValidationError("listing_id is required", field="listing_id")
        if not buyer_id or not seller_id:
            raise ValidationError("buyer_id and seller_id are required", field="buyer_id")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer", field="amount")
        if buyer_id == seller_id:
            raise ValidationError("Cannot buy your own listing", field="seller_id")

        active = await self._repo.find_active(listing_id, buyer_id)
        if active is not None:
            raise ActiveTransactionExistsError(listing_id, str(active.id))

        transaction = Transaction(
            listing_id=listing_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=amount,
            conversation_id=conversation_id,
            version=1,
        )
        transaction.status_history.append(
            TransactionStatusEntry(
                sequence=1,
                status=_S.PENDING.value,
                actor=buyer_id,
                actor_role=ActorRole.BUYER.value,
                payload={"amount": amount},
            )
        )
        transaction = await self._repo.create(transaction)

        logger.info(
            "transaction.created",
            transaction_id=str(transaction.id),
            listing_id=listing_id,
            amount=amount,
        )
        return transaction

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        target_status: str,
        expected_version: int,
        payload: dict | None = None,
    ) -> Transaction:
        """Move a deal to ``target_status`` if the caller read the latest version.

        Raises:
            TransactionNotFoundError: Unknown id.
            ConflictError: The deal changed since ``expected_version``.
            InvalidTransitionError: The edge is not in the table.
            PermissionDeniedError: The actor holds no role allowed on the edge.
        """
        transaction = await self.get(transaction_id)
        if transaction.version != expected_version:
            raise ConflictError(str(transaction_id), expected_version, transaction.version)

        current = transaction.status
        validate_transition(current, target_status)
        target = _S(target_status)
        role = authorize_transition(
            actor, transaction.buyer_id, transaction.seller_id, current, target
        )

        values, recorded_payload = _transition_fields(current, target, payload or {})

        swapped = await self._repo.compare_and_swap(transaction.id, expected_version, values)
        if not swapped:
            latest = await self._repo.current_version(transaction.id)
            raise ConflictError(str(transaction_id), expected_version, latest)
        try:
            await self._history.record(
                transaction_id=transaction.id,
                sequence=expected_version + 1,
                status=target,
                actor=actor.user_id,
                actor_role=role.value,
                payload=recorded_payload or None,
            )
        except IntegrityError as err:
            raise ConflictError(str(transaction_id), expected_version) from err

        await self._session.refresh(transaction)

        logger.info(
            "transaction.transitioned",
            transaction_id=str(transaction.id),
            from_status=current.value,
            to_status=target.value,
            actor=actor.user_id,
            role=role.value,
            version=transaction.version,
        )
        return transaction

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get(self, transaction_id: uuid.UUID) -> Transaction:
        """Get a transaction or raise."""
        transaction = await self._repo.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    async def get_for_viewer(self, transaction_id: uuid.UUID, viewer: Actor) -> Transaction:
        """Get a transaction the viewer takes part in (or arbitrates)."""
        transaction = await self.get(transaction_id)
        if not can_view(viewer, transaction.buyer_id, transaction.seller_id):
            raise PermissionDeniedError(viewer.user_id, f"view transaction {transaction_id}")
        return transaction

    async def list_for_user(
        self,
        user_id: str,
        role: TransactionRoleFilter = TransactionRoleFilter.ALL,
    ) -> list[Transaction]:
        return await self._repo.list_for_user(user_id, role)

    async def get_history(
        self,
        transaction_id: uuid.UUID,
        since_version: int = 0,
    ) -> list[TransactionStatusEntry]:
        """Audit entries newer than ``since_version`` (0 = the full trail)."""
        if since_version < 0:
            raise ValidationError("since_version must be >= 0", field="since_version")
        return await self._history.list_since(transaction_id, since_version)

    @staticmethod
    def allowed_targets(transaction: Transaction, actor: Actor) -> list[str]:
        """Statuses this actor could move the deal to right now."""
        roles = resolve_roles(actor, transaction.buyer_id, transaction.seller_id)
        current = transaction.status
        return [
            target.value
            for target in allowed_targets(current)
            if EDGE_ROLES[(current, target)] & roles
        ]


def _transition_fields(
    current: TransactionStatus,
    target: TransactionStatus,
    payload: dict,
) -> tuple[dict, dict]:
    """Map an action payload to (column updates, payload recorded in history).

    Only keys meaningful for the edge are kept.
    """
    values: dict = {}
    recorded: dict = {}

    def text(key: str, limit: int | None = None) -> str | None:
        raw = payload.get(key)
        if raw is None:
            return None
        if not isinstance(raw, str):
            raise ValidationError(f"{key} must be a string", field=key)
        value = raw.strip()
        if not value:
            return None
        if limit is not None and len(value) > limit:
            raise ValidationError(f"{key} exceeds {limit} characters", field=key)
        recorded[key] = value
        return value

    if target == _S.PAID:
        method = text("payment_method", 32)
        if method:
            values["payment_method"] = method
    elif target == _S.SHIPPED:
        tracking = text("tracking_number", 64)
        if tracking:
            values["tracking_number"] = tracking
    elif target == _S.DISPUTED:
        reason = text("reason")
        details = text("details")
        if reason:
            values["dispute_reason"] = reason
        if details:
            values["dispute_details"] = details
    elif current == _S.DISPUTED:
        note = text("note")
        if note:
            values["resolution_note"] = note
    elif target == _S.CANCELLED:
        reason = text("reason")
        if reason:
            values["cancel_reason"] = reason
    else:
        # delivered / completed by a party or the system: free-form note only
        text("note")

    return values, recorded
