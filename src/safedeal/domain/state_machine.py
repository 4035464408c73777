"""Safe Transaction State Machine Guard.

Uses python-statemachine to enforce legal status edges at the domain level.
No matter what the API or the auto-confirm job asks for, an illegal edge
(e.g., pending -> shipped) raises InvalidTransitionError before anything is
written.

The machine is instantiated per-call at the transaction's current status,
the requested event is fired, and the resulting status is what gets appended
to the transaction's history.

Transition table (event name in parentheses):
    pending    -> paid        (pay)
    pending    -> cancelled   (cancel_deal)
    paid       -> shipped     (ship)
    paid       -> disputed    (open_dispute)
    shipped    -> delivered   (confirm_delivery)
    shipped    -> disputed    (open_dispute)
    delivered  -> completed   (confirm_receipt)
    delivered  -> disputed    (open_dispute)
    disputed   -> completed   (release_to_seller)
    disputed   -> cancelled   (refund_buyer)

Who may fire each edge lives in domain/permissions.py.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from safedeal.domain.enums import TransactionStatus
from safedeal.domain.exceptions import InvalidTransitionError

# (from, to) -> event name. Kept in lockstep with the class body below.
EDGE_EVENTS: dict[tuple[TransactionStatus, TransactionStatus], str] = {
    (TransactionStatus.PENDING, TransactionStatus.PAID): "pay",
    (TransactionStatus.PENDING, TransactionStatus.CANCELLED): "cancel_deal",
    (TransactionStatus.PAID, TransactionStatus.SHIPPED): "ship",
    (TransactionStatus.PAID, TransactionStatus.DISPUTED): "open_dispute",
    (TransactionStatus.SHIPPED, TransactionStatus.DELIVERED): "confirm_delivery",
    (TransactionStatus.SHIPPED, TransactionStatus.DISPUTED): "open_dispute",
    (TransactionStatus.DELIVERED, TransactionStatus.COMPLETED): "confirm_receipt",
    (TransactionStatus.DELIVERED, TransactionStatus.DISPUTED): "open_dispute",
    (TransactionStatus.DISPUTED, TransactionStatus.COMPLETED): "release_to_seller",
    (TransactionStatus.DISPUTED, TransactionStatus.CANCELLED): "refund_buyer",
}


class TransactionStateMachine(StateMachine):
    """State machine that guards the safe-transaction lifecycle.

    Usage:
        sm = TransactionStateMachine(current_status="paid")
        sm.ship()        # transitions to shipped
        sm.status        # "shipped"
    """

    # --- States ---
    PENDING = State("Pending", value=TransactionStatus.PENDING.value, initial=True)
    PAID = State("Paid", value=TransactionStatus.PAID.value)
    SHIPPED = State("Shipped", value=TransactionStatus.SHIPPED.value)
    DELIVERED = State("Delivered", value=TransactionStatus.DELIVERED.value)
    COMPLETED = State("Completed", value=TransactionStatus.COMPLETED.value, final=True)
    DISPUTED = State("Disputed", value=TransactionStatus.DISPUTED.value)
    CANCELLED = State("Cancelled", value=TransactionStatus.CANCELLED.value, final=True)

    # --- Events / Transitions ---

    # Payment (simulated confirmation; the gateway itself is out of scope)
    pay = PENDING.to(PAID)
    cancel_deal = PENDING.to(CANCELLED)

    # Fulfilment
    ship = PAID.to(SHIPPED)
    confirm_delivery = SHIPPED.to(DELIVERED)
    confirm_receipt = DELIVERED.to(COMPLETED)

    # Disputes
    open_dispute = PAID.to(DISPUTED) | SHIPPED.to(DISPUTED) | DELIVERED.to(DISPUTED)
    release_to_seller = DISPUTED.to(COMPLETED)
    refund_buyer = DISPUTED.to(CANCELLED)

    def __init__(self, current_status: str = TransactionStatus.PENDING.value) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current TransactionStatus value (e.g., "paid").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches TransactionStatus)."""
        (state,) = self.configuration
        return str(state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the ids of the events that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def event_for(current_status: str, target_status: str) -> str:
    """Return the event that moves ``current_status`` to ``target_status``.

    Raises:
        InvalidTransitionError: If the edge is not in the transition table.
    """
    try:
        edge = (TransactionStatus(current_status), TransactionStatus(target_status))
    except ValueError as err:
        raise InvalidTransitionError(current_status, target_status) from err
    event_name = EDGE_EVENTS.get(edge)
    if event_name is None:
        raise InvalidTransitionError(current_status, target_status)
    return event_name


def validate_transition(current_status: str, target_status: str) -> str:
    """Fire the edge ``current_status -> target_status`` and return the new status.

    Creates a throwaway state machine at the current status so the library
    rejects anything the class body does not declare, even if EDGE_EVENTS
    were to drift.

    Raises:
        InvalidTransitionError: If the edge is illegal.
    """
    event_name = event_for(current_status, target_status)
    sm = TransactionStateMachine(current_status=str(current_status))
    try:
        getattr(sm, event_name)()
    except TransitionNotAllowed as err:
        raise InvalidTransitionError(current_status, target_status) from err
    if sm.status != str(target_status):
        raise InvalidTransitionError(current_status, target_status)
    return sm.status


def allowed_targets(current_status: str) -> list[TransactionStatus]:
    """All statuses reachable in one step from ``current_status``, in table order."""
    current = TransactionStatus(current_status)
    return [to for (frm, to) in EDGE_EVENTS if frm == current]
