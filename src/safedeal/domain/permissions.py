"""Who may fire which status edge.

Roles are never stored on a transaction or a user. They are computed per call
from the transaction's buyer/seller ids and the caller's resolved identity
plus capabilities (arbitrator, system), so a user who is the buyer on one deal
and the seller on another needs no special handling.
"""

from __future__ import annotations

from dataclasses import dataclass

from safedeal.domain.enums import ActorRole, TransactionStatus
from safedeal.domain.exceptions import PermissionDeniedError

SYSTEM_ACTOR_ID = "SYSTEM"

_S = TransactionStatus
_BUYER = frozenset({ActorRole.BUYER})
_SELLER = frozenset({ActorRole.SELLER})
_PARTIES = frozenset({ActorRole.BUYER, ActorRole.SELLER})
_ARBITRATOR = frozenset({ActorRole.ARBITRATOR})

EDGE_ROLES: dict[tuple[TransactionStatus, TransactionStatus], frozenset[ActorRole]] = {
    (_S.PENDING, _S.PAID): _BUYER,
    (_S.PENDING, _S.CANCELLED): _PARTIES,
    (_S.PAID, _S.SHIPPED): _SELLER,
    (_S.PAID, _S.DISPUTED): _PARTIES,
    (_S.SHIPPED, _S.DELIVERED): _BUYER,
    (_S.SHIPPED, _S.DISPUTED): _PARTIES,
    (_S.DELIVERED, _S.COMPLETED): frozenset({ActorRole.BUYER, ActorRole.SYSTEM}),
    (_S.DELIVERED, _S.DISPUTED): _PARTIES,
    (_S.DISPUTED, _S.COMPLETED): _ARBITRATOR,
    (_S.DISPUTED, _S.CANCELLED): _ARBITRATOR,
}


@dataclass(frozen=True)
class Actor:
    """A caller whose identity has already been resolved upstream.

    Attributes:
        user_id: Stable user id from the identity provider (or SYSTEM).
        is_arbitrator: Caller holds the arbitration capability.
        is_system: Caller is the service itself (auto-confirm job).
    """

    user_id: str
    is_arbitrator: bool = False
    is_system: bool = False

    @classmethod
    def system(cls) -> Actor:
        return cls(user_id=SYSTEM_ACTOR_ID, is_system=True)


def resolve_roles(actor: Actor, buyer_id: str, seller_id: str) -> frozenset[ActorRole]:
    """Compute every role ``actor`` holds on a deal between buyer and seller."""
    roles: set[ActorRole] = set()
    if actor.is_system:
        roles.add(ActorRole.SYSTEM)
    if actor.is_arbitrator:
        roles.add(ActorRole.ARBITRATOR)
    if actor.user_id == buyer_id:
        roles.add(ActorRole.BUYER)
    if actor.user_id == seller_id:
        roles.add(ActorRole.SELLER)
    return frozenset(roles)


def authorize_transition(
    actor: Actor,
    buyer_id: str,
    seller_id: str,
    current_status: TransactionStatus,
    target_status: TransactionStatus,
) -> ActorRole:
    """Return the role under which ``actor`` may fire the edge.

    The edge must already be known to exist (see state_machine.event_for).

    Raises:
        PermissionDeniedError: If none of the actor's roles is allowed.
    """
    allowed = EDGE_ROLES[(current_status, target_status)]
    granted = resolve_roles(actor, buyer_id, seller_id) & allowed
    if not granted:
        raise PermissionDeniedError(
            actor.user_id, f"move transaction from {current_status} to {target_status}"
        )
    # Deterministic pick when a caller holds several roles (e.g. an arbitrator
    # who is also the buyer): participant roles first.
    for role in (ActorRole.BUYER, ActorRole.SELLER, ActorRole.ARBITRATOR, ActorRole.SYSTEM):
        if role in granted:
            return role
    raise AssertionError("unreachable")  # pragma: no cover


def can_view(actor: Actor, buyer_id: str, seller_id: str) -> bool:
    """Participants, arbitrators and the system may read a transaction."""
    return bool(resolve_roles(actor, buyer_id, seller_id))
