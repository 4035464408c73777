"""Tests for role resolution and edge authorization."""

from __future__ import annotations

import pytest

from safedeal.domain.enums import ActorRole, TransactionStatus
from safedeal.domain.exceptions import PermissionDeniedError
from safedeal.domain.permissions import (
    EDGE_ROLES,
    SYSTEM_ACTOR_ID,
    Actor,
    authorize_transition,
    can_view,
    resolve_roles,
)

_S = TransactionStatus
BUYER, SELLER = "b", "s"


class TestResolveRoles:
    def test_buyer(self) -> None:
        assert resolve_roles(Actor(BUYER), BUYER, SELLER) == {ActorRole.BUYER}

    def test_seller(self) -> None:
        assert resolve_roles(Actor(SELLER), BUYER, SELLER) == {ActorRole.SELLER}

    def test_outsider_has_no_role(self) -> None:
        assert resolve_roles(Actor("x"), BUYER, SELLER) == frozenset()

    def test_arbitrator_capability(self) -> None:
        roles = resolve_roles(Actor("x", is_arbitrator=True), BUYER, SELLER)
        assert roles == {ActorRole.ARBITRATOR}

    def test_arbitrator_who_is_also_buyer(self) -> None:
        roles = resolve_roles(Actor(BUYER, is_arbitrator=True), BUYER, SELLER)
        assert roles == {ActorRole.BUYER, ActorRole.ARBITRATOR}

    def test_same_user_buyer_here_seller_elsewhere(self) -> None:
        user = Actor("u")
        assert resolve_roles(user, "u", "other") == {ActorRole.BUYER}
        assert resolve_roles(user, "other", "u") == {ActorRole.SELLER}

    def test_system(self) -> None:
        system = Actor.system()
        assert system.user_id == SYSTEM_ACTOR_ID
        assert resolve_roles(system, BUYER, SELLER) == {ActorRole.SYSTEM}


class TestAuthorizeTransition:
    @pytest.mark.parametrize(
        ("actor", "current", "target", "role"),
        [
            (Actor(BUYER), _S.PENDING, _S.PAID, ActorRole.BUYER),
            (Actor(SELLER), _S.PENDING, _S.CANCELLED, ActorRole.SELLER),
            (Actor(SELLER), _S.PAID, _S.SHIPPED, ActorRole.SELLER),
            (Actor(BUYER), _S.SHIPPED, _S.DELIVERED, ActorRole.BUYER),
            (Actor(BUYER), _S.DELIVERED, _S.COMPLETED, ActorRole.BUYER),
            (Actor.system(), _S.DELIVERED, _S.COMPLETED, ActorRole.SYSTEM),
            (Actor(SELLER), _S.DELIVERED, _S.DISPUTED, ActorRole.SELLER),
            (Actor("a", is_arbitrator=True), _S.DISPUTED, _S.COMPLETED, ActorRole.ARBITRATOR),
            (Actor("a", is_arbitrator=True), _S.DISPUTED, _S.CANCELLED, ActorRole.ARBITRATOR),
        ],
    )
    def test_allowed(
        self, actor: Actor, current: TransactionStatus, target: TransactionStatus, role: ActorRole
    ) -> None:
        assert authorize_transition(actor, BUYER, SELLER, current, target) == role

    @pytest.mark.parametrize(
        ("actor", "current", "target"),
        [
            (Actor(SELLER), _S.PENDING, _S.PAID),
            (Actor(BUYER), _S.PAID, _S.SHIPPED),
            (Actor(SELLER), _S.SHIPPED, _S.DELIVERED),
            (Actor(SELLER), _S.DELIVERED, _S.COMPLETED),
            (Actor.system(), _S.SHIPPED, _S.DELIVERED),
            (Actor(BUYER), _S.DISPUTED, _S.CANCELLED),
            (Actor(SELLER), _S.DISPUTED, _S.COMPLETED),
            (Actor("x"), _S.PAID, _S.DISPUTED),
            (Actor("a", is_arbitrator=True), _S.PENDING, _S.CANCELLED),
        ],
    )
    def test_denied(
        self, actor: Actor, current: TransactionStatus, target: TransactionStatus
    ) -> None:
        with pytest.raises(PermissionDeniedError):
            authorize_transition(actor, BUYER, SELLER, current, target)

    def test_participant_role_preferred(self) -> None:
        actor = Actor(BUYER, is_arbitrator=True)
        assert authorize_transition(actor, BUYER, SELLER, _S.PAID, _S.DISPUTED) == ActorRole.BUYER

    def test_only_arbitrator_leaves_disputed(self) -> None:
        for (frm, _to), roles in EDGE_ROLES.items():
            if frm == _S.DISPUTED:
                assert roles == {ActorRole.ARBITRATOR}


class TestCanView:
    def test_participants_and_arbitrator(self) -> None:
        assert can_view(Actor(BUYER), BUYER, SELLER)
        assert can_view(Actor(SELLER), BUYER, SELLER)
        assert can_view(Actor("a", is_arbitrator=True), BUYER, SELLER)

    def test_outsider(self) -> None:
        assert not can_view(Actor("x"), BUYER, SELLER)
