"""Tests for the TransactionService: creation, transitions, history, concurrency."""

from __future__ import annotations

import itertools
import uuid

import pytest

from safedeal.domain.enums import ActorRole, TransactionRoleFilter, TransactionStatus
from safedeal.domain.exceptions import (
    ActiveTransactionExistsError,
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    TransactionNotFoundError,
    ValidationError,
)
from safedeal.domain.permissions import Actor
from safedeal.domain.state_machine import EDGE_EVENTS
from safedeal.infrastructure.database.repositories import TransactionRepository
from safedeal.services.sync_gateway import SyncGateway
from safedeal.services.transaction_service import TransactionService

_S = TransactionStatus
BUYER = "user-buyer"
SELLER = "user-seller"

# Shortest path from pending to each status, as (actor, target) steps.
PATH_TO = {
    _S.PENDING: [],
    _S.PAID: [("buyer", "paid")],
    _S.SHIPPED: [("buyer", "paid"), ("seller", "shipped")],
    _S.DELIVERED: [("buyer", "paid"), ("seller", "shipped"), ("buyer", "delivered")],
    _S.COMPLETED: [
        ("buyer", "paid"), ("seller", "shipped"), ("buyer", "delivered"), ("buyer", "completed"),
    ],
    _S.DISPUTED: [("buyer", "paid"), ("buyer", "disputed")],
    _S.CANCELLED: [("buyer", "cancelled")],
}


async def _create(service: TransactionService, listing_id: str = "listing-42", amount: int = 5000):
    return await service.create(
        listing_id=listing_id, buyer_id=BUYER, seller_id=SELLER, amount=amount
    )


async def _drive_to(service: TransactionService, status: TransactionStatus, listing_id: str):
    actors = {"buyer": Actor(BUYER), "seller": Actor(SELLER)}
    tx = await _create(service, listing_id=listing_id)
    for who, target in PATH_TO[status]:
        tx = await service.transition(tx.id, actors[who], target, expected_version=tx.version)
    assert tx.status == status
    return tx


class TestCreate:
    @pytest.mark.asyncio
    async def test_starts_pending_with_one_history_entry(self, session) -> None:
        tx = await _create(TransactionService(session))

        assert tx.status == _S.PENDING
        assert tx.version == 1
        assert len(tx.status_history) == 1
        entry = tx.status_history[0]
        assert entry.sequence == 1
        assert entry.actor == BUYER
        assert entry.actor_role == ActorRole.BUYER
        assert entry.payload == {"amount": 5000}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -100, True, 10.5])
    async def test_rejects_bad_amount(self, session, amount) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await _create(TransactionService(session), amount=amount)
        assert exc_info.value.field == "amount"

    @pytest.mark.asyncio
    async def test_rejects_self_dealing(self, session) -> None:
        with pytest.raises(ValidationError):
            await TransactionService(session).create("listing-42", BUYER, BUYER, 100)

    @pytest.mark.asyncio
    async def test_one_active_deal_per_buyer_and_listing(self, session) -> None:
        service = TransactionService(session)
        first = await _create(service)

        with pytest.raises(ActiveTransactionExistsError) as exc_info:
            await _create(service)
        assert exc_info.value.transaction_id == str(first.id)

    @pytest.mark.asyncio
    async def test_new_deal_allowed_after_cancel(self, session) -> None:
        service = TransactionService(session)
        first = await _create(service)
        await service.transition(first.id, Actor(BUYER), "cancelled", expected_version=1)

        second = await _create(service)
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_other_listing_is_independent(self, session) -> None:
        service = TransactionService(session)
        await _create(service, listing_id="listing-1")
        await _create(service, listing_id="listing-2")


class TestScenarios:
    @pytest.mark.asyncio
    async def test_happy_path_to_completed(self, session, buyer, seller) -> None:
        service = TransactionService(session)
        tx = await _create(service)
        assert tx.status == _S.PENDING

        tx = await service.transition(tx.id, buyer, "paid", expected_version=1)
        assert tx.status == _S.PAID

        tx = await service.transition(
            tx.id, seller, "shipped", expected_version=2, payload={"tracking_number": "RU123"}
        )
        assert tx.status == _S.SHIPPED
        assert tx.tracking_number == "RU123"

        tx = await service.transition(tx.id, buyer, "delivered", expected_version=3)
        assert tx.status == _S.DELIVERED

        tx = await service.transition(tx.id, buyer, "completed", expected_version=4)
        assert tx.status == _S.COMPLETED
        assert tx.status.is_terminal
        assert tx.completed_at is not None
        assert tx.version == 5

    @pytest.mark.asyncio
    async def test_seller_cannot_skip_payment(self, session, seller) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        with pytest.raises(InvalidTransitionError):
            await service.transition(tx.id, seller, "shipped", expected_version=1)

        tx = await service.get(tx.id)
        assert tx.status == _S.PENDING
        assert tx.version == 1
        assert len(tx.status_history) == 1


class TestTransitionLegality:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            pair
            for pair in itertools.product(list(_S), repeat=2)
            if pair not in EDGE_EVENTS
        ],
    )
    async def test_pairs_outside_table_fail_without_writing(
        self, session, arbitrator, current, target
    ) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, current, listing_id=f"listing-{current}-{target}")
        version = tx.version

        with pytest.raises(InvalidTransitionError):
            await service.transition(tx.id, arbitrator, target.value, expected_version=version)

        tx = await service.get(tx.id)
        assert tx.status == current
        assert tx.version == version


class TestCheckOrder:
    @pytest.mark.asyncio
    async def test_not_found(self, session, buyer) -> None:
        with pytest.raises(TransactionNotFoundError):
            await TransactionService(session).transition(
                uuid.uuid4(), buyer, "paid", expected_version=1
            )

    @pytest.mark.asyncio
    async def test_stale_version_reported_before_illegal_edge(self, session, buyer) -> None:
        service = TransactionService(session)
        tx = await _create(service)
        await service.transition(tx.id, buyer, "paid", expected_version=1)

        with pytest.raises(ConflictError) as exc_info:
            await service.transition(tx.id, buyer, "completed", expected_version=1)
        assert exc_info.value.current_version == 2

    @pytest.mark.asyncio
    async def test_illegal_edge_reported_before_missing_role(self, session, outsider) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        with pytest.raises(InvalidTransitionError):
            await service.transition(tx.id, outsider, "completed", expected_version=1)

    @pytest.mark.asyncio
    async def test_wrong_role(self, session, seller) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        with pytest.raises(PermissionDeniedError):
            await service.transition(tx.id, seller, "paid", expected_version=1)

    @pytest.mark.asyncio
    async def test_parties_cannot_resolve_dispute(self, session, buyer, seller) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, _S.DISPUTED, "listing-d")

        for actor, target in ((buyer, "cancelled"), (seller, "completed")):
            with pytest.raises(PermissionDeniedError):
                await service.transition(tx.id, actor, target, expected_version=tx.version)


class TestDisputes:
    @pytest.mark.asyncio
    async def test_dispute_and_refund(self, session, seller, arbitrator) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, _S.DELIVERED, "listing-x")

        tx = await service.transition(
            tx.id,
            seller,
            "disputed",
            expected_version=tx.version,
            payload={"reason": "buyer claims damage", "details": "photos attached"},
        )
        assert tx.dispute_reason == "buyer claims damage"
        assert tx.dispute_details == "photos attached"

        tx = await service.transition(
            tx.id, arbitrator, "cancelled", expected_version=tx.version,
            payload={"note": "refund approved"},
        )
        assert tx.status == _S.CANCELLED
        assert tx.resolution_note == "refund approved"
        assert tx.status_history[-1].actor_role == ActorRole.ARBITRATOR
        assert tx.status_history[-1].payload == {"note": "refund approved"}

    @pytest.mark.asyncio
    async def test_payload_limits(self, session, buyer, seller) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, _S.PAID, "listing-p")

        with pytest.raises(ValidationError):
            await service.transition(
                tx.id, seller, "shipped", expected_version=tx.version,
                payload={"tracking_number": "X" * 65},
            )
        with pytest.raises(ValidationError):
            await service.transition(
                tx.id, seller, "shipped", expected_version=tx.version,
                payload={"tracking_number": 12345},
            )

    @pytest.mark.asyncio
    async def test_unrelated_payload_keys_are_dropped(self, session, buyer) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        tx = await service.transition(
            tx.id, buyer, "paid", expected_version=1,
            payload={"payment_method": "card", "amount": 1},
        )
        assert tx.payment_method == "card"
        assert tx.amount == 5000
        assert tx.status_history[-1].payload == {"payment_method": "card"}


class TestHistory:
    @pytest.mark.asyncio
    async def test_status_is_last_entry_and_version_is_its_sequence(self, session) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, _S.COMPLETED, "listing-h")

        assert [e.status for e in tx.status_history] == [
            "pending", "paid", "shipped", "delivered", "completed",
        ]
        assert [e.sequence for e in tx.status_history] == [1, 2, 3, 4, 5]
        assert tx.status == tx.status_history[-1].status
        assert tx.version == tx.status_history[-1].sequence

    @pytest.mark.asyncio
    async def test_history_since_version(self, session) -> None:
        service = TransactionService(session)
        tx = await _drive_to(service, _S.SHIPPED, "listing-h2")

        entries = await service.get_history(tx.id, since_version=1)
        assert [e.status for e in entries] == ["paid", "shipped"]
        assert await service.get_history(tx.id, since_version=3) == []

        with pytest.raises(ValidationError):
            await service.get_history(tx.id, since_version=-1)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_writer_on_same_version_conflicts(self, session_factory) -> None:
        async with session_factory() as setup:
            tx = await _create(TransactionService(setup))
            await setup.commit()

        async with session_factory() as first:
            await TransactionService(first).transition(
                tx.id, Actor(BUYER), "paid", expected_version=1
            )
            await first.commit()

        async with session_factory() as second:
            with pytest.raises(ConflictError) as exc_info:
                await TransactionService(second).transition(
                    tx.id, Actor(SELLER), "cancelled", expected_version=1
                )
            assert exc_info.value.current_version == 2
            await second.rollback()

        async with session_factory() as check:
            tx = await TransactionService(check).get(tx.id)
            assert tx.status == _S.PAID
            assert len(tx.status_history) == 2

    @pytest.mark.asyncio
    async def test_compare_and_swap_loses_after_version_moved(self, session, buyer) -> None:
        service = TransactionService(session)
        tx = await _create(service)
        repo = TransactionRepository(session)

        assert await repo.compare_and_swap(tx.id, 1, {}) is True
        assert await repo.compare_and_swap(tx.id, 1, {}) is False
        assert await repo.current_version(tx.id) == 2

    @pytest.mark.asyncio
    async def test_open_locks_conversation_before_active_check(
        self, session, settings, monkeypatch
    ) -> None:
        gateway = SyncGateway(session, settings)
        calls: list[str] = []
        get_conversation = gateway._conversations.get
        find_active = TransactionRepository.find_active

        async def recording_get(conversation_id, for_update=False):
            calls.append("lock" if for_update else "read")
            return await get_conversation(conversation_id, for_update=for_update)

        async def recording_find_active(repo, listing_id, buyer_id):
            calls.append("find_active")
            return await find_active(repo, listing_id, buyer_id)

        monkeypatch.setattr(gateway._conversations, "get", recording_get)
        monkeypatch.setattr(TransactionRepository, "find_active", recording_find_active)

        await gateway.create_transaction("listing-lock", BUYER, SELLER, 5000)
        assert calls.index("lock") < calls.index("find_active")

        with pytest.raises(ActiveTransactionExistsError):
            await gateway.create_transaction("listing-lock", BUYER, SELLER, 5000)


class TestReads:
    @pytest.mark.asyncio
    async def test_outsider_cannot_view(self, session, outsider, arbitrator) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        with pytest.raises(PermissionDeniedError):
            await service.get_for_viewer(tx.id, outsider)
        assert (await service.get_for_viewer(tx.id, arbitrator)).id == tx.id

    @pytest.mark.asyncio
    async def test_list_by_role(self, session) -> None:
        service = TransactionService(session)
        bought = await _create(service, listing_id="listing-a")
        sold = await service.create("listing-b", SELLER, BUYER, 700)

        as_buyer = await service.list_for_user(BUYER, TransactionRoleFilter.BUYER)
        as_seller = await service.list_for_user(BUYER, TransactionRoleFilter.SELLER)
        everything = await service.list_for_user(BUYER)

        assert [t.id for t in as_buyer] == [bought.id]
        assert [t.id for t in as_seller] == [sold.id]
        assert {t.id for t in everything} == {bought.id, sold.id}

    @pytest.mark.asyncio
    async def test_allowed_targets_per_actor(self, session, buyer, seller, outsider) -> None:
        service = TransactionService(session)
        tx = await _create(service)

        assert service.allowed_targets(tx, buyer) == ["paid", "cancelled"]
        assert service.allowed_targets(tx, seller) == ["cancelled"]
        assert service.allowed_targets(tx, outsider) == []
