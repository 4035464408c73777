"""Tests for conversations, the message store and read bookkeeping via the gateway."""

from __future__ import annotations

import uuid

import pytest

from safedeal.domain.exceptions import (
    ConversationNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from safedeal.infrastructure.database.repositories import MessageRepository
from safedeal.services.conversation_service import ConversationManager
from safedeal.services.sync_gateway import SyncGateway

BUYER = "user-buyer"
SELLER = "user-seller"
OUTSIDER = "user-outsider"
LISTING = "listing-sofa"


@pytest.fixture
def gateway(session, settings) -> SyncGateway:
    return SyncGateway(session, settings)


async def _conversation(gateway: SyncGateway, listing_id: str = LISTING):
    return await gateway.open_conversation(listing_id, BUYER, SELLER)


class TestConversationIdentity:
    @pytest.mark.asyncio
    async def test_get_or_create_is_order_insensitive(self, session) -> None:
        manager = ConversationManager(session)
        first = await manager.get_or_create(LISTING, BUYER, SELLER)
        second = await manager.get_or_create(LISTING, SELLER, BUYER)

        assert first.id == second.id
        assert first.participants == (BUYER, SELLER)

    @pytest.mark.asyncio
    async def test_one_conversation_per_listing(self, session) -> None:
        manager = ConversationManager(session)
        a = await manager.get_or_create("listing-1", BUYER, SELLER)
        b = await manager.get_or_create("listing-2", BUYER, SELLER)
        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_new_conversation_is_empty(self, gateway) -> None:
        conversation = await _conversation(gateway)

        assert conversation.last_message is None
        assert conversation.unread_count == {BUYER: 0, SELLER: 0}
        assert conversation.read_upto == {BUYER: 0, SELLER: 0}

    @pytest.mark.asyncio
    async def test_cannot_talk_to_yourself(self, session) -> None:
        with pytest.raises(ValidationError):
            await ConversationManager(session).get_or_create(LISTING, BUYER, BUYER)

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, gateway) -> None:
        with pytest.raises(ConversationNotFoundError):
            await gateway.fetch_messages(uuid.uuid4(), BUYER)


class TestSendAndRead:
    @pytest.mark.asyncio
    async def test_first_message_and_read_receipt(self, gateway) -> None:
        conversation = await _conversation(gateway)

        message = await gateway.send_message(conversation.id, BUYER, "Здравствуйте")
        assert message.sequence == 1
        assert message.read is False

        [conversation] = await gateway.fetch_conversations(SELLER)
        assert conversation.unread_count[SELLER] == 1
        assert conversation.unread_count[BUYER] == 0
        assert conversation.last_message["text"] == "Здравствуйте"
        assert conversation.last_message["sender_id"] == BUYER

        conversation = await gateway.mark_read(conversation.id, SELLER, 1)
        assert conversation.unread_count[SELLER] == 0
        assert conversation.read_upto[SELLER] == 1

    @pytest.mark.asyncio
    async def test_sequences_are_gap_free(self, gateway) -> None:
        conversation = await _conversation(gateway)
        sequences = [
            (await gateway.send_message(conversation.id, sender, f"m{i}")).sequence
            for i, sender in enumerate([BUYER, SELLER, BUYER, BUYER])
        ]
        assert sequences == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_unread_matches_unread_messages(self, gateway, session) -> None:
        conversation = await _conversation(gateway)
        for sender in [BUYER, BUYER, SELLER, BUYER, SELLER]:
            await gateway.send_message(conversation.id, sender, "hi")
        await gateway.mark_read(conversation.id, SELLER, 2)

        repo = MessageRepository(session)
        [conversation] = await gateway.fetch_conversations(BUYER)
        for user in (BUYER, SELLER):
            assert conversation.unread_count[user] == await repo.count_unread(
                conversation.id, user
            )
        assert conversation.unread_count == {BUYER: 2, SELLER: 1}

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, gateway) -> None:
        conversation = await _conversation(gateway)
        await gateway.send_message(conversation.id, BUYER, "one")
        await gateway.send_message(conversation.id, BUYER, "two")

        first = await gateway.mark_read(conversation.id, SELLER, 2)
        second = await gateway.mark_read(conversation.id, SELLER, 2)

        assert first.unread_count[SELLER] == second.unread_count[SELLER] == 0
        assert first.read_upto[SELLER] == second.read_upto[SELLER] == 2

    @pytest.mark.asyncio
    async def test_own_messages_are_not_flipped(self, gateway) -> None:
        conversation = await _conversation(gateway)
        await gateway.send_message(conversation.id, BUYER, "mine")

        conversation = await gateway.mark_read(conversation.id, BUYER, 1)
        page = await gateway.fetch_messages(conversation.id, SELLER)

        assert page.messages[0].read is False
        assert page.unread_count == 1

    @pytest.mark.asyncio
    async def test_receipt_never_moves_backwards_or_past_the_end(self, gateway) -> None:
        conversation = await _conversation(gateway)
        for text in ("a", "b", "c"):
            await gateway.send_message(conversation.id, BUYER, text)

        conversation = await gateway.mark_read(conversation.id, SELLER, 99)
        assert conversation.read_upto[SELLER] == 3

        conversation = await gateway.mark_read(conversation.id, SELLER, 1)
        assert conversation.read_upto[SELLER] == 3
        assert conversation.unread_count[SELLER] == 0

    @pytest.mark.asyncio
    async def test_partial_read(self, gateway) -> None:
        conversation = await _conversation(gateway)
        for text in ("a", "b", "c"):
            await gateway.send_message(conversation.id, BUYER, text)

        conversation = await gateway.mark_read(conversation.id, SELLER, 2)
        assert conversation.unread_count[SELLER] == 1

        page = await gateway.fetch_messages(conversation.id, SELLER)
        assert [m.read for m in page.messages] == [True, True, False]
        assert page.messages[0].read_at is not None

    @pytest.mark.asyncio
    async def test_peer_sees_read_receipt(self, gateway) -> None:
        conversation = await _conversation(gateway)
        await gateway.send_message(conversation.id, BUYER, "seen?")
        await gateway.mark_read(conversation.id, SELLER, 1)

        page = await gateway.fetch_messages(conversation.id, BUYER, cursor=1)
        assert page.messages == []
        assert page.peer_read_upto == 1


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_rejected(self, gateway, text) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(ValidationError):
            await gateway.send_message(conversation.id, BUYER, text)

    @pytest.mark.asyncio
    async def test_text_too_long(self, gateway, settings) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(ValidationError):
            await gateway.send_message(
                conversation.id, BUYER, "x" * (settings.message_max_length + 1)
            )

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, gateway) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(ValidationError):
            await gateway.send_message(conversation.id, OUTSIDER, "let me in")

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, gateway) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(PermissionDeniedError):
            await gateway.fetch_messages(conversation.id, OUTSIDER)
        with pytest.raises(PermissionDeniedError):
            await gateway.mark_read(conversation.id, OUTSIDER, 1)

    @pytest.mark.asyncio
    async def test_negative_cursor(self, gateway) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(ValidationError):
            await gateway.fetch_messages(conversation.id, BUYER, cursor=-1)

    @pytest.mark.asyncio
    async def test_rejected_send_changes_nothing(self, gateway) -> None:
        conversation = await _conversation(gateway)
        with pytest.raises(ValidationError):
            await gateway.send_message(conversation.id, BUYER, "  ")

        [conversation] = await gateway.fetch_conversations(BUYER)
        assert conversation.last_sequence == 0
        assert conversation.unread_count[SELLER] == 0


class TestPolling:
    @pytest.mark.asyncio
    async def test_cursor_round_trip(self, gateway, settings) -> None:
        conversation = await _conversation(gateway)
        total = settings.message_page_size + 2
        for i in range(total):
            await gateway.send_message(conversation.id, BUYER, f"msg {i}")

        seen: list[int] = []
        cursor = 0
        while True:
            page = await gateway.fetch_messages(conversation.id, SELLER, cursor)
            seen.extend(m.sequence for m in page.messages)
            cursor = page.next_cursor
            if not page.has_more:
                break

        assert seen == list(range(1, total + 1))
        assert cursor == total

        empty = await gateway.fetch_messages(conversation.id, SELLER, cursor)
        assert empty.messages == []
        assert empty.next_cursor == cursor
        assert empty.poll_interval_seconds == settings.poll_interval_seconds

    @pytest.mark.asyncio
    async def test_fetch_does_not_mark_read(self, gateway) -> None:
        conversation = await _conversation(gateway)
        await gateway.send_message(conversation.id, BUYER, "hello")

        for _ in range(2):
            page = await gateway.fetch_messages(conversation.id, SELLER)
            assert page.unread_count == 1
            assert page.messages[0].read is False

    @pytest.mark.asyncio
    async def test_unread_count_covers_message_sent_during_poll(
        self, gateway, session, settings, monkeypatch
    ) -> None:
        conversation = await _conversation(gateway)
        list_since = gateway._messages.list_since

        async def send_then_list(*args, **kwargs):
            await SyncGateway(session, settings).send_message(
                conversation.id, BUYER, "arrived mid-poll"
            )
            return await list_since(*args, **kwargs)

        monkeypatch.setattr(gateway._messages, "list_since", send_then_list)
        page = await gateway.fetch_messages(conversation.id, SELLER, 0)

        unread = [m for m in page.messages if m.sender_id == BUYER and not m.read]
        assert len(unread) == 1
        assert page.unread_count == len(unread)

    @pytest.mark.asyncio
    async def test_conversations_by_recent_activity(self, gateway) -> None:
        old = await _conversation(gateway, "listing-old")
        new = await _conversation(gateway, "listing-new")
        await gateway.send_message(old.id, SELLER, "bump")

        listed = await gateway.fetch_conversations(BUYER)
        assert [c.id for c in listed] == [old.id, new.id]
        assert await gateway.fetch_conversations(OUTSIDER) == []


class TestClientMessageId:
    @pytest.mark.asyncio
    async def test_resend_returns_original(self, gateway) -> None:
        conversation = await _conversation(gateway)

        first = await gateway.send_message(conversation.id, BUYER, "hi", client_message_id="c-1")
        again = await gateway.send_message(conversation.id, BUYER, "hi", client_message_id="c-1")

        assert again.id == first.id
        assert again.sequence == 1
        [conversation] = await gateway.fetch_conversations(SELLER)
        assert conversation.unread_count[SELLER] == 1
        assert conversation.last_sequence == 1

    @pytest.mark.asyncio
    async def test_same_key_from_other_sender_is_a_new_message(self, gateway) -> None:
        conversation = await _conversation(gateway)
        a = await gateway.send_message(conversation.id, BUYER, "hi", client_message_id="c-1")
        b = await gateway.send_message(conversation.id, SELLER, "yo", client_message_id="c-1")
        assert (a.sequence, b.sequence) == (1, 2)
