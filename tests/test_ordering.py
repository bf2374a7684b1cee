"""Tests for the conversation listing order.

Tests cover:
- Sort by (last_message_timestamp desc, sequence desc), ignoring updated_at
- Conversations without messages after all others
- Repeated listings are identical
- Renames do not move a conversation
- Keyset pagination and cursor validation
- Index configuration
"""

import json

import pytest
from pymongo.errors import DuplicateKeyError

from chatsync.errors import ApiErrorCode, InvalidRequestError
from chatsync.services.chat_service import ChatService
from tests.conftest import at, make_message


async def names(conversation_repo, user_id="alice", limit=50, cursor=None):
    items, next_cursor = await conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)
    return [it["name"] for it in items], next_cursor


@pytest.fixture
async def populated(conversation_repo, synchronizer):
    """A(seq 1) and C(seq 3) share an instant, D is older, B has no message."""
    convos = {}
    for name in ("A", "B", "C", "D"):
        convos[name] = await conversation_repo.create(["alice", "bob"], name=name)
    await conversation_repo.create(["carol"], name="other")

    for name, ms in (("A", 10), ("C", 10), ("D", 5)):
        cid = convos[name]["_id"]
        await synchronizer.apply(str(cid), make_message(cid, at(ms), name))
    return convos


@pytest.fixture
def service(message_repo, conversation_repo, synchronizer, notifier) -> ChatService:
    return ChatService(message_repo, conversation_repo, synchronizer, notifier)


class TestListingOrder:

    async def test_recency_then_sequence(self, conversation_repo, populated):
        listed, _ = await names(conversation_repo)

        assert listed == ["C", "A", "D", "B"]

    async def test_only_participant_conversations(self, conversation_repo, populated):
        listed, _ = await names(conversation_repo, user_id="carol")

        assert listed == ["other"]

    async def test_repeated_listings_identical(self, service, populated):
        first = await service.list_conversations("alice")
        second = await service.list_conversations("alice")

        assert json.dumps(first.model_dump(mode="json")) == json.dumps(second.model_dump(mode="json"))

    async def test_no_message_conversations_sorted_by_sequence(self, conversation_repo):
        for name in ("x", "y", "z"):
            await conversation_repo.create(["alice"], name=name)

        listed, _ = await names(conversation_repo)

        assert listed == ["z", "y", "x"]

    async def test_updated_at_does_not_affect_order(self, conversation_repo, populated):
        """B is renamed after every message; it still sorts last."""
        await conversation_repo.update_metadata(populated["B"]["_id"], {"name": "B"})

        listed, _ = await names(conversation_repo)

        assert listed == ["C", "A", "D", "B"]


class TestRename:

    async def test_rename_keeps_timestamp_and_position(self, service, conversation_repo, populated):
        before = await service.list_conversations("alice")
        a_before = next(s for s in before.items if s.name == "A")

        renamed = await service.rename_conversation("alice", a_before.id, "A2")

        assert renamed.last_message_timestamp == a_before.last_message_timestamp
        assert renamed.updated_at > a_before.updated_at
        assert renamed.name == "A2"
        after, _ = await names(conversation_repo)
        assert after == ["C", "A2", "D", "B"]

    async def test_rename_is_broadcast(self, service, recording_manager, populated):
        await service.rename_conversation("alice", str(populated["B"]["_id"]), "renamed")

        assert sorted(user for user, _ in recording_manager.sent) == ["alice", "bob"]
        assert recording_manager.sent[0][1]["conversation"]["name"] == "renamed"


class TestPagination:

    async def test_pages_follow_listing_order(self, conversation_repo, populated):
        page1, cursor1 = await names(conversation_repo, limit=2)
        page2, cursor2 = await names(conversation_repo, limit=2, cursor=cursor1)
        page3, cursor3 = await names(conversation_repo, limit=2, cursor=cursor2)

        assert page1 == ["C", "A"]
        assert page2 == ["D", "B"]
        assert page3 == []
        assert cursor3 is None

    async def test_cursor_into_no_message_tail(self, conversation_repo):
        for name in ("x", "y", "z"):
            await conversation_repo.create(["alice"], name=name)

        page1, cursor = await names(conversation_repo, limit=1)
        page2, _ = await names(conversation_repo, limit=5, cursor=cursor)

        assert cursor.startswith("-:")
        assert page1 == ["z"]
        assert page2 == ["y", "x"]

    async def test_short_page_has_no_cursor(self, conversation_repo, populated):
        _, cursor = await names(conversation_repo, limit=10)

        assert cursor is None

    @pytest.mark.parametrize("cursor", ["garbage", "12:abc", "x:1", "99999999999999999999:1"])
    async def test_malformed_cursor(self, conversation_repo, cursor):
        with pytest.raises(InvalidRequestError) as exc_info:
            await conversation_repo.list_for_user("alice", cursor=cursor)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_CURSOR


class TestIndexes:

    async def test_sequence_unique_index_declared_once(self, conversation_repo, db):
        await conversation_repo.ensure_indexes()

        info = db.sync["conversations"].index_information()
        sequence_only = [spec for spec in info.values() if spec["key"] == [("sequence", 1)]]

        assert len(sequence_only) == 1
        assert sequence_only[0].get("unique") is True

    async def test_duplicate_sequence_rejected(self, conversation_repo, db):
        convo = await conversation_repo.create(["alice"])

        with pytest.raises(DuplicateKeyError):
            await db["conversations"].insert_one({"participants": ["bob"], "sequence": convo["sequence"]})

    async def test_sequences_strictly_increase(self, conversation_repo):
        seqs = [(await conversation_repo.create(["alice"]))["sequence"] for _ in range(5)]

        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 5
