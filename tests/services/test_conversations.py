# tests/services/test_conversations.py
"""Tests for the conversation directory service."""

from datetime import UTC, datetime

import pytest

from chat_sync.core.settings import settings
from chat_sync.schemas.conversation import Conversation
from chat_sync.schemas.message import ChatTarget, ConversationType
from chat_sync.services.backend import BackendError
from chat_sync.services.conversations import (
    ConversationService,
    GroupPermissionError,
    GroupValidationError,
    private_chat_for,
)

CHATS = settings.chats_collection_id
MESSAGES = settings.messages_collection_id


@pytest.fixture
def service(store):
    return ConversationService(store)


def _group(creator_id="alice", members=("alice", "bob")):
    return Conversation(
        id="g1",
        type=ConversationType.GROUP,
        name="Team",
        members=list(members),
        creator_id=creator_id,
    )


@pytest.mark.asyncio
async def test_load_splits_private_chats_and_groups(service, store) -> None:
    store.seed(CHATS, {"type": "private", "members": ["alice", "bob"]}, "c1")
    store.seed(CHATS, {"type": "group", "name": "Team", "members": ["carol", "alice"]}, "g1")
    store.seed(CHATS, {"type": "private", "members": ["bob", "carol"]}, "c2")

    chats, groups = await service.load("alice")

    assert [c.id for c in chats] == ["c1"]
    assert [g.id for g in groups] == ["g1"]
    assert groups[0].is_group


@pytest.mark.asyncio
@pytest.mark.parametrize("name, members", [("   ", ["bob"]), ("Team", [])])
async def test_create_group_requires_name_and_members(service, name, members) -> None:
    with pytest.raises(GroupValidationError):
        await service.create_group("alice", name, members)


@pytest.mark.asyncio
async def test_create_group_puts_creator_first_without_duplicates(service, store) -> None:
    group = await service.create_group("alice", "Team", ["bob", "alice", "carol"])

    stored = store.collections[CHATS][group.id]
    assert stored["members"] == ["alice", "bob", "carol"]
    assert stored["creatorId"] == "alice"
    assert stored["type"] == "group"


@pytest.mark.asyncio
async def test_delete_group_rejects_non_creator(service, store) -> None:
    store.seed(CHATS, {"type": "group", "members": ["bob", "alice"], "creatorId": "bob"}, "g1")

    with pytest.raises(GroupPermissionError):
        await service.delete_group("alice", _group(creator_id="bob", members=("bob", "alice")))

    assert "g1" in store.collections[CHATS]


def test_group_without_creator_falls_back_to_first_member() -> None:
    legacy = _group(creator_id=None, members=("bob", "alice"))

    assert legacy.is_created_by("bob")
    assert not legacy.is_created_by("alice")


@pytest.mark.asyncio
async def test_delete_group_removes_messages_best_effort(service, store, mocker) -> None:
    store.seed(CHATS, {"type": "group", "members": ["alice", "bob"], "creatorId": "alice"}, "g1")
    store.seed_message("alice", None, "one", chat_id="g1", document_id="m1")
    store.seed_message("bob", None, "two", chat_id="g1", document_id="m2")
    store.seed_message("bob", "alice", "private", document_id="p1")
    original = store.delete_document

    async def flaky_delete(collection, document_id):
        if document_id == "m1":
            raise BackendError("locked", 409)
        await original(collection, document_id)

    mocker.patch.object(store, "delete_document", side_effect=flaky_delete)

    await service.delete_group("alice", _group())

    assert "g1" not in store.collections[CHATS]
    assert set(store.collections[MESSAGES]) == {"m1", "p1"}


@pytest.mark.asyncio
async def test_leave_group_patches_members(service, store) -> None:
    store.seed(CHATS, {"type": "group", "members": ["alice", "bob"], "creatorId": "alice"}, "g1")

    updated = await service.leave_group("bob", _group())

    assert updated.members == ["alice"]
    assert store.collections[CHATS]["g1"]["members"] == ["alice"]


@pytest.mark.asyncio
async def test_upsert_read_cursor_creates_once(service, store) -> None:
    first_read = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    later = datetime(2024, 5, 1, 13, 0, tzinfo=UTC)

    cursor = await service.upsert_read_cursor("alice", "bob", when=first_read)
    moved = await service.upsert_read_cursor("alice", "bob", existing=cursor, when=later)

    reads = store.documents(settings.chat_reads_collection_id)
    assert len(reads) == 1
    assert reads[0]["lastReadAt"] == "2024-05-01T13:00:00.000+00:00"
    assert moved.last_read_at == later
    assert [c.id for c in await service.load_read_cursors("alice")] == [cursor.id]


@pytest.mark.asyncio
async def test_toggle_favourite_finds_existing_chat_document(service, store) -> None:
    store.seed(CHATS, {"type": "private", "members": ["bob", "alice"], "isFavourite": None}, "c1")

    updated = await service.toggle_favourite("alice", ChatTarget("bob"), chats=[])

    assert updated.id == "c1"
    assert updated.is_favourite
    assert store.collections[CHATS]["c1"]["isFavourite"] is True
    assert len(store.documents(CHATS)) == 1


@pytest.mark.asyncio
async def test_toggle_favourite_flips_group(service, store) -> None:
    store.seed(CHATS, {"type": "group", "members": ["alice", "bob"], "isFavourite": True}, "g1")
    group = _group().model_copy(update={"is_favourite": True})

    updated = await service.toggle_favourite("alice", group.target(), chats=[], groups=[group])

    assert not updated.is_favourite
    assert store.collections[CHATS]["g1"]["isFavourite"] is False


@pytest.mark.asyncio
async def test_toggle_favourite_unknown_group(service) -> None:
    with pytest.raises(LookupError):
        await service.toggle_favourite(
            "alice", ChatTarget("missing", ConversationType.GROUP), chats=[]
        )


def test_private_chat_for_ignores_groups() -> None:
    chats = [
        _group(members=("alice", "bob")),
        Conversation(id="c1", members=["bob", "alice"]),
    ]

    assert private_chat_for(chats, "alice", "bob").id == "c1"
    assert private_chat_for(chats, "alice", "carol") is None
