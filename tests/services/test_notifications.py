# tests/services/test_notifications.py
"""Tests for notification creation."""

import pytest

from chat_sync.core.settings import settings
from chat_sync.services.backend import DocumentNotFoundError
from chat_sync.services.notifications import (
    MAX_AVATAR_LENGTH,
    NotificationService,
    compact_avatar,
)

NOTIFICATIONS = settings.notifications_collection_id


def test_compact_avatar_keeps_short_values() -> None:
    assert compact_avatar(None) == ""
    assert compact_avatar("https://cdn/a.png") == "https://cdn/a.png"


def test_compact_avatar_reduces_storage_urls_to_file_id() -> None:
    url = "https://backend.test/v1/storage/buckets/avatars/files/abc123/view?project=" + "p" * 80

    assert compact_avatar(url) == "abc123"


def test_compact_avatar_truncates_other_long_values() -> None:
    compacted = compact_avatar("x" * 150)

    assert len(compacted) == MAX_AVATAR_LENGTH
    assert compacted.endswith("...")


@pytest.mark.asyncio
async def test_message_notification_carries_sender_details(store) -> None:
    store.seed(settings.users_collection_id, {"username": "carol", "avatar": "c.png"}, "carol")

    notification = await NotificationService(store).create_notification("message", "carol", "alice")

    assert notification.type == "message"
    assert notification.from_username == "carol"
    assert notification.from_user_avatar == "c.png"
    assert notification.target_user_id == "alice"
    assert not notification.is_read
    assert store.documents(NOTIFICATIONS)[0]["postId"] is None


@pytest.mark.asyncio
async def test_follow_notification_is_created_once(store) -> None:
    service = NotificationService(store)

    first = await service.create_notification("follow", "bob", "alice")
    second = await service.create_notification("follow", "bob", "alice")

    assert first.id == second.id
    assert len(store.documents(NOTIFICATIONS)) == 1


@pytest.mark.asyncio
async def test_unknown_sender_raises(store) -> None:
    with pytest.raises(DocumentNotFoundError):
        await NotificationService(store).create_notification("like", "ghost", "alice", "post1")

    assert store.documents(NOTIFICATIONS) == []
