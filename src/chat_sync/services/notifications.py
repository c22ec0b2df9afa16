"""In-app notification creation."""

from __future__ import annotations

import logging
import re
from typing import Any

from chat_sync.core.settings import Settings, settings
from chat_sync.db.time import to_iso, utcnow
from chat_sync.schemas.conversation import Notification
from chat_sync.services.backend import DocumentStore
from chat_sync.services.query import Query

logger = logging.getLogger(__name__)

MAX_AVATAR_LENGTH = 100
_FILE_ID_PATTERN = re.compile(r"/files/([^/?]+)")


def compact_avatar(avatar: str | None) -> str:
    """Fit an avatar reference into the notification's avatar attribute.

    Long storage URLs are reduced to their file id; anything else is truncated.
    """
    if not avatar:
        return ""
    if len(avatar) <= MAX_AVATAR_LENGTH:
        return avatar
    match = _FILE_ID_PATTERN.search(avatar)
    if match:
        return match.group(1)
    return avatar[: MAX_AVATAR_LENGTH - 3] + "..."


class NotificationService:
    """Creates notification documents for another user's inbox."""

    def __init__(self, store: DocumentStore, config: Settings | None = None) -> None:
        self.store = store
        self.settings = config or settings

    async def create_notification(
        self,
        kind: str,
        from_user_id: str,
        target_user_id: str,
        post_id: str | None = None,
    ) -> Notification:
        """Create a notification of ``kind`` from one user to another.

        Follow notifications are created at most once per pair of users.
        """
        collection = self.settings.notifications_collection_id

        if kind == "follow":
            existing = await self.store.list_documents(
                collection,
                [
                    Query.equal("type", "follow"),
                    Query.equal("fromUserId", from_user_id),
                    Query.equal("targetUserId", target_user_id),
                ],
            )
            if existing:
                return Notification.model_validate(existing[0])

        sender: dict[str, Any] = await self.store.get_document(
            self.settings.users_collection_id, from_user_id
        )

        document = await self.store.create_document(
            collection,
            {
                "type": kind,
                "fromUserId": from_user_id,
                "fromUsername": sender.get("username"),
                "fromUserAvatar": compact_avatar(sender.get("avatar")),
                "targetUserId": target_user_id,
                "postId": post_id,
                "isRead": False,
                "createdAt": to_iso(utcnow()),
            },
        )
        logger.debug("Created %s notification for %s", kind, target_user_id)
        return Notification.model_validate(document)
