"""Conversation directory: private chats, groups and read cursors."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from chat_sync.core.settings import Settings, settings
from chat_sync.db.time import to_iso, utcnow
from chat_sync.schemas.conversation import Conversation, ReadCursor
from chat_sync.schemas.message import ChatTarget, ConversationType
from chat_sync.services.backend import BackendError, DocumentStore
from chat_sync.services.query import Query

logger = logging.getLogger(__name__)


class GroupValidationError(ValueError):
    """Raised when a group is created without a name or without members."""


class GroupPermissionError(PermissionError):
    """Raised when a non-creator tries to delete a group."""


class ConversationService:
    """Reads and writes the chats and chat_reads collections for one user."""

    def __init__(self, store: DocumentStore, config: Settings | None = None) -> None:
        self.store = store
        self.settings = config or settings

    async def load(self, user_id: str) -> tuple[list[Conversation], list[Conversation]]:
        """Return ``(private_chats, groups)`` the user is a member of."""
        documents = await self.store.list_documents(
            self.settings.chats_collection_id,
            [Query.contains("members", user_id)],
        )
        conversations = [Conversation.model_validate(doc) for doc in documents]
        chats = [c for c in conversations if c.type == ConversationType.PRIVATE]
        groups = [c for c in conversations if c.type == ConversationType.GROUP]
        return chats, groups

    async def load_read_cursors(self, user_id: str) -> list[ReadCursor]:
        documents = await self.store.list_documents(
            self.settings.chat_reads_collection_id,
            [Query.equal("userId", user_id)],
        )
        return [ReadCursor.model_validate(doc) for doc in documents]

    async def upsert_read_cursor(
        self,
        user_id: str,
        chat_id: str,
        existing: ReadCursor | None = None,
        when: datetime | None = None,
    ) -> ReadCursor:
        """Move the user's cursor for ``chat_id`` to ``when``, creating it if needed."""
        moment = when or utcnow()
        collection = self.settings.chat_reads_collection_id
        if existing is not None:
            await self.store.update_document(
                collection, existing.id, {"lastReadAt": to_iso(moment)}
            )
            return existing.model_copy(update={"last_read_at": moment})

        document = await self.store.create_document(
            collection,
            {"userId": user_id, "chatId": chat_id, "lastReadAt": to_iso(moment)},
        )
        return ReadCursor.model_validate(document)

    async def create_group(
        self, user_id: str, name: str, member_ids: Sequence[str]
    ) -> Conversation:
        """Create a group owned by ``user_id``."""
        group_name = name.strip()
        if not group_name or not member_ids:
            raise GroupValidationError("A group needs a name and at least one member")

        members = [user_id, *(member for member in member_ids if member != user_id)]
        document = await self.store.create_document(
            self.settings.chats_collection_id,
            {
                "name": group_name,
                "type": ConversationType.GROUP.value,
                "members": members,
                "creatorId": user_id,
            },
        )
        logger.info("Created group %s with %d members", document.get("$id"), len(members))
        return Conversation.model_validate(document)

    async def leave_group(self, user_id: str, group: Conversation) -> Conversation:
        members = [member for member in group.members if member != user_id]
        await self.store.update_document(
            self.settings.chats_collection_id, group.id, {"members": members}
        )
        return group.model_copy(update={"members": members})

    async def delete_group(self, user_id: str, group: Conversation) -> None:
        """Delete a group and all of its messages. Only the creator may do this."""
        if not group.is_created_by(user_id):
            raise GroupPermissionError("Only the group creator can delete this group")

        messages = await self.store.list_documents(
            self.settings.messages_collection_id,
            [Query.equal("chatId", group.id)],
        )
        for message in messages:
            try:
                await self.store.delete_document(
                    self.settings.messages_collection_id, message["$id"]
                )
            except BackendError as e:
                logger.warning("Failed to delete message %s of group %s: %s",
                               message.get("$id"), group.id, e)

        await self.store.delete_document(self.settings.chats_collection_id, group.id)
        logger.info("Deleted group %s (%d messages)", group.id, len(messages))

    async def toggle_favourite(
        self,
        user_id: str,
        target: ChatTarget,
        chats: Sequence[Conversation],
        groups: Sequence[Conversation] = (),
    ) -> Conversation:
        """Flip the favourite flag for a group or a private chat.

        Private chats are addressed by partner id; a chat document is created
        (already favourite) when the pair has none yet.
        """
        collection = self.settings.chats_collection_id

        if target.is_group:
            group = next((g for g in groups if g.id == target.id), None)
            if group is None:
                raise LookupError(f"Unknown group {target.id}")
            await self.store.update_document(
                collection, group.id, {"isFavourite": not group.is_favourite}
            )
            return group.model_copy(update={"is_favourite": not group.is_favourite})

        chat = private_chat_for(chats, user_id, target.id)
        if chat is None:
            documents = await self.store.list_documents(
                collection,
                [
                    Query.equal("type", ConversationType.PRIVATE.value),
                    Query.contains("members", user_id),
                    Query.contains("members", target.id),
                ],
            )
            if documents:
                chat = Conversation.model_validate(documents[0])

        if chat is None:
            document = await self.store.create_document(
                collection,
                {
                    "type": ConversationType.PRIVATE.value,
                    "members": [user_id, target.id],
                    "isFavourite": True,
                },
            )
            return Conversation.model_validate(document)

        await self.store.update_document(
            collection, chat.id, {"isFavourite": not chat.is_favourite}
        )
        return chat.model_copy(update={"is_favourite": not chat.is_favourite})


def private_chat_for(
    chats: Sequence[Conversation], user_id: str, partner_id: str
) -> Conversation | None:
    """Find the private chat document shared by two users."""
    return next(
        (
            chat
            for chat in chats
            if chat.type == ConversationType.PRIVATE
            and user_id in chat.members
            and partner_id in chat.members
        ),
        None,
    )
