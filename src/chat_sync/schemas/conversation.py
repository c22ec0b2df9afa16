"""Conversation, read cursor and notification schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chat_sync.db.time import parse_iso

from .message import ChatTarget, ConversationType


class Conversation(BaseModel):
    """A private chat document or a group, as stored in the chats collection."""

    id: str = Field(..., alias="$id")
    type: ConversationType = ConversationType.PRIVATE
    members: list[str] = Field(default_factory=list)
    is_favourite: bool = Field(False, alias="isFavourite")
    name: str | None = None
    creator_id: str | None = Field(None, alias="creatorId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("is_favourite", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return bool(value)

    @property
    def is_group(self) -> bool:
        return self.type == ConversationType.GROUP

    def target(self) -> ChatTarget:
        """Chat target addressing this group."""
        return ChatTarget(id=self.id, type=ConversationType.GROUP)

    def is_created_by(self, user_id: str) -> bool:
        """Whether ``user_id`` may delete this group.

        Groups written before ``creatorId`` existed fall back to the first member.
        """
        if self.creator_id:
            return self.creator_id == user_id
        return bool(self.members) and self.members[0] == user_id


class ReadCursor(BaseModel):
    """Per-user, per-conversation marker of the last time it was read."""

    id: str = Field(..., alias="$id")
    user_id: str = Field(..., alias="userId")
    chat_id: str = Field(..., alias="chatId")
    last_read_at: datetime = Field(..., alias="lastReadAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("last_read_at", mode="before")
    @classmethod
    def _parse_last_read_at(cls, value: Any) -> datetime:
        return parse_iso(value)


class Notification(BaseModel):
    """In-app notification raised for messages, likes, comments and follows."""

    id: str = Field(..., alias="$id")
    type: str
    from_user_id: str = Field(..., alias="fromUserId")
    from_username: str | None = Field(None, alias="fromUsername")
    from_user_avatar: str = Field("", alias="fromUserAvatar")
    target_user_id: str = Field(..., alias="targetUserId")
    post_id: str | None = Field(None, alias="postId")
    is_read: bool = Field(False, alias="isRead")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
