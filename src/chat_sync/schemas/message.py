"""Message-related Pydantic schemas."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chat_sync.db.time import epoch_millis, parse_iso, utcnow

TEMP_ID_PREFIX = "temp-"


class MessageType(str, Enum):
    """Kinds of payload a chat message can carry."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"


class ConversationType(str, Enum):
    """Conversation flavours; a group id doubles as the chat id of its messages."""

    PRIVATE = "private"
    GROUP = "group"


@dataclass(frozen=True)
class ChatTarget:
    """The conversation a user has open or is inspecting.

    For private conversations ``id`` is the partner's user id, for groups it is
    the group conversation id.
    """

    id: str
    type: ConversationType = ConversationType.PRIVATE

    @property
    def is_group(self) -> bool:
        return self.type == ConversationType.GROUP


class Message(BaseModel):
    """A chat message as held in the local lists.

    Server-confirmed messages carry the backend id; optimistic copies carry a
    ``temp-<millis>`` id and ``optimistic=True`` until the write round-trips.
    """

    id: str = Field(..., alias="$id")
    chat_id: str = Field(..., alias="chatId")
    sender_id: str = Field(..., alias="senderId")
    receiver_id: str | None = Field(None, alias="receiverId")
    type: MessageType = MessageType.TEXT
    content: str = ""
    file_url: str = Field("", alias="fileUrl")
    created_at: datetime = Field(default_factory=utcnow, alias="$createdAt")
    is_read: bool = False
    optimistic: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created_at(cls, value: Any) -> datetime:
        return parse_iso(value)

    @field_validator("content", "file_url", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Message:
        """Build a confirmed message from a backend document."""
        return cls.model_validate({**document, "optimistic": False})

    @classmethod
    def build_payload(
        cls,
        *,
        chat_id: str,
        sender_id: str,
        receiver_id: str | None,
        type: MessageType,
        content: str = "",
        file_url: str = "",
    ) -> dict[str, Any]:
        """Return the document payload stored for a new message.

        Non-text messages keep the file reference in ``content`` as well as in
        ``fileUrl`` so older readers that only look at ``content`` still work.
        """
        if type == MessageType.TEXT:
            stored_content, stored_file_url = content, ""
        else:
            stored_content = file_url or content
            stored_file_url = file_url or content
        return {
            "chatId": chat_id,
            "senderId": sender_id,
            "receiverId": receiver_id,
            "type": type.value,
            "content": stored_content,
            "fileUrl": stored_file_url,
        }

    @classmethod
    def optimistic_copy(cls, payload: dict[str, Any], *, now: datetime | None = None) -> Message:
        """Create the locally-tagged copy shown before the write is confirmed."""
        created = now or utcnow()
        return cls.model_validate(
            {
                **payload,
                "$id": f"{TEMP_ID_PREFIX}{epoch_millis(created)}",
                "$createdAt": created,
                "optimistic": True,
            }
        )

    def to_document(self) -> dict[str, Any]:
        """Return the backend payload for this message (no system or local fields)."""
        return {
            "chatId": self.chat_id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "type": self.type.value,
            "content": self.content,
            "fileUrl": self.file_url,
            "is_read": self.is_read,
        }

    def same_payload(self, other: Message) -> bool:
        """Whether two messages agree on content, sender, receiver and type."""
        return (
            self.content == other.content
            and self.sender_id == other.sender_id
            and self.receiver_id == other.receiver_id
            and self.type == other.type
        )


def location_content(latitude: float, longitude: float, address: str = "") -> str:
    """Encode a shared location the way location messages carry it."""
    return json.dumps({"latitude": latitude, "longitude": longitude, "address": address})


def contact_content(name: str, phone: str = "", email: str = "") -> str:
    """Encode a shared contact card the way contact messages carry it."""
    return json.dumps({"name": name, "phone": phone, "email": email})
