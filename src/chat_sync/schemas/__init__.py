# src/chat_sync/schemas/__init__.py
"""
Pydantic schemas for messages, conversations and the document wire format.
"""

from .conversation import Conversation, Notification, ReadCursor
from .document import DocumentCreate, DocumentList, DocumentUpdate
from .message import ChatTarget, ConversationType, Message, MessageType

__all__ = [
    "ChatTarget", "ConversationType", "Message", "MessageType",
    "Conversation", "Notification", "ReadCursor",
    "DocumentCreate", "DocumentList", "DocumentUpdate",
]
