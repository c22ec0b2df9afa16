# src/chat_sync/services/__init__.py
"""Chat synchronization services and backend collaborators."""

from .backend import DocumentClient, DocumentStore
from .chat_sync import ChatSyncEngine
from .conversations import ConversationService
from .notifications import NotificationService
from .storage import FileUploader

__all__ = [
    "ChatSyncEngine",
    "ConversationService",
    "DocumentClient",
    "DocumentStore",
    "FileUploader",
    "NotificationService",
]
