# src/chat_sync/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import documents_router

__all__ = ["documents_router"]
