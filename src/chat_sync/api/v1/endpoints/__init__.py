# src/chat_sync/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .documents import router as documents_router

__all__ = ["documents_router"]
