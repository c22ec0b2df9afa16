"""SQLAlchemy models for the local document service."""

from .document import Document

__all__ = ["Document"]
