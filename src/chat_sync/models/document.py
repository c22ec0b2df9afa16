# src/chat_sync/models/document.py
"""Storage model for schemaless documents served by the local service."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chat_sync.db.session import Base
from chat_sync.db.time import to_iso, utcnow


class Document(Base):
    """A JSON document stored in a named collection.

    Mirrors the document model of the hosted backend: a server-assigned id,
    a free-form attribute payload and creation/update timestamps.
    """

    __tablename__ = "document"
    __table_args__ = (
        UniqueConstraint("database_id", "collection_id", "document_id", name="uq_document_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    database_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    collection_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    document_id: Mapped[str] = mapped_column(String(64), nullable=False)

    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    def to_payload(self) -> dict[str, Any]:
        """Render the document in backend wire form ($-prefixed system fields)."""
        payload = dict(self.data or {})
        payload.update(
            {
                "$id": self.document_id,
                "$databaseId": self.database_id,
                "$collectionId": self.collection_id,
                "$createdAt": to_iso(self.created_at),
                "$updatedAt": to_iso(self.updated_at),
            }
        )
        return payload
