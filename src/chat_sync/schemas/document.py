"""Wire schemas of the local document service."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class DocumentCreate(BaseModel):
    """Request body for creating a document."""

    document_id: str = Field("unique()", alias="documentId")
    data: dict[str, Any] = Field(default_factory=dict)


class DocumentUpdate(BaseModel):
    """Request body for patching a document."""

    data: dict[str, Any] = Field(default_factory=dict)


class DocumentList(BaseModel):
    """Response envelope for document listings."""

    total: int
    documents: list[dict[str, Any]]
