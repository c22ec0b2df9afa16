# src/chat_sync/api/v1/endpoints/documents.py
"""Document collection endpoints of the local document service."""

from __future__ import annotations

import secrets
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from chat_sync.core.settings import settings
from chat_sync.db.session import get_db
from chat_sync.models import Document
from chat_sync.schemas.document import DocumentCreate, DocumentList, DocumentUpdate
from chat_sync.services.backend import JWT_ALGORITHM, UNIQUE_ID
from chat_sync.services.query import Query as DocumentQuery
from chat_sync.services.query import QueryError, apply_queries

router = APIRouter(
    prefix="/databases/{database_id}/collections/{collection_id}/documents",
    tags=["documents"],
)

DOCUMENT_ID_LENGTH = 20


def require_client(
    x_appwrite_project: Annotated[str | None, Header()] = None,
    x_appwrite_key: Annotated[str | None, Header()] = None,
    x_appwrite_jwt: Annotated[str | None, Header()] = None,
) -> str | None:
    """Authenticate the caller and return the session user id, if any.

    The project header is always required. When a JWT secret is configured the
    caller must present either the API key or a valid session token.
    """
    if x_appwrite_project != settings.backend_project_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or missing project",
        )

    if settings.backend_api_key and x_appwrite_key == settings.backend_api_key:
        return None

    if settings.backend_jwt_secret:
        if not x_appwrite_jwt:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session token required",
            )
        try:
            claims = jwt.decode(
                x_appwrite_jwt, settings.backend_jwt_secret, algorithms=[JWT_ALGORITHM]
            )
        except JWTError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid session token",
            ) from exc
        return claims.get("userId")

    return None


SessionDep = Annotated[Session, Depends(get_db)]
ClientDep = Annotated[str | None, Depends(require_client)]


def _strip_system_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if not key.startswith("$")}


def _get_document_or_404(
    db: Session, database_id: str, collection_id: str, document_id: str
) -> Document:
    document = (
        db.query(Document)
        .filter(
            Document.database_id == database_id,
            Document.collection_id == collection_id,
            Document.document_id == document_id,
        )
        .first()
    )
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document with the requested ID could not be found.",
        )
    return document


@router.get("", response_model=DocumentList)
async def list_documents(
    database_id: str,
    collection_id: str,
    db: SessionDep,
    _client: ClientDep,
    queries: Annotated[list[str], Query(alias="queries[]")] = [],  # noqa: B006
) -> DocumentList:
    """List the documents of a collection matching the given queries."""
    try:
        parsed = [DocumentQuery.from_json(raw) for raw in queries]
    except QueryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    rows = (
        db.query(Document)
        .filter(Document.database_id == database_id, Document.collection_id == collection_id)
        .order_by(Document.id)
        .all()
    )
    documents = apply_queries((row.to_payload() for row in rows), parsed)
    return DocumentList(total=len(documents), documents=documents)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_document(
    database_id: str,
    collection_id: str,
    body: DocumentCreate,
    db: SessionDep,
    _client: ClientDep,
) -> dict[str, Any]:
    """Create a document; ``unique()`` asks the server to pick the id."""
    document_id = body.document_id
    if document_id == UNIQUE_ID:
        document_id = secrets.token_hex(DOCUMENT_ID_LENGTH // 2)
    else:
        exists = (
            db.query(Document.id)
            .filter(
                Document.database_id == database_id,
                Document.collection_id == collection_id,
                Document.document_id == document_id,
            )
            .first()
        )
        if exists is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Document with the requested ID already exists.",
            )

    document = Document(
        database_id=database_id,
        collection_id=collection_id,
        document_id=document_id,
        data=_strip_system_fields(body.data),
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document.to_payload()


@router.get("/{document_id}")
async def get_document(
    database_id: str,
    collection_id: str,
    document_id: str,
    db: SessionDep,
    _client: ClientDep,
) -> dict[str, Any]:
    return _get_document_or_404(db, database_id, collection_id, document_id).to_payload()


@router.patch("/{document_id}")
async def update_document(
    database_id: str,
    collection_id: str,
    document_id: str,
    body: DocumentUpdate,
    db: SessionDep,
    _client: ClientDep,
) -> dict[str, Any]:
    """Merge the given attributes into a document."""
    document = _get_document_or_404(db, database_id, collection_id, document_id)
    # Reassign so the JSON column registers the change.
    document.data = {**(document.data or {}), **_strip_system_fields(body.data)}
    db.commit()
    db.refresh(document)
    return document.to_payload()


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    database_id: str,
    collection_id: str,
    document_id: str,
    db: SessionDep,
    _client: ClientDep,
) -> Response:
    document = _get_document_or_404(db, database_id, collection_id, document_id)
    db.delete(document)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
