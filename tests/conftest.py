# tests/conftest.py
from __future__ import annotations

import os
from collections import defaultdict
from collections.abc import Generator, Iterator, Mapping, Sequence
from datetime import datetime, timedelta
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

from chat_sync.core.settings import Settings, settings
from chat_sync.db.session import Base
from chat_sync.db.session import get_db as app_get_session
from chat_sync.db.time import to_iso, utcnow
from chat_sync.main import app as fastapi_app
from chat_sync.services.backend import UNIQUE_ID, DocumentNotFoundError
from chat_sync.services.chat_sync import ChatSyncEngine
from chat_sync.services.query import Query, apply_queries

TEST_DB_URL = "sqlite://"


class FakeDocumentStore:
    """In-memory ``DocumentStore`` with a deterministic clock.

    Every created document is stamped one second after the previous one,
    starting a minute in the past so fresh optimistic sends sort last.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.clock = start or utcnow() - timedelta(seconds=60)
        self.updates: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted: list[tuple[str, str]] = []
        self._ids = count(1)

    def _stamp(self) -> str:
        self.clock += timedelta(seconds=1)
        return to_iso(self.clock)

    def seed(
        self,
        collection: str,
        data: Mapping[str, Any],
        document_id: str | None = None,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        document_id = document_id or f"doc{next(self._ids)}"
        stamp = to_iso(created_at) if created_at is not None else self._stamp()
        document = {**data, "$id": document_id, "$createdAt": stamp, "$updatedAt": stamp}
        self.collections[collection][document_id] = document
        return dict(document)

    def seed_message(
        self,
        sender_id: str,
        receiver_id: str | None,
        content: str = "hello",
        *,
        chat_id: str | None = None,
        is_read: bool = False,
        document_id: str | None = None,
        created_at: datetime | None = None,
    ) -> dict[str, Any]:
        return self.seed(
            settings.messages_collection_id,
            {
                "chatId": chat_id or receiver_id,
                "senderId": sender_id,
                "receiverId": receiver_id,
                "type": "text",
                "content": content,
                "fileUrl": "",
                "is_read": is_read,
            },
            document_id=document_id,
            created_at=created_at,
        )

    def documents(self, collection: str) -> list[dict[str, Any]]:
        return list(self.collections[collection].values())

    async def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]:
        return apply_queries(self.collections[collection].values(), queries)

    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]:
        try:
            return dict(self.collections[collection][document_id])
        except KeyError:
            raise DocumentNotFoundError(f"{collection}/{document_id} not found", 404) from None

    async def create_document(
        self, collection: str, data: Mapping[str, Any], document_id: str = UNIQUE_ID
    ) -> dict[str, Any]:
        return self.seed(collection, data, None if document_id == UNIQUE_ID else document_id)

    async def update_document(
        self, collection: str, document_id: str, patch: Mapping[str, Any]
    ) -> dict[str, Any]:
        document = await self.get_document(collection, document_id)
        document.update(patch)
        self.collections[collection][document_id] = document
        self.updates.append((collection, document_id, dict(patch)))
        return dict(document)

    async def delete_document(self, collection: str, document_id: str) -> None:
        await self.get_document(collection, document_id)
        del self.collections[collection][document_id]
        self.deleted.append((collection, document_id))


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI, override_session_dependency: None) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Provide a Settings instance aligned with runtime configuration."""
    return Settings()


@pytest.fixture()
def store() -> FakeDocumentStore:
    store = FakeDocumentStore()
    store.seed(settings.users_collection_id, {"username": "alice", "avatar": ""}, "alice")
    store.seed(settings.users_collection_id, {"username": "bob", "avatar": ""}, "bob")
    return store


@pytest.fixture()
def sync_engine(store: FakeDocumentStore, test_settings: Settings) -> ChatSyncEngine:
    """Engine for ``alice``; background polling is not started."""
    return ChatSyncEngine("alice", store, config=test_settings)
