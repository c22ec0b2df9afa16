# tests/services/test_backend_client.py
"""Tests for the HTTP document client."""

import json

import httpx
import pytest
from jose import jwt

from chat_sync.services.backend import (
    JWT_ALGORITHM,
    BackendConfig,
    BackendError,
    BackendUnavailableError,
    DocumentClient,
    DocumentNotFoundError,
)
from chat_sync.services.query import Query

DOCUMENTS_PATH = "/v1/databases/main/collections/messages/documents"


def _config(**overrides):
    values = {
        "endpoint": "http://backend.test/v1",
        "project_id": "proj",
        "database_id": "main",
        "api_key": None,
        "jwt_secret": None,
        "jwt_ttl_seconds": 60,
        "timeout_seconds": 5.0,
    }
    values.update(overrides)
    return BackendConfig(**values)


def _client(handler, **overrides):
    return DocumentClient(
        _config(**overrides),
        user_id="alice",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_list_documents_sends_queries_and_project_header() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["queries"] = request.url.params.get_list("queries[]")
        captured["headers"] = request.headers
        return httpx.Response(200, json={"total": 1, "documents": [{"$id": "m1"}]})

    async with _client(handler, api_key="secret-key") as client:
        documents = await client.list_documents(
            "messages", [Query.equal("senderId", "alice"), Query.order_desc("$createdAt")]
        )

    assert documents == [{"$id": "m1"}]
    assert captured["path"] == DOCUMENTS_PATH
    assert [json.loads(raw)["method"] for raw in captured["queries"]] == ["equal", "orderDesc"]
    assert captured["headers"]["X-Appwrite-Project"] == "proj"
    assert captured["headers"]["X-Appwrite-Key"] == "secret-key"
    assert "X-Appwrite-JWT" not in captured["headers"]


@pytest.mark.asyncio
async def test_session_token_identifies_user() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["token"] = request.headers["X-Appwrite-JWT"]
        return httpx.Response(200, json={"$id": "m1"})

    async with _client(handler, jwt_secret="shh") as client:
        await client.get_document("messages", "m1")

    claims = jwt.decode(captured["token"], "shh", algorithms=[JWT_ALGORITHM])
    assert claims["userId"] == "alice"
    assert claims["exp"] > claims["iat"]


@pytest.mark.asyncio
async def test_create_and_update_send_document_bodies() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(201, json={"$id": "m1", "content": "hi"})

    async with _client(handler) as client:
        created = await client.create_document("messages", {"content": "hi"})
        await client.update_document("messages", "m1", {"is_read": True})

    assert created["$id"] == "m1"
    assert bodies[0] == ("POST", DOCUMENTS_PATH, {"documentId": "unique()", "data": {"content": "hi"}})
    assert bodies[1] == ("PATCH", f"{DOCUMENTS_PATH}/m1", {"data": {"is_read": True}})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, error_type",
    [
        (404, DocumentNotFoundError),
        (401, BackendError),
        (503, BackendUnavailableError),
    ],
)
async def test_error_statuses_map_to_backend_errors(status_code, error_type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"message": "nope"})

    async with _client(handler) as client:
        with pytest.raises(error_type) as exc_info:
            await client.delete_document("messages", "m1")

    assert exc_info.value.status_code == status_code
    if status_code < 500:
        assert str(exc_info.value) == "nope"


@pytest.mark.asyncio
async def test_transport_failure_is_unavailable_and_counted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(BackendUnavailableError):
        await client.list_documents("messages")

    metrics = client.get_metrics()
    assert metrics["request_count"] == 1
    assert metrics["error_count"] == 1
    assert metrics["error_counts_by_type"] == {"network_error": 1}
    await client.close()


@pytest.mark.asyncio
async def test_close_allows_reconnect() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"documents": []})

    client = _client(handler)
    assert await client.list_documents("messages") == []
    await client.close()
    assert await client.list_documents("messages") == []
    await client.close()
