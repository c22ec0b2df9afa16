"""Document backend client.

This module provides the document-store interface the chat engine consumes
and the HTTP client that implements it against an Appwrite-compatible REST
API. It includes:

- The ``DocumentStore`` protocol (list/get/create/update/delete)
- The backend error taxonomy
- An httpx client with project, API key and JWT session authentication
- Request metrics for diagnostics
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from jose import jwt

from chat_sync.core.settings import settings
from chat_sync.services.query import Query

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_SERVER_ERROR = 500

UNIQUE_ID = "unique()"
JWT_ALGORITHM = "HS256"


class BackendError(RuntimeError):
    """Base exception raised for document backend failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """Raised on transport failures and 5xx responses."""


class DocumentNotFoundError(BackendError):
    """Raised when the addressed document or collection does not exist."""


class DocumentStore(Protocol):
    """Operations the chat engine needs from the document backend."""

    async def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]: ...

    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]: ...

    async def create_document(
        self, collection: str, data: Mapping[str, Any], document_id: str = UNIQUE_ID
    ) -> dict[str, Any]: ...

    async def update_document(
        self, collection: str, document_id: str, patch: Mapping[str, Any]
    ) -> dict[str, Any]: ...

    async def delete_document(self, collection: str, document_id: str) -> None: ...


@dataclass
class BackendMetrics:
    """Metrics collection for backend requests."""

    request_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(self, response_time: float, error_type: str | None = None) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        if error_type:
            self.error_count += 1
            self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0


@dataclass(frozen=True)
class BackendConfig:
    """Immutable configuration for backend access."""

    endpoint: str
    project_id: str
    database_id: str
    api_key: str | None
    jwt_secret: str | None
    jwt_ttl_seconds: int
    timeout_seconds: float


def load_backend_config() -> BackendConfig:
    """Build configuration object from global settings."""

    return BackendConfig(
        endpoint=settings.backend_endpoint,
        project_id=settings.backend_project_id,
        database_id=settings.database_id,
        api_key=settings.backend_api_key,
        jwt_secret=settings.backend_jwt_secret,
        jwt_ttl_seconds=settings.backend_jwt_ttl_seconds,
        timeout_seconds=float(settings.backend_http_timeout_seconds),
    )


def mint_session_token(user_id: str, secret: str, ttl_seconds: int) -> str:
    """Create a short-lived HS256 session token identifying ``user_id``."""
    now = int(time.time())
    payload = {
        "userId": user_id,
        "iat": now,
        "exp": now + max(1, ttl_seconds),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


class DocumentClient:
    """HTTP client wrapper implementing ``DocumentStore``.

    No request is retried here; callers that poll simply try again on the
    next tick.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        *,
        user_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_backend_config()
        self.user_id = user_id
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._metrics = BackendMetrics()

    async def __aenter__(self) -> DocumentClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.endpoint,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_auth_headers(self) -> dict[str, str]:
        headers = {"X-Appwrite-Project": self.config.project_id}

        if self.config.api_key:
            headers["X-Appwrite-Key"] = self.config.api_key
        elif self.config.jwt_secret and self.user_id:
            headers["X-Appwrite-JWT"] = mint_session_token(
                self.user_id, self.config.jwt_secret, self.config.jwt_ttl_seconds
            )

        return headers

    def _collection_path(self, collection: str) -> str:
        return f"/databases/{self.config.database_id}/collections/{collection}/documents"

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        json_data: Any | None = None
        params: Any | None = None
        files: Any | None = None
        data: Any | None = None

    async def request(self, params: RequestParams) -> httpx.Response:
        """Send a request and map failures onto the backend error taxonomy."""
        client = await self._ensure_client()
        start_time = time.time()
        error_type: str | None = None

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                params=params.params,
                files=params.files,
                data=params.data,
                headers=self._build_auth_headers(),
            )
        except httpx.HTTPError as exc:
            error_type = "network_error"
            raise BackendUnavailableError(f"Backend request failed: {exc}") from exc
        finally:
            if error_type:
                self._metrics.record_request(time.time() - start_time, error_type)

        status_code = response.status_code
        if status_code >= HTTP_BAD_REQUEST:
            error_type = f"http_{status_code}"
        self._metrics.record_request(time.time() - start_time, error_type)

        if status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise BackendUnavailableError(
                f"Backend responded with {status_code}", status_code=status_code
            )
        if status_code == HTTP_NOT_FOUND:
            raise DocumentNotFoundError(_error_message(response), status_code=status_code)
        if status_code >= HTTP_BAD_REQUEST:
            raise BackendError(_error_message(response), status_code=status_code)

        return response

    async def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]:
        """List documents of ``collection`` matching ``queries``."""
        response = await self.request(
            self.RequestParams(
                method="GET",
                path=self._collection_path(collection),
                params={"queries[]": [query.to_json() for query in queries]} if queries else None,
            )
        )
        payload = response.json()
        return list(payload.get("documents", []))

    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]:
        """Fetch a single document."""
        response = await self.request(
            self.RequestParams(
                method="GET", path=f"{self._collection_path(collection)}/{document_id}"
            )
        )
        return dict(response.json())

    async def create_document(
        self, collection: str, data: Mapping[str, Any], document_id: str = UNIQUE_ID
    ) -> dict[str, Any]:
        """Create a document and return the stored copy."""
        response = await self.request(
            self.RequestParams(
                method="POST",
                path=self._collection_path(collection),
                json_data={"documentId": document_id, "data": dict(data)},
            )
        )
        return dict(response.json())

    async def update_document(
        self, collection: str, document_id: str, patch: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Patch a document and return the stored copy."""
        response = await self.request(
            self.RequestParams(
                method="PATCH",
                path=f"{self._collection_path(collection)}/{document_id}",
                json_data={"data": dict(patch)},
            )
        )
        return dict(response.json())

    async def delete_document(self, collection: str, document_id: str) -> None:
        """Delete a document."""
        await self.request(
            self.RequestParams(
                method="DELETE", path=f"{self._collection_path(collection)}/{document_id}"
            )
        )

    def get_metrics(self) -> dict[str, Any]:
        """Get backend request metrics.

        Returns:
            Dictionary containing request counts, errors and average latency
        """
        return {
            "request_count": self._metrics.request_count,
            "error_count": self._metrics.error_count,
            "average_response_time": self._metrics.get_average_response_time(),
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"Backend responded with {response.status_code}"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("detail") or payload)
    return str(payload)

