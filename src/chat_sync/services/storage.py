"""File uploads for media messages."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from chat_sync.core.settings import Settings, settings
from chat_sync.services.backend import UNIQUE_ID, BackendError, DocumentClient

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
SUPPORTED_MEDIA_TYPES = frozenset({"image", "video", "audio", "document"})


class UploadError(RuntimeError):
    """Raised when a file cannot be uploaded."""


@dataclass(frozen=True)
class MediaFile:
    """A local file picked for sending."""

    name: str
    content: bytes
    mime_type: str | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> MediaFile:
        file_path = Path(path)
        mime_type, _ = mimetypes.guess_type(file_path.name)
        return cls(name=file_path.name, content=file_path.read_bytes(), mime_type=mime_type)

    @property
    def size_mb(self) -> float:
        return len(self.content) / BYTES_PER_MB


def compatible_file_name(name: str, mime_type: str | None) -> str:
    """Normalize extensions the storage bucket accepts for camera output."""
    if not name:
        return name
    base_name = name.split(".")[0]
    if mime_type in {"video", "video/mp4", "video/quicktime"}:
        return f"{base_name}.mp4"
    if mime_type in {"image", "image/jpeg"}:
        return f"{base_name}.jpg"
    if mime_type == "image/png":
        return f"{base_name}.png"
    return name


class FileUploader:
    """Uploads files to the storage bucket and returns a retrievable URL."""

    def __init__(
        self,
        client: DocumentClient,
        bucket_id: str | None = None,
        config: Settings | None = None,
    ) -> None:
        self.client = client
        self.settings = config or settings
        self.bucket_id = bucket_id or self.settings.storage_bucket_id

    def max_size_mb(self, media_type: str) -> float:
        return self.settings.max_upload_sizes_mb.get(media_type, self.settings.max_upload_mb)

    def file_url(self, file_id: str, media_type: str) -> str:
        """Build the URL a media message should reference."""
        endpoint = self.client.config.endpoint.rstrip("/")
        base_url = f"{endpoint}/storage/buckets/{self.bucket_id}/files/{file_id}"
        action = "preview" if media_type == "image" else "view"
        return f"{base_url}/{action}?project={self.client.config.project_id}"

    async def upload(self, file: MediaFile, media_type: str) -> str:
        """Upload ``file`` and return its URL.

        Raises:
            UploadError: unsupported media type, oversized file or backend failure
        """
        if media_type not in SUPPORTED_MEDIA_TYPES:
            raise UploadError(f"Unsupported file type for upload: {media_type}")

        limit = self.max_size_mb(media_type)
        if file.size_mb > limit:
            raise UploadError(
                f"File is too large ({file.size_mb:.2f}MB). Maximum size allowed: {limit:g}MB."
            )

        mime_type = file.mime_type
        if media_type == "video" and mime_type and "mov" in mime_type:
            mime_type = "video/mp4"
        name = compatible_file_name(file.name, mime_type)

        logger.debug("Uploading %s (%.2fMB, %s)", name, file.size_mb, media_type)
        try:
            response = await self.client.request(
                DocumentClient.RequestParams(
                    method="POST",
                    path=f"/storage/buckets/{self.bucket_id}/files",
                    data={"fileId": UNIQUE_ID},
                    files={"file": (name, file.content, mime_type or "application/octet-stream")},
                )
            )
        except BackendError as exc:
            raise UploadError(f"Failed to upload file: {exc}") from exc

        file_id = response.json().get("$id")
        if not file_id:
            raise UploadError("Upload response did not include a file id")
        return self.file_url(file_id, media_type)
