"""Application settings and configuration.

This module defines all configuration options for the chat sync client and
the local document service. Settings are loaded from environment variables
with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Chat Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Document backend (Appwrite-compatible REST API)
    backend_endpoint: str = Field(default="http://localhost:8000/v1", alias="BACKEND_ENDPOINT")
    backend_project_id: str = Field(default="chat-sync-local", alias="BACKEND_PROJECT_ID")
    backend_api_key: str | None = Field(default=None, alias="BACKEND_API_KEY")
    backend_jwt_secret: str | None = Field(default=None, alias="BACKEND_JWT_SECRET")
    backend_jwt_ttl_seconds: int = Field(default=900, alias="BACKEND_JWT_TTL_SECONDS")
    backend_http_timeout_seconds: float = Field(default=10.0, alias="BACKEND_HTTP_TIMEOUT_SECONDS")

    # Collections
    database_id: str = Field(default="main", alias="DATABASE_ID")
    messages_collection_id: str = Field(default="messages", alias="MESSAGES_COLLECTION_ID")
    chats_collection_id: str = Field(default="chats", alias="CHATS_COLLECTION_ID")
    chat_reads_collection_id: str = Field(default="chat_reads", alias="CHAT_READS_COLLECTION_ID")
    notifications_collection_id: str = Field(
        default="notifications",
        alias="NOTIFICATIONS_COLLECTION_ID",
    )
    users_collection_id: str = Field(default="users", alias="USERS_COLLECTION_ID")
    storage_bucket_id: str = Field(default="media", alias="STORAGE_BUCKET_ID")

    # Synchronization cadence
    all_conversations_poll_interval_seconds: float = Field(
        default=2.0,
        alias="ALL_CONVERSATIONS_POLL_INTERVAL_SECONDS",
    )
    active_conversation_poll_interval_seconds: float = Field(
        default=3.0,
        alias="ACTIVE_CONVERSATION_POLL_INTERVAL_SECONDS",
    )
    duplicate_window_seconds: float = Field(default=10.0, alias="DUPLICATE_WINDOW_SECONDS")

    # Upload limits in megabytes
    max_video_upload_mb: float = Field(default=100.0, alias="MAX_VIDEO_UPLOAD_MB")
    max_audio_upload_mb: float = Field(default=50.0, alias="MAX_AUDIO_UPLOAD_MB")
    max_upload_mb: float = Field(default=10.0, alias="MAX_UPLOAD_MB")

    # Local document service storage
    database_url: str = Field(default="sqlite:///./chat_sync.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def max_upload_sizes_mb(self) -> dict[str, float]:
        """Return upload size limits keyed by media type.

        Returns:
            Dictionary mapping media types to their maximum size in megabytes
        """
        return {
            "video": self.max_video_upload_mb,
            "audio": self.max_audio_upload_mb,
        }


settings = Settings()  # type: ignore[call-arg]
