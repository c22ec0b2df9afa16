# src/chat_sync/db/time.py
"""Time utilities shared by documents, messages and read cursors."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def epoch_millis(moment: datetime | None = None) -> int:
    """Return milliseconds since the epoch for ``moment`` (defaults to now)."""
    return int((moment or utcnow()).timestamp() * 1000)


def to_iso(moment: datetime) -> str:
    """Format a datetime the way the document backend stores timestamps."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds")


def parse_iso(value: str | datetime) -> datetime:
    """Parse a backend timestamp into a timezone-aware UTC datetime."""
    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
