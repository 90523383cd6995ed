"""Shared UTC time helpers for windows and watermarks."""

from __future__ import annotations

from datetime import datetime, timezone

__all__ = ["EPOCH", "ensure_utc", "format_watermark", "parse_watermark", "utc_now"]

# Beginning of the Unix epoch; no window ever starts before it.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

WATERMARK_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_watermark(value: datetime) -> str:
    """Serialize a timestamp for storage.

    The output is fixed width with microsecond precision and a 'Z' suffix,
    so lexicographic order of stored values matches temporal order.

    Example:
        >>> format_watermark(datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc))
        '2025-01-15T10:30:00.000000Z'
    """
    return ensure_utc(value).strftime(WATERMARK_FORMAT)


def parse_watermark(text: str) -> datetime:
    """Parse a stored watermark back into an aware UTC datetime.

    Raises:
        ValueError: If the text is empty or not an ISO-8601 timestamp
    """
    if not text or not text.strip():
        raise ValueError("Empty watermark value")

    candidate = text.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    return ensure_utc(datetime.fromisoformat(candidate))
