"""Watermark storage and retrieval.

A watermark is a single UTC timestamp per tracking key meaning "everything
changed before this instant has been fully processed". The store is the only
persistence a pass needs, and it offers last-write-wins semantics per key;
one writer per key is assumed to be enforced by whoever schedules passes.

Supported backends:
- memory: process-local dict (tests, dry runs)
- local: JSON files in a state directory (default)
- s3: JSON objects in an S3 bucket
- redis: bare timestamp strings under the tracking key

JSON document structure (local and s3):
```json
{
  "key": "order-sync-region-eu-processed-up-to",
  "watermark": "2025-01-15T10:30:00.123456Z",
  "updated_at": "2025-01-15T10:31:00.000000Z"
}
```
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import redis

from recordchange.lib.errors import ConfigurationError, WatermarkStoreError
from recordchange.lib.resilience import RetryConfig, retry_operation
from recordchange.lib.storage import (
    DocumentStorage,
    LocalDocumentStorage,
    S3DocumentStorage,
    document_name,
    key_from_document_name,
)
from recordchange.lib.time_utils import format_watermark, parse_watermark, utc_now

if TYPE_CHECKING:
    from recordchange.lib.settings import RecordChangeSettings

logger = logging.getLogger(__name__)

__all__ = [
    "InMemoryWatermarkStore",
    "JsonWatermarkStore",
    "LocalWatermarkStore",
    "RedisWatermarkStore",
    "S3WatermarkStore",
    "STORE_BACKENDS",
    "WatermarkStore",
    "build_watermark_store",
]

T = TypeVar("T")

STORE_BACKENDS = ("memory", "local", "s3", "redis")


class WatermarkStore(ABC):
    """Durable key -> timestamp store.

    Subclasses implement the raw text operations; this base class handles
    serialization, optional retries and error wrapping so every backend
    fails the same way.
    """

    backend_name: str = "unknown"
    io_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, *, retry: Optional[RetryConfig] = None):
        self.retry = retry or RetryConfig.none()

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        """Return the stored text for key, or None if absent."""

    @abstractmethod
    def _write(self, key: str, text: str) -> None:
        """Store text under key."""

    @abstractmethod
    def _delete(self, key: str) -> bool:
        """Remove key. Returns False if it was absent."""

    @abstractmethod
    def _keys(self) -> List[str]:
        """List all stored keys."""

    def get(self, key: str) -> Optional[datetime]:
        """Return the persisted watermark for key, or None if absent.

        Raises:
            WatermarkStoreError: If the store is unreachable or the stored
                value is not a valid timestamp
        """
        raw = self._call(lambda: self._read(key), "get", key)
        if raw is None:
            return None

        try:
            return parse_watermark(raw)
        except ValueError as exc:
            raise self._unreadable("Stored watermark is not a valid timestamp", key, exc, value=raw) from exc

    def set(self, key: str, value: datetime) -> None:
        """Persist value as the watermark for key.

        Raises:
            WatermarkStoreError: If the write fails
        """
        text = format_watermark(value)
        self._call(lambda: self._write(key, text), "set", key)
        logger.debug("Saved watermark %s=%s (%s)", key, text, self.backend_name)

    def delete(self, key: str) -> bool:
        """Delete the watermark for key, forcing the next pass to look back."""
        deleted = self._call(lambda: self._delete(key), "delete", key)
        if deleted:
            logger.info("Deleted watermark %s (%s)", key, self.backend_name)
        return deleted

    def keys(self) -> List[str]:
        """List all keys that currently hold a watermark."""
        return sorted(self._call(self._keys, "list"))

    def _unreadable(self, message: str, key: str, cause: Exception, **details: Any) -> WatermarkStoreError:
        return WatermarkStoreError(
            message,
            key=key,
            backend=self.backend_name,
            cause=cause,
            details=details,
            suggestion="Delete or correct the stored value; it will not be overwritten automatically.",
        )

    def _call(self, operation: Callable[[], T], operation_name: str, key: Optional[str] = None) -> T:
        try:
            return retry_operation(
                operation,
                self.retry,
                f"watermark {operation_name}",
                retry_exceptions=self.io_errors or None,
            )
        except self.io_errors as exc:
            raise WatermarkStoreError(
                f"Watermark {operation_name} failed",
                key=key,
                backend=self.backend_name,
                cause=exc,
            ) from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class InMemoryWatermarkStore(WatermarkStore):
    """Dict-backed store; nothing survives the process."""

    backend_name = "memory"

    def __init__(self, initial: Optional[Dict[str, datetime]] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._values: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._values[key] = format_watermark(value)

    def _read(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def _write(self, key: str, text: str) -> None:
        self._values[key] = text

    def _delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None

    def _keys(self) -> List[str]:
        return list(self._values)

    def raw(self, key: str) -> Optional[str]:
        """Return the serialized text stored for key."""
        return self._values.get(key)


class JsonWatermarkStore(WatermarkStore):
    """Store keeping one JSON document per key in a DocumentStorage."""

    def __init__(self, storage: DocumentStorage, **kwargs: Any):
        super().__init__(**kwargs)
        self.storage = storage
        self.backend_name = storage.backend_name
        self.io_errors = storage.io_errors

    def _read(self, key: str) -> Optional[str]:
        name = document_name(key)
        try:
            data = self.storage.load(name)
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError
            raise self._unreadable("Watermark document is not valid JSON", key, exc, document=name) from exc

        if data is None:
            return None
        if not isinstance(data, dict):
            raise self._unreadable(
                "Watermark document is not a JSON object",
                key,
                TypeError(f"expected object, got {type(data).__name__}"),
                document=name,
            )
        return str(data.get("watermark") or "")

    def _write(self, key: str, text: str) -> None:
        self.storage.save(
            document_name(key),
            {
                "key": key,
                "watermark": text,
                "updated_at": format_watermark(utc_now()),
            },
        )

    def _delete(self, key: str) -> bool:
        return self.storage.delete(document_name(key))

    def _keys(self) -> List[str]:
        return [key_from_document_name(name) for name in self.storage.list_names()]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.storage!r})"


class LocalWatermarkStore(JsonWatermarkStore):
    """JSON documents in a local state directory."""

    def __init__(self, directory: Path | str = ".state", **kwargs: Any):
        super().__init__(LocalDocumentStorage(directory), **kwargs)


class S3WatermarkStore(JsonWatermarkStore):
    """JSON documents in an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "_watermarks",
        *,
        client: Any = None,
        **kwargs: Any,
    ):
        super().__init__(S3DocumentStorage(bucket, prefix, client=client), **kwargs)


class RedisWatermarkStore(WatermarkStore):
    """Bare timestamp strings stored directly under the tracking key.

    Args:
        url: Redis connection URL, used when no client is given
        client: Preconfigured redis client
        key_pattern: Glob used by keys() to find watermark entries
    """

    backend_name = "redis"
    io_errors = (redis.exceptions.RedisError,)

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        client: Any = None,
        key_pattern: str = "*-processed-up-to",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.url = url
        self.key_pattern = key_pattern
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self.url,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._client

    @staticmethod
    def _text(value: Any) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def _read(self, key: str) -> Optional[str]:
        value = self.client.get(key)
        if value is None:
            return None
        try:
            return self._text(value)
        except UnicodeDecodeError as exc:
            raise self._unreadable("Stored watermark is not valid UTF-8", key, exc, value=repr(value)) from exc

    def _write(self, key: str, text: str) -> None:
        self.client.set(key, text)

    def _delete(self, key: str) -> bool:
        return bool(self.client.delete(key))

    def _keys(self) -> List[str]:
        return [self._text(k) for k in self.client.scan_iter(match=self.key_pattern)]

    def __repr__(self) -> str:
        return f"RedisWatermarkStore(url={self.url!r})"


def build_watermark_store(settings: "RecordChangeSettings") -> WatermarkStore:
    """Build a WatermarkStore from settings.

    Args:
        settings: Loaded RecordChangeSettings

    Returns:
        Configured WatermarkStore instance

    Raises:
        ConfigurationError: If the backend is unknown or incompletely configured
    """
    backend = settings.store_backend
    retry = (
        RetryConfig(max_attempts=settings.store_retry_attempts)
        if settings.store_retry_attempts > 1
        else RetryConfig.none()
    )

    if backend == "memory":
        return InMemoryWatermarkStore(retry=retry)
    if backend == "local":
        return LocalWatermarkStore(settings.state_dir, retry=retry)
    if backend == "s3":
        if not settings.s3_bucket:
            raise ConfigurationError(
                "S3 watermark store requires a bucket",
                field="s3_bucket",
                suggestion="Set RECORD_CHANGE_S3_BUCKET.",
            )
        return S3WatermarkStore(settings.s3_bucket, settings.s3_prefix, retry=retry)
    if backend == "redis":
        return RedisWatermarkStore(settings.redis_url, retry=retry)

    raise ConfigurationError(
        f"Unknown watermark store backend '{backend}'",
        field="store_backend",
        value=backend,
        suggestion=f"Use one of: {', '.join(STORE_BACKENDS)}",
    )
