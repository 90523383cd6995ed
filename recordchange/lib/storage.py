"""JSON document storage backends for watermark state.

Each tracking key is kept as one small JSON document. The local backend
writes files in a state directory, the S3 backend writes objects under a
bucket prefix. Both expose the same load/save/delete/list surface so the
watermark store does not care where documents live.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, cast
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

__all__ = [
    "DOCUMENT_SUFFIX",
    "DocumentStorage",
    "LocalDocumentStorage",
    "S3DocumentStorage",
    "document_name",
    "key_from_document_name",
]

DOCUMENT_SUFFIX = "_watermark.json"

_MISSING_S3_CODES = {"NoSuchKey", "404", "NotFound"}


def document_name(key: str) -> str:
    """Map a tracking key to a reversible, filesystem-safe document name."""
    return f"{quote(key, safe='')}{DOCUMENT_SUFFIX}"


def key_from_document_name(name: str) -> str:
    """Inverse of document_name()."""
    return unquote(name[: -len(DOCUMENT_SUFFIX)])


class DocumentStorage(ABC):
    """Base class for JSON document storage.

    Attributes:
        backend_name: Short backend identifier used in logs and errors
        io_errors: Exception types raised by the backend for I/O failures
    """

    backend_name: str = "unknown"
    io_errors: Tuple[Type[BaseException], ...] = ()

    @abstractmethod
    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Return the document, or None if it does not exist."""

    @abstractmethod
    def save(self, name: str, data: Dict[str, Any]) -> None:
        """Write the document, replacing any previous version."""

    @abstractmethod
    def delete(self, name: str) -> bool:
        """Delete the document. Returns False if it did not exist."""

    @abstractmethod
    def list_names(self) -> List[str]:
        """List the names of all stored watermark documents."""


class LocalDocumentStorage(DocumentStorage):
    """Documents stored as files in a local state directory."""

    backend_name = "local"
    io_errors = (OSError,)

    def __init__(self, directory: Path | str = ".state"):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / name

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        path = self._path(name)
        if not path.exists():
            return None

        with open(path, "r", encoding="utf-8") as f:
            return cast(Dict[str, Any], json.load(f))

    def save(self, name: str, data: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(name)

        # Write to a sibling temp file and swap it in so readers never see
        # a half-written document.
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug("Saved JSON to %s", path)

    def delete(self, name: str) -> bool:
        path = self._path(name)
        if path.exists():
            path.unlink()
            logger.info("Deleted %s", path)
            return True
        return False

    def list_names(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.name for p in self.directory.glob(f"*{DOCUMENT_SUFFIX}"))

    def __repr__(self) -> str:
        return f"LocalDocumentStorage({str(self.directory)!r})"


class S3DocumentStorage(DocumentStorage):
    """Documents stored as objects in an S3 bucket under a prefix."""

    backend_name = "s3"
    io_errors = (BotoCoreError, ClientError)

    def __init__(
        self,
        bucket: str,
        prefix: str = "_watermarks",
        *,
        client: Any = None,
    ):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client

    @property
    def client(self) -> Any:
        """Lazily created boto3 S3 client."""
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _object_key(self, name: str) -> str:
        if not self.prefix:
            return name
        return f"{self.prefix}/{name}"

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        key = self._object_key(name)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_S3_CODES:
                return None
            raise

        body = response["Body"].read().decode("utf-8")
        return cast(Dict[str, Any], json.loads(body))

    def save(self, name: str, data: Dict[str, Any]) -> None:
        key = self._object_key(name)
        body = json.dumps(data, indent=2)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType="application/json",
        )
        logger.debug("Saved JSON to s3://%s/%s", self.bucket, key)

    def delete(self, name: str) -> bool:
        key = self._object_key(name)
        # Existence only; the body may be unreadable
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_S3_CODES:
                return False
            raise

        self.client.delete_object(Bucket=self.bucket, Key=key)
        logger.info("Deleted s3://%s/%s", self.bucket, key)
        return True

    def list_names(self) -> List[str]:
        names: List[str] = []
        list_prefix = f"{self.prefix}/" if self.prefix else ""

        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if key.endswith(DOCUMENT_SUFFIX):
                    names.append(key[len(list_prefix):])

        return sorted(names)

    def __repr__(self) -> str:
        return f"S3DocumentStorage(bucket={self.bucket!r}, prefix={self.prefix!r})"
