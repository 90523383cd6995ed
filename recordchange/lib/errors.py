"""Structured exception hierarchy for change polling.

Provides specific exception types for the failure modes of a pass,
with rich context for debugging and troubleshooting.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

__all__ = [
    "RecordChangeError",
    "ConfigurationError",
    "MaxCountExceeded",
    "WatermarkStoreError",
]


class RecordChangeError(Exception):
    """Base exception for all change-polling errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.source = source
        self.key = key
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if source or key:
            context = f"{source or '?'}:{key or '?'}"
            parts.insert(0, f"[{context}]")

        if self.details:
            detail_lines = [f"  {k}: {v}" for k, v in self.details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "key": self.key,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(RecordChangeError):
    """Error in window, source, or settings configuration.

    Raised at construction time and never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class MaxCountExceeded(RecordChangeError):
    """More records changed in the same instant than the batch limit allows.

    The window cannot be shrunk any further without dropping every fetched
    record, so the pass can never make progress. Requires operator action.
    """

    def __init__(
        self,
        message: str,
        *,
        limit: int,
        window_start: Optional[datetime] = None,
        window_finish: Optional[datetime] = None,
        fetched_count: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.limit = limit
        self.window_start = window_start
        self.window_finish = window_finish
        self.fetched_count = fetched_count

        details = kwargs.pop("details", {})
        details["limit"] = limit
        if window_start is not None:
            details["window_start"] = window_start.isoformat()
        if window_finish is not None:
            details["window_finish"] = window_finish.isoformat()
        if fetched_count is not None:
            details["fetched_count"] = fetched_count

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Raise max_excessive_count for this source, or give its "
                "changed_at timestamps finer granularity."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class WatermarkStoreError(RecordChangeError):
    """The watermark store could not be read or written.

    The pass fails as a whole and the watermark is left unchanged, so the
    next pass retries the same window.
    """

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.backend = backend
        self.cause = cause

        details = kwargs.pop("details", {})
        if backend:
            details["backend"] = backend
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check that the watermark store is reachable and writable."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)
