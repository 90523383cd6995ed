"""Logging utilities for change-polling passes.

Pass logs are plain key=value lines for humans and grep, with the same
context attached as extra fields so the JSON formatter can emit it
structured for log aggregation.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from recordchange.lib.time_utils import format_watermark

if TYPE_CHECKING:
    from recordchange.lib.settings import RecordChangeSettings

__all__ = [
    "JSONFormatter",
    "PassLogger",
    "get_pass_logger",
    "setup_logging",
]

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as JSON.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "recordchange.worker", "message": "record_change_worker ..."}
    """

    def __init__(self, exclude_fields: Optional[list[str]] = None):
        super().__init__()
        self.exclude_fields = exclude_fields or []

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_attrs = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS and k not in self.exclude_fields
        }
        if extra_attrs:
            log_data["extra"] = extra_attrs

        return json.dumps(log_data, default=str)


def _render(value: Any) -> str:
    if isinstance(value, datetime):
        return format_watermark(value)
    return str(value)


class PassLogger:
    """Logger carrying the context of one pass.

    Every message is prefixed with the context as key=value pairs.

    Example:
        logger = PassLogger("recordchange.worker")
        logger.set_context(source="order_sync", window_start=start, region="eu")
        logger.info("start")
        # record_change_worker source=order_sync window_start=... region=eu start
    """

    prefix = "record_change_worker"

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = {}

    def set_context(self, **kwargs: Any) -> None:
        """Set context fields included in all subsequent messages."""
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context.clear()

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def _log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        metadata = " ".join(f"{k}={_render(v)}" for k, v in self._context.items())
        if args:
            metadata = metadata.replace("%", "%%")
        line = f"{self.prefix} {metadata} {msg}" if metadata else f"{self.prefix} {msg}"

        extra = kwargs.pop("extra", {})
        for k, v in self._context.items():
            # LogRecord refuses extras that shadow its own attributes
            field = k if k not in _RESERVED_ATTRS else f"ctx_{k}"
            extra.setdefault(field, _render(v))
        self._logger.log(level, line, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


def get_pass_logger(name: str) -> PassLogger:
    """Get a PassLogger instance."""
    return PassLogger(name)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
    settings: Optional["RecordChangeSettings"] = None,
) -> None:
    """Configure logging for worker processes.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
        level: Explicit level name; overrides verbose
        settings: Take level and format from RECORD_CHANGE_LOG_LEVEL and
            RECORD_CHANGE_LOG_FORMAT instead

    Example:
        setup_logging(settings=load_settings())
    """
    if settings is not None:
        level = settings.log_level
        json_format = settings.log_format == "json"

    if level:
        log_level = logging.getLevelName(level.upper())
    else:
        log_level = logging.DEBUG if verbose else logging.INFO

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet the store client libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
