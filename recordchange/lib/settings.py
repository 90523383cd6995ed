"""Settings for change polling.

Environment-driven settings use pydantic-settings with the RECORD_CHANGE_
prefix; per-source overrides come from an optional YAML file so operators
can raise a batch limit without a code change.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from recordchange.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "MIN_VISIBILITY_BUFFER",
    "RecordChangeSettings",
    "SourceOverride",
    "load_settings",
    "load_source_overrides",
]

# Hard floor for the visibility buffer. Configuration can raise it, never lower it.
MIN_VISIBILITY_BUFFER = timedelta(seconds=60)


class RecordChangeSettings(BaseSettings):
    """Environment-based settings using pydantic-settings.

    Automatically loads from environment variables with RECORD_CHANGE_ prefix.

    Example:
        >>> # RECORD_CHANGE_WINDOW_BUFFER=300
        >>> # RECORD_CHANGE_STORE_BACKEND=redis
        >>> settings = RecordChangeSettings()
        >>> settings.effective_visibility_buffer
        datetime.timedelta(seconds=300)
    """

    window_buffer: int = Field(
        default=0,
        description="Visibility buffer in seconds; values below 60 have no effect",
    )
    store_backend: str = Field(default="local", description="memory, local, s3 or redis")
    state_dir: str = Field(default=".state", description="Directory for the local backend")
    s3_bucket: Optional[str] = Field(default=None, description="Bucket for the s3 backend")
    s3_prefix: str = Field(default="_watermarks", description="Key prefix for the s3 backend")
    redis_url: str = Field(default="redis://localhost:6379/0", description="URL for the redis backend")
    store_retry_attempts: int = Field(default=1, ge=1, le=10, description="Attempts per store operation")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")

    model_config = SettingsConfigDict(
        env_prefix="RECORD_CHANGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate store_backend is a known value."""
        valid_backends = ["memory", "local", "s3", "redis"]
        if v.lower() not in valid_backends:
            raise ValueError(f"store_backend must be one of: {valid_backends}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    @property
    def effective_visibility_buffer(self) -> timedelta:
        """Configured buffer, never below MIN_VISIBILITY_BUFFER."""
        return max(timedelta(seconds=self.window_buffer), MIN_VISIBILITY_BUFFER)


class SourceOverride(BaseModel):
    """Operator override of a registered source's limits.

    Example YAML:
        sources:
          order_sync:
            max_excessive_count: 5000
          sms_reminder:
            max_excessive_count: disabled
            stale_age_seconds: 900
    """

    max_excessive_count: Optional[Union[int, str]] = Field(
        default=None, description="Positive batch limit or 'disabled'"
    )
    stale_age_seconds: Optional[float] = Field(
        default=None, gt=0, description="Lookback bound in seconds"
    )
    unbounded_stale_age: bool = Field(
        default=False, description="Look back all the way to the epoch"
    )

    @property
    def stale_age(self) -> Optional[timedelta]:
        if self.stale_age_seconds is None:
            return None
        return timedelta(seconds=self.stale_age_seconds)


def _validation_message(exc: ValidationError) -> str:
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        issues.append(f"{location or 'settings'}: {error.get('msg')}")
    return "; ".join(issues)


def load_settings(**overrides: Any) -> RecordChangeSettings:
    """Load settings from the environment, applying keyword overrides.

    Raises:
        ConfigurationError: If any setting is invalid
    """
    try:
        return RecordChangeSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid record change settings: {_validation_message(exc)}",
            suggestion="Check the RECORD_CHANGE_* environment variables.",
        ) from exc


def load_source_overrides(path: Union[str, Path]) -> Dict[str, SourceOverride]:
    """Load per-source overrides from a YAML file.

    Returns:
        Mapping of source name to SourceOverride (empty if the file has none)

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Source override file not found: {path}",
            field="path",
            value=str(path),
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Source override file is not valid YAML: {path}",
            details={"cause": str(exc)},
        ) from exc

    sources = data.get("sources") if isinstance(data, dict) else None
    if sources is None:
        logger.debug("No source overrides in %s", path)
        return {}
    if not isinstance(sources, dict):
        raise ConfigurationError(
            "'sources' must be a mapping of source name to overrides",
            field="sources",
        )

    overrides: Dict[str, SourceOverride] = {}
    for name, raw in sources.items():
        try:
            overrides[str(name)] = SourceOverride(**(raw or {}))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid override for source '{name}': {_validation_message(exc)}",
                source=str(name),
            ) from exc

    logger.info("Loaded overrides for %d source(s) from %s", len(overrides), path)
    return overrides
