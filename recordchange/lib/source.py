"""Change sources: what a pass fetches and processes.

A source knows how to fetch records changed in [start, finish), how to
read each record's changed timestamp, and how to process a batch. Its
limits live in a SourceConfig supplied at registration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from recordchange.lib.errors import ConfigurationError

__all__ = [
    "BatchLimit",
    "FunctionSource",
    "LimitMode",
    "Source",
    "SourceConfig",
]


class LimitMode(str, Enum):
    """Whether a source fetches at all."""

    DISABLED = "disabled"
    BOUNDED = "bounded"

    def describe(self) -> str:
        if self is LimitMode.DISABLED:
            return "Fetching is turned off for this source"
        return "Fetch at most a bounded number of records per pass"


@dataclass(frozen=True)
class BatchLimit:
    """Per-pass record limit of a source.

    A source is either DISABLED (never fetches) or BOUNDED by a count of
    at least one. Zero is not accepted as a shorthand for either.

    Example:
        >>> BatchLimit.of(500)
        BatchLimit(bounded, 500)
        >>> BatchLimit.parse("disabled").is_disabled
        True
    """

    mode: LimitMode
    count: int = 0

    def __post_init__(self) -> None:
        if self.mode is LimitMode.BOUNDED and self.count < 1:
            raise ConfigurationError(
                "Batch limit must be at least 1",
                field="max_excessive_count",
                value=self.count,
                suggestion="Use BatchLimit.disabled() to turn fetching off.",
            )
        if self.mode is LimitMode.DISABLED and self.count != 0:
            raise ConfigurationError(
                "A disabled batch limit carries no count",
                field="max_excessive_count",
                value=self.count,
            )

    @classmethod
    def disabled(cls) -> "BatchLimit":
        return cls(LimitMode.DISABLED)

    @classmethod
    def of(cls, count: int) -> "BatchLimit":
        return cls(LimitMode.BOUNDED, int(count))

    @classmethod
    def parse(cls, raw: Union["BatchLimit", int, str]) -> "BatchLimit":
        """Build a limit from a BatchLimit, a positive int, or 'disabled'."""
        if isinstance(raw, BatchLimit):
            return raw
        if isinstance(raw, bool):
            raise ConfigurationError(
                "Batch limit must be a positive integer or 'disabled'",
                field="max_excessive_count",
                value=raw,
            )
        if isinstance(raw, str):
            candidate = raw.strip().lower()
            if candidate == LimitMode.DISABLED.value:
                return cls.disabled()
            if not candidate.isdigit():
                raise ConfigurationError(
                    f"Invalid batch limit '{raw}'",
                    field="max_excessive_count",
                    value=raw,
                    suggestion="Use a positive integer or 'disabled'.",
                )
            raw = int(candidate)
        if raw == 0:
            raise ConfigurationError(
                "A batch limit of 0 is ambiguous",
                field="max_excessive_count",
                value=raw,
                suggestion="Use 'disabled' to turn fetching off.",
            )
        return cls.of(raw)

    @property
    def is_disabled(self) -> bool:
        return self.mode is LimitMode.DISABLED

    def __repr__(self) -> str:
        if self.mode is LimitMode.DISABLED:
            return "BatchLimit(disabled)"
        return f"BatchLimit(bounded, {self.count})"


@dataclass(frozen=True)
class SourceConfig:
    """Registration-time configuration of a source.

    Attributes:
        name: Registry identifier, also the first part of tracking keys
        max_excessive_count: Per-pass record limit
        stale_age: Lookback bound; None looks back to the epoch. Use a
            bound for side effects that go stale (e.g. notifications) and
            None for sources that keep other data in sync.
    """

    name: str
    max_excessive_count: BatchLimit
    stale_age: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("Source name is required", field="name")
        if not isinstance(self.max_excessive_count, BatchLimit):
            object.__setattr__(
                self, "max_excessive_count", BatchLimit.parse(self.max_excessive_count)
            )
        if self.stale_age is not None and self.stale_age <= timedelta(0):
            raise ConfigurationError(
                "stale_age must be positive",
                source=self.name,
                field="stale_age",
                value=self.stale_age,
                suggestion="Use None for an unbounded lookback.",
            )


class Source(ABC):
    """Base class for record change sources.

    Subclasses set ``config`` and implement fetch, changed_at and process.
    fetch must return records in ascending changed_at order.

    Example:
        class OrderSync(Source):
            config = SourceConfig("order_sync", BatchLimit.of(1000))

            def fetch(self, start, finish, **args):
                return db.orders_changed_between(start, finish, **args)

            def changed_at(self, record):
                return record.updated_at

            def process(self, records, **args):
                search_index.upsert(records)
    """

    config: SourceConfig

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    def fetch(self, start: datetime, finish: datetime, **args: Any) -> Iterable[Any]:
        """Return records changed in [start, finish), oldest first."""

    @abstractmethod
    def changed_at(self, record: Any) -> datetime:
        """Return when record changed."""

    @abstractmethod
    def process(self, records: Sequence[Any], **args: Any) -> None:
        """Apply side effects for records. Must be idempotent."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config.name!r})"


class FunctionSource(Source):
    """Source assembled from plain callables."""

    def __init__(
        self,
        config: SourceConfig,
        *,
        fetch: Callable[..., Iterable[Any]],
        changed_at: Callable[[Any], datetime],
        process: Callable[..., None],
    ):
        self.config = config
        self._fetch = fetch
        self._changed_at = changed_at
        self._process = process

    def fetch(self, start: datetime, finish: datetime, **args: Any) -> List[Any]:
        return list(self._fetch(start, finish, **args))

    def changed_at(self, record: Any) -> datetime:
        return self._changed_at(record)

    def process(self, records: Sequence[Any], **args: Any) -> None:
        self._process(records, **args)
