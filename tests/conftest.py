"""Pytest configuration and fixtures."""

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from recordchange.lib.registry import SourceRegistry  # noqa: E402
from recordchange.lib.settings import load_settings  # noqa: E402
from recordchange.lib.source import BatchLimit, FunctionSource, SourceConfig  # noqa: E402
from recordchange.lib.watermark import InMemoryWatermarkStore  # noqa: E402

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: tests against mocked cloud services")


@dataclass(frozen=True)
class Record:
    """Minimal changed record used across tests."""

    id: int
    changed_at: datetime


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep RECORD_CHANGE_* variables and stray .env files out of tests."""
    for name in list(os.environ):
        if name.startswith("RECORD_CHANGE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryWatermarkStore:
    return InMemoryWatermarkStore()


@pytest.fixture
def settings():
    return load_settings(store_backend="memory")


@pytest.fixture
def registry() -> SourceRegistry:
    return SourceRegistry()


@pytest.fixture
def make_records() -> Callable[..., List[Record]]:
    """Build records from offsets (in seconds) relative to NOW."""

    def _make(*offsets: float, start_id: int = 1) -> List[Record]:
        return [
            Record(id=start_id + i, changed_at=NOW + timedelta(seconds=offset))
            for i, offset in enumerate(offsets)
        ]

    return _make


@pytest.fixture
def make_source() -> Callable[..., FunctionSource]:
    """Build a FunctionSource over an in-memory list of records.

    fetch honours the half-open [start, finish) interval and returns
    records oldest first; processed batches are appended to
    ``source.batches``.
    """

    def _make(
        records: List[Record],
        *,
        name: str = "order_sync",
        limit: Any = 100,
        stale_age: Optional[timedelta] = None,
        process: Optional[Callable[..., None]] = None,
    ) -> FunctionSource:
        batches: List[List[Record]] = []
        fetch_calls: List[tuple] = []

        def fetch(start: datetime, finish: datetime, **args: Any) -> List[Record]:
            fetch_calls.append((start, finish, args))
            selected = [r for r in records if start <= r.changed_at < finish]
            return sorted(selected, key=lambda r: (r.changed_at, r.id))

        def default_process(batch: List[Record], **args: Any) -> None:
            batches.append(list(batch))

        source = FunctionSource(
            SourceConfig(name, BatchLimit.parse(limit), stale_age),
            fetch=fetch,
            changed_at=lambda r: r.changed_at,
            process=process or default_process,
        )
        source.batches = batches  # type: ignore[attr-defined]
        source.fetch_calls = fetch_calls  # type: ignore[attr-defined]
        return source

    return _make
