"""Pass orchestration for change sources.

A scheduler triggers ``ChangeWorker.perform(source_name, **args)``; one
call is one pass:

    open window -> fetch [start, finish) -> batch guard -> process -> close

Only a pass that completes closes its window, so the watermark advances
only on success. Failures are logged and re-raised; nothing is retried
here, and the next scheduled pass scans the same interval again.

The scheduler must run at most one pass per tracking key at a time.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from recordchange.lib.errors import MaxCountExceeded
from recordchange.lib.guard import GuardResult, apply_batch_guard
from recordchange.lib.logging import PassLogger, get_pass_logger
from recordchange.lib.registry import SourceRegistry, default_registry
from recordchange.lib.settings import RecordChangeSettings, load_settings
from recordchange.lib.source import Source
from recordchange.lib.time_utils import format_watermark, utc_now
from recordchange.lib.watermark import WatermarkStore, build_watermark_store
from recordchange.lib.window import Window

__all__ = ["ChangeWorker", "PassResult", "KEY_SUFFIX", "tracking_key"]

KEY_SUFFIX = "processed-up-to"


def tracking_key(source_name: str, args: Optional[Mapping[str, Any]] = None) -> str:
    """Build the watermark key for a source and its call arguments.

    Example:
        >>> tracking_key("order_sync", {"region": "eu"})
        'order-sync-region-eu-processed-up-to'
    """
    parts: List[str] = [source_name.replace("_", "-")]
    for name, value in (args or {}).items():
        parts.extend([str(name), str(value)])
    parts.append(KEY_SUFFIX)
    return "-".join(parts)


@dataclass
class PassResult:
    """Outcome of one completed pass."""

    source: str
    key: str
    window_start: datetime
    window_finish: datetime
    processed_count: int = 0
    fetched_count: int = 0
    dropped_count: int = 0
    empty: bool = False
    disabled: bool = False
    shrunk: bool = False
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["window_start"] = format_watermark(self.window_start)
        result["window_finish"] = format_watermark(self.window_finish)
        return result

    def __repr__(self) -> str:
        return (
            f"PassResult({self.source}, processed={self.processed_count}, "
            f"dropped={self.dropped_count}, empty={self.empty})"
        )


class ChangeWorker:
    """Runs passes for registered sources.

    Args:
        registry: Where sources are looked up (default: module registry)
        store: Watermark store (default: built from settings)
        settings: Loaded settings (default: from the environment)
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        registry: Optional[SourceRegistry] = None,
        store: Optional[WatermarkStore] = None,
        *,
        settings: Optional[RecordChangeSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or load_settings()
        self.registry = registry if registry is not None else default_registry
        self.store = store if store is not None else build_watermark_store(self.settings)
        self.clock = clock

    def perform(self, source_name: str, **args: Any) -> PassResult:
        """Run one pass of source_name for the given arguments.

        Raises:
            ConfigurationError: Unknown source or invalid lookback
            MaxCountExceeded: The batch cannot be split under the limit
            WatermarkStoreError: The watermark could not be read or written
            Exception: Whatever the source's fetch or process raised
        """
        source = self.registry.get(source_name)
        key = tracking_key(source.name, args)
        log = get_pass_logger(__name__)
        log.set_context(**{"source": source.name, **args})
        started = time.time()

        window = Window(
            key,
            source.config.stale_age,
            store=self.store,
            buffer=self.settings.effective_visibility_buffer,
            clock=self.clock,
        )

        try:
            window.open()
            was_empty = window.empty
            opened_start = window.start
            log.clear_context()
            log.set_context(**{"source": source.name, "window_start": window.start, **args})
            log.info("start")

            records, guard = self._records(source, window, args, log)
            if records:
                source.process(records, **args)

            window.close()
        except MaxCountExceeded as exc:
            log.error(
                "%s limit=%s window_finish=%s",
                exc.message,
                exc.limit,
                format_watermark(exc.window_finish) if exc.window_finish else None,
                extra={"error": exc.to_dict()},
            )
            raise
        except Exception as exc:
            log.exception("%s: %s", type(exc).__name__, exc)
            raise

        log.info("finish processed_count=%d", len(records))
        return PassResult(
            source=source.name,
            key=key,
            window_start=opened_start,
            window_finish=window.finish,
            processed_count=len(records),
            fetched_count=guard.fetched_count if guard else 0,
            dropped_count=guard.dropped_count if guard else 0,
            empty=was_empty,
            disabled=source.config.max_excessive_count.is_disabled,
            shrunk=guard.shrunk if guard else False,
            elapsed_seconds=round(time.time() - started, 3),
        )

    def _records(
        self,
        source: Source,
        window: Window,
        args: Mapping[str, Any],
        log: PassLogger,
    ) -> Tuple[List[Any], Optional[GuardResult]]:
        limit = source.config.max_excessive_count
        if limit.is_disabled:
            log.debug("fetch skipped: %s", limit.mode.describe())
            return [], None
        if window.empty:
            log.debug("fetch skipped: window empty")
            return [], None

        fetched = list(source.fetch(window.start, window.finish, **args))
        guard = apply_batch_guard(
            fetched,
            window,
            limit.count,
            source.changed_at,
            source=source.name,
        )
        if guard.shrunk:
            log.info(
                "trimmed batch kept=%d dropped=%d window_finish=%s",
                guard.kept_count,
                guard.dropped_count,
                format_watermark(window.finish),
            )
        return guard.records, guard
