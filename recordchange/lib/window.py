"""Time windows for incremental change polling.

A window is the half-open interval [start, finish) that one pass scans.
It is computed from the persisted watermark, an optional lookback bound
and a visibility buffer, and it advances the watermark only when closed.

Lifecycle: created fresh for each pass, opened once, optionally shrunk
(see recordchange.lib.guard), closed once, then discarded.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from recordchange.lib.errors import ConfigurationError
from recordchange.lib.settings import MIN_VISIBILITY_BUFFER, load_settings
from recordchange.lib.time_utils import EPOCH, ensure_utc, utc_now
from recordchange.lib.watermark import WatermarkStore

logger = logging.getLogger(__name__)

__all__ = ["Window", "open_window", "visibility_buffer"]


def visibility_buffer(configured: Optional[timedelta] = None) -> timedelta:
    """Return the effective visibility buffer.

    With no explicit value, the buffer comes from RECORD_CHANGE_WINDOW_BUFFER.
    The result is never below MIN_VISIBILITY_BUFFER.
    """
    if configured is None:
        return load_settings().effective_visibility_buffer
    return max(configured, MIN_VISIBILITY_BUFFER)


class Window:
    """Half-open scan interval for one pass over a tracking key.

    Args:
        key: Tracking key the watermark is stored under
        max_lookback: How far back a pass may look when the watermark is
            missing or old. None means unbounded: never skip anything.
        store: Watermark store to read from and write to
        buffer: Visibility buffer; defaults to the configured one
        clock: Returns the current time; injectable for tests

    Raises:
        ConfigurationError: If max_lookback is not strictly positive
    """

    _UNOPENED = "unopened"
    _OPEN = "open"
    _CLOSED = "closed"

    def __init__(
        self,
        key: str,
        max_lookback: Optional[timedelta],
        *,
        store: WatermarkStore,
        buffer: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_lookback is not None and max_lookback <= timedelta(0):
            raise ConfigurationError(
                "max_lookback must be positive",
                key=key,
                field="max_lookback",
                value=max_lookback,
                suggestion="Use None to look back without bound.",
            )

        self.key = key
        self.max_lookback = max_lookback
        self.store = store
        self.buffer = visibility_buffer(buffer)
        self._clock = clock
        self._state = self._UNOPENED
        self._start: Optional[datetime] = None
        self._finish: Optional[datetime] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def start(self) -> datetime:
        self._require_opened("start")
        assert self._start is not None
        return self._start

    @property
    def finish(self) -> datetime:
        self._require_opened("finish")
        assert self._finish is not None
        return self._finish

    @finish.setter
    def finish(self, value: datetime) -> None:
        if self._state != self._OPEN:
            raise RuntimeError(f"Cannot move finish of a {self._state} window")
        self._finish = ensure_utc(value)

    @property
    def empty(self) -> bool:
        """True when there is nothing to scan."""
        return self.start >= self.finish

    def open(self, now: Optional[datetime] = None) -> "Window":
        """Compute [start, finish) for a pass starting at now.

        A record's changed timestamp refers to a moment at which the change
        is generally not yet visible to readers, so finish trails now by
        the visibility buffer.
        """
        if self._state != self._UNOPENED:
            raise RuntimeError(f"Window for {self.key} is already {self._state}")

        now = ensure_utc(now or self._clock())
        self._finish = now - self.buffer

        candidates = [EPOCH]
        # Bounds redone work if the watermark is ever lost.
        if self.max_lookback is not None:
            candidates.append(now - self.max_lookback)
        persisted = self.store.get(self.key)
        if persisted is not None:
            candidates.append(persisted)
        self._start = max(candidates)

        self._state = self._OPEN
        logger.debug(
            "Opened window %s [%s, %s) persisted=%s",
            self.key,
            self._start.isoformat(),
            self._finish.isoformat(),
            persisted.isoformat() if persisted else None,
        )
        return self

    def close(self) -> None:
        """Persist finish as the new watermark.

        Empty windows leave the store untouched.
        """
        if self._state != self._OPEN:
            raise RuntimeError(f"Cannot close a {self._state} window")

        if not self.empty:
            self.store.set(self.key, self.finish)
            self._start = self._finish
            logger.debug("Advanced watermark %s to %s", self.key, self.finish.isoformat())

        self._state = self._CLOSED

    def _require_opened(self, attr: str) -> None:
        if self._state == self._UNOPENED:
            raise RuntimeError(f"Window for {self.key} has no {attr} until opened")

    def __repr__(self) -> str:
        if self._state == self._UNOPENED:
            return f"Window({self.key!r}, unopened)"
        return (
            f"Window({self.key!r}, start={self._start.isoformat() if self._start else None}, "
            f"finish={self._finish.isoformat() if self._finish else None}, {self._state})"
        )


@contextmanager
def open_window(
    key: str,
    max_lookback: Optional[timedelta],
    *,
    store: WatermarkStore,
    buffer: Optional[timedelta] = None,
    clock: Callable[[], datetime] = utc_now,
    now: Optional[datetime] = None,
) -> Iterator[Window]:
    """Open a window, hand it to the block, and close it on success.

    If the block raises, the window is not closed and the watermark stays
    where it was, so the next pass scans the same interval again.

    Example:
        with open_window("orders-processed-up-to", timedelta(hours=1), store=store) as window:
            records = fetch(window.start, window.finish)
            process(records)
    """
    window = Window(key, max_lookback, store=store, buffer=buffer, clock=clock)
    window.open(now)
    yield window
    window.close()
