"""Batch-size guard for a pass.

A burst of near-simultaneous changes (a bulk update, say) can make one
window hold far more records than a pass should handle. When a fetch hits
the limit, the guard pulls the window's finish back to the newest fetched
change and keeps only the records strictly older than it. The dropped
records lie at or after the new watermark, so the next pass fetches them
again unchanged.

When every fetched record shares that newest instant, nothing can be kept
and finish cannot move forward: the pass raises MaxCountExceeded instead of
silently dropping data or spinning forever.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from recordchange.lib.errors import MaxCountExceeded
from recordchange.lib.time_utils import ensure_utc
from recordchange.lib.window import Window

logger = logging.getLogger(__name__)

__all__ = ["GuardResult", "apply_batch_guard"]


@dataclass
class GuardResult:
    """Outcome of applying the guard to one fetched batch."""

    records: List[Any]
    fetched_count: int
    dropped_count: int = 0
    shrunk: bool = False
    previous_finish: Optional[datetime] = None

    @property
    def kept_count(self) -> int:
        return len(self.records)


def apply_batch_guard(
    records: Sequence[Any],
    window: Window,
    limit: int,
    changed_at: Callable[[Any], datetime],
    *,
    source: Optional[str] = None,
) -> GuardResult:
    """Trim records and shrink window.finish so fewer than limit remain.

    Args:
        records: Fetched records in ascending changed_at order
        window: Open window the records were fetched for
        limit: Positive per-pass record limit
        changed_at: Returns a record's change timestamp
        source: Source name for error context

    Returns:
        GuardResult with the retained records

    Raises:
        MaxCountExceeded: If all fetched records share the newest timestamp
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    fetched = list(records)
    if len(fetched) < limit:
        return GuardResult(records=fetched, fetched_count=len(fetched))

    # Only the first `limit` records count as fetched; anything past them
    # lies at or after the new finish and is fetched again next pass.
    considered = fetched[:limit]
    previous_finish = window.finish
    window.finish = changed_at(considered[-1])
    cutoff = window.finish

    keep = next(
        (i for i, record in enumerate(considered) if ensure_utc(changed_at(record)) >= cutoff),
        len(considered),
    )

    if keep == 0:
        raise MaxCountExceeded(
            f"{source or 'source'} exceeded {limit} records",
            source=source,
            key=window.key,
            limit=limit,
            window_start=window.start,
            window_finish=cutoff,
            fetched_count=len(fetched),
        )

    dropped = len(fetched) - keep
    logger.debug(
        "Batch guard kept %d of %d records for %s; finish %s -> %s",
        keep,
        len(fetched),
        window.key,
        previous_finish.isoformat(),
        cutoff.isoformat(),
    )
    return GuardResult(
        records=fetched[:keep],
        fetched_count=len(fetched),
        dropped_count=dropped,
        shrunk=True,
        previous_finish=previous_finish,
    )
