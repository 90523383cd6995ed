"""Incremental change polling.

Each pass scans a source for records changed since the last successful
pass, stays clear of changes that are not yet visible to readers, and
keeps every batch under a per-source limit.

Usage:
    from recordchange import ChangeWorker, default_registry

    worker = ChangeWorker(default_registry)
    worker.perform("order_sync", region="eu")
"""

from recordchange.lib.errors import ConfigurationError, MaxCountExceeded, WatermarkStoreError
from recordchange.lib.registry import SourceRegistry, default_registry, register_source
from recordchange.lib.source import BatchLimit, Source, SourceConfig
from recordchange.lib.window import Window, open_window
from recordchange.lib.worker import ChangeWorker, PassResult

__version__ = "1.0.0"

__all__ = [
    "BatchLimit",
    "ChangeWorker",
    "ConfigurationError",
    "MaxCountExceeded",
    "PassResult",
    "Source",
    "SourceConfig",
    "SourceRegistry",
    "Window",
    "WatermarkStoreError",
    "default_registry",
    "open_window",
    "register_source",
]
