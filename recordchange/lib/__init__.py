"""Change-polling library modules.

This package contains the window/watermark algorithm, the batch-size
guard, watermark stores, and the pass worker built on top of them.
"""

from recordchange.lib.errors import (
    ConfigurationError,
    MaxCountExceeded,
    RecordChangeError,
    WatermarkStoreError,
)
from recordchange.lib.guard import GuardResult, apply_batch_guard
from recordchange.lib.logging import JSONFormatter, PassLogger, get_pass_logger, setup_logging
from recordchange.lib.registry import (
    SourceRegistry,
    apply_source_overrides,
    default_registry,
    register_source,
)
from recordchange.lib.resilience import RetryConfig, retry_operation
from recordchange.lib.settings import (
    MIN_VISIBILITY_BUFFER,
    RecordChangeSettings,
    SourceOverride,
    load_settings,
    load_source_overrides,
)
from recordchange.lib.source import BatchLimit, FunctionSource, LimitMode, Source, SourceConfig
from recordchange.lib.time_utils import EPOCH, format_watermark, parse_watermark, utc_now
from recordchange.lib.watermark import (
    InMemoryWatermarkStore,
    JsonWatermarkStore,
    LocalWatermarkStore,
    RedisWatermarkStore,
    S3WatermarkStore,
    WatermarkStore,
    build_watermark_store,
)
from recordchange.lib.window import Window, open_window, visibility_buffer
from recordchange.lib.worker import ChangeWorker, PassResult, tracking_key

__all__ = [
    # Errors
    "ConfigurationError",
    "MaxCountExceeded",
    "RecordChangeError",
    "WatermarkStoreError",
    # Window and guard
    "Window",
    "open_window",
    "visibility_buffer",
    "GuardResult",
    "apply_batch_guard",
    # Sources
    "BatchLimit",
    "FunctionSource",
    "LimitMode",
    "Source",
    "SourceConfig",
    "SourceRegistry",
    "apply_source_overrides",
    "default_registry",
    "register_source",
    # Stores
    "InMemoryWatermarkStore",
    "JsonWatermarkStore",
    "LocalWatermarkStore",
    "RedisWatermarkStore",
    "S3WatermarkStore",
    "WatermarkStore",
    "build_watermark_store",
    # Worker
    "ChangeWorker",
    "PassResult",
    "tracking_key",
    # Settings
    "MIN_VISIBILITY_BUFFER",
    "RecordChangeSettings",
    "SourceOverride",
    "load_settings",
    "load_source_overrides",
    # Logging and resilience
    "JSONFormatter",
    "PassLogger",
    "get_pass_logger",
    "setup_logging",
    "RetryConfig",
    "retry_operation",
    # Time
    "EPOCH",
    "format_watermark",
    "parse_watermark",
    "utc_now",
]
