"""Record change test suite.

Test organization:
- test_window.py: window boundaries, visibility buffer, watermark advancement
- test_guard.py: batch-size guard and MaxCountExceeded
- test_watermark_store.py / test_storage.py: watermark store backends
- test_source_registry.py: batch limits, source configs, registry, overrides
- test_worker.py: end-to-end passes and log lines
- test_settings.py, test_logging.py, test_errors.py, test_time_utils.py: ambient modules

In-memory client fakes live in fakes.py.
"""
