"""End-to-end tests for change-polling passes."""

import logging
from datetime import datetime, timedelta
from typing import List

import pytest

from recordchange.lib.errors import ConfigurationError, MaxCountExceeded, WatermarkStoreError
from recordchange.lib.settings import load_settings
from recordchange.lib.time_utils import EPOCH
from recordchange.lib.watermark import InMemoryWatermarkStore
from recordchange.lib.worker import ChangeWorker, PassResult, tracking_key

WORKER_LOGGER = "recordchange.lib.worker"


class FailingWriteStore(InMemoryWatermarkStore):
    io_errors = (OSError,)

    def _write(self, key: str, text: str) -> None:
        raise OSError("read-only file system")


class Clock:
    """Settable clock for multi-pass tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(now) -> Clock:
    return Clock(now)


@pytest.fixture
def worker(registry, store, settings, clock) -> ChangeWorker:
    return ChangeWorker(registry, store, settings=settings, clock=clock)


def processed_ids(source) -> List[List[int]]:
    return [[r.id for r in batch] for batch in source.batches]


class TestTrackingKey:
    """Tests for watermark key construction."""

    def test_without_args(self) -> None:
        assert tracking_key("order_sync") == "order-sync-processed-up-to"

    def test_with_args_in_order(self) -> None:
        assert tracking_key("order_sync", {"region": "eu"}) == "order-sync-region-eu-processed-up-to"
        assert (
            tracking_key("sms_reminder", {"tenant": 7, "channel": "sms"})
            == "sms-reminder-tenant-7-channel-sms-processed-up-to"
        )


class TestPerform:
    """Tests for single passes."""

    def test_first_pass_processes_everything_and_advances(
        self, worker, registry, store, make_source, make_records, now
    ) -> None:
        source = registry.register(make_source(make_records(-600, -500, -400)))

        result = worker.perform("order_sync", region="eu")

        assert processed_ids(source) == [[1, 2, 3]]
        assert source.fetch_calls == [(EPOCH, now - timedelta(seconds=60), {"region": "eu"})]
        assert store.get("order-sync-region-eu-processed-up-to") == now - timedelta(seconds=60)
        assert result.processed_count == 3
        assert result.window_start == EPOCH
        assert result.window_finish == now - timedelta(seconds=60)
        assert not result.empty
        assert not result.shrunk

    def test_repeat_pass_is_a_no_op(self, worker, registry, store, make_source, make_records) -> None:
        source = registry.register(make_source(make_records(-600, -500)))
        worker.perform("order_sync")
        before = store.raw("order-sync-processed-up-to")

        result = worker.perform("order_sync")

        assert result.empty
        assert result.processed_count == 0
        assert len(source.fetch_calls) == 1
        assert processed_ids(source) == [[1, 2]]
        assert store.raw("order-sync-processed-up-to") == before

    def test_records_inside_buffer_wait_for_next_pass(
        self, worker, registry, make_source, make_records, clock
    ) -> None:
        source = registry.register(make_source(make_records(-300, -30)))

        worker.perform("order_sync")
        assert processed_ids(source) == [[1]]

        clock.advance(minutes=2)
        worker.perform("order_sync")
        assert processed_ids(source) == [[1], [2]]

    def test_configured_buffer_is_used(self, registry, store, make_source, make_records, now) -> None:
        source = registry.register(make_source(make_records(-600, -200)))
        worker = ChangeWorker(
            registry,
            store,
            settings=load_settings(store_backend="memory", window_buffer=300),
            clock=lambda: now,
        )

        result = worker.perform("order_sync")

        assert result.window_finish == now - timedelta(seconds=300)
        assert processed_ids(source) == [[1]]

    def test_stale_records_skipped_by_lookback(
        self, worker, registry, store, make_source, make_records, now
    ) -> None:
        source = registry.register(
            make_source(make_records(-3600, -120), name="sms_reminder", stale_age=timedelta(minutes=5))
        )

        result = worker.perform("sms_reminder")

        assert result.window_start == now - timedelta(minutes=5)
        assert processed_ids(source) == [[2]]

    def test_args_get_separate_watermarks(self, worker, registry, store, make_source, make_records) -> None:
        registry.register(make_source(make_records(-600)))

        worker.perform("order_sync", region="eu")
        worker.perform("order_sync", region="us")

        assert store.keys() == [
            "order-sync-region-eu-processed-up-to",
            "order-sync-region-us-processed-up-to",
        ]

    def test_disabled_source_skips_fetch_but_advances(
        self, worker, registry, store, make_source, make_records, now
    ) -> None:
        source = registry.register(make_source(make_records(-600), limit="disabled"))

        result = worker.perform("order_sync")

        assert source.fetch_calls == []
        assert source.batches == []
        assert result.disabled
        assert store.get("order-sync-processed-up-to") == now - timedelta(seconds=60)

    def test_disabled_source_logs_why_fetch_was_skipped(
        self, worker, registry, make_source, make_records, caplog
    ) -> None:
        registry.register(make_source(make_records(-600), limit="disabled"))

        with caplog.at_level(logging.DEBUG, logger=WORKER_LOGGER):
            worker.perform("order_sync")

        assert "fetch skipped: Fetching is turned off for this source" in caplog.text

    def test_empty_fetch_still_advances(self, worker, registry, store, make_source, now) -> None:
        source = registry.register(make_source([]))

        worker.perform("order_sync")

        assert source.batches == []
        assert store.get("order-sync-processed-up-to") == now - timedelta(seconds=60)

    def test_unknown_source(self, worker) -> None:
        with pytest.raises(ConfigurationError):
            worker.perform("ghost")


class TestFailures:
    """Failed passes never move the watermark."""

    def test_process_failure_keeps_watermark(
        self, worker, registry, store, make_source, make_records, caplog
    ) -> None:
        def explode(batch, **args):
            raise RuntimeError("downstream unavailable")

        registry.register(make_source(make_records(-600), process=explode))

        with caplog.at_level(logging.ERROR, logger=WORKER_LOGGER):
            with pytest.raises(RuntimeError):
                worker.perform("order_sync")

        assert store.get("order-sync-processed-up-to") is None
        assert "RuntimeError: downstream unavailable" in caplog.text

    def test_failed_pass_rescans_same_window(
        self, worker, registry, store, make_source, make_records
    ) -> None:
        attempts: List[List[int]] = []

        def flaky(batch, **args):
            attempts.append([r.id for r in batch])
            if len(attempts) == 1:
                raise RuntimeError("timeout")

        registry.register(make_source(make_records(-600, -500), process=flaky))

        with pytest.raises(RuntimeError):
            worker.perform("order_sync")
        worker.perform("order_sync")

        assert attempts == [[1, 2], [1, 2]]

    def test_unsplittable_batch(
        self, worker, registry, store, make_source, make_records, caplog
    ) -> None:
        source = registry.register(make_source(make_records(-500, -500, -400), limit=2))

        with caplog.at_level(logging.ERROR, logger=WORKER_LOGGER):
            with pytest.raises(MaxCountExceeded) as exc_info:
                worker.perform("order_sync")

        assert exc_info.value.limit == 2
        assert source.batches == []
        assert store.get("order-sync-processed-up-to") is None
        assert "order_sync exceeded 2 records" in caplog.text
        assert "limit=2" in caplog.text

    def test_store_failure(self, registry, settings, make_source, make_records, now) -> None:
        source = registry.register(make_source(make_records(-600)))
        worker = ChangeWorker(registry, FailingWriteStore(), settings=settings, clock=lambda: now)

        with pytest.raises(WatermarkStoreError):
            worker.perform("order_sync")

        assert processed_ids(source) == [[1]]


class TestTruncation:
    """Multi-pass behavior when batches hit the limit."""

    def test_every_record_processed_exactly_once(
        self, worker, registry, store, make_source, make_records, caplog
    ) -> None:
        source = registry.register(make_source(make_records(-500, -400, -300, -300, -200), limit=3))

        with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
            results = [worker.perform("order_sync") for _ in range(4)]

        assert processed_ids(source) == [[1, 2], [3, 4], [5]]
        assert [r.shrunk for r in results] == [True, True, False, False]
        assert results[-1].empty
        assert "trimmed batch kept=2 dropped=3" in caplog.text

    def test_starts_are_monotonic(self, worker, registry, make_source, make_records, clock) -> None:
        offsets = [-900, -800, -800, -800, -700, -100, -50, 30, 90]
        registry.register(make_source(make_records(*offsets), limit=4))

        starts = []
        for _ in range(6):
            starts.append(worker.perform("order_sync").window_start)
            clock.advance(seconds=45)

        assert starts == sorted(starts)


class TestLogging:
    """Tests for pass log lines."""

    def test_start_and_finish_lines(self, worker, registry, make_source, make_records, caplog) -> None:
        registry.register(make_source(make_records(-600, -500)))

        with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
            worker.perform("order_sync", region="eu")

        messages = [r.getMessage() for r in caplog.records if r.name == WORKER_LOGGER]
        assert messages[0] == (
            "record_change_worker source=order_sync "
            "window_start=1970-01-01T00:00:00.000000Z region=eu start"
        )
        assert messages[-1].endswith("region=eu finish processed_count=2")

    def test_context_attached_as_extra(self, worker, registry, make_source, caplog) -> None:
        registry.register(make_source([]))

        with caplog.at_level(logging.INFO, logger=WORKER_LOGGER):
            worker.perform("order_sync", region="eu")

        record = caplog.records[0]
        assert record.source == "order_sync"
        assert record.region == "eu"
        assert record.window_start == "1970-01-01T00:00:00.000000Z"


def test_pass_result_to_dict(worker, registry, make_source, make_records) -> None:
    registry.register(make_source(make_records(-600)))

    result = worker.perform("order_sync")
    data = result.to_dict()

    assert isinstance(result, PassResult)
    assert data["source"] == "order_sync"
    assert data["key"] == "order-sync-processed-up-to"
    assert data["window_start"] == "1970-01-01T00:00:00.000000Z"
    assert data["window_finish"] == "2025-01-15T11:59:00.000000Z"
    assert data["processed_count"] == 1


def test_default_store_comes_from_settings(registry) -> None:
    worker = ChangeWorker(registry, settings=load_settings(store_backend="memory"))

    assert isinstance(worker.store, InMemoryWatermarkStore)
