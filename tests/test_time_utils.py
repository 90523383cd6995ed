"""Tests for UTC time helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from recordchange.lib.time_utils import EPOCH, ensure_utc, format_watermark, parse_watermark, utc_now


def test_epoch() -> None:
    assert EPOCH == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_utc_now_is_aware() -> None:
    assert utc_now().utcoffset() == timedelta(0)


def test_ensure_utc_converts_offsets() -> None:
    eastern = timezone(timedelta(hours=-5))
    value = ensure_utc(datetime(2025, 1, 15, 7, 0, tzinfo=eastern))

    assert value == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert value.tzinfo == timezone.utc


def test_format_is_fixed_width() -> None:
    assert format_watermark(datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)) == "2025-01-15T10:30:00.000000Z"
    assert format_watermark(EPOCH) == "1970-01-01T00:00:00.000000Z"


def test_formatted_values_sort_chronologically() -> None:
    stamps = [EPOCH + timedelta(seconds=s, microseconds=us) for s, us in [(5, 0), (0, 999999), (5, 1), (86400 * 400, 0)]]

    assert sorted(stamps) == [parse_watermark(t) for t in sorted(format_watermark(s) for s in stamps)]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2025-01-15T10:30:00.123456Z", datetime(2025, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)),
        ("2025-01-15T10:30:00+00:00", datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)),
        ("2025-01-15T12:30:00+02:00", datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)),
        ("2025-01-15T10:30:00", datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)),
        ("  2025-01-15T10:30:00.000000Z\n", datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)),
    ],
)
def test_parse_watermark(text: str, expected: datetime) -> None:
    assert parse_watermark(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "not a time", "2025-13-45T99:00:00Z"])
def test_parse_watermark_rejects_garbage(text: str) -> None:
    with pytest.raises(ValueError):
        parse_watermark(text)
