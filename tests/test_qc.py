import math
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.qc import (
    clean_value,
    convert_to_canonical,
    filter_points,
    normalize_unit,
    parse_timestamp,
)


def test_filter_points_drops_sentinels_and_keeps_order():
    raw = [
        ("2026-03-01T00:00:00Z", "3.1"),
        ("2026-03-01T01:00:00Z", "-999"),
        ("2026-03-01T02:00:00Z", "3.4"),
        ("2026-03-01T03:00:00Z", "-999999"),
        ("2026-03-01T04:00:00Z", "NaN"),
        ("2026-03-01T05:00:00Z", "2.9"),
        ("2026-03-01T06:00:00Z", -9999),
    ]
    points = filter_points(raw)

    assert [p.value for p in points] == [3.1, 3.4, 2.9]
    assert [p.timestamp.hour for p in points] == [0, 2, 5]
    assert all(not math.isnan(p.value) for p in points)


def test_filter_points_all_invalid_returns_empty():
    raw = [("2026-03-01T00:00:00Z", "-999"), ("2026-03-01T01:00:00Z", ""), ("bad", "1.0")]
    assert filter_points(raw) == []


def test_filter_points_keeps_zero_and_honours_extra_sentinel():
    raw = [("2026-03-01T00:00:00Z", "0"), ("2026-03-01T01:00:00Z", "-123456")]
    points = filter_points(raw, frozenset({-123456.0}))
    assert [p.value for p in points] == [0.0]


def test_filter_points_drops_unparseable_timestamps():
    raw = [("not a time", "1.0"), (None, "2.0"), ("2026-03-01T00:00:00-05:00", "3.0")]
    points = filter_points(raw)
    assert len(points) == 1
    assert points[0].timestamp == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)


def test_clean_value_rejects_bool_inf_and_junk():
    assert clean_value(True) is None
    assert clean_value("inf") is None
    assert clean_value("abc") is None
    assert clean_value(None) is None
    assert clean_value("12.5") == 12.5


def test_parse_timestamp_assumes_utc_for_naive_values():
    ts = parse_timestamp("2026-03-01T12:30:00")
    assert ts.tzinfo is not None
    assert ts.utcoffset().total_seconds() == 0


def test_unit_normalization():
    assert normalize_unit("ft3/s") == "cfs"
    assert normalize_unit("deg C") == "degC"
    assert normalize_unit(" ft ") == "ft"
    assert normalize_unit(None) == ""
    assert normalize_unit("uS/cm @25C") == "uS/cm @25C"


def test_convert_kcfs_to_cfs():
    value, unit = convert_to_canonical(1.25, "kcfs")
    assert unit == "cfs"
    assert value == 1250.0

    value, unit = convert_to_canonical(4.0, "ft")
    assert (value, unit) == (4.0, "ft")
