"""
Sentinel and unit filtering for upstream numeric values.

Upstreams encode "no data" as magic negatives (-999999 for NWIS noDataValue,
-999 for NWPS). Everything that leaves the collectors goes through here.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

from config import SENTINEL_VALUES
from core.models import SeriesPoint

# tag (lowercased) -> (canonical unit, scale to canonical)
_UNIT_ALIASES = {
    "ft3/s": ("cfs", 1.0),
    "ft^3/s": ("cfs", 1.0),
    "cfs": ("cfs", 1.0),
    "kcfs": ("cfs", 1000.0),
    "ft": ("ft", 1.0),
    "feet": ("ft", 1.0),
    "deg c": ("degC", 1.0),
    "degc": ("degC", 1.0),
    "in": ("in", 1.0),
    "m3/s": ("m3/s", 1.0),
}


def parse_float(raw: Any) -> Optional[float]:
    """Parse a numeric upstream value; None for blanks, junk and NaN/inf."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def is_sentinel(value: float, sentinels: FrozenSet[float] = SENTINEL_VALUES) -> bool:
    return value in sentinels


def clean_value(raw: Any, sentinels: FrozenSet[float] = SENTINEL_VALUES) -> Optional[float]:
    """Parsed value, or None when it is missing, non-finite or a sentinel."""
    value = parse_float(raw)
    if value is None or is_sentinel(value, sentinels):
        return None
    return value


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """ISO-8601 timestamp to an aware UTC datetime (naive input assumed UTC)."""
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def filter_points(
    raw_points: Iterable[Tuple[Any, Any]],
    sentinels: FrozenSet[float] = SENTINEL_VALUES,
) -> List[SeriesPoint]:
    """
    Drop invalid points from a raw (timestamp, value) sequence.

    A point is dropped when its value does not parse, is NaN/inf or is a
    sentinel, or when its timestamp does not parse. Order is preserved.
    """
    valid: List[SeriesPoint] = []
    for raw_ts, raw_value in raw_points:
        value = clean_value(raw_value, sentinels)
        if value is None:
            continue
        ts = parse_timestamp(raw_ts)
        if ts is None:
            continue
        valid.append(SeriesPoint(timestamp=ts, value=value))
    return valid


def normalize_unit(tag: Optional[str]) -> str:
    """Canonical unit tag; unknown tags pass through stripped."""
    if not tag:
        return ""
    cleaned = str(tag).strip()
    alias = _UNIT_ALIASES.get(cleaned.lower())
    return alias[0] if alias else cleaned


def convert_to_canonical(value: float, tag: Optional[str]) -> Tuple[float, str]:
    """Scale a value into its canonical unit (e.g. kcfs -> cfs)."""
    if not tag:
        return value, ""
    alias = _UNIT_ALIASES.get(str(tag).strip().lower())
    if not alias:
        return value, str(tag).strip()
    unit, scale = alias
    return value * scale, unit


def convert_points(points: List[SeriesPoint], tag: Optional[str]) -> Tuple[List[SeriesPoint], str]:
    scale, unit = convert_to_canonical(1.0, tag)
    if scale == 1.0:
        return points, unit
    return [SeriesPoint(p.timestamp, p.value * scale) for p in points], unit
