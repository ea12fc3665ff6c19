"""
Hydro Gauge Explorer - NOAA NWPS Fetcher
Gauge catalog (one call) and per-gauge observed / forecast stage-flow series.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from config import NWPS_BASE_URL
from collector.http import PayloadError, RawSeries, client_scope, get_json

logger = logging.getLogger("nwps_fetcher")

STAGEFLOW_KINDS = ("observed", "forecast")


async def fetch_nwps_gauges(
    client: httpx.AsyncClient,
    partition_key: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    All active gauges. NWPS needs no partitioning; a key, when given, is
    passed through as a state filter.
    """
    params: Dict[str, Any] = {"status": "active"}
    if partition_key:
        params["state"] = partition_key
    data = await get_json(client, f"{NWPS_BASE_URL}/gauges", params=params)
    gauges = data.get("gauges") if isinstance(data, dict) else None
    if not isinstance(gauges, list):
        raise PayloadError("NWPS body has no 'gauges' list")
    return gauges


def parse_stageflow(data: Any, kind: str) -> RawSeries:
    """
    Stage/flow block -> RawSeries of the primary value.

    Accepts either the block itself or the combined body keyed by kind.
    Missing values stay in place as sentinels for the filter to drop.
    """
    if not isinstance(data, dict):
        raise PayloadError(f"NWPS {kind} stageflow body is not an object")
    block = data.get(kind) if isinstance(data.get(kind), dict) else data
    rows = block.get("data")
    if rows is None:
        rows = []
    if not isinstance(rows, list):
        raise PayloadError(f"NWPS {kind} 'data' is not a list")
    unit = block.get("primaryUnits") or block.get("primaryUnit") or "ft"
    name = block.get("primaryName") or "Stage"
    return RawSeries(
        parameter_code="HG" if str(name).lower() == "stage" else "QR",
        parameter_name=str(name),
        unit=str(unit),
        points=[(row.get("validTime"), row.get("primary")) for row in rows if isinstance(row, dict)],
    )


async def fetch_nwps_stageflow(
    site_id: str,
    kind: str,
    client: Optional[httpx.AsyncClient] = None,
) -> RawSeries:
    """Observed or forecast series for one gauge."""
    if kind not in STAGEFLOW_KINDS:
        raise ValueError(f"Unknown stageflow kind: {kind}")
    url = f"{NWPS_BASE_URL}/gauges/{site_id}/stageflow/{kind}"
    async with client_scope(client) as http:
        data = await get_json(http, url)
    series = parse_stageflow(data, kind)
    logger.info(f"NWPS {site_id}: {len(series.points)} {kind} points")
    return series
