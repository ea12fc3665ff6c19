"""
Hydro Gauge Explorer - USGS NWIS Fetcher
Instantaneous-values queries: per-state bulk catalog and per-site history window.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import HISTORY_WINDOW_DAYS, USGS_IV_URL, USGS_PARAMETER_CODES, USGS_PRIMARY_PARAMETERS
from collector.http import PayloadError, RawSeries, client_scope, get_json
from core.qc import parse_float

logger = logging.getLogger("usgs_fetcher")


def build_bulk_params(partition_key: str, parameter_codes: Sequence[str] = USGS_PARAMETER_CODES) -> Dict[str, str]:
    """Query for every active site in one or more states (comma-joined key)."""
    return {
        "format": "json",
        "stateCd": partition_key,
        "parameterCd": ",".join(parameter_codes),
        "siteStatus": "active",
    }


def build_history_params(
    site_id: str,
    end: datetime,
    days: int = HISTORY_WINDOW_DAYS,
    parameter_codes: Sequence[str] = USGS_PRIMARY_PARAMETERS,
) -> Dict[str, str]:
    start = end - timedelta(days=days)
    return {
        "format": "json",
        "sites": site_id,
        "parameterCd": ",".join(parameter_codes),
        "startDT": start.strftime("%Y-%m-%dT%H:%MZ"),
        "endDT": end.strftime("%Y-%m-%dT%H:%MZ"),
        "siteStatus": "all",
    }


def extract_time_series(data: Any) -> List[Dict[str, Any]]:
    """value.timeSeries from an NWIS JSON body."""
    if not isinstance(data, dict) or not isinstance(data.get("value"), dict):
        raise PayloadError("NWIS body has no 'value' object")
    series = data["value"].get("timeSeries", [])
    if not isinstance(series, list):
        raise PayloadError("NWIS 'timeSeries' is not a list")
    return series


async def fetch_usgs_partition(
    client: httpx.AsyncClient,
    partition_key: str,
    parameter_codes: Sequence[str] = USGS_PARAMETER_CODES,
) -> List[Dict[str, Any]]:
    """Raw timeSeries records for one partition (state code or comma-joined batch)."""
    data = await get_json(client, USGS_IV_URL, params=build_bulk_params(partition_key, parameter_codes))
    return extract_time_series(data)


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(value: Any) -> Dict[str, Any]:
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict):
                return item
    return {}


def parse_history_series(records: List[Dict[str, Any]]) -> List[RawSeries]:
    """Wrongly typed nested fields read as empty; a record never raises."""
    out: List[RawSeries] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        variable = _dict(record.get("variable"))
        code = str(_first(variable.get("variableCode")).get("value") or "")
        values = _first(record.get("values")).get("value")
        if not isinstance(values, list):
            values = []
        out.append(RawSeries(
            parameter_code=code,
            parameter_name=str(variable.get("variableName") or code),
            unit=str(_dict(variable.get("unit")).get("unitCode") or ""),
            points=[(v.get("dateTime"), v.get("value")) for v in values if isinstance(v, dict)],
            no_data_value=parse_float(variable.get("noDataValue")),
        ))
    return out


def select_primary_series(
    series: List[RawSeries],
    preference: Sequence[str] = USGS_PRIMARY_PARAMETERS,
) -> Optional[RawSeries]:
    """Discharge first, then gage height, then whatever came first."""
    by_code = {s.parameter_code: s for s in series if s.points}
    for code in preference:
        if code in by_code:
            return by_code[code]
    for s in series:
        if s.points:
            return s
    return None


async def fetch_usgs_history(
    site_id: str,
    days: int = HISTORY_WINDOW_DAYS,
    client: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> List[RawSeries]:
    """
    Trailing observation window for one site.

    Returns every parameter series NWIS sent back; HTTP and payload errors
    propagate to the caller.
    """
    end = now or datetime.now(timezone.utc)
    params = build_history_params(site_id, end, days)
    async with client_scope(client) as http:
        data = await get_json(http, USGS_IV_URL, params=params)
    series = parse_history_series(extract_time_series(data))
    logger.info(f"USGS {site_id}: {len(series)} history series over {days}d")
    return series
