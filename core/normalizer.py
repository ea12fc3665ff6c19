"""
Schema normalizer: USGS NWIS and NOAA NWPS payloads -> SensorSite.

Both upstreams are read through partial TypedDict shapes. Every optional
substructure resolves to a documented default instead of raising:

  USGS timeSeries record
    id         sourceInfo.siteCode[0].value            (required)
    name       sourceInfo.siteName                     -> "Unknown"
    lat/lon    sourceInfo.geoLocation.geogLocation     (required, validated)
    region     siteProperty stateCd (FIPS -> postal)   -> partition key -> "Unknown"
    category   siteProperty siteTypeCd                 -> "Stream"
    reading    latest valid value of values[0].value   -> no measurement

  NWPS gauge record
    id         lid | id | gaugeID                      (required)
    name       name                                    -> "Unknown"
    lat/lon    latitude / longitude                    (required, validated)
    region     state (str or {abbreviation, name})     -> "Unknown"
    category   "River gauge"
    status     observed|forecast floodCategory         -> "Unknown"
    critical   flood.categories.minor.stage | floodStage | flood.stage -> None
    readings   status.observed primary (stage) and secondary (flow)
    hasForecast  status.forecast.primary is a real number
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypedDict

from config import NWPS_GAUGE_URL, SENTINEL_VALUES, STATE_FIPS, USGS_SITE_TYPES, USGS_SITE_URL
from core.models import HAS_FORECAST, HAS_HISTORY, Measurement, Provider, SensorSite
from core.qc import (
    clean_value,
    convert_to_canonical,
    filter_points,
    parse_float,
    parse_timestamp,
)

logger = logging.getLogger("normalizer")


# ---------------------------------------------------------------------------
# Partial upstream shapes
# ---------------------------------------------------------------------------

class UsgsSiteCode(TypedDict, total=False):
    value: str
    agencyCode: str


class UsgsSourceInfo(TypedDict, total=False):
    siteName: str
    siteCode: List[UsgsSiteCode]
    geoLocation: Dict[str, Any]
    siteProperty: List[Dict[str, Any]]
    siteTypeCd: str


class UsgsVariable(TypedDict, total=False):
    variableCode: List[Dict[str, Any]]
    variableName: str
    unit: Dict[str, Any]
    noDataValue: float


class UsgsTimeSeries(TypedDict, total=False):
    sourceInfo: UsgsSourceInfo
    variable: UsgsVariable
    values: List[Dict[str, Any]]
    name: str


class NwpsSubStatus(TypedDict, total=False):
    primary: float
    primaryUnit: str
    primaryUnits: str
    secondary: float
    secondaryUnit: str
    secondaryUnits: str
    floodCategory: str
    validTime: str


class NwpsGauge(TypedDict, total=False):
    lid: str
    id: str
    gaugeID: str
    name: str
    latitude: Any
    longitude: Any
    state: Any
    rfc: Any
    wfo: Any
    county: str
    timeZone: str
    status: Dict[str, NwpsSubStatus]
    flood: Dict[str, Any]
    floodStage: Any


@dataclass
class PartitionPayload:
    """Records returned by one partition request, tagged with its key."""
    key: Optional[str]
    records: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Default-resolution helpers
# ---------------------------------------------------------------------------

def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _first_dict(value: Any) -> Dict[str, Any]:
    for item in _as_list(value):
        if isinstance(item, dict):
            return item
    return {}


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def _abbrev(value: Any, default: str = "Unknown") -> str:
    """Strings pass through; objects resolve abbreviation, then name."""
    if isinstance(value, dict):
        return _text(value.get("abbreviation")) or _text(value.get("name"), default)
    return _text(value, default)


def validate_coordinates(lat_raw: Any, lon_raw: Any) -> Optional[tuple]:
    lat = parse_float(lat_raw)
    lon = parse_float(lon_raw)
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def format_flood_category(category: str) -> str:
    """no_flooding -> No Flooding"""
    return " ".join(word.capitalize() for word in category.replace("_", " ").split())


# ---------------------------------------------------------------------------
# USGS
# ---------------------------------------------------------------------------

def _usgs_region(props: Dict[str, Any], region_hint: Optional[str]) -> str:
    state = _text(props.get("stateCd"))
    if state:
        if state.isdigit():
            return STATE_FIPS.get(state.zfill(2), "Unknown")
        return state.upper()
    # A single-state partition key is a safe fallback; batched keys are not.
    if region_hint and "," not in region_hint:
        return region_hint.upper()
    return "Unknown"


def _usgs_identity(record: UsgsTimeSeries, region_hint: Optional[str]) -> Optional[SensorSite]:
    source = _as_dict(record.get("sourceInfo"))
    code = _first_dict(source.get("siteCode"))
    site_id = _text(code.get("value"))
    if not site_id:
        return None

    geog = _as_dict(_as_dict(source.get("geoLocation")).get("geogLocation"))
    coords = validate_coordinates(geog.get("latitude"), geog.get("longitude"))
    if coords is None:
        logger.debug(f"USGS {site_id}: dropped, invalid coordinates")
        return None

    props = {
        _text(p.get("name")): p.get("value")
        for p in _as_list(source.get("siteProperty"))
        if isinstance(p, dict)
    }
    type_code = _text(props.get("siteTypeCd")) or _text(source.get("siteTypeCd"))
    category = USGS_SITE_TYPES.get(type_code, type_code) if type_code else "Stream"

    attributes: Dict[str, Any] = {"source_url": USGS_SITE_URL.format(site_id=site_id)}
    agency = _text(code.get("agencyCode"))
    if agency:
        attributes["agency"] = agency
    huc = _text(props.get("hucCd"))
    if huc:
        attributes["huc"] = huc

    return SensorSite(
        id=site_id,
        name=_text(source.get("siteName"), "Unknown"),
        latitude=coords[0],
        longitude=coords[1],
        provider=Provider.USGS,
        region_code=_usgs_region(props, region_hint),
        category=category,
        capability_flags=frozenset({HAS_HISTORY}),
        attributes=attributes,
    )


def _usgs_measurement(record: UsgsTimeSeries) -> Optional[Measurement]:
    variable = _as_dict(record.get("variable"))
    block = _first_dict(record.get("values"))
    raw_values = [
        (v.get("dateTime"), v.get("value"))
        for v in _as_list(block.get("value"))
        if isinstance(v, dict)
    ]
    sentinels = SENTINEL_VALUES
    no_data = parse_float(variable.get("noDataValue"))
    if no_data is not None:
        sentinels = sentinels | {no_data}
    points = filter_points(raw_values, sentinels)
    if not points:
        return None

    latest = points[-1]
    unit_tag = _text(_as_dict(variable.get("unit")).get("unitCode"))
    value, unit = convert_to_canonical(latest.value, unit_tag)
    code = _first_dict(variable.get("variableCode"))
    return Measurement(
        parameter_name=html.unescape(_text(variable.get("variableName"), "Unknown")),
        parameter_code=_text(code.get("value")),
        value=value,
        unit=unit,
        observed_at=latest.timestamp,
    )


def normalize_usgs(
    records: Iterable[UsgsTimeSeries],
    region_hint: Optional[str] = None,
    sites: Optional[Dict[str, SensorSite]] = None,
) -> List[SensorSite]:
    """
    Fold NWIS timeSeries records into sites.

    Records for a site id already in `sites` only contribute measurements.
    """
    sites = {} if sites is None else sites
    for record in records:
        if not isinstance(record, dict):
            continue
        code = _first_dict(_as_dict(record.get("sourceInfo")).get("siteCode"))
        site_id = _text(code.get("value"))
        if not site_id:
            continue
        site = sites.get(site_id)
        if site is None:
            site = _usgs_identity(record, region_hint)
            if site is None:
                continue
            sites[site_id] = site
        measurement = _usgs_measurement(record)
        if measurement is not None:
            site.current_readings.append(measurement)
    return list(sites.values())


# ---------------------------------------------------------------------------
# NWPS
# ---------------------------------------------------------------------------

def _nwps_flood_stage(gauge: NwpsGauge) -> Optional[float]:
    flood = _as_dict(gauge.get("flood"))
    minor = _as_dict(_as_dict(flood.get("categories")).get("minor"))
    for raw in (minor.get("stage"), gauge.get("floodStage"), flood.get("stage")):
        value = clean_value(raw)
        if value is not None and value > 0:
            return value
    return None


def _nwps_readings(observed: NwpsSubStatus) -> List[Measurement]:
    observed_at = parse_timestamp(observed.get("validTime"))
    readings: List[Measurement] = []
    for slot, name, code, default_unit in (
        ("primary", "Stage", "HG", "ft"),
        ("secondary", "Flow", "QR", "kcfs"),
    ):
        raw_value = clean_value(observed.get(slot))
        if raw_value is None:
            continue
        unit_tag = _text(observed.get(f"{slot}Unit")) or _text(observed.get(f"{slot}Units"), default_unit)
        value, unit = convert_to_canonical(raw_value, unit_tag)
        readings.append(Measurement(
            parameter_name=name,
            parameter_code=code,
            value=value,
            unit=unit,
            observed_at=observed_at,
        ))
    return readings


def has_forecast(gauge: NwpsGauge) -> bool:
    forecast = _as_dict(_as_dict(gauge.get("status")).get("forecast"))
    return clean_value(forecast.get("primary")) is not None


def _nwps_identity(gauge: NwpsGauge, site_id: str) -> Optional[SensorSite]:
    coords = validate_coordinates(gauge.get("latitude"), gauge.get("longitude"))
    if coords is None:
        logger.debug(f"NWPS {site_id}: dropped, invalid coordinates")
        return None

    status = _as_dict(gauge.get("status"))
    observed = _as_dict(status.get("observed"))
    forecast = _as_dict(status.get("forecast"))
    flood_category = _text(observed.get("floodCategory")) or _text(forecast.get("floodCategory"), "Unknown")

    flags = {HAS_HISTORY}
    if has_forecast(gauge):
        flags.add(HAS_FORECAST)

    attributes: Dict[str, Any] = {
        "source_url": NWPS_GAUGE_URL.format(site_id=site_id),
        "flood_category": flood_category,
    }
    for key in ("rfc", "wfo"):
        if gauge.get(key):
            attributes[key] = _abbrev(gauge.get(key))
    for key, attr in (("county", "county"), ("timeZone", "time_zone")):
        if _text(gauge.get(key)):
            attributes[attr] = _text(gauge.get(key))
    if _text(observed.get("validTime")):
        attributes["observed_time"] = _text(observed.get("validTime"))

    stage_unit = _text(observed.get("primaryUnit")) or _text(observed.get("primaryUnits"), "ft")

    return SensorSite(
        id=site_id,
        name=_text(gauge.get("name"), "Unknown"),
        latitude=coords[0],
        longitude=coords[1],
        provider=Provider.NWPS,
        region_code=_abbrev(gauge.get("state")).upper() if gauge.get("state") else "Unknown",
        category="River gauge",
        capability_flags=frozenset(flags),
        status=format_flood_category(flood_category),
        critical_level=_nwps_flood_stage(gauge),
        critical_unit=convert_to_canonical(1.0, stage_unit)[1] or "ft",
        attributes=attributes,
    )


def normalize_nwps(
    gauges: Iterable[NwpsGauge],
    sites: Optional[Dict[str, SensorSite]] = None,
) -> List[SensorSite]:
    sites = {} if sites is None else sites
    for gauge in gauges:
        if not isinstance(gauge, dict):
            continue
        site_id = _text(gauge.get("lid")) or _text(gauge.get("id")) or _text(gauge.get("gaugeID"))
        if not site_id:
            continue
        site = sites.get(site_id)
        if site is None:
            site = _nwps_identity(gauge, site_id)
            if site is None:
                continue
            sites[site_id] = site
        observed = _as_dict(_as_dict(gauge.get("status")).get("observed"))
        site.current_readings.extend(_nwps_readings(observed))
    return list(sites.values())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def normalize(provider: Provider, payloads: Sequence[PartitionPayload]) -> List[SensorSite]:
    """
    Normalize all partition payloads of one provider into one site list.

    Payloads are folded in the given order so measurement order follows
    partition issue order.
    """
    sites: Dict[str, SensorSite] = {}
    if provider is Provider.USGS:
        for payload in payloads:
            normalize_usgs(payload.records, region_hint=payload.key, sites=sites)
    elif provider is Provider.NWPS:
        for payload in payloads:
            normalize_nwps(payload.records, sites=sites)
    else:
        raise ValueError(f"No normalizer for provider {provider}")
    return list(sites.values())
