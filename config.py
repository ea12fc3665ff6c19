"""
Hydro Gauge Explorer - Configuration
Central configuration for upstream endpoints, partitioning and merge tuning.
"""

import os as _os
from typing import Dict, FrozenSet, Tuple


def _env_float(name: str, default: float) -> float:
    raw = _os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = _os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# ============================================================================
# PARTITION UNIVERSE
# ============================================================================

US_STATES: Dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "FL": "Florida", "GA": "Georgia",
    "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi", "MO": "Missouri",
    "MT": "Montana", "NE": "Nebraska", "NV": "Nevada", "NH": "New Hampshire", "NJ": "New Jersey",
    "NM": "New Mexico", "NY": "New York", "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio",
    "OK": "Oklahoma", "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah", "VT": "Vermont",
    "VA": "Virginia", "WA": "Washington", "WV": "West Virginia", "WI": "Wisconsin", "WY": "Wyoming",
}

# USGS reports stateCd as a FIPS code; map it back to the postal abbreviation.
STATE_FIPS: Dict[str, str] = {
    "01": "AL", "02": "AK", "04": "AZ", "05": "AR", "06": "CA", "08": "CO", "09": "CT",
    "10": "DE", "11": "DC", "12": "FL", "13": "GA", "15": "HI", "16": "ID", "17": "IL",
    "18": "IN", "19": "IA", "20": "KS", "21": "KY", "22": "LA", "23": "ME", "24": "MD",
    "25": "MA", "26": "MI", "27": "MN", "28": "MS", "29": "MO", "30": "MT", "31": "NE",
    "32": "NV", "33": "NH", "34": "NJ", "35": "NM", "36": "NY", "37": "NC", "38": "ND",
    "39": "OH", "40": "OK", "41": "OR", "42": "PA", "44": "RI", "45": "SC", "46": "SD",
    "47": "TN", "48": "TX", "49": "UT", "50": "VT", "51": "VA", "53": "WA", "54": "WV",
    "55": "WI", "56": "WY", "72": "PR",
}

# ============================================================================
# USGS NWIS (Provider A)
# ============================================================================

USGS_IV_URL = _os.environ.get("USGS_IV_URL", "https://waterservices.usgs.gov/nwis/iv/")

# Discharge, gage height, water temperature, precipitation
USGS_PARAMETER_CODES: Tuple[str, ...] = ("00060", "00065", "00010", "00045")

# Series preference when picking the chart series for a site
USGS_PRIMARY_PARAMETERS: Tuple[str, ...] = ("00060", "00065")

# States joined per request (1 = one request per state)
USGS_STATES_PER_REQUEST = _env_int("USGS_STATES_PER_REQUEST", 1)

USGS_SITE_TYPES: Dict[str, str] = {
    "ST": "Stream",
    "ST-CA": "Canal",
    "ST-DCH": "Ditch",
    "ST-TS": "Tidal stream",
    "LK": "Lake",
    "ES": "Estuary",
    "SP": "Spring",
    "GW": "Well",
    "AT": "Atmosphere",
}

USGS_SITE_URL = "https://waterdata.usgs.gov/monitoring-location/{site_id}/"

# ============================================================================
# NOAA NWPS (Provider B)
# ============================================================================

NWPS_BASE_URL = _os.environ.get("NWPS_BASE_URL", "https://api.water.noaa.gov/nwps/v1")
NWPS_GAUGE_URL = "https://water.noaa.gov/gauges/{site_id}"

# ============================================================================
# NATIONAL WATER MODEL (geospatial catalog, primary + secondary)
# ============================================================================

NWM_PRIMARY_QUERY_URL = _os.environ.get(
    "NWM_PRIMARY_QUERY_URL",
    "https://maps.water.noaa.gov/server/rest/services/nwm/ana_high_flow_magnitude/MapServer/0/query",
)
NWM_SECONDARY_QUERY_URL = _os.environ.get(
    "NWM_SECONDARY_QUERY_URL",
    "https://mapservices.weather.noaa.gov/vector/rest/services/obs/NWM_Stream_Analysis/MapServer/0/query",
)

# Attribute names probed (in order) for the reach's current value and id
NWM_VALUE_ATTRIBUTES: Tuple[str, ...] = ("streamflow", "flow", "discharge", "qout")
NWM_ID_ATTRIBUTES: Tuple[str, ...] = ("feature_id", "station_id", "OBJECTID")
NWM_VALUE_UNIT = "cfs"

NOWCAST_SEARCH_RADIUS_M = _env_float("NOWCAST_SEARCH_RADIUS_M", 1000.0)
NOWCAST_HORIZON_HOURS = _env_int("NOWCAST_HORIZON_HOURS", 18)
# Fractional decay per hour applied by the persistence nowcast
NOWCAST_RECESSION_PER_HOUR = 0.005

# ============================================================================
# FETCH POLICY
# ============================================================================

REQUEST_TIMEOUT_SECONDS = _env_float("REQUEST_TIMEOUT_SECONDS", 20.0)
# Minimum spacing between partition request starts (seconds)
INTER_REQUEST_DELAY_SECONDS = _env_float("INTER_REQUEST_DELAY_SECONDS", 0.1)
# Partitions in flight per provider (1 = sequential)
MAX_PARTITION_CONCURRENCY = _env_int("MAX_PARTITION_CONCURRENCY", 1)

# ============================================================================
# SERIES MERGE
# ============================================================================

HISTORY_WINDOW_DAYS = _env_int("HISTORY_WINDOW_DAYS", 7)
SERIES_SOURCE_TIMEOUT_SECONDS = _env_float("SERIES_SOURCE_TIMEOUT_SECONDS", 30.0)
# Spans up to this many days chart hourly, longer spans chart daily
HOURLY_GRANULARITY_MAX_DAYS = 3.0

# "No data" placeholders used by the upstreams
SENTINEL_VALUES: FrozenSet[float] = frozenset({-999999.0, -99999.0, -9999.0, -999.0})
