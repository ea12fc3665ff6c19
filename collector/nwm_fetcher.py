"""
Hydro Gauge Explorer - National Water Model Proximity Resolver

Finds the model reach nearest to a point by querying an ArcGIS feature
service with a circular search region. A secondary service is queried with
the same predicate when the primary fails or comes back empty.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import (
    NOWCAST_SEARCH_RADIUS_M,
    NWM_ID_ATTRIBUTES,
    NWM_PRIMARY_QUERY_URL,
    NWM_SECONDARY_QUERY_URL,
    NWM_VALUE_ATTRIBUTES,
    NWM_VALUE_UNIT,
)
from collector.http import PayloadError, client_scope, describe_error, get_json
from core.models import Feature
from core.qc import clean_value

logger = logging.getLogger("nwm_fetcher")


def build_query_params(lat: float, lon: float, radius_m: float) -> Dict[str, Any]:
    return {
        "geometry": f"{lon},{lat}",
        "geometryType": "esriGeometryPoint",
        "inSR": 4326,
        "spatialRel": "esriSpatialRelIntersects",
        "distance": radius_m,
        "units": "esriSRUnit_Meter",
        "outFields": "*",
        "returnGeometry": "false",
        "f": "json",
    }


def extract_features(data: Any) -> List[Dict[str, Any]]:
    """Feature list from an ArcGIS query body; ArcGIS reports errors with HTTP 200."""
    if not isinstance(data, dict):
        raise PayloadError("ArcGIS body is not an object")
    if isinstance(data.get("error"), dict):
        err = data["error"]
        raise PayloadError(f"ArcGIS error {err.get('code')}: {err.get('message')}")
    features = data.get("features", [])
    if not isinstance(features, list):
        raise PayloadError("ArcGIS 'features' is not a list")
    return [f for f in features if isinstance(f, dict)]


def _probe(attributes: Dict[str, Any], names: Sequence[str]) -> Any:
    lowered = {str(k).lower(): v for k, v in attributes.items()}
    for name in names:
        value = lowered.get(name.lower())
        if value is not None and value != "":
            return value
    return None


def to_feature(raw: Dict[str, Any], source: str) -> Feature:
    attributes = raw.get("attributes") if isinstance(raw.get("attributes"), dict) else {}
    feature_id = _probe(attributes, NWM_ID_ATTRIBUTES)
    return Feature(
        feature_id=str(feature_id) if feature_id is not None else "",
        source=source,
        attributes=dict(attributes),
        current_value=clean_value(_probe(attributes, NWM_VALUE_ATTRIBUTES)),
        unit=NWM_VALUE_UNIT,
    )


class ProximityResolver:
    """Nearest-feature lookup with secondary-service fallback."""

    def __init__(
        self,
        primary_url: str = NWM_PRIMARY_QUERY_URL,
        secondary_url: Optional[str] = NWM_SECONDARY_QUERY_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.primary_url = primary_url
        self.secondary_url = secondary_url
        self._client = client

    async def _query(self, http: httpx.AsyncClient, url: str, lat: float, lon: float, radius_m: float) -> List[Dict[str, Any]]:
        data = await get_json(http, url, params=build_query_params(lat, lon, radius_m))
        return extract_features(data)

    async def find_nearest(
        self,
        lat: float,
        lon: float,
        radius_m: float = NOWCAST_SEARCH_RADIUS_M,
    ) -> Optional[Feature]:
        """
        Nearest feature within `radius_m`, or None.

        Result sets are ranked by the service; index 0 wins. Upstream
        failures are logged and treated as "nothing here".
        """
        targets = [("primary", self.primary_url)]
        if self.secondary_url:
            targets.append(("secondary", self.secondary_url))

        async with client_scope(self._client) as http:
            for source, url in targets:
                try:
                    features = await self._query(http, url, lat, lon, radius_m)
                except (httpx.HTTPError, PayloadError) as e:
                    logger.warning(f"NWM {source} query failed at ({lat:.4f}, {lon:.4f}): {describe_error(e)}")
                    continue
                if features:
                    feature = to_feature(features[0], source)
                    logger.info(f"NWM {source}: nearest feature {feature.feature_id} ({len(features)} in {radius_m:.0f} m)")
                    return feature
                logger.info(f"NWM {source}: no features within {radius_m:.0f} m of ({lat:.4f}, {lon:.4f})")
        return None
