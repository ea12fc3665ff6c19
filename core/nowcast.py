"""
Nowcast sources for the series merge engine.

A real model-output backend only has to implement `NowcastSource`. The
default `PersistenceNowcast` is illustrative: it carries the nearest model
reach's current value forward with a mild recession, it is not a forecast.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from config import NOWCAST_HORIZON_HOURS, NOWCAST_RECESSION_PER_HOUR, NOWCAST_SEARCH_RADIUS_M
from collector.nwm_fetcher import ProximityResolver
from core.models import Feature, SeriesPoint, SourceKind, TimeSeries

logger = logging.getLogger("nowcast")


class NowcastSource(Protocol):
    async def nowcast(self, lat: float, lon: float) -> Optional[TimeSeries]:
        """Short-horizon series near the point, or None when there is nothing nearby."""
        ...


def synthesize_series(
    feature: Feature,
    start: datetime,
    horizon_hours: int = NOWCAST_HORIZON_HOURS,
    recession_per_hour: float = NOWCAST_RECESSION_PER_HOUR,
) -> Optional[TimeSeries]:
    """Hourly persistence series from the feature's current value."""
    if feature.current_value is None or horizon_hours <= 0:
        return None
    anchor = start.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
    factor = max(0.0, 1.0 - recession_per_hour)
    points = [
        SeriesPoint(
            timestamp=anchor + timedelta(hours=h),
            value=round(feature.current_value * (factor ** h), 3),
        )
        for h in range(horizon_hours + 1)
    ]
    return TimeSeries(
        kind=SourceKind.NOWCAST,
        parameter=f"NWM reach {feature.feature_id}".strip(),
        unit=feature.unit,
        points=points,
        synthetic=True,
    )


class PersistenceNowcast:
    def __init__(
        self,
        resolver: Optional[ProximityResolver] = None,
        radius_m: float = NOWCAST_SEARCH_RADIUS_M,
        horizon_hours: int = NOWCAST_HORIZON_HOURS,
    ):
        self.resolver = resolver or ProximityResolver()
        self.radius_m = radius_m
        self.horizon_hours = horizon_hours

    async def nowcast(self, lat: float, lon: float, now: Optional[datetime] = None) -> Optional[TimeSeries]:
        feature = await self.resolver.find_nearest(lat, lon, self.radius_m)
        if feature is None:
            return None
        series = synthesize_series(feature, now or datetime.now(timezone.utc), self.horizon_hours)
        if series is None:
            logger.info(f"Nowcast: feature {feature.feature_id} has no current value")
        return series
