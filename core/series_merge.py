"""
Time-series merge engine.

For one site, three sources are fetched concurrently and joined:
  - historical: the provider's trailing observation window
  - forecast:   the provider's published forecast (NWPS gauges with hasForecast)
  - nowcast:    the nearest model reach, via a NowcastSource

Merge:
  1. Sentinel-filter every raw series and convert to canonical units.
  2. Continuity stitch: the last observed point is copied to the front of the
     forecast so the two segments join on a chart. The copy is flagged and
     excluded from series statistics.
  3. Granularity: span from earliest observed to latest forecast; <= 3 days
     charts hourly, longer charts daily.
  4. Annotations: flood-stage threshold line, "now" marker at the last
     observation when both observed and forecast data exist.

A failed or slow source becomes an absent series, never an error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional

import httpx

from config import HISTORY_WINDOW_DAYS, HOURLY_GRANULARITY_MAX_DAYS, SENTINEL_VALUES, SERIES_SOURCE_TIMEOUT_SECONDS
from collector.http import PayloadError, RawSeries, describe_error
from collector.nwps_fetcher import fetch_nwps_stageflow
from collector.usgs_fetcher import fetch_usgs_history, select_primary_series
from core.models import (
    Annotation,
    Granularity,
    MergedSeriesBundle,
    Provider,
    SensorSite,
    SourceKind,
    TimeSeries,
)
from core.nowcast import NowcastSource, PersistenceNowcast
from core.qc import convert_points, filter_points

logger = logging.getLogger("series_merge")


def to_time_series(raw: Optional[RawSeries], kind: SourceKind) -> Optional[TimeSeries]:
    """Sentinel-filtered, unit-normalized series; None when nothing survives."""
    if raw is None:
        return None
    sentinels = SENTINEL_VALUES
    if raw.no_data_value is not None:
        sentinels = sentinels | {raw.no_data_value}
    points, unit = convert_points(filter_points(raw.points, sentinels), raw.unit)
    if not points:
        return None
    return TimeSeries(kind=kind, parameter=raw.parameter_name, unit=unit, points=points)


def stitch(observed: TimeSeries, forecast: TimeSeries) -> TimeSeries:
    """
    Forecast with the last observed point prepended (chart continuity only).

    Forecast points older than the last observation are dropped so timestamps
    stay non-decreasing. Series in different units are not stitched.
    """
    anchor = observed.last
    if anchor is None or forecast.is_empty or observed.unit != forecast.unit:
        return forecast
    remaining = [p for p in forecast.points if p.timestamp >= anchor.timestamp]
    if not remaining:
        return forecast
    return TimeSeries(
        kind=forecast.kind,
        parameter=forecast.parameter,
        unit=forecast.unit,
        points=[anchor] + remaining,
        stitched=True,
        synthetic=forecast.synthetic,
    )


def select_granularity(
    observed: Optional[TimeSeries],
    forecast: Optional[TimeSeries],
    others: Optional[List[TimeSeries]] = None,
    max_hourly_days: float = HOURLY_GRANULARITY_MAX_DAYS,
) -> Granularity:
    """
    Hourly for spans up to `max_hourly_days`, daily beyond.

    The span runs from the earliest observation to the latest forecast point;
    when either is missing it covers every point that is present.
    """
    if observed is not None and not observed.is_empty and forecast is not None and not forecast.is_empty:
        start, end = observed.first.timestamp, forecast.last.timestamp
    else:
        present = [s for s in [observed, forecast] + list(others or []) if s is not None and not s.is_empty]
        if not present:
            return Granularity.HOUR
        start = min(s.first.timestamp for s in present)
        end = max(s.last.timestamp for s in present)
    span_days = (end - start).total_seconds() / 86400.0
    return Granularity.HOUR if span_days <= max_hourly_days else Granularity.DAY


def build_annotations(
    site: SensorSite,
    observed: Optional[TimeSeries],
    forecast: Optional[TimeSeries],
) -> List[Annotation]:
    annotations: List[Annotation] = []
    level = site.critical_level
    if level is not None and level > 0:
        annotations.append(Annotation(
            kind="threshold",
            value=level,
            label=f"Flood stage {level:g} {site.critical_unit}".strip(),
        ))
    if observed is not None and not observed.is_empty and forecast is not None and not forecast.is_empty:
        annotations.append(Annotation(kind="now", value=observed.last.timestamp, label="Now"))
    return annotations


def merge_series(
    site: SensorSite,
    historical: Optional[RawSeries],
    forecast: Optional[RawSeries],
    nowcast: Optional[TimeSeries],
) -> MergedSeriesBundle:
    observed_ts = to_time_series(historical, SourceKind.HISTORICAL)
    forecast_ts = to_time_series(forecast, SourceKind.FORECAST)
    nowcast_ts = nowcast if nowcast is not None and not nowcast.is_empty else None

    if observed_ts is not None and forecast_ts is not None:
        forecast_ts = stitch(observed_ts, forecast_ts)

    series: Dict[SourceKind, TimeSeries] = {}
    for ts in (observed_ts, forecast_ts, nowcast_ts):
        if ts is not None:
            series[ts.kind] = ts

    bundle = MergedSeriesBundle(
        site_id=site.id,
        provider=site.provider,
        series=series,
        annotations=build_annotations(site, observed_ts, forecast_ts),
        granularity=select_granularity(observed_ts, forecast_ts, [nowcast_ts] if nowcast_ts else None),
    )
    if bundle.is_empty:
        logger.info(f"{site.provider.value} {site.id}: no series data from any source")
    return bundle


class SeriesMergeEngine:
    """Stateless per call: every `build_bundle` is an independent request."""

    def __init__(
        self,
        nowcast_source: Optional[NowcastSource] = None,
        client: Optional[httpx.AsyncClient] = None,
        history_days: int = HISTORY_WINDOW_DAYS,
        source_timeout_s: float = SERIES_SOURCE_TIMEOUT_SECONDS,
    ):
        self.nowcast_source = nowcast_source if nowcast_source is not None else PersistenceNowcast()
        self._client = client
        self.history_days = history_days
        self.source_timeout_s = source_timeout_s

    async def _guarded(self, label: str, site: SensorSite, coro: Awaitable):
        try:
            return await asyncio.wait_for(coro, timeout=self.source_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"{site.provider.value} {site.id}: {label} timed out after {self.source_timeout_s:.0f}s")
        except (httpx.HTTPError, PayloadError) as e:
            logger.warning(f"{site.provider.value} {site.id}: {label} failed: {describe_error(e)}")
        except Exception as e:
            # Pluggable sources (nowcast backends) may raise anything.
            logger.warning(f"{site.provider.value} {site.id}: {label} error: {type(e).__name__}: {e}")
        return None

    async def _historical(self, site: SensorSite) -> Optional[RawSeries]:
        if site.provider is Provider.USGS:
            series = await fetch_usgs_history(site.id, self.history_days, client=self._client)
            return select_primary_series(series)
        return await fetch_nwps_stageflow(site.id, "observed", client=self._client)

    async def _forecast(self, site: SensorSite) -> Optional[RawSeries]:
        if site.provider is not Provider.NWPS or not site.has_forecast:
            return None
        return await fetch_nwps_stageflow(site.id, "forecast", client=self._client)

    async def build_bundle(self, site: SensorSite) -> MergedSeriesBundle:
        logger.info(f"Building series bundle for {site.provider.value} {site.id}")
        historical, forecast, nowcast = await asyncio.gather(
            self._guarded("historical", site, self._historical(site)),
            self._guarded("forecast", site, self._forecast(site)),
            self._guarded("nowcast", site, self.nowcast_source.nowcast(site.latitude, site.longitude)),
        )
        return merge_series(site, historical, forecast, nowcast)
