from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")

HAS_FORECAST = "hasForecast"
HAS_HISTORY = "hasHistory"


class Provider(str, Enum):
    USGS = "USGS"  # Provider A: partitioned bulk query
    NWPS = "NWPS"  # Provider B: single bulk query

    @classmethod
    def parse(cls, value: str) -> "Provider":
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown provider: {value}") from None


class SourceKind(str, Enum):
    HISTORICAL = "historical"
    FORECAST = "forecast"
    NOWCAST = "nowcast"


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


@dataclass(frozen=True)
class Measurement:
    """Latest-value reading for one parameter at a site."""
    parameter_name: str
    parameter_code: str
    value: float
    unit: str
    observed_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameter_name": self.parameter_name,
            "parameter_code": self.parameter_code,
            "value": self.value,
            "unit": self.unit,
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
        }


@dataclass
class SensorSite:
    """
    Canonical monitored location, independent of the provider it came from.
    Coordinates are validated by the normalizer and never None.
    """
    id: str
    name: str
    latitude: float
    longitude: float
    provider: Provider
    region_code: str = "Unknown"
    category: str = "unknown"
    current_readings: List[Measurement] = field(default_factory=list)
    capability_flags: FrozenSet[str] = frozenset()
    status: Optional[str] = None
    critical_level: Optional[float] = None  # Flood stage
    critical_unit: str = "ft"
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_forecast(self) -> bool:
        return HAS_FORECAST in self.capability_flags

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider.value, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "provider": self.provider.value,
            "region_code": self.region_code,
            "category": self.category,
            "status": self.status,
            "critical_level": self.critical_level,
            "critical_unit": self.critical_unit,
            "capability_flags": sorted(self.capability_flags),
            "current_readings": [m.to_dict() for m in self.current_readings],
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class SeriesPoint:
    timestamp: datetime
    value: float


@dataclass
class TimeSeries:
    """
    Ordered points for one parameter from one source kind.

    When `stitched` is set, point 0 is a copy of the last observed point,
    kept only so the chart segments join; statistics skip it.
    """
    kind: SourceKind
    parameter: str
    unit: str
    points: List[SeriesPoint] = field(default_factory=list)
    stitched: bool = False
    synthetic: bool = False

    def __post_init__(self):
        # Stable sort keeps upstream order for equal timestamps.
        self.points = sorted(self.points, key=lambda p: p.timestamp)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def data_points(self) -> List[SeriesPoint]:
        """Points excluding the continuity copy."""
        return self.points[1:] if self.stitched else list(self.points)

    @property
    def first(self) -> Optional[SeriesPoint]:
        return self.points[0] if self.points else None

    @property
    def last(self) -> Optional[SeriesPoint]:
        return self.points[-1] if self.points else None

    def stats(self) -> Dict[str, Any]:
        values = [p.value for p in self.data_points]
        if not values:
            return {"count": 0, "min": None, "max": None, "latest": None}
        return {
            "count": len(values),
            "min": min(values),
            "max": max(values),
            "latest": values[-1],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "parameter": self.parameter,
            "unit": self.unit,
            "stitched": self.stitched,
            "synthetic": self.synthetic,
            "points": [[p.timestamp.isoformat(), p.value] for p in self.points],
            "stats": self.stats(),
        }


@dataclass(frozen=True)
class Annotation:
    kind: str  # "threshold" (horizontal) or "now" (vertical)
    value: Any  # level for threshold, datetime for now
    label: str

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.isoformat() if isinstance(self.value, datetime) else self.value
        return {"kind": self.kind, "value": value, "label": self.label}


@dataclass
class MergedSeriesBundle:
    """Chart-ready output for one site; built per request and discarded."""
    site_id: str
    provider: Provider
    series: Dict[SourceKind, TimeSeries] = field(default_factory=dict)
    annotations: List[Annotation] = field(default_factory=list)
    granularity: Granularity = Granularity.HOUR

    @property
    def is_empty(self) -> bool:
        return all(s.is_empty for s in self.series.values())

    def get(self, kind: SourceKind) -> Optional[TimeSeries]:
        return self.series.get(kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "provider": self.provider.value,
            "granularity": self.granularity.value,
            "series": {k.value: s.to_dict() for k, s in self.series.items()},
            "annotations": [a.to_dict() for a in self.annotations],
            "is_empty": self.is_empty,
        }


@dataclass
class Feature:
    """Nearest geospatial catalog feature (e.g. a model river reach)."""
    feature_id: str
    source: str  # "primary" or "secondary"
    attributes: Dict[str, Any] = field(default_factory=dict)
    current_value: Optional[float] = None
    unit: str = ""


@dataclass
class ProviderStats:
    provider: Provider
    partitions: int = 0
    success_count: int = 0
    error_count: int = 0
    site_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "partitions": self.partitions,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "site_count": self.site_count,
        }


@dataclass
class CatalogBuildResult:
    sites: Dict[Provider, List[SensorSite]] = field(default_factory=dict)
    provider_stats: Dict[Provider, ProviderStats] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None

    @property
    def success_count(self) -> int:
        return sum(s.success_count for s in self.provider_stats.values())

    @property
    def error_count(self) -> int:
        return sum(s.error_count for s in self.provider_stats.values())

    @property
    def total_sites(self) -> int:
        return sum(len(v) for v in self.sites.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_sites": self.total_sites,
            "providers": {p.value: s.to_dict() for p, s in self.provider_stats.items()},
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
