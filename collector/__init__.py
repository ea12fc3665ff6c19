"""
Hydro Gauge Explorer - Collector Module
Upstream fetchers (USGS NWIS, NOAA NWPS, National Water Model) and the bulk
catalog orchestrator.
"""

from .bulk_fetcher import BulkCatalogOrchestrator, ProviderSpec, RateLimiter, default_provider_specs
from .http import PayloadError, RawSeries
from .nwm_fetcher import ProximityResolver

__all__ = [
    "BulkCatalogOrchestrator", "ProviderSpec", "RateLimiter", "default_provider_specs",
    "PayloadError", "RawSeries",
    "ProximityResolver",
]
