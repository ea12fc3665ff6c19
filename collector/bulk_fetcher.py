"""
Hydro Gauge Explorer - Bulk Catalog Orchestrator

Builds the full site catalog from every provider:
  1. Split each provider's universe into partition keys (or one unpartitioned call).
  2. Run partitions through a bounded worker pool behind a per-provider rate limiter.
  3. Catch, count and skip failed partitions; never abort the whole fetch.
  4. Normalize the surviving payloads, in partition issue order, into one site list.

Providers run concurrently. There is no retry beyond the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from config import (
    INTER_REQUEST_DELAY_SECONDS,
    MAX_PARTITION_CONCURRENCY,
    US_STATES,
    USGS_STATES_PER_REQUEST,
)
from collector.http import PayloadError, client_scope, describe_error
from collector.nwps_fetcher import fetch_nwps_gauges
from collector.usgs_fetcher import fetch_usgs_partition
from core.models import CatalogBuildResult, Provider, ProviderStats, SensorSite
from core.normalizer import PartitionPayload, normalize

logger = logging.getLogger("bulk_fetcher")

PartitionFetch = Callable[[httpx.AsyncClient, Optional[str]], Awaitable[List[Dict[str, Any]]]]
Normalizer = Callable[[Provider, Sequence[PartitionPayload]], List[SensorSite]]


@dataclass
class ProviderSpec:
    """How to fetch one provider. `partition_keys=None` means one unpartitioned request."""
    provider: Provider
    fetch: PartitionFetch
    partition_keys: Optional[Sequence[str]] = None
    max_concurrency: int = MAX_PARTITION_CONCURRENCY
    delay_s: float = INTER_REQUEST_DELAY_SECONDS


class RateLimiter:
    """Fixed minimum spacing between request starts. Waiting yields to the loop."""

    def __init__(self, interval_s: float):
        self.interval_s = max(0.0, float(interval_s))
        self._lock = asyncio.Lock()
        self._next_at = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            delay = self._next_at - now
            if delay > 0:
                await asyncio.sleep(delay)
                now = time.monotonic()
            self._next_at = now + self.interval_s


def chunk_keys(keys: Sequence[str], size: int) -> List[str]:
    """Join keys into comma-separated batches of `size` (the upstream accepts lists)."""
    size = max(1, int(size))
    return [",".join(keys[i:i + size]) for i in range(0, len(keys), size)]


def default_provider_specs(
    states: Optional[Sequence[str]] = None,
    states_per_request: int = USGS_STATES_PER_REQUEST,
) -> List[ProviderSpec]:
    state_keys = list(states) if states is not None else list(US_STATES.keys())
    return [
        ProviderSpec(
            provider=Provider.USGS,
            fetch=fetch_usgs_partition,
            partition_keys=chunk_keys(state_keys, states_per_request),
        ),
        ProviderSpec(provider=Provider.NWPS, fetch=fetch_nwps_gauges),
    ]


class BulkCatalogOrchestrator:
    """One `fetch_all` per catalog build; holds no state between calls."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        normalizer: Normalizer = normalize,
    ):
        self._client = client
        self._normalizer = normalizer

    async def fetch_all(self, specs: Optional[Sequence[ProviderSpec]] = None) -> CatalogBuildResult:
        specs = list(specs) if specs is not None else default_provider_specs()
        result = CatalogBuildResult()

        async with client_scope(self._client) as http:
            outcomes = await asyncio.gather(*(self._fetch_provider(http, spec) for spec in specs))

        for spec, (sites, stats) in zip(specs, outcomes):
            result.sites[spec.provider] = sites
            result.provider_stats[spec.provider] = stats

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Catalog build complete: {result.total_sites} sites, "
            f"{result.success_count} partitions ok, {result.error_count} failed"
        )
        return result

    async def _fetch_provider(
        self,
        http: httpx.AsyncClient,
        spec: ProviderSpec,
    ) -> Tuple[List[SensorSite], ProviderStats]:
        name = spec.provider.value
        keys: List[Optional[str]] = list(spec.partition_keys) if spec.partition_keys is not None else [None]
        stats = ProviderStats(provider=spec.provider, partitions=len(keys))
        limiter = RateLimiter(spec.delay_s)
        semaphore = asyncio.Semaphore(max(1, spec.max_concurrency))

        # Slot per partition so payload order follows issue order, whatever
        # order the requests finish in.
        payloads: List[Optional[PartitionPayload]] = [None] * len(keys)

        async def run(index: int, key: Optional[str]) -> None:
            label = key or "all"
            async with semaphore:
                await limiter.wait()
                logger.info(f"Fetching {name} {label} ({index + 1}/{len(keys)})...")
                try:
                    records = await spec.fetch(http, key)
                except (httpx.HTTPError, PayloadError) as e:
                    stats.error_count += 1
                    logger.warning(f"{name} partition {label} failed: {describe_error(e)}")
                    return
                payloads[index] = PartitionPayload(key=key, records=records)
                stats.success_count += 1

        await asyncio.gather(*(run(i, k) for i, k in enumerate(keys)))

        collected = [p for p in payloads if p is not None]
        sites = self._normalizer(spec.provider, collected) if collected else []
        stats.site_count = len(sites)

        if not collected:
            logger.warning(f"{name} fetch yielded nothing: 0/{len(keys)} partitions")
        logger.info(f"{name} fetch complete: {stats.success_count}/{len(keys)} partitions, {len(sites)} sites")
        return sites, stats
