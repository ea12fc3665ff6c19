import asyncio
import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from collector.bulk_fetcher import BulkCatalogOrchestrator, ProviderSpec
from core.models import CatalogBuildResult, MergedSeriesBundle, Provider, SensorSite
from core.series_merge import SeriesMergeEngine

logger = logging.getLogger("world_state")

Catalog = Mapping[Provider, Tuple[SensorSite, ...]]

_EMPTY_CATALOG: Catalog = MappingProxyType({})


class SessionCoordinator:
    """
    Owns the in-memory catalog for one session.

    - `load_all` builds a fresh catalog; a call made while another is in
      flight is a no-op returning None.
    - The catalog is a read-only mapping of tuples, replaced whole on every
      completed load, so readers never observe a partial build.
    - `inspect_site` is latest-request-wins per caller scope: a newer
      inspection cancels the one still running for the same scope, whose
      caller gets None. Different scopes never cancel each other.
    """

    def __init__(
        self,
        orchestrator: Optional[BulkCatalogOrchestrator] = None,
        engine: Optional[SeriesMergeEngine] = None,
        specs: Optional[Sequence[ProviderSpec]] = None,
    ):
        self._orchestrator = orchestrator or BulkCatalogOrchestrator()
        self._engine = engine or SeriesMergeEngine()
        self._specs = list(specs) if specs is not None else None
        self._catalog: Catalog = _EMPTY_CATALOG
        self._loading = False
        self._last_result: Optional[CatalogBuildResult] = None
        # Running inspection per caller scope
        self._inspect_tasks: Dict[Optional[str], asyncio.Task] = {}

    # --- Catalog lifecycle ---

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def last_result(self) -> Optional[CatalogBuildResult]:
        return self._last_result

    async def load_all(self) -> Optional[CatalogBuildResult]:
        if self._loading:
            logger.info("Catalog load already in flight, ignoring request")
            return None
        # Set before the first await so a second caller on the same loop sees it.
        self._loading = True
        try:
            result = await self._orchestrator.fetch_all(self._specs)
            self._catalog = MappingProxyType({
                provider: tuple(sites) for provider, sites in result.sites.items()
            })
            self._last_result = result
            logger.info(f"Catalog swapped in: {self.counts()}")
            return result
        finally:
            self._loading = False

    def reset(self) -> None:
        self._catalog = _EMPTY_CATALOG
        self._last_result = None
        logger.info("Catalog reset")

    # --- Read accessors ---

    def current_catalog(self) -> Catalog:
        return self._catalog

    def counts(self) -> Dict[str, int]:
        return {provider.value: len(sites) for provider, sites in self._catalog.items()}

    def filter_by_region(self, code: Optional[str]) -> Dict[Provider, List[SensorSite]]:
        """Sites in one region per provider; a blank code returns everything."""
        catalog = self._catalog
        if not code or not code.strip():
            return {provider: list(sites) for provider, sites in catalog.items()}
        wanted = code.strip().upper()
        return {
            provider: [s for s in sites if s.region_code.upper() == wanted]
            for provider, sites in catalog.items()
        }

    def find_site(self, provider: Provider, site_id: str) -> Optional[SensorSite]:
        for site in self._catalog.get(provider, ()):
            if site.id == site_id:
                return site
        return None

    # --- On-demand series ---

    async def inspect_site(self, site: SensorSite, scope: Optional[str] = None) -> Optional[MergedSeriesBundle]:
        previous = self._inspect_tasks.get(scope)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(self._engine.build_bundle(site))
        self._inspect_tasks[scope] = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._inspect_tasks.get(scope) is task and task.done():
                del self._inspect_tasks[scope]

        if task.cancelled():
            logger.info(f"Inspection of {site.provider.value} {site.id} superseded")
            return None
        return task.result()


_session: Optional[SessionCoordinator] = None


# Global Instance Accessor
def get_session() -> SessionCoordinator:
    global _session
    if _session is None:
        _session = SessionCoordinator()
    return _session
