#!/usr/bin/env python3
"""
Hydro Gauge Explorer CLI

Command-line access to the catalog build and the per-site series merge.

Usage:
    python main.py catalog
    python main.py catalog --states CA,TX --region CA
    python main.py series --provider NWPS --site ABCD1
    python main.py series --provider USGS --site 09380000 --states AZ
"""

# Load environment variables FIRST (before any other imports)
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
import logging
import sys

from collector.bulk_fetcher import BulkCatalogOrchestrator, default_provider_specs
from core.models import Provider, SourceKind
from core.world import SessionCoordinator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S"
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("main")


def parse_states(raw: str):
    if not raw:
        return None
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


def build_session(args) -> SessionCoordinator:
    specs = default_provider_specs(states=parse_states(args.states), states_per_request=args.batch)
    if args.provider_only:
        wanted = Provider.parse(args.provider_only)
        specs = [s for s in specs if s.provider is wanted]
    return SessionCoordinator(orchestrator=BulkCatalogOrchestrator(), specs=specs)


async def cmd_catalog(args):
    """Build the catalog and print per-provider counts."""
    session = build_session(args)
    result = await session.load_all()

    print(f"\n{'─'*60}")
    print(f"  Catalog build: {result.success_count} partitions ok, {result.error_count} failed")
    for provider, stats in result.provider_stats.items():
        print(f"  {provider.value:5s} {stats.site_count:6d} sites  ({stats.success_count}/{stats.partitions} partitions)")

    if args.region:
        filtered = session.filter_by_region(args.region)
        print(f"\n  Region {args.region.upper()}:")
        for provider, sites in filtered.items():
            print(f"  {provider.value:5s} {len(sites):6d} sites")
            for site in sites[:args.limit]:
                readings = ", ".join(f"{m.parameter_name}={m.value:g} {m.unit}" for m in site.current_readings)
                print(f"      {site.id:16s} {site.name[:40]:40s} {readings}")
    print(f"{'─'*60}\n")


async def cmd_series(args):
    """Build the catalog slice holding the site, then merge its series."""
    provider = Provider.parse(args.provider)
    args.provider_only = provider.value
    session = build_session(args)
    await session.load_all()

    site = session.find_site(provider, args.site)
    if site is None:
        logger.error(f"{provider.value} {args.site} not found in catalog")
        sys.exit(1)

    bundle = await session.inspect_site(site)
    print(f"\n{'─'*60}")
    print(f"  {site.name} ({provider.value} {site.id}) - granularity: {bundle.granularity.value}")
    if bundle.is_empty:
        print("  No data from any source")
    for kind in SourceKind:
        series = bundle.get(kind)
        if series is None:
            continue
        stats = series.stats()
        flags = " [stitched]" if series.stitched else ""
        flags += " [synthetic]" if series.synthetic else ""
        print(
            f"  {kind.value:10s} {stats['count']:4d} pts  {series.parameter[:30]:30s} "
            f"min={stats['min']} max={stats['max']} latest={stats['latest']} {series.unit}{flags}"
        )
    for annotation in bundle.annotations:
        print(f"  annotation: {annotation.kind} -> {annotation.label} @ {annotation.to_dict()['value']}")
    print(f"{'─'*60}\n")


def main():
    parser = argparse.ArgumentParser(description="Hydro Gauge Explorer")
    parser.add_argument("--debug", action="store_true", help="Re-raise errors")
    subparsers = parser.add_subparsers(dest="command")

    catalog_parser = subparsers.add_parser("catalog", help="Build the site catalog")
    catalog_parser.add_argument("--states", default="", help="Comma-separated state codes (default: all)")
    catalog_parser.add_argument("--batch", type=int, default=1, help="States per USGS request")
    catalog_parser.add_argument("--region", default="", help="Print sites for one region")
    catalog_parser.add_argument("--limit", type=int, default=20, help="Sites listed per provider")
    catalog_parser.add_argument("--provider-only", default="", help="Fetch a single provider")
    catalog_parser.set_defaults(func=cmd_catalog)

    series_parser = subparsers.add_parser("series", help="Merge the series for one site")
    series_parser.add_argument("--provider", required=True, help="USGS or NWPS")
    series_parser.add_argument("--site", required=True, help="Site id (USGS site number or NWPS lid)")
    series_parser.add_argument("--states", default="", help="Limit the catalog build to these states")
    series_parser.add_argument("--batch", type=int, default=1, help="States per USGS request")
    series_parser.set_defaults(func=cmd_series)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
