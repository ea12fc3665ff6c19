import asyncio
import sys
import time
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from collector.bulk_fetcher import (
    BulkCatalogOrchestrator,
    ProviderSpec,
    RateLimiter,
    chunk_keys,
    default_provider_specs,
)
from collector.http import PayloadError
from collector.nwps_fetcher import fetch_nwps_gauges
from collector.usgs_fetcher import fetch_usgs_partition
from core.models import Provider

from payloads import nwps_gauge, usgs_record


def usgs_body(*records):
    return {"value": {"timeSeries": list(records)}}


def run_with_transport(handler, specs):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await BulkCatalogOrchestrator(client=client).fetch_all(specs)
    return asyncio.run(scenario())


def test_partition_failure_scenario_ca_ok_tx_503():
    def handler(request: httpx.Request) -> httpx.Response:
        state = request.url.params["stateCd"]
        if state == "CA":
            return httpx.Response(200, json=usgs_body(usgs_record(site_id="S1", lat="34.0", lon="-118.0")))
        return httpx.Response(503, text="Service Unavailable")

    spec = ProviderSpec(Provider.USGS, fetch_usgs_partition, partition_keys=["CA", "TX"], delay_s=0)
    result = run_with_transport(handler, [spec])

    sites = result.sites[Provider.USGS]
    assert [s.id for s in sites] == ["S1"]
    assert sites[0].current_readings[0].value == 120.0
    assert sites[0].current_readings[0].unit == "cfs"
    assert result.success_count == 1
    assert result.error_count == 1
    assert result.finished_at is not None


def test_three_of_ten_partitions_failing_keeps_the_other_seven():
    keys = [f"K{i}" for i in range(10)]
    failing = {"K1", "K4", "K8"}

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.params["stateCd"]
        if key == "K1":
            raise httpx.ConnectError("connection refused", request=request)
        if key == "K4":
            return httpx.Response(500)
        if key == "K8":
            return httpx.Response(200, text="<html>maintenance</html>")
        idx = int(key[1:])
        return httpx.Response(200, json=usgs_body(usgs_record(site_id=f"S{idx}", lat="40", lon=str(-100 + idx))))

    spec = ProviderSpec(Provider.USGS, fetch_usgs_partition, partition_keys=keys, delay_s=0)
    result = run_with_transport(handler, [spec])

    ids = [s.id for s in result.sites[Provider.USGS]]
    assert ids == [f"S{i}" for i in range(10) if f"K{i}" not in failing]
    assert result.error_count == 3
    assert result.success_count == 7
    assert result.provider_stats[Provider.USGS].site_count == 7


def test_total_provider_failure_yields_empty_list_and_other_provider_survives():
    def handler(request: httpx.Request) -> httpx.Response:
        if "stateCd" in request.url.params:
            return httpx.Response(503)
        return httpx.Response(200, json={"gauges": [nwps_gauge()]})

    specs = [
        ProviderSpec(Provider.USGS, fetch_usgs_partition, partition_keys=["CA", "TX"], delay_s=0),
        ProviderSpec(Provider.NWPS, fetch_nwps_gauges, delay_s=0),
    ]
    result = run_with_transport(handler, specs)

    assert result.sites[Provider.USGS] == []
    assert [s.id for s in result.sites[Provider.NWPS]] == ["ABCD1"]
    assert result.provider_stats[Provider.USGS].error_count == 2
    assert result.provider_stats[Provider.NWPS].success_count == 1


def test_malformed_bodies_count_as_partition_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    specs = [
        ProviderSpec(Provider.USGS, fetch_usgs_partition, partition_keys=["CA"], delay_s=0),
        ProviderSpec(Provider.NWPS, fetch_nwps_gauges, delay_s=0),
    ]
    result = run_with_transport(handler, specs)

    assert result.error_count == 2
    assert result.total_sites == 0


def test_measurement_order_follows_partition_issue_order_under_concurrency():
    # The first partition answers last; its measurements must still come first.
    delays = {"A": 0.05, "B": 0.0, "C": 0.02}
    codes = {"A": "00060", "B": "00065", "C": "00010"}

    async def fetch(_client, key):
        await asyncio.sleep(delays[key])
        return [usgs_record(code=codes[key], value="1", unit="ft")]

    spec = ProviderSpec(Provider.USGS, fetch, partition_keys=["A", "B", "C"], max_concurrency=3, delay_s=0)
    result = asyncio.run(BulkCatalogOrchestrator().fetch_all([spec]))

    site = result.sites[Provider.USGS][0]
    assert [m.parameter_code for m in site.current_readings] == ["00060", "00065", "00010"]


def test_bounded_concurrency_is_respected():
    in_flight = 0
    peak = 0

    async def fetch(_client, key):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return []

    spec = ProviderSpec(Provider.USGS, fetch, partition_keys=[str(i) for i in range(8)], max_concurrency=2, delay_s=0)
    result = asyncio.run(BulkCatalogOrchestrator().fetch_all([spec]))

    assert peak == 2
    assert result.success_count == 8


def test_rate_limit_delay_does_not_block_other_providers():
    finished = {}

    async def slow_fetch(_client, key):
        finished.setdefault("usgs_first", time.monotonic())
        return []

    async def nwps_fetch(_client, key):
        finished["nwps"] = time.monotonic()
        return []

    specs = [
        ProviderSpec(Provider.USGS, slow_fetch, partition_keys=["A", "B", "C"], delay_s=0.1),
        ProviderSpec(Provider.NWPS, nwps_fetch, delay_s=0.1),
    ]
    started = time.monotonic()
    asyncio.run(BulkCatalogOrchestrator().fetch_all(specs))
    total = time.monotonic() - started

    # USGS needs ~0.2s of spacing; NWPS must not wait behind it.
    assert total >= 0.18
    assert finished["nwps"] - started < 0.1


def test_rate_limiter_spaces_request_starts():
    async def scenario():
        limiter = RateLimiter(0.05)
        stamps = []
        for _ in range(3):
            await limiter.wait()
            stamps.append(time.monotonic())
        return stamps

    stamps = asyncio.run(scenario())
    assert stamps[1] - stamps[0] >= 0.045
    assert stamps[2] - stamps[1] >= 0.045


def test_payload_error_from_custom_fetch_is_caught():
    async def fetch(_client, key):
        if key == "bad":
            raise PayloadError("truncated")
        return [usgs_record()]

    spec = ProviderSpec(Provider.USGS, fetch, partition_keys=["bad", "good"], delay_s=0)
    result = asyncio.run(BulkCatalogOrchestrator().fetch_all([spec]))
    assert result.error_count == 1
    assert [s.id for s in result.sites[Provider.USGS]] == ["S1"]


def test_chunk_keys_and_default_specs():
    assert chunk_keys(["AL", "AK", "AZ"], 2) == ["AL,AK", "AZ"]
    assert chunk_keys(["AL"], 0) == ["AL"]

    specs = default_provider_specs(states=["CA", "TX", "NY"], states_per_request=10)
    assert [s.provider for s in specs] == [Provider.USGS, Provider.NWPS]
    assert specs[0].partition_keys == ["CA,TX,NY"]
    assert specs[1].partition_keys is None

    assert len(default_provider_specs()[0].partition_keys) == 50


def test_usgs_bulk_request_parameters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(dict(request.url.params))
        return httpx.Response(200, json=usgs_body())

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_usgs_partition(client, "CA,NV")

    assert asyncio.run(scenario()) == []
    assert seen["stateCd"] == "CA,NV"
    assert seen["parameterCd"] == "00060,00065,00010,00045"
    assert seen["siteStatus"] == "active"
    assert seen["format"] == "json"
