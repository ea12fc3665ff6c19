import asyncio
import sys
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from collector.nwm_fetcher import ProximityResolver, build_query_params, to_feature

PRIMARY = "https://primary.test/MapServer/0/query"
SECONDARY = "https://secondary.test/MapServer/0/query"


def resolve(handler, lat=38.9, lon=-77.0, radius_m=1000.0, secondary=SECONDARY):
    calls = []

    def recording(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        return handler(request)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            resolver = ProximityResolver(primary_url=PRIMARY, secondary_url=secondary, client=client)
            return await resolver.find_nearest(lat, lon, radius_m)

    return asyncio.run(scenario()), calls


def test_empty_primary_falls_back_to_secondary():
    def handler(request):
        if request.url.host == "primary.test":
            return httpx.Response(200, json={"features": []})
        return httpx.Response(200, json={"features": [{"attributes": {"feature_id": "R42", "streamflow": 310.5}}]})

    feature, calls = resolve(handler)

    assert feature is not None
    assert feature.feature_id == "R42"
    assert feature.source == "secondary"
    assert feature.current_value == 310.5
    assert calls == ["primary.test", "secondary.test"]


def test_primary_hit_skips_secondary_and_takes_index_zero():
    def handler(request):
        return httpx.Response(200, json={"features": [
            {"attributes": {"feature_id": 101, "streamflow": 12.0}},
            {"attributes": {"feature_id": 102, "streamflow": 99.0}},
        ]})

    feature, calls = resolve(handler)

    assert feature.feature_id == "101"
    assert feature.source == "primary"
    assert calls == ["primary.test"]


def test_primary_failures_fall_back():
    for failure in (
        lambda r: httpx.Response(502),
        lambda r: httpx.Response(200, json={"error": {"code": 400, "message": "Invalid query"}}),
        lambda r: httpx.Response(200, text="not json"),
    ):
        def handler(request, failure=failure):
            if request.url.host == "primary.test":
                return failure(request)
            return httpx.Response(200, json={"features": [{"attributes": {"station_id": "R42"}}]})

        feature, _ = resolve(handler)
        assert feature is not None
        assert feature.feature_id == "R42"
        assert feature.current_value is None


def test_transport_error_on_primary_falls_back():
    def handler(request):
        if request.url.host == "primary.test":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"features": [{"attributes": {"feature_id": "R7", "flow": "-999"}}]})

    feature, _ = resolve(handler)
    assert feature.feature_id == "R7"
    assert feature.current_value is None


def test_nothing_found_anywhere_is_none_not_an_error():
    def handler(request):
        if request.url.host == "primary.test":
            return httpx.Response(503)
        return httpx.Response(200, json={"features": []})

    feature, calls = resolve(handler)
    assert feature is None
    assert calls == ["primary.test", "secondary.test"]


def test_without_secondary_only_primary_is_asked():
    feature, calls = resolve(lambda r: httpx.Response(200, json={"features": []}), secondary=None)
    assert feature is None
    assert calls == ["primary.test"]


def test_query_params_describe_a_circle_around_the_point():
    params = build_query_params(38.9, -77.0, 750.0)
    assert params["geometry"] == "-77.0,38.9"
    assert params["distance"] == 750.0
    assert params["units"] == "esriSRUnit_Meter"
    assert params["f"] == "json"


def test_to_feature_probes_attribute_names_case_insensitively():
    feature = to_feature({"attributes": {"Feature_ID": 5, "Discharge": "44.5"}}, "primary")
    assert feature.feature_id == "5"
    assert feature.current_value == 44.5
    assert feature.unit == "cfs"
