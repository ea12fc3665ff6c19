import asyncio
import sys
import time
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import web_server
from core.models import CatalogBuildResult, MergedSeriesBundle, Provider, SensorSite
from core.world import SessionCoordinator


class StaticOrchestrator:
    def __init__(self, sites):
        self.sites = sites

    async def fetch_all(self, specs=None):
        result = CatalogBuildResult()
        for s in self.sites:
            result.sites.setdefault(s.provider, []).append(s)
        return result


class StubEngine:
    async def build_bundle(self, s):
        return MergedSeriesBundle(site_id=s.id, provider=s.provider)


def make_client(monkeypatch, sites):
    session = SessionCoordinator(orchestrator=StaticOrchestrator(sites), engine=StubEngine())
    monkeypatch.setattr(web_server, "get_session", lambda: session)
    return TestClient(web_server.app), session


SITES = [
    SensorSite(id="09380000", name="Colorado River", latitude=36.86, longitude=-111.59, provider=Provider.USGS, region_code="AZ"),
    SensorSite(id="ABCD1", name="Wolf River", latitude=35.1, longitude=-90.0, provider=Provider.NWPS, region_code="TN", critical_level=20.0),
]


def test_refresh_then_browse_catalog(monkeypatch):
    client, session = make_client(monkeypatch, SITES)

    # The context manager keeps one event loop alive for the background build.
    with client:
        response = client.post("/api/catalog/refresh")
        assert response.status_code == 200
        assert response.json()["started"] is True

        for _ in range(100):
            if session.counts():
                break
            time.sleep(0.01)

        status = client.get("/api/catalog/status").json()
        assert status["counts"] == {"USGS": 1, "NWPS": 1}
        assert status["last_build"]["total_sites"] == 2

        body = client.get("/api/catalog", params={"region": "tn"}).json()
        assert [s["id"] for s in body["providers"]["NWPS"]] == ["ABCD1"]
        assert body["providers"]["USGS"] == []

        only_usgs = client.get("/api/catalog", params={"provider": "usgs"}).json()
        assert list(only_usgs["providers"]) == ["USGS"]


def test_unknown_provider_is_a_400(monkeypatch):
    client, _ = make_client(monkeypatch, SITES)
    assert client.get("/api/catalog", params={"provider": "ECMWF"}).status_code == 400
    assert client.get("/api/sites/ECMWF/1").status_code == 400


def test_site_lookup_and_series(monkeypatch):
    client, session = make_client(monkeypatch, SITES)
    asyncio.run(session.load_all())

    assert client.get("/api/sites/NWPS/ABCD1").json()["critical_level"] == 20.0
    assert client.get("/api/sites/NWPS/NOPE").status_code == 404

    series = client.get("/api/sites/nwps/ABCD1/series").json()
    assert series["site_id"] == "ABCD1"
    assert series["is_empty"] is True
    assert series["site"]["name"] == "Wolf River"


def test_reset_and_regions(monkeypatch):
    client, session = make_client(monkeypatch, SITES)
    asyncio.run(session.load_all())

    assert client.post("/api/catalog/reset").json() == {"counts": {}}
    regions = client.get("/api/regions").json()
    assert {"code": "CA", "name": "California"} in regions
