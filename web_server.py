# Load environment variables FIRST (before any other imports)
from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Silence verbose loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logger = logging.getLogger("web_server")

from config import US_STATES
from core.models import Provider
from core.world import get_session

app = FastAPI(title="Hydro Gauge Explorer", version="1.0.0")

# Background catalog build started by /api/catalog/refresh
_refresh_task: Optional[asyncio.Task] = None


class RefreshStatus(BaseModel):
    started: bool
    loading: bool
    counts: Dict[str, int]


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


@app.get("/api/regions")
def get_regions():
    """Region codes usable with /api/catalog?region=..."""
    return [{"code": code, "name": name} for code, name in US_STATES.items()]


@app.get("/api/catalog")
def get_catalog(region: Optional[str] = None, provider: Optional[str] = None):
    """Current catalog, optionally narrowed to one region and/or provider."""
    session = get_session()
    try:
        wanted = Provider.parse(provider) if provider else None
    except ValueError as e:
        return _error(400, str(e))

    filtered = session.filter_by_region(region)
    return {
        "region": region or None,
        "loading": session.is_loading,
        "providers": {
            p.value: [site.to_dict() for site in sites]
            for p, sites in filtered.items()
            if wanted is None or p is wanted
        },
        "counts": {p.value: len(sites) for p, sites in filtered.items()},
    }


@app.get("/api/catalog/status")
def get_catalog_status():
    session = get_session()
    result = session.last_result
    return {
        "loading": session.is_loading,
        "counts": session.counts(),
        "last_build": result.to_dict() if result else None,
    }


@app.post("/api/catalog/refresh", response_model=RefreshStatus)
async def refresh_catalog():
    """
    Start a catalog build in the background.
    A refresh while one is running is ignored (started=false).
    """
    global _refresh_task
    session = get_session()
    if session.is_loading or (_refresh_task is not None and not _refresh_task.done()):
        return RefreshStatus(started=False, loading=True, counts=session.counts())
    _refresh_task = asyncio.create_task(session.load_all())
    return RefreshStatus(started=True, loading=True, counts=session.counts())


@app.post("/api/catalog/reset")
def reset_catalog():
    session = get_session()
    session.reset()
    return {"counts": session.counts()}


@app.get("/api/sites/{provider}/{site_id}")
def get_site(provider: str, site_id: str):
    try:
        p = Provider.parse(provider)
    except ValueError as e:
        return _error(400, str(e))
    site = get_session().find_site(p, site_id)
    if site is None:
        return _error(404, f"Site {p.value} {site_id} not in catalog")
    return site.to_dict()


@app.get("/api/sites/{provider}/{site_id}/series")
async def get_site_series(provider: str, site_id: str, request: Request, client: Optional[str] = None):
    """
    Merged historical / forecast / nowcast bundle for one site.

    A newer request from the same caller (`client` query param, else the
    remote address) supersedes a running one, which answers 409. Requests
    from different callers run independently.
    """
    try:
        p = Provider.parse(provider)
    except ValueError as e:
        return _error(400, str(e))
    session = get_session()
    site = session.find_site(p, site_id)
    if site is None:
        return _error(404, f"Site {p.value} {site_id} not in catalog")

    scope = client or (request.client.host if request.client else None)
    bundle = await session.inspect_site(site, scope=scope)
    if bundle is None:
        # A newer inspection replaced this one.
        return _error(409, "Superseded by a newer request")
    payload: Dict[str, Any] = bundle.to_dict()
    payload["site"] = site.to_dict()
    return payload


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
