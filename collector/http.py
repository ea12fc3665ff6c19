"""
Shared HTTP plumbing for the collectors.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from config import REQUEST_TIMEOUT_SECONDS

USER_AGENT = "hydro-gauge-explorer/1.0"


class PayloadError(ValueError):
    """Upstream answered 2xx but the body is not the expected structure."""


@dataclass
class RawSeries:
    """One upstream series before sentinel filtering."""
    parameter_code: str
    parameter_name: str
    unit: str
    points: List[Tuple[Any, Any]] = field(default_factory=list)
    no_data_value: Optional[float] = None


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or an owned one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    ) as owned:
        yield owned


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    GET and decode JSON.

    Raises httpx.HTTPStatusError on non-2xx, httpx.RequestError on transport
    failure and PayloadError when the body is not JSON.
    """
    response = await client.get(url, params=params)
    response.raise_for_status()
    try:
        return response.json()
    except ValueError as e:
        raise PayloadError(f"Invalid JSON from {url}: {e}") from e


def describe_error(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    if isinstance(error, httpx.TimeoutException):
        return "timeout"
    return f"{type(error).__name__}: {error}"
