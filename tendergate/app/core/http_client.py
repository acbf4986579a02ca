"""Shared HTTP client for upstream calls.

The client is created once in the application lifespan and shared by the
provider so connections to the upstream API are pooled.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from tendergate.app.core.config import Settings


def build_timeout(settings: Settings) -> httpx.Timeout:
    """Granular timeouts: the read timeout tracks the upstream deadline."""
    return httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=settings.upstream_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def build_limits(settings: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


@asynccontextmanager
async def init_http_client(settings: Settings) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create the pooled client and close it on exit.

    Used in the FastAPI lifespan:

        async with init_http_client(settings) as http_client:
            yield {"http_client": http_client}
    """
    client = httpx.AsyncClient(
        timeout=build_timeout(settings),
        limits=build_limits(settings),
    )
    try:
        yield client
    finally:
        await client.aclose()
