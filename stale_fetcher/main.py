"""
Stale Fetcher - FastAPI service
Fetch-through cache in front of one HTTP upstream
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from config.settings import settings
from stale_fetcher.cache import (
    CacheReadError,
    FetchError,
    InMemoryCacheStore,
    RedisCacheStore,
    SerializationError,
)
from stale_fetcher.fetcher import FetcherOptions, StaleFetcher

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger("stale_fetcher")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Stale Fetcher"

# Request headers with this prefix are forwarded upstream without it
UPSTREAM_HEADER_PREFIX = "x-upstream-"

# Global fetcher instance
_fetcher: Optional[StaleFetcher] = None


def build_fetcher() -> StaleFetcher:
    """Create a fetcher from the application settings."""
    if settings.redis_url:
        store = RedisCacheStore(
            redis_url=settings.redis_url,
            connect_timeout=settings.cache_connect_timeout_seconds,
        )
    else:
        store = InMemoryCacheStore()
    return StaleFetcher(store=store, options=FetcherOptions.from_settings(settings))


def get_fetcher() -> StaleFetcher:
    """Get or create the global fetcher."""
    global _fetcher
    if _fetcher is None:
        _fetcher = build_fetcher()
    return _fetcher


def set_fetcher(fetcher: Optional[StaleFetcher]) -> None:
    """Replace the global fetcher (None resets it)."""
    global _fetcher
    _fetcher = fetcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    fetcher = get_fetcher()
    store = fetcher.store
    if isinstance(store, RedisCacheStore) and not store.connected:
        await store.connect()
    logger.info(
        f"{APP_NAME} {APP_VERSION} started "
        f"(ttl={fetcher.options.cache_ttl_ms}ms, refresh={fetcher.options.refresh_enabled})"
    )
    yield
    await fetcher.close()
    if isinstance(store, RedisCacheStore):
        await store.close()
    set_fetcher(None)


app = FastAPI(
    title=APP_NAME,
    description="Fetch-through cache with request coalescing and stale-while-revalidate",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats():
    """Get cache statistics."""
    return get_fetcher().get_stats()


@app.get("/fetch")
async def fetch(
    request: Request,
    url: str = Query(..., min_length=1, description="Upstream resource URL"),
):
    """
    Return the upstream resource at `url` through the cache.

    Query parameters other than `url` are passed upstream as params, and
    `X-Upstream-<Name>` request headers are passed upstream as `<Name>`.
    Both are part of the cache key.

    The X-Cache header tells whether the value came from the cache,
    from upstream, or from another caller's in-flight fetch.
    """
    params = {k: v for k, v in request.query_params.items() if k != "url"}
    headers = {
        name[len(UPSTREAM_HEADER_PREFIX):]: value
        for name, value in request.headers.items()
        if name.lower().startswith(UPSTREAM_HEADER_PREFIX)
    }
    try:
        data, source = await get_fetcher().get_with_source(url, headers=headers, params=params)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except CacheReadError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SerializationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return JSONResponse(content=data, headers={"X-Cache": source.value})
