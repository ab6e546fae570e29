"""
HTTP upstream source.
All cache misses and background refreshes end up here.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from stale_fetcher.cache.core import RequestDescriptor
from stale_fetcher.cache.errors import FetchError, SerializationError

logger = logging.getLogger("upstream")


class UpstreamSource(Protocol):
    """Anything that can perform the actual fetch for a request."""

    async def fetch(self, request: RequestDescriptor) -> Any: ...


class HttpUpstream:
    """
    JSON-over-HTTP upstream backed by a shared httpx.AsyncClient.

    A semaphore limits concurrent upstream requests so a burst of
    different keys cannot overwhelm the source.
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        max_concurrency: int = 10,
        client: Optional[httpx.AsyncClient] = None,
        **client_options: Any,
    ):
        """
        Args:
            base_url: Prefix for relative request URLs
            headers: Headers sent with every request
            timeout: Request timeout in seconds
            max_concurrency: Max upstream requests in flight at once
            client: Pre-built client (its own settings win)
            client_options: Extra keyword arguments for httpx.AsyncClient
        """
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            **client_options,
        )
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def fetch(self, request: RequestDescriptor) -> Any:
        """
        GET the request and decode the JSON body.

        Raises:
            FetchError: On transport errors and non-2xx responses
            SerializationError: If the body is not valid JSON
        """
        async with self._semaphore:
            try:
                response = await self._client.get(
                    request.url,
                    headers=dict(request.headers),
                    params=dict(request.params),
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.warning(f"Upstream returned {status} for {request.url}")
                raise FetchError(
                    f"Upstream returned {status} for {request.url}",
                    url=request.url,
                    status_code=status,
                ) from exc
            except httpx.HTTPError as exc:
                logger.warning(f"Upstream request failed for {request.url}: {exc}")
                raise FetchError(
                    f"Upstream request failed for {request.url}: {exc}",
                    url=request.url,
                ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SerializationError(f"Upstream body for {request.url} is not JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
