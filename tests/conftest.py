"""Shared test fixtures and dummy collaborators."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from stale_fetcher.cache.core import RequestDescriptor


class DummyCacheStore:
    """Dict-backed cache store that records writes and can be made to fail."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.sets: list[tuple[str, str, int]] = []
        self.get_error: Exception | None = None
        self.set_error: Exception | None = None

    async def get(self, key: str) -> str | None:
        if self.get_error is not None:
            raise self.get_error
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        if self.set_error is not None:
            raise self.set_error
        self.sets.append((key, value, ttl_ms))
        self.data[key] = value


class DummyUpstream:
    """Upstream that records every request.

    Returns ``{"url": <url>}`` unless a payload (value or callable) is given.
    """

    def __init__(
        self,
        payload: Any = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.calls: list[RequestDescriptor] = []
        self.payload = payload
        self.delay = delay
        self.error = error
        self.release: asyncio.Event | None = None

    async def fetch(self, request: RequestDescriptor) -> Any:
        self.calls.append(request)
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.payload):
            return self.payload(request)
        if self.payload is not None:
            return self.payload
        return {"url": request.url}


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays in milliseconds."""

    def __init__(self) -> None:
        self.delays: list[int] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(round(seconds * 1000))
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def store() -> DummyCacheStore:
    return DummyCacheStore()


@pytest.fixture
def upstream() -> DummyUpstream:
    return DummyUpstream()
