"""
Error taxonomy for the fetch-through cache.
"""
from typing import Optional


class StaleFetcherError(Exception):
    """Base class for all fetcher errors."""


class CacheReadError(StaleFetcherError):
    """Cache store lookup failed."""


class CacheWriteError(StaleFetcherError):
    """Cache store write failed."""


class FetchError(StaleFetcherError):
    """Upstream call failed (network, protocol or non-success status)."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SerializationError(StaleFetcherError):
    """A stored or fetched payload could not be encoded or decoded."""
