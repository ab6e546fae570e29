"""
Stale Fetcher - fetch-through HTTP cache with request coalescing
and stale-while-revalidate refresh.
"""
from stale_fetcher.fetcher import FetcherOptions, StaleFetcher
from stale_fetcher.upstream import HttpUpstream, UpstreamSource

__all__ = [
    "FetcherOptions",
    "HttpUpstream",
    "StaleFetcher",
    "UpstreamSource",
]
