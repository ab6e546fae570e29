"""
Fetch-through caching with request coalescing and stale-while-revalidate.
"""
from .core import (
    CacheEntry,
    CacheSource,
    PendingEntry,
    RefreshJob,
    RefreshState,
    RequestDescriptor,
    Role,
)
from .errors import (
    CacheReadError,
    CacheWriteError,
    FetchError,
    SerializationError,
    StaleFetcherError,
)
from .keys import derive_cache_key
from .store import CacheStore, InMemoryCacheStore, RedisCacheStore
from .coalescer import RequestCoalescer
from .backoff import BACKOFF_CONFIG, BackoffPolicy
from .refresh import RefreshScheduler

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "PendingEntry",
    "RefreshJob",
    "RefreshState",
    "RequestDescriptor",
    "Role",
    # Errors
    "CacheReadError",
    "CacheWriteError",
    "FetchError",
    "SerializationError",
    "StaleFetcherError",
    # Keys
    "derive_cache_key",
    # Stores
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    # Coalescing
    "RequestCoalescer",
    # Refresh
    "BACKOFF_CONFIG",
    "BackoffPolicy",
    "RefreshScheduler",
]
