"""
Core cache data structures.
"""
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Optional


class Role(Enum):
    """Part a caller plays for one in-flight fetch."""
    INITIATOR = "initiator"   # Performs the upstream call
    FOLLOWER = "follower"     # Waits for the initiator's result


class RefreshState(Enum):
    """States of a per-key background refresh."""
    ARMED = "armed"
    REFRESHING = "refreshing"
    ABANDONED = "abandoned"


class CacheSource(Enum):
    """Where a value returned by the fetcher came from."""
    CACHE = "cache"           # Read from the cache store
    UPSTREAM = "upstream"     # Fetched by this caller
    COALESCED = "coalesced"   # Fetched by another caller and shared


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Identity of one upstream request.

    Headers and params are frozen into read-only mappings so a descriptor
    can be held by a refresh job for as long as the key lives.
    """
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers or {})))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params or {})))


@dataclass
class CacheEntry:
    """
    Represents a cached value with metadata for TTL tracking.
    """
    key: str
    value: str
    ttl_ms: int
    stored_at: float = field(default_factory=time.monotonic)

    @property
    def age_ms(self) -> float:
        """Milliseconds since the value was stored."""
        return (time.monotonic() - self.stored_at) * 1000

    @property
    def remaining_ttl_ms(self) -> float:
        return max(0.0, self.ttl_ms - self.age_ms)

    @property
    def is_expired(self) -> bool:
        """Check if the entry has outlived its TTL."""
        return self.age_ms >= self.ttl_ms


@dataclass
class PendingEntry:
    """Tracks an in-progress upstream request and everyone waiting on it."""
    key: str
    waiters: List[asyncio.Future] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def waiter_count(self) -> int:
        return len(self.waiters)


@dataclass
class RefreshJob:
    """
    Background refresh bookkeeping for one cache key.

    `backoff_ms` is the delay used after the next failed attempt;
    `next_due` is a monotonic timestamp.
    """
    key: str
    request: RequestDescriptor
    backoff_ms: int
    next_due: float
    state: RefreshState = RefreshState.ARMED
    attempts: int = 0
    failures: int = 0
    last_error: Optional[BaseException] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def due_in_ms(self) -> float:
        return max(0.0, (self.next_due - time.monotonic()) * 1000)
