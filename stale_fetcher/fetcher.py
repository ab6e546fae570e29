"""
Fetch-through cache client.

Reads go to the cache store first; misses are coalesced into one upstream
call per key, and every successfully fetched key is kept fresh in the
background until its refreshes fail past the backoff ceiling.
"""
import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from stale_fetcher.cache import (
    BackoffPolicy,
    CacheReadError,
    CacheSource,
    CacheStore,
    FetchError,
    InMemoryCacheStore,
    RefreshJob,
    RefreshScheduler,
    RequestCoalescer,
    RequestDescriptor,
    Role,
    SerializationError,
    StaleFetcherError,
    derive_cache_key,
)
from stale_fetcher.cache.backoff import BACKOFF_CONFIG
from stale_fetcher.cache.keys import DEFAULT_NAMESPACE
from stale_fetcher.upstream import HttpUpstream, UpstreamSource

logger = logging.getLogger("cache.fetcher")

T = TypeVar("T")


@dataclass
class FetcherOptions:
    """
    Constructor options for StaleFetcher. Durations are in milliseconds.

    refresh_interval_ms defaults to cache_ttl_ms.
    """
    cache_ttl_ms: int = 10_000
    refresh_enabled: bool = True
    refresh_interval_ms: Optional[int] = None
    base_backoff_ms: int = BACKOFF_CONFIG["base_ms"]
    backoff_factor: float = BACKOFF_CONFIG["factor"]
    backoff_ceiling_ms: int = BACKOFF_CONFIG["ceiling_ms"]
    isolate_instances: bool = False
    key_namespace: str = DEFAULT_NAMESPACE
    transport_options: Dict[str, Any] = field(default_factory=dict)
    logger: Optional[logging.Logger] = None

    def __post_init__(self):
        if self.cache_ttl_ms <= 0:
            raise ValueError(f"cache_ttl_ms must be positive, got {self.cache_ttl_ms}")
        if self.refresh_interval_ms is None:
            self.refresh_interval_ms = self.cache_ttl_ms
        elif self.refresh_interval_ms <= 0:
            raise ValueError(
                f"refresh_interval_ms must be positive, got {self.refresh_interval_ms}"
            )
        # Fails fast on a bad base/factor/ceiling combination
        self.backoff_policy()

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_ms=self.base_backoff_ms,
            factor=self.backoff_factor,
            ceiling_ms=self.backoff_ceiling_ms,
        )

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "FetcherOptions":
        """Build options from the application Settings object."""
        values = {
            "cache_ttl_ms": settings.cache_ttl_ms,
            "refresh_enabled": settings.refresh_enabled,
            "refresh_interval_ms": settings.refresh_interval_ms,
            "base_backoff_ms": settings.base_backoff_ms,
            "backoff_factor": settings.backoff_factor,
            "backoff_ceiling_ms": settings.backoff_ceiling_ms,
            "isolate_instances": settings.isolate_instances,
            "key_namespace": settings.key_namespace,
            "transport_options": {
                "base_url": settings.upstream_base_url,
                "timeout": settings.upstream_timeout_seconds,
                "max_concurrency": settings.upstream_max_concurrency,
            },
        }
        values.update(overrides)
        return cls(**values)


@lru_cache(maxsize=128)
def _adapter(response_type: Any) -> TypeAdapter:
    return TypeAdapter(response_type)


class StaleFetcher:
    """
    Fetch-through cache with:
    - Request coalescing for concurrent duplicate requests
    - Stale-while-revalidate background refresh per key
    - Exponential backoff and abandonment for failing refreshes
    """

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        upstream: Optional[UpstreamSource] = None,
        options: Optional[FetcherOptions] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            store: Cache store (defaults to a process-local one)
            upstream: Upstream source (defaults to HttpUpstream built
                from options.transport_options)
            options: Fetcher options
        """
        self._options = options or FetcherOptions()
        self._store = store if store is not None else InMemoryCacheStore()
        self._upstream = upstream or HttpUpstream(**self._options.transport_options)
        self._log = self._options.logger or logger
        self.instance_id = uuid.uuid4().hex[:10]

        self._coalescer = RequestCoalescer()
        self._scheduler = RefreshScheduler(
            refresh_fn=self._refresh,
            interval_ms=self._options.refresh_interval_ms,
            policy=self._options.backoff_policy(),
            log=self._log,
        )

        # Stats tracking
        self._stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "upstream_fetches": 0,
            "cache_errors": 0,
            "fetch_errors": 0,
            "write_errors": 0,
        }

    @property
    def options(self) -> FetcherOptions:
        return self._options

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    def cache_key(self, request: RequestDescriptor) -> str:
        """Key under which `request` is cached, coalesced and refreshed."""
        instance_id = self.instance_id if self._options.isolate_instances else None
        return derive_cache_key(request, self._options.key_namespace, instance_id)

    async def get(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        response_type: Optional[Type[T]] = None,
    ) -> T:
        """
        Get the decoded JSON value for `url`.

        Args:
            url: Resource URL (relative to the upstream base URL if it has one)
            headers: Request headers; part of the cache identity
            params: Query parameters; part of the cache identity
            response_type: Type to validate the decoded JSON into

        Raises:
            CacheReadError: The cache store lookup failed
            FetchError: The upstream call failed
            SerializationError: The payload could not be decoded
        """
        data, _ = await self.get_with_source(
            url, headers=headers, params=params, response_type=response_type
        )
        return data

    async def get_with_source(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        response_type: Optional[Type[T]] = None,
    ) -> Tuple[T, CacheSource]:
        """Like get(), also reporting where the value came from."""
        request = RequestDescriptor(url=url, headers=headers or {}, params=params or {})
        cache_key = self.cache_key(request)
        self._log.info(f"Request for {url}")

        try:
            cached = await self._store.get(cache_key)
        except Exception as exc:
            self._stats["cache_errors"] += 1
            self._log.error(f"Error reading from cache for {cache_key}: {exc}")
            if isinstance(exc, CacheReadError):
                raise
            raise CacheReadError(str(exc)) from exc

        # An empty string is how some stores report a missing key
        if cached:
            self._log.info(f"CACHE HIT: {cache_key}")
            self._stats["hits"] += 1
            return self._coerce(self._decode(cached), response_type), CacheSource.CACHE

        self._stats["misses"] += 1
        if self._coalescer.is_pending(cache_key):
            self._log.debug(f"Request pending, joining in-flight fetch: {cache_key}")
        else:
            self._log.info(f"CACHE MISS, fetching: {cache_key}")

        data, role = await self._coalescer.get_or_fetch(
            cache_key, lambda: self._fetch_upstream(request)
        )

        # Coalesced callers share one payload object; each gets its own copy
        if role is Role.FOLLOWER:
            self._stats["coalesced"] += 1
            return self._coerce(copy.deepcopy(data), response_type), CacheSource.COALESCED

        if await self._write(cache_key, data) and self._options.refresh_enabled:
            self._scheduler.arm(cache_key, request)

        return self._coerce(copy.deepcopy(data), response_type), CacheSource.UPSTREAM

    async def _fetch_upstream(self, request: RequestDescriptor) -> Any:
        self._stats["upstream_fetches"] += 1
        try:
            return await self._upstream.fetch(request)
        except StaleFetcherError:
            self._stats["fetch_errors"] += 1
            raise
        except Exception as exc:
            self._stats["fetch_errors"] += 1
            raise FetchError(str(exc), url=request.url) from exc

    async def _write(self, cache_key: str, data: Any) -> bool:
        """Store a fetched value. Failures are logged, never raised."""
        try:
            await self._store.set(cache_key, self._encode(data), self._options.cache_ttl_ms)
        except Exception as exc:
            self._stats["write_errors"] += 1
            self._log.warning(f"Could not write {cache_key} to cache: {exc}")
            return False
        return True

    async def _refresh(self, job: RefreshJob) -> None:
        data = await self._fetch_upstream(job.request)
        await self._store.set(job.key, self._encode(data), self._options.cache_ttl_ms)

    @staticmethod
    def _encode(data: Any) -> str:
        try:
            return json.dumps(data)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Value is not JSON serializable: {exc}") from exc

    @staticmethod
    def _decode(raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise SerializationError(f"Cached value is not valid JSON: {exc}") from exc

    @staticmethod
    def _coerce(data: Any, response_type: Optional[Type[T]]) -> Any:
        if response_type is None:
            return data
        try:
            return _adapter(response_type).validate_python(data)
        except ValidationError as exc:
            raise SerializationError(
                f"Payload does not match {getattr(response_type, '__name__', response_type)}"
            ) from exc

    async def close(self) -> None:
        """Stop all background refreshes and release the upstream client."""
        await self._scheduler.close()
        aclose = getattr(self._upstream, "aclose", None)
        if aclose is not None:
            await aclose()

    def get_stats(self) -> Dict[str, Any]:
        """Get fetcher statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0

        return {
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
            "coalescer": self._coalescer.get_stats(),
            "refresh": self._scheduler.get_stats(),
        }
