"""
Request coalescing to prevent duplicate upstream calls.

When multiple concurrent requests ask for the same data, only one
upstream call is made and all requesters share the result.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple

from .core import PendingEntry, Role
from .errors import FetchError

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one upstream call.

    Pattern:
    - First request for a key becomes the initiator and performs the fetch
    - Subsequent requests for the same key join as followers
    - When the fetch completes, every waiter gets the same result or error,
      in the order they joined

    `join` never suspends, so checking for and creating a pending entry is
    atomic on a single event loop. Code running on several threads must
    guard the coalescer with its own lock.

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch(
            cache_key="stale-fetcher:v1:...",
            fetch_fn=lambda: upstream.fetch(request),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, PendingEntry] = {}

    def join(self, cache_key: str) -> Tuple[Role, asyncio.Future]:
        """
        Register a waiter for `cache_key`.

        Returns:
            (role, waiter) - INITIATOR when no fetch was in flight for the key,
            FOLLOWER otherwise. The waiter future receives the shared result.
        """
        waiter = asyncio.get_running_loop().create_future()
        pending = self._in_flight.get(cache_key)
        if pending is None:
            self._in_flight[cache_key] = PendingEntry(key=cache_key, waiters=[waiter])
            logger.debug(f"Initiating fetch for {cache_key}")
            return Role.INITIATOR, waiter

        pending.waiters.append(waiter)
        logger.debug(
            f"Coalescing request for {cache_key} "
            f"(waiters: {pending.waiter_count})"
        )
        return Role.FOLLOWER, waiter

    def resolve_all(self, cache_key: str, value: Any) -> int:
        """
        Deliver `value` to every waiter and drop the pending entry.

        All waiters receive the same object; copying is up to the caller.

        Returns:
            Number of waiters resolved
        """
        pending = self._in_flight.pop(cache_key, None)
        if pending is None:
            return 0
        resolved = 0
        for waiter in pending.waiters:
            # Skip waiters whose caller was cancelled
            if not waiter.done():
                waiter.set_result(value)
                resolved += 1
        logger.debug(f"Responded to {resolved} waiters for {cache_key}")
        return resolved

    def reject_all(self, cache_key: str, error: BaseException) -> int:
        """
        Propagate `error` to every waiter and drop the pending entry.

        Returns:
            Number of waiters rejected
        """
        pending = self._in_flight.pop(cache_key, None)
        if pending is None:
            return 0
        rejected = 0
        for waiter in pending.waiters:
            if not waiter.done():
                waiter.set_exception(error)
                rejected += 1
        logger.warning(f"Fetch failed for {cache_key}: {error}")
        return rejected

    async def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, Role]:
        """
        Either join an existing in-flight request or initiate a new one.

        Args:
            cache_key: Unique key for this request
            fetch_fn: Coroutine function to call if we need to fetch

        Returns:
            (result, role) - the result is shared among all concurrent callers

        Raises:
            Exception: Any error from fetch_fn, raised in every waiter
        """
        role, waiter = self.join(cache_key)

        if role is Role.INITIATOR:
            try:
                result = await fetch_fn()
            except asyncio.CancelledError:
                waiter.cancel()
                self.reject_all(cache_key, FetchError(f"Fetch for {cache_key} was cancelled"))
                raise
            except Exception as e:
                self.reject_all(cache_key, e)
            else:
                self.resolve_all(cache_key, result)

        return await waiter, role

    def is_pending(self, cache_key: str) -> bool:
        return cache_key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            "waiters": sum(p.waiter_count for p in self._in_flight.values()),
        }
