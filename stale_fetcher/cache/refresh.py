"""
Background refresh scheduling with backoff (stale-while-revalidate).

Each armed key owns one asyncio task that sleeps until the refresh is due,
calls the refresh function, and re-arms itself:

    ARMED --due--> REFRESHING --ok--> ARMED (interval, backoff reset)
                              --err-> ARMED (current backoff, backoff grown)
                              --err past ceiling--> ABANDONED (job dropped)
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .backoff import BackoffPolicy
from .core import RefreshJob, RefreshState, RequestDescriptor

logger = logging.getLogger("cache.refresh")

RefreshFn = Callable[[RefreshJob], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[Any]]


class RefreshScheduler:
    """
    Tracks per-key refresh jobs and drives them on the event loop.

    Refresh failures never escape the scheduler; they are logged and
    retried until the backoff ceiling is passed.
    """

    def __init__(
        self,
        refresh_fn: RefreshFn,
        interval_ms: int,
        policy: Optional[BackoffPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            refresh_fn: Re-fetches the job's request and rewrites the cache
            interval_ms: Delay between a successful fetch and the next refresh
            policy: Backoff applied after failed refreshes
            sleep: Awaitable sleep taking seconds, replaceable in tests
            log: Logger to report through
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._refresh_fn = refresh_fn
        self._interval_ms = interval_ms
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._log = log or logger
        self._jobs: Dict[str, RefreshJob] = {}
        self._stats = {
            "refreshes": 0,
            "refresh_failures": 0,
            "abandoned": 0,
        }

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def arm(self, key: str, request: RequestDescriptor) -> RefreshJob:
        """
        Schedule a refresh of `key` one interval from now with base backoff.

        An existing armed job for the key is replaced. A job that is
        refreshing right now keeps running but has its backoff reset.
        """
        existing = self._jobs.get(key)
        if existing is not None and existing.state is RefreshState.REFRESHING:
            existing.backoff_ms = self._policy.base_ms
            return existing
        if existing is not None:
            self._cancel_task(existing)

        job = RefreshJob(
            key=key,
            request=request,
            backoff_ms=self._policy.base_ms,
            next_due=time.monotonic() + self._interval_ms / 1000,
        )
        self._jobs[key] = job
        job.task = asyncio.get_running_loop().create_task(self._run(job))
        self._log.debug(f"Refresh armed for {key} in {self._interval_ms}ms")
        return job

    async def _run(self, job: RefreshJob) -> None:
        delay_ms = self._interval_ms
        while True:
            await self._sleep(delay_ms / 1000)
            delay_ms = await self._attempt(job)
            if delay_ms is None:
                return

    async def _attempt(self, job: RefreshJob) -> Optional[int]:
        """
        Run one refresh and move the job to its next state.

        Returns:
            Delay until the next attempt, or None once abandoned
        """
        job.state = RefreshState.REFRESHING
        job.attempts += 1
        self._log.info(f"Refreshing request cache for {job.request.url}")
        try:
            await self._refresh_fn(job)
        except Exception as exc:
            job.failures += 1
            job.last_error = exc
            self._stats["refresh_failures"] += 1

            grown = self._policy.grow(job.backoff_ms)
            if self._policy.exceeds_ceiling(grown):
                job.state = RefreshState.ABANDONED
                self._stats["abandoned"] += 1
                self._drop(job)
                self._log.error(
                    f"Refresh abandoned for {job.request.url} after "
                    f"{job.failures} failures: {exc}"
                )
                return None

            delay_ms = job.backoff_ms
            job.backoff_ms = grown
            job.next_due = time.monotonic() + delay_ms / 1000
            job.state = RefreshState.ARMED
            self._log.warning(
                f"Refresh failed for {job.request.url}, retrying in {delay_ms}ms: {exc}"
            )
            return delay_ms

        self._stats["refreshes"] += 1
        job.failures = 0
        job.last_error = None
        job.backoff_ms = self._policy.base_ms
        job.next_due = time.monotonic() + self._interval_ms / 1000
        job.state = RefreshState.ARMED
        return self._interval_ms

    def _drop(self, job: RefreshJob) -> None:
        # Only remove the table entry if it still belongs to this job
        if self._jobs.get(job.key) is job:
            del self._jobs[job.key]

    def _cancel_task(self, job: RefreshJob) -> None:
        if job.task is not None and not job.task.done():
            job.task.cancel()

    def get_job(self, key: str) -> Optional[RefreshJob]:
        return self._jobs.get(key)

    def cancel(self, key: str) -> bool:
        """Stop refreshing `key`. Returns True if a job was removed."""
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        self._cancel_task(job)
        return True

    async def close(self) -> None:
        """Cancel every job and wait for the tasks to finish."""
        jobs = list(self._jobs.values())
        self._jobs.clear()
        tasks = [job.task for job in jobs if job.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def armed_count(self) -> int:
        return len(self._jobs)

    def get_stats(self) -> Dict[str, Any]:
        return {"armed": len(self._jobs), **self._stats}
