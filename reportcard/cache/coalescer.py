"""
Request coalescing to prevent duplicate upstream calls.

When multiple concurrent callers ask for the same resource id, only one
upstream call is made and all callers share the result.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger("cache.coalescer")

T = TypeVar("T")


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one upstream call.

    Pattern:
    - First request for a key starts the fetch as a task and registers it
    - Later requests for the same key await that task
    - The task removes itself from the in-flight map when it settles,
      success or failure, so the next request starts a fresh fetch
    - No locks: check-and-register has no await in between, and the event
      loop runs nothing else in that gap

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch(
            "ratings:venue-1",
            lambda: store.list_reviews("venue-1"),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._stats = {
            "started": 0,
            "coalesced": 0,
            "failed": 0,
        }

    def get_pending(self, key: str) -> Optional["asyncio.Task[Any]"]:
        """The in-flight task for key, or None once it has settled."""
        task = self._in_flight.get(key)
        if task is None:
            return None
        if task.done():
            # Settled but its cleanup callback has not run yet.
            self._in_flight.pop(key, None)
            return None
        return task

    def register(self, key: str, awaitable: Awaitable[T]) -> "asyncio.Task[T]":
        """
        Register an in-flight fetch for key.

        Returns:
            The task wrapping the awaitable
        """
        task = asyncio.ensure_future(awaitable)
        self._in_flight[key] = task
        self._stats["started"] += 1
        task.add_done_callback(lambda t: self._settle(key, t))
        logger.debug(f"Initiating fetch for {key}")
        return task

    def _settle(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats["failed"] += 1
            logger.warning(f"Fetch failed for {key}: {error}")

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Either join an existing in-flight request or initiate a new one.

        Args:
            key: Unique key for this request
            fetch_fn: Coroutine factory called only if we need to fetch

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            Exception: Any error from fetch_fn is propagated to every caller
        """
        pending = self.get_pending(key)
        if pending is not None:
            self._stats["coalesced"] += 1
            logger.debug(f"Coalescing request for {key}")
            # Shielded: a cancelled caller must not cancel everyone's fetch.
            return await asyncio.shield(pending)

        task = self.register(key, fetch_fn())
        return await asyncio.shield(task)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            **self._stats,
        }
