"""Per-blog guard against sync triggers fired in quick succession."""

import asyncio
import time
from collections.abc import Callable

from notepress.errors import NotepressError


class SyncTooSoonError(NotepressError):
    """A sync for this blog was triggered too recently."""

    def __init__(self, blog_id: str, retry_after_seconds: float):
        super().__init__(
            f"Sync for blog {blog_id} was triggered too recently; "
            f"retry in {retry_after_seconds:.1f}s"
        )
        self.blog_id = blog_id
        self.retry_after_seconds = retry_after_seconds


class SyncIntervalLimiter:
    """
    Rejects a sync trigger when the previous trigger for the same blog was
    less than `min_interval` seconds ago. In-process only.

    Usage:
        limiter = SyncIntervalLimiter(5.0)
        await limiter.acquire(blog_id)  # raises SyncTooSoonError
    """

    def __init__(
        self,
        min_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._last_trigger: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, blog_id: str) -> None:
        async with self._lock:
            now = self._clock()
            last = self._last_trigger.get(blog_id)
            if last is not None and now - last < self.min_interval:
                raise SyncTooSoonError(blog_id, self.min_interval - (now - last))
            self._last_trigger[blog_id] = now

    def reset(self, blog_id: str | None = None) -> None:
        if blog_id is None:
            self._last_trigger.clear()
        else:
            self._last_trigger.pop(blog_id, None)
