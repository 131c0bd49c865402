"""
In-process job queue.
What it does:
- Runs background jobs as asyncio tasks
- Bounds concurrency per category ("ai", "sync")
- Drops a duplicate enqueue while a job with the same unique key is pending or running
- Logs job failures; nothing is retried

And, the main purpose:
Keep AI-bound work off the request path without flooding the collaborators.
"""


import asyncio
from typing import Awaitable, Callable

from aide.core.config import settings
from aide.core.logging import get_logger

log = get_logger("jobs.queue")

JobFactory = Callable[[], Awaitable[object]]


class JobQueue:
    def __init__(self, limits: dict[str, int] | None = None):
        limits = limits or {"ai": settings.AI_CONCURRENCY, "sync": settings.SYNC_CONCURRENCY}
        self._limits = dict(limits)
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._keys: set[str] = set()
        self._inflight: set[asyncio.Task] = set()
        self.failures: list[tuple[str, BaseException]] = []

    def _semaphore(self, category: str) -> asyncio.Semaphore:
        sem = self._semaphores.get(category)
        if sem is None:
            if category not in self._limits:
                raise ValueError(f"Unknown job category: {category}")
            sem = asyncio.Semaphore(max(1, self._limits[category]))
            self._semaphores[category] = sem
        return sem

    def is_pending(self, unique_key: str) -> bool:
        return unique_key in self._keys

    @property
    def pending(self) -> int:
        return len(self._inflight)

    def enqueue(
        self,
        name: str,
        job_factory: JobFactory,
        *,
        category: str = "ai",
        unique_key: str | None = None,
    ) -> bool:
        """Schedule ``job_factory()``; returns False when deduplicated."""
        sem = self._semaphore(category)
        if unique_key is not None:
            if unique_key in self._keys:
                log.info(f"Job {name} skipped: {unique_key} already queued")
                return False
            self._keys.add(unique_key)

        async def _run():
            try:
                async with sem:
                    await job_factory()
                log.info(f"Job {name} finished")
            except Exception as e:
                log.error(f"Job {name} failed: {e}", exc_info=True)
                self.failures.append((name, e))
            finally:
                if unique_key is not None:
                    self._keys.discard(unique_key)

        job = asyncio.create_task(_run(), name=name)
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)
        return True

    async def drain(self) -> None:
        """Wait until every scheduled job, including ones enqueued meanwhile, is done."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
