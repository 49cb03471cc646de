"""Small asyncio scheduler for the service's periodic background jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class TaskScheduler:
    """Own named background tasks for the lifetime of the application."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def job_names(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def run_once(self, name: str, job: Job, *, delay: float = 0.0) -> None:
        """Run ``job`` a single time after ``delay`` seconds."""
        self._start(name, self._run_once(name, job, delay))

    def run_periodic(
        self,
        name: str,
        job: Job,
        *,
        interval: float,
        first_delay: float | None = None,
    ) -> None:
        """Run ``job`` every ``interval`` seconds; the first run waits ``first_delay``."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        delay = interval if first_delay is None else first_delay
        self._start(name, self._run_periodic(name, job, interval, delay))

    async def shutdown(self) -> None:
        """Cancel every job and wait for the tasks to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped %d job(s)", len(tasks))

    def _start(self, name: str, coro: Awaitable[None]) -> None:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            existing.cancel()
        self._tasks[name] = asyncio.create_task(coro, name=name)
        logger.debug("Scheduled job %s", name)

    async def _run_once(self, name: str, job: Job, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        await self._invoke(name, job)

    async def _run_periodic(
        self, name: str, job: Job, interval: float, first_delay: float
    ) -> None:
        if first_delay > 0:
            await asyncio.sleep(first_delay)
        while True:
            await self._invoke(name, job)
            await asyncio.sleep(interval)

    @staticmethod
    async def _invoke(name: str, job: Job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled job %s failed; it stays scheduled", name)


__all__ = ["Job", "TaskScheduler"]
