"""
Bounded in-process queue between the webhook endpoint and the ingestion pipeline.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Protocol, Union

from payhook.schemas import NotificationBatch

logger = logging.getLogger(__name__)

Batch = Union[NotificationBatch, Dict[str, Any]]


class BatchPipeline(Protocol):
    def ingest(self, batch: Batch) -> Awaitable[Any]:
        ...


class NotificationDispatcher:
    """Accept batches without blocking the caller and process them on a worker pool."""

    def __init__(
        self,
        pipeline: BatchPipeline,
        *,
        queue_size: int = 100,
        workers: int = 2,
        block_on_full: bool = False,
        enqueue_timeout: float = 1.0,
    ) -> None:
        if queue_size < 1 or workers < 1:
            raise ValueError("queue_size and workers must be at least 1")
        self._pipeline = pipeline
        self._queue: asyncio.Queue[Batch] = asyncio.Queue(maxsize=queue_size)
        self._worker_count = workers
        self._block_on_full = block_on_full
        self._enqueue_timeout = enqueue_timeout
        self._workers: list[asyncio.Task] = []
        self._dropped = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._work(index), name=f"notification-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(
            "Notification dispatcher started with %d worker(s), queue size %d",
            self._worker_count,
            self._queue.maxsize,
        )

    async def stop(self) -> None:
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if self._queue.qsize():
            logger.warning(
                "Dispatcher stopped with %d unprocessed batch(es)", self._queue.qsize()
            )

    async def submit(self, batch: Batch) -> bool:
        """Queue a batch; returns False when it had to be dropped."""
        try:
            if self._block_on_full:
                await asyncio.wait_for(self._queue.put(batch), self._enqueue_timeout)
            else:
                self._queue.put_nowait(batch)
        except (asyncio.QueueFull, asyncio.TimeoutError):
            self._dropped += 1
            logger.error(
                "Notification queue full (%d pending), dropping batch",
                self._queue.qsize(),
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued batch has been processed."""
        await self._queue.join()

    async def _work(self, index: int) -> None:
        while True:
            batch = await self._queue.get()
            try:
                await self._pipeline.ingest(batch)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker %d failed to process a notification batch", index)
            finally:
                self._queue.task_done()


__all__ = ["BatchPipeline", "NotificationDispatcher"]
