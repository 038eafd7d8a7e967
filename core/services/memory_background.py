"""
Bounded background queue for post-store hooks.

Callers submit coroutine factories; one worker task awaits them in order.
A failing job is logged and never reaches the caller that submitted it.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import core.config as config

logger = config.logger

Job = Callable[[], Awaitable[object]]


class BackgroundTaskQueue:
    def __init__(self, maxsize: Optional[int] = None, name: str = "memory-background"):
        self.maxsize = config.BACKGROUND_QUEUE_SIZE if maxsize is None else maxsize
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.metrics = {"submitted": 0, "completed": 0, "failed": 0, "dropped": 0}

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker = asyncio.create_task(self._run(), name=self.name)

    def submit(self, label: str, job: Job) -> bool:
        """Queue a job; returns False (and logs) when the queue is full or stopped."""
        if self._queue is None or not self.running:
            self.metrics["dropped"] += 1
            logger.warning(f"Background queue not running; dropped job {label}")
            return False
        try:
            self._queue.put_nowait((label, job))
        except asyncio.QueueFull:
            self.metrics["dropped"] += 1
            logger.warning(f"Background queue full; dropped job {label}")
            return False
        self.metrics["submitted"] += 1
        return True

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                label, job = item
                try:
                    await job()
                    self.metrics["completed"] += 1
                except Exception as exc:
                    self.metrics["failed"] += 1
                    logger.warning(f"Background job {label} failed: {exc}")
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued job has run."""
        if self._queue is not None and self.running:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        if self._worker is None:
            return
        if drain and self.running:
            await self._queue.put(None)
            await self._worker
        else:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None

    def stats(self) -> dict:
        return {
            **self.metrics,
            "pending": self._queue.qsize() if self._queue is not None else 0,
            "running": self.running,
        }
