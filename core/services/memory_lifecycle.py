"""
Periodic upkeep for the memory service.

Three loops run next to the service: the working-memory TTL sweep, the idle
instance sweep and the statistics log. Each loop logs its own errors and
tries again on the next tick.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

import core.config as config
from core.db import DB
from core.models import WorkingMemory
from core.services.memory_metrics import ServiceMetrics
from core.services.memory_registry import MemoryInstanceRegistry

logger = config.logger


def _delete_expired_working_sync(now: datetime) -> int:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        deleted = (
            db.query(WorkingMemory)
            .filter(WorkingMemory.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted or 0
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class MemoryLifecycle:
    def __init__(
        self,
        registry: MemoryInstanceRegistry,
        metrics: ServiceMetrics,
        on_evicted: Optional[Callable[[str], None]] = None,
    ):
        self.registry = registry
        self.metrics = metrics
        self.on_evicted = on_evicted
        self.cleanup_interval = config.WORKING_CLEANUP_INTERVAL_SECONDS
        self.sweep_interval = config.INSTANCE_SWEEP_INTERVAL_SECONDS
        self.stats_interval = config.STATS_INTERVAL_SECONDS
        self.idle_timeout = config.INSTANCE_IDLE_TIMEOUT_SECONDS
        self._tasks: list[asyncio.Task] = []

    async def sweep_expired_working(self, now: Optional[datetime] = None) -> int:
        """Delete every working-memory row whose expiry has passed."""
        deleted = await asyncio.to_thread(_delete_expired_working_sync, now or datetime.utcnow())
        if deleted:
            logger.info("Expired working memories removed", extra={"count": deleted})
        return deleted

    def evict_inactive(self) -> list[str]:
        evicted = self.registry.evict_inactive(self.idle_timeout)
        if self.on_evicted is not None:
            for key in evicted:
                self.on_evicted(key)
        self.metrics.set_instance_count(len(self.registry))
        return evicted

    def log_stats(self) -> dict:
        snapshot = self.metrics.snapshot()
        logger.info("Memory service statistics", extra=snapshot)
        return snapshot

    async def _working_cleanup_loop(self) -> None:
        if self.cleanup_interval <= 0:
            return
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.sweep_expired_working()
            except Exception as exc:
                config.logger.warning(f"Working memory cleanup error: {exc}")

    async def _instance_sweep_loop(self) -> None:
        if self.sweep_interval <= 0:
            return
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.evict_inactive()
            except Exception as exc:
                config.logger.warning(f"Instance sweep error: {exc}")

    async def _stats_loop(self) -> None:
        if self.stats_interval <= 0:
            return
        while True:
            await asyncio.sleep(self.stats_interval)
            try:
                self.log_stats()
            except Exception as exc:
                config.logger.warning(f"Statistics task error: {exc}")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._working_cleanup_loop(), name="memory-working-cleanup"),
            asyncio.create_task(self._instance_sweep_loop(), name="memory-instance-sweep"),
            asyncio.create_task(self._stats_loop(), name="memory-stats"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
