import asyncio
from datetime import datetime, timedelta

from conftest import FakeStoreFactory
from core.models import WorkingMemory
from core.services.memory_lifecycle import MemoryLifecycle
from core.services.memory_metrics import ServiceMetrics
from core.services.memory_registry import MemoryInstanceRegistry
from core.services.working_memory import WorkingMemoryStore


def test_ttl_sweep_removes_expired_working_record(memory_db):
    async def run():
        store = WorkingMemoryStore(5, "u1")
        record = await store.store("short lived context", {"agent_id": 5, "user_id": "u1"}, {})
        db = memory_db()
        try:
            row = db.query(WorkingMemory).filter(WorkingMemory.id == record["id"]).one()
            row.expires_at = datetime.utcnow() - timedelta(milliseconds=1)
            db.commit()
        finally:
            db.close()
        fresh = await store.store("still current", {"agent_id": 5, "user_id": "u1"}, {})

        lifecycle = MemoryLifecycle(MemoryInstanceRegistry(), ServiceMetrics())
        deleted = await lifecycle.sweep_expired_working()
        return deleted, await store.get(record["id"]), await store.get(fresh["id"])

    deleted, expired, fresh = asyncio.run(run())
    assert deleted == 1
    assert expired is None
    assert fresh is not None


def test_sweep_covers_every_agent_and_user(memory_db):
    async def run():
        past = datetime.utcnow() - timedelta(hours=2)
        for agent_id, user_id in ((1, "a"), (2, "b")):
            store = WorkingMemoryStore(agent_id, user_id, ttl_seconds=1)
            await store.store("note", {"agent_id": agent_id, "user_id": user_id}, {})
        lifecycle = MemoryLifecycle(MemoryInstanceRegistry(), ServiceMetrics())
        return await lifecycle.sweep_expired_working(now=past + timedelta(hours=3))

    assert asyncio.run(run()) == 2


def test_expired_rows_are_hidden_before_the_sweep(memory_db):
    async def run():
        store = WorkingMemoryStore(5, "u1")
        record = await store.store("soon gone", {"agent_id": 5, "user_id": "u1"}, {})
        db = memory_db()
        try:
            row = db.query(WorkingMemory).filter(WorkingMemory.id == record["id"]).one()
            row.expires_at = datetime.utcnow() - timedelta(seconds=1)
            db.commit()
        finally:
            db.close()
        return await store.retrieve(None, {"agent_id": 5, "user_id": "u1"})

    assert asyncio.run(run()) == []


def test_evict_inactive_updates_gauge_and_notifies():
    clock = {"now": 0.0}
    metrics = ServiceMetrics()
    forgotten = []

    async def run():
        registry = MemoryInstanceRegistry(
            store_factory=FakeStoreFactory(),
            metrics=metrics,
            clock=lambda: clock["now"],
        )
        await registry.get_or_create(1, "u")
        lifecycle = MemoryLifecycle(registry, metrics, on_evicted=forgotten.append)
        clock["now"] = lifecycle.idle_timeout + 1
        return lifecycle.evict_inactive()

    evicted = asyncio.run(run())
    assert evicted == ["1:u"]
    assert forgotten == ["1:u"]
    assert metrics.memory_instance_count == 0


def test_log_stats_returns_snapshot():
    metrics = ServiceMetrics(alpha=0.1)
    metrics.record_request(100)
    metrics.record_request(100)
    snapshot = MemoryLifecycle(MemoryInstanceRegistry(), metrics).log_stats()
    assert snapshot["total_queries"] == 2
    assert snapshot["average_response_time"] == 19.0
    assert snapshot["last_activity"] is not None


def test_loop_errors_are_logged_and_retried():
    calls = []

    class BrokenLifecycle(MemoryLifecycle):
        async def sweep_expired_working(self, now=None):
            calls.append(now)
            raise RuntimeError("database unavailable")

    async def run():
        lifecycle = BrokenLifecycle(MemoryInstanceRegistry(), ServiceMetrics())
        lifecycle.cleanup_interval = 0.01
        lifecycle.sweep_interval = 0
        lifecycle.stats_interval = 0
        lifecycle.start()
        await asyncio.sleep(0.1)
        running = lifecycle.running
        await lifecycle.stop()
        return running, lifecycle.running

    running, after = asyncio.run(run())
    assert len(calls) >= 2
    assert running is True
    assert after is False
