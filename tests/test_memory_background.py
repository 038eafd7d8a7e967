import asyncio

from core.services.memory_background import BackgroundTaskQueue


def test_jobs_run_in_order_and_failures_stay_contained():
    seen = []

    async def record(value):
        seen.append(value)

    async def explode():
        raise RuntimeError("hook failed")

    async def run():
        queue = BackgroundTaskQueue(maxsize=10)
        queue.start()
        assert queue.submit("first", lambda: record(1))
        assert queue.submit("broken", explode)
        assert queue.submit("second", lambda: record(2))
        await queue.join()
        stats = queue.stats()
        await queue.stop()
        return stats, queue.running

    stats, running = asyncio.run(run())
    assert seen == [1, 2]
    assert stats["completed"] == 2
    assert stats["failed"] == 1
    assert stats["pending"] == 0
    assert running is False


def test_submit_drops_when_full_or_stopped():
    gate = asyncio.Event()

    async def blocked():
        await gate.wait()

    async def run():
        queue = BackgroundTaskQueue(maxsize=1)
        dropped_before_start = queue.submit("early", blocked)
        queue.start()
        queue.submit("running", blocked)
        await asyncio.sleep(0)
        queue.submit("queued", blocked)
        overflow = queue.submit("overflow", blocked)
        gate.set()
        await queue.stop()
        return dropped_before_start, overflow, queue.stats()

    dropped_before_start, overflow, stats = asyncio.run(run())
    assert dropped_before_start is False
    assert overflow is False
    assert stats["dropped"] == 2
    assert stats["submitted"] == 2


def test_stop_without_drain_cancels_pending_work():
    started = []

    async def slow():
        started.append(True)
        await asyncio.sleep(10)

    async def run():
        queue = BackgroundTaskQueue(maxsize=5)
        queue.start()
        queue.submit("slow", slow)
        await asyncio.sleep(0.01)
        await queue.stop(drain=False)
        return queue.running

    assert asyncio.run(run()) is False
    assert started == [True]
