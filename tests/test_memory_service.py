import asyncio

from conftest import FakeStoreFactory, FailingCaptionProvider
from core.services.memory_evolution import MemoryEvolution
from core.services.memory_service import AgentMemoryService


def _service(**kwargs):
    kwargs.setdefault("caption_provider", FailingCaptionProvider())
    kwargs.setdefault("memory_evolution", MemoryEvolution(enabled=False))
    return AgentMemoryService(**kwargs)


def test_store_knowledge_routes_to_semantic(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            return await service.store_memory({"text": "fact"}, {"agentId": 5, "userId": "u1"}, {"isKnowledge": True})
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["success"] is True
    assert "semantic" in result["storage_targets"]
    assert result["results"]["semantic"]["stored"] is True
    assert result["response_time_ms"] >= 0


def test_store_without_matching_rule_goes_to_episodic(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            return await service.store_memory({}, {"agentId": 5, "userId": "u1", "sessionId": "s1"}, {})
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["success"] is True
    assert result["storage_targets"] == ["episodic"]
    assert result["results"]["episodic"]["session_id"] == "s1"


def test_retrieve_from_empty_instance(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            return await service.retrieve_memory("anything", {"agentId": 5, "userId": "u1"})
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["success"] is True
    assert result["memories"] == []
    assert result["breakdown"] == {"working": 0, "episodic": 0, "semantic": 0, "procedural": 0}


def test_store_then_retrieve_ranks_and_limits(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            context = {"agent_id": 5, "user_id": "u1", "session_id": "s1"}
            for index in range(4):
                stored = await service.store_memory(
                    f"database index tuning note {index}",
                    context,
                    {"isKnowledge": True, "isImmediate": True},
                )
                assert stored["success"] is True
            limited = await service.retrieve_memory("database", context, {"limit": 3})
            full = await service.retrieve_memory("database", context, {"limit": 50})
            return limited, full
        finally:
            await service.shutdown()

    limited, full = asyncio.run(run())
    assert limited["success"] is True
    assert len(limited["memories"]) == 3
    scores = [memory["final_score"] for memory in limited["memories"]]
    assert scores == sorted(scores, reverse=True)
    assert full["breakdown"]["working"] == 4
    assert full["breakdown"]["episodic"] == 4
    assert full["breakdown"]["semantic"] == 4
    assert {memory["memory_type"] for memory in full["memories"]} == {"working", "episodic", "semantic"}


def test_instances_are_isolated_per_user(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            await service.store_memory("alpha secret", {"agent_id": 1, "user_id": "a"}, {"isKnowledge": True})
            return await service.retrieve_memory("alpha", {"agent_id": 1, "user_id": "b"})
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["memories"] == []


def test_write_failure_returns_structured_error_without_rollback():
    factory = FakeStoreFactory(fail_store=("semantic",))

    async def run():
        service = _service(store_factory=factory)
        await service.start()
        try:
            result = await service.store_memory(
                {"text": "x"},
                {"agent_id": 5, "user_id": "u1", "session_id": "s1"},
                {"isKnowledge": True},
            )
            return result, factory.created[0]
        finally:
            await service.shutdown()

    result, stores = asyncio.run(run())
    assert result["success"] is False
    assert "semantic write failed" in result["error"]
    assert "response_time_ms" in result
    assert len(stores["episodic"].stored) == 1


def test_read_failure_returns_empty_memories():
    factory = FakeStoreFactory(fail_retrieve=("procedural",))

    async def run():
        service = _service(store_factory=factory)
        await service.start()
        try:
            return await service.retrieve_memory("q", {"agent_id": 5, "user_id": "u1"})
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["success"] is False
    assert result["memories"] == []
    assert "procedural read failed" in result["error"]


def test_initialization_failure_surfaces_as_unsuccessful_store():
    factory = FakeStoreFactory(fail_init=("working",))

    async def run():
        service = _service(store_factory=factory)
        await service.start()
        try:
            result = await service.store_memory("x", {"agent_id": 5, "user_id": "u1"}, {})
            return result, len(service.registry)
        finally:
            await service.shutdown()

    result, registered = asyncio.run(run())
    assert result["success"] is False
    assert registered == 0


def test_missing_user_id_is_rejected():
    async def run():
        service = _service(store_factory=FakeStoreFactory())
        return await service.store_memory("x", {"agent_id": 5}, {})

    result = asyncio.run(run())
    assert result["success"] is False
    assert "user_id" in result["error"]


def test_background_hooks_discover_patterns(memory_db):
    async def run():
        service = _service()
        service.pattern_discovery.min_support = 2
        await service.start()
        try:
            context = {"agent_id": 3, "user_id": "u", "session_id": "s", "domain": "coding"}
            for _ in range(3):
                await service.store_memory("note", context, {"isKnowledge": True})
            await service.background.join()
            patterns = await service.get_discovered_patterns(3, "u")
            return patterns, service.get_stats()
        finally:
            await service.shutdown()

    patterns, stats = asyncio.run(run())
    types = {pattern["pattern_type"] for pattern in patterns}
    assert types == {"memory_combination", "domain_preference"}
    assert stats["pattern_discoveries"] >= 2
    assert stats["total_queries"] == 3


def test_clear_memories_deletes_rows_and_drops_instance(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            context = {"agent_id": 2, "user_id": "u", "session_id": "s"}
            await service.store_memory("remember this", context, {"isKnowledge": True, "isImmediate": True})
            assert len(service.registry) == 1
            deleted = await service.clear_memories(2, "u")
            after = await service.retrieve_memory("remember", context)
            system = await service.get_system_stats()
            return deleted, after, system
        finally:
            await service.shutdown()

    deleted, after, system = asyncio.run(run())
    assert deleted["working"] == 1
    assert deleted["episodic"] == 1
    assert deleted["semantic"] == 1
    assert after["memories"] == []
    assert system["database"]["total_semantic_memories"] == 0


def test_system_stats_and_health(memory_db):
    async def run():
        service = _service()
        before = await service.health_check()
        await service.start()
        try:
            await service.store_memory("hello", {"agent_id": 1, "user_id": "u"}, {})
            return before, await service.health_check(), await service.get_system_stats()
        finally:
            await service.shutdown()

    before, health, system = asyncio.run(run())
    assert before == {"status": "not_initialized"}
    assert health["status"] == "healthy"
    assert health["components"]["database"] is True
    assert system["database"]["total_episodic_memories"] == 1
    assert system["service"]["memory_types"] == ["working", "episodic", "semantic", "procedural"]
    assert system["memory_isolation"]["initialized"] is True


def test_health_check_reports_unhealthy_without_database():
    async def run():
        service = _service(store_factory=FakeStoreFactory())
        await service.initialize()
        return await service.health_check()

    health = asyncio.run(run())
    assert health["status"] == "unhealthy"
    assert health["components"]["database"] is False
    assert health["error"]


def test_record_behavior_execution_updates_success_rate(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            stored = await service.store_memory(
                "retry the request with backoff",
                {"agent_id": 4, "user_id": "u"},
                {"content_type": "behavior", "procedure_name": "retry-backoff"},
            )
            behavior_id = stored["results"]["procedural"]["id"]
            return stored, await service.record_behavior_execution(4, "u", behavior_id, True)
        finally:
            await service.shutdown()

    stored, behavior = asyncio.run(run())
    assert behavior["usage_count"] == 2
    assert behavior["success_rate"] > stored["results"]["procedural"]["success_rate"]


def test_post_store_hooks_run_without_explicit_start(memory_db):
    async def run():
        service = _service(store_factory=FakeStoreFactory())
        try:
            for _ in range(3):
                result = await service.store_memory("note", {"agent_id": 3, "user_id": "u"}, {})
                assert result["success"] is True
            await service.background.join()
            return service.background.stats()
        finally:
            await service.shutdown()

    stats = asyncio.run(run())
    assert stats["dropped"] == 0
    assert stats["completed"] == 6


def test_non_numeric_rating_does_not_fail_the_store(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            return await service.store_memory(
                "thanks",
                {"agent_id": 5, "user_id": "u1", "session_id": "s", "sessionDuration": "long"},
                {"userRating": "high"},
            )
        finally:
            await service.shutdown()

    result = asyncio.run(run())
    assert result["success"] is True
    assert result["results"]["episodic"]["user_satisfaction"] is None


def test_visual_memory_failure_reports_elapsed_time():
    async def run():
        service = _service(store_factory=FakeStoreFactory())
        return await service.store_visual_memory_with_llm(1, "u", "procedural", {"query": "x"})

    result = asyncio.run(run())
    assert result["success"] is False
    assert result["response_time_ms"] >= 0


def test_system_stats_expose_strategies_and_violations(memory_db):
    async def run():
        service = _service()
        await service.start()
        try:
            return await service.get_system_stats()
        finally:
            await service.shutdown()

    system = asyncio.run(run())
    strategies = system["memory_evolution"]["current_strategies"]
    assert set(strategies) == {"memory_allocation", "retrieval_weighting", "pattern_recognition", "memory_consolidation"}
    assert strategies["memory_allocation"]["current"]["working"] == 0.3
    assert system["memory_isolation"]["recent_violations"] == []
