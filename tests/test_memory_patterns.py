import asyncio

import pytest

from core.services.memory_isolation import MemoryIsolation
from core.services.memory_patterns import PatternDiscovery, combination_confidence, domain_confidence

STORED = {"results": {"episodic": {"stored": True}, "semantic": {"stored": True}}}
CONTEXT = {"agent_id": 3, "user_id": "u", "domain": "coding"}


def test_confidence_curves():
    assert combination_confidence(0.2) == 0.4
    assert combination_confidence(0.9) == 1.0
    assert domain_confidence(0.4) == 0.0
    assert domain_confidence(0.75) == 0.75


def test_patterns_wait_for_min_support(memory_db):
    discovery = PatternDiscovery(min_support=2)
    handler = discovery.create_instance_handler(3, "u", "3:u")

    async def run():
        first = await handler.analyze_new_memory("note", CONTEXT, STORED)
        second = await handler.analyze_new_memory("note", CONTEXT, STORED)
        listed = await discovery.get_discovered_patterns("3:u")
        return first, second, listed

    first, second, listed = asyncio.run(run())
    assert first == []
    assert {pattern["pattern_type"] for pattern in second} == {"memory_combination", "domain_preference"}
    combination = next(p for p in listed if p["pattern_type"] == "memory_combination")
    assert combination["pattern_data"]["combination"] == "episodic+semantic"
    assert combination["memory_types"] == ["episodic", "semantic"]
    assert discovery.get_stats()["patterns_discovered"] == 2


def test_repeated_discovery_upserts_one_row(memory_db):
    discovery = PatternDiscovery(min_support=1)
    handler = discovery.create_instance_handler(3, "u", "3:u")

    async def run():
        for _ in range(3):
            await handler.analyze_new_memory("note", CONTEXT, STORED)
        return await discovery.get_discovered_patterns("3:u", {"type": "domain_preference"})

    listed = asyncio.run(run())
    assert len(listed) == 1
    assert listed[0]["occurrences"] == 3
    assert listed[0]["pattern_data"]["domain_distribution"] == {"coding": 3}


def test_single_type_store_never_forms_combination(memory_db):
    discovery = PatternDiscovery(min_support=1)
    handler = discovery.create_instance_handler(3, "u", "3:u")
    only_episodic = {"results": {"episodic": {"stored": True}, "semantic": {"success": False}}}

    found = asyncio.run(handler.analyze_new_memory("note", CONTEXT, only_episodic))
    assert [pattern["pattern_type"] for pattern in found] == ["domain_preference"]


def test_enhance_retrieval_boosts_matching_candidates(memory_db):
    discovery = PatternDiscovery(min_support=1)
    handler = discovery.create_instance_handler(3, "u", "3:u")

    async def run():
        await handler.analyze_new_memory("note", CONTEXT, STORED)
        return await handler.enhance_retrieval(
            {
                "semantic": [{"id": "s", "relevance_score": 0.5, "domain": "coding"}],
                "working": [{"id": "w", "relevance_score": 0.4, "domain": None}],
            },
            "note",
            CONTEXT,
        )

    enhanced = asyncio.run(run())
    assert enhanced["semantic"][0]["relevance_score"] == pytest.approx(0.55)
    assert enhanced["working"][0]["relevance_score"] == 0.4


def test_enhance_retrieval_without_patterns_is_passthrough(memory_db):
    discovery = PatternDiscovery()
    handler = discovery.create_instance_handler(3, "u", "3:u")
    memories = {"episodic": [{"id": "e", "relevance_score": 0.3}]}

    assert asyncio.run(handler.enhance_retrieval(memories, None, CONTEXT)) == memories


def test_release_handler_forgets_instance():
    discovery = PatternDiscovery()
    first = discovery.create_instance_handler(1, "u", "1:u")
    assert discovery.create_instance_handler(1, "u", "1:u") is first
    discovery.release_handler("1:u")
    assert discovery.get_stats()["active_instances"] == 0


def test_isolation_drops_foreign_candidates():
    isolation = MemoryIsolation()
    context = isolation.create_context(5, "u1")
    kept = isolation.filter_results(
        context,
        "semantic",
        [
            {"id": "mine", "agent_id": "5", "user_id": "u1"},
            {"id": "theirs", "agent_id": "5", "user_id": "u2"},
            {"id": "derived"},
        ],
    )
    assert [item["id"] for item in kept] == ["mine", "derived"]
    assert context.violations == 1
    assert isolation.get_violations()[0]["candidate_id"] == "theirs"
    assert isolation.get_stats()["cross_contamination_prevented"] == 1
