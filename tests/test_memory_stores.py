import asyncio

import pytest

from core.context import MemoryContext
from core.errors import ValidationIssue
from core.services.episodic_memory import (
    EpisodicMemoryStore,
    classify_episode,
    extract_user_satisfaction,
    sanitize_context,
)
from core.services.procedural_memory import ProceduralMemoryStore
from core.services.semantic_memory import SemanticMemoryStore, categorize_knowledge
from core.services.working_memory import WorkingMemoryStore, calculate_relevance

CTX = {"agent_id": 5, "user_id": "u1"}


def test_working_relevance_and_attention_sink(memory_db):
    async def run():
        store = WorkingMemoryStore(5, "u1")
        plain = await store.store("just a note", CTX, {})
        urgent = await store.store("help, how to fix this error?", CTX, {})
        flagged = await store.store("pinned", CTX, {"isAttentionSink": True})
        return plain, urgent, flagged, await store.retrieve(None, CTX)

    plain, urgent, flagged, results = asyncio.run(run())
    assert plain["attention_sink"] is False
    assert urgent["relevance_score"] == pytest.approx(0.8)
    assert urgent["attention_sink"] is True
    assert flagged["attention_sink"] is True
    assert [item["id"] for item in results][-1] == plain["id"]


def test_working_window_trims_lowest_relevance(memory_db, monkeypatch):
    async def run():
        store = WorkingMemoryStore(5, "u1")
        store.max_entries = 2
        low = await store.store("a", CTX, {})
        await store.store("is this the second entry?", CTX, {})
        await store.store("is this the third entry?", CTX, {})
        return low, await store.retrieve(None, CTX), store.stats()

    low, results, stats = asyncio.run(run())
    assert len(results) == 2
    assert low["id"] not in {item["id"] for item in results}
    assert stats["trimmed"] == 1


def test_calculate_relevance_signals():
    ctx = MemoryContext.from_value({"hasScreenshot": True, "sessionStart": True})
    assert calculate_relevance("x", ctx, {}) == 1.0
    assert calculate_relevance("x", MemoryContext(), {"userRating": 0.9}) == pytest.approx(0.7)


def test_episode_classification():
    ctx = MemoryContext()
    assert classify_episode("the build failed with a bug", ctx, {}) == "error"
    assert classify_episode("task finished", ctx, {}) == "success"
    assert classify_episode("hello there", ctx, {}) == "conversation"
    assert classify_episode("anything", ctx, {"episodeType": "visual_learning"}) == "visual_learning"


def test_sanitize_context_drops_raw_payloads():
    ctx = MemoryContext.from_value({"user_id": "u", "screenshot": "data", "note": "n" * 600})
    sanitized = sanitize_context(ctx)
    assert "screenshot" not in sanitized
    assert sanitized["note"].endswith("...")
    assert len(sanitized["note"]) == 503


def test_episodic_store_generates_session_and_filters(memory_db):
    async def run():
        store = EpisodicMemoryStore(5, "u1")
        generated = await store.store("hello", CTX, {})
        await store.store("task finished", {**CTX, "session_id": "s1"}, {})
        only_s1 = await store.retrieve(None, CTX, {"session_id": "s1"})
        return generated, only_s1

    generated, only_s1 = asyncio.run(run())
    assert generated["session_id"].startswith("session_")
    assert len(only_s1) == 1
    assert only_s1[0]["episode_type"] == "success"
    assert only_s1[0]["relevance_score"] == only_s1[0]["importance_score"]


def test_semantic_retrieval_bumps_usage(memory_db):
    async def run():
        store = SemanticMemoryStore(5, "u1")
        await store.store("the api uses a token bucket", {**CTX, "domain": "infra"}, {"isKnowledge": True})
        await store.store("unrelated trivia", CTX, {})
        first = await store.retrieve("token bucket", CTX)
        second = await store.retrieve("token bucket", CTX)
        return first, second

    first, second = asyncio.run(run())
    assert len(first) == 1
    assert first[0]["knowledge_type"] == "technical"
    assert first[0]["domain"] == "infra"
    assert first[0]["usage_count"] == 1
    assert second[0]["usage_count"] == 2


def test_categorize_knowledge_defaults():
    assert categorize_knowledge("a plain statement", MemoryContext(), {}) == "factual"
    assert categorize_knowledge("a plain statement", MemoryContext(session_id="s"), {}) == "contextual"


def test_procedural_upsert_and_execution(memory_db):
    async def run():
        store = ProceduralMemoryStore(5, "u1")
        first = await store.store("retry with backoff", CTX, {"procedure_name": "retry"})
        second = await store.store("retry with backoff", CTX, {"procedure_name": "retry"})
        executed = await store.record_execution(first["id"], False, {"note": "timed out"})
        listed = await store.retrieve("retry", CTX)
        return first, second, executed, listed

    first, second, executed, listed = asyncio.run(run())
    assert second["id"] == first["id"]
    assert second["updated"] is True
    assert second["usage_count"] == 2
    assert executed["usage_count"] == 3
    assert executed["success_rate"] < second["success_rate"]
    assert executed["adaptation_history"][-1]["type"] == "feedback"
    assert listed[0]["procedure_name"] == "retry"


def test_record_execution_for_unknown_behavior(memory_db):
    async def run():
        store = ProceduralMemoryStore(5, "u1")
        await store.initialize()
        await store.record_execution("missing", True)

    with pytest.raises(ValidationIssue) as excinfo:
        asyncio.run(run())
    assert excinfo.value.error_type == "not_found"


def test_stores_do_not_see_other_owners(memory_db):
    async def run():
        mine = SemanticMemoryStore(5, "u1")
        theirs = SemanticMemoryStore(5, "u2")
        await mine.store("shared words here", CTX, {})
        return await theirs.retrieve("shared", {"agent_id": 5, "user_id": "u2"})

    assert asyncio.run(run()) == []


def test_discovery_episode_is_promoted_and_hidden_by_default(memory_db):
    async def run():
        store = EpisodicMemoryStore(5, "u1")
        stored = await store.store(
            "a cache layer nobody documented",
            {**CTX, "session_id": "s1"},
            {"episodeType": "discovery", "isTaskCompletion": True, "userRating": 0.9},
        )
        default = await store.retrieve(None, CTX)
        everything = await store.retrieve(None, CTX, {"include_promoted": True})
        return stored, default, everything, store.stats()

    stored, default, everything, stats = asyncio.run(run())
    assert stored["promoted_to_semantic"] is True
    assert default == []
    assert everything[0]["promoted_to_semantic"] is True
    assert stats["promoted_to_semantic"] == 1


def test_unsatisfying_success_is_not_promoted(memory_db):
    async def run():
        store = EpisodicMemoryStore(5, "u1")
        return await store.store(
            "deploy finished",
            CTX,
            {"episodeType": "success", "isTaskCompletion": True, "problemSolved": True, "userRating": 0.5},
        )

    stored = asyncio.run(run())
    assert stored["importance_score"] >= 0.8
    assert stored["promoted_to_semantic"] is False


def test_recurring_episodes_promote_once_three_similar_exist(memory_db):
    async def run():
        store = EpisodicMemoryStore(5, "u1")
        results = []
        for _ in range(4):
            results.append(
                await store.store("hello there", CTX, {"isTaskCompletion": True, "userRating": 0.9})
            )
        return results

    results = asyncio.run(run())
    assert [item["episode_type"] for item in results] == ["conversation"] * 4
    assert [item["promoted_to_semantic"] for item in results] == [False, False, False, True]


def test_low_importance_episode_is_never_promoted(memory_db):
    async def run():
        store = EpisodicMemoryStore(5, "u1")
        return await store.store("noticed a new shortcut", CTX, {"episodeType": "discovery"})

    stored = asyncio.run(run())
    assert stored["importance_score"] < 0.8
    assert stored["promoted_to_semantic"] is False


def test_non_numeric_satisfaction_signals_are_ignored():
    ctx = MemoryContext.from_value({"userFeedback": "great", "quickFollowUp": "soon", "sessionDuration": "long"})
    assert extract_user_satisfaction(ctx, {"userRating": "high"}) is None
    assert extract_user_satisfaction(ctx, {"userRating": True, "taskCompleted": True}) == 0.9
    assert extract_user_satisfaction(MemoryContext(), {"userRating": 1}) == 1.0
