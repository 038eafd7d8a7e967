from datetime import datetime, timedelta, timezone

import pytest

from core.services.memory_ranking import rank_memories

NOW = datetime(2026, 1, 15, 12, 0, 0)


def _ago(**kwargs) -> str:
    return (NOW - timedelta(**kwargs)).isoformat()


def test_working_recency_bonus_decays_to_zero():
    results = {
        "working": [
            {"id": "fresh", "relevance_score": 0.5, "created_at": _ago(seconds=0)},
            {"id": "mid", "relevance_score": 0.5, "created_at": _ago(minutes=5)},
            {"id": "old", "relevance_score": 0.5, "created_at": _ago(minutes=11)},
        ]
    }
    ranked = {item["id"]: item for item in rank_memories(results, {}, {"limit": 10}, now=NOW)}
    assert ranked["fresh"]["final_score"] == pytest.approx(0.7)
    assert ranked["mid"]["final_score"] == pytest.approx(0.6)
    assert ranked["old"]["final_score"] == pytest.approx(0.5)
    assert ranked["fresh"]["final_score"] >= ranked["mid"]["final_score"] >= ranked["old"]["final_score"]


def test_working_candidate_without_timestamp_gets_no_bonus():
    ranked = rank_memories({"working": [{"id": "w", "relevance_score": 0.4}]}, {}, now=NOW)
    assert ranked[0]["final_score"] == pytest.approx(0.4)


def test_episodic_session_match_bonus():
    results = {
        "episodic": [
            {"id": "other", "relevance_score": 0.5, "session_id": "s2"},
            {"id": "same", "relevance_score": 0.5, "session_id": "s1"},
        ]
    }
    ranked = rank_memories(results, {"sessionId": "s1"}, now=NOW)
    assert [item["id"] for item in ranked] == ["same", "other"]
    assert ranked[0]["final_score"] == pytest.approx(0.65)
    assert ranked[1]["final_score"] == pytest.approx(0.5)


def test_episodic_without_context_session_gets_base_score():
    ranked = rank_memories({"episodic": [{"id": "e", "relevance_score": 0.5, "session_id": None}]}, {}, now=NOW)
    assert ranked[0]["final_score"] == pytest.approx(0.5)


def test_procedural_usage_bonus_is_capped():
    results = {
        "procedural": [
            {"id": "light", "relevance_score": 0.3, "usage_count": 3},
            {"id": "heavy", "relevance_score": 0.3, "usage_count": 50},
        ]
    }
    ranked = {item["id"]: item for item in rank_memories(results, {}, now=NOW)}
    assert ranked["light"]["final_score"] == pytest.approx(0.36)
    assert ranked["heavy"]["final_score"] == pytest.approx(0.5)


def test_ties_keep_flatten_order_and_missing_scores_count_as_zero():
    results = {
        "procedural": [{"id": "p", "relevance_score": 0.5}],
        "semantic": [{"id": "s1", "relevance_score": 0.5}, {"id": "s2", "relevance_score": 0.5}],
        "episodic": [{"id": "e", "relevance_score": 0.5}, {"id": "none"}],
    }
    ranked = rank_memories(results, {}, now=NOW)
    assert [item["id"] for item in ranked] == ["e", "s1", "s2", "p", "none"]
    assert ranked[-1]["base_score"] == 0
    assert [item["memory_type"] for item in ranked[:4]] == ["episodic", "semantic", "semantic", "procedural"]


def test_limit_truncates_and_order_is_non_increasing():
    results = {
        "semantic": [{"id": f"s{i}", "relevance_score": i / 10} for i in range(8)],
        "working": [{"id": "w", "relevance_score": 0.35}],
    }
    ranked = rank_memories(results, {}, {"limit": 3}, now=NOW)
    assert len(ranked) == 3
    scores = [item["final_score"] for item in ranked]
    assert scores == sorted(scores, reverse=True)


def test_default_limit_is_ten():
    results = {"semantic": [{"id": f"s{i}", "relevance_score": 0.5} for i in range(15)]}
    assert len(rank_memories(results, now=NOW)) == 10


def test_offset_timestamps_are_converted_to_utc():
    plus_two = timezone(timedelta(hours=2))
    results = {
        "working": [
            {"id": "string", "relevance_score": 0.5, "created_at": "2026-01-15T14:00:00+02:00"},
            {"id": "aware", "relevance_score": 0.5, "created_at": datetime(2026, 1, 15, 13, 55, tzinfo=plus_two)},
            {"id": "zulu", "relevance_score": 0.5, "created_at": "2026-01-15T11:50:00Z"},
        ]
    }
    ranked = {item["id"]: item for item in rank_memories(results, {}, {}, now=NOW)}
    assert ranked["string"]["final_score"] == pytest.approx(0.7)
    assert ranked["aware"]["final_score"] == pytest.approx(0.6)
    assert ranked["zulu"]["final_score"] == pytest.approx(0.5)


def test_future_timestamp_bonus_stays_capped():
    results = {"working": [{"id": "w", "relevance_score": 0.5, "created_at": NOW + timedelta(hours=3)}]}
    ranked = rank_memories(results, {}, {}, now=NOW.replace(tzinfo=timezone.utc))
    assert ranked[0]["final_score"] == pytest.approx(0.7)
