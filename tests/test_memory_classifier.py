import itertools

from core.context import MemoryContext
from core.services.memory_classifier import determine_storage_targets


def _targets(content=None, context=None, metadata=None):
    return determine_storage_targets(content, context or {"agent_id": 5, "user_id": "u1"}, metadata or {})


def test_knowledge_flag_selects_semantic():
    assert _targets({"text": "fact"}, metadata={"isKnowledge": True}).semantic
    assert _targets({"text": "fact"}, metadata={"is_knowledge": True}).semantic


def test_no_matching_rule_falls_back_to_episodic_only():
    targets = _targets({}, metadata={})
    assert targets.as_list() == ["episodic"]


def test_session_id_selects_episodic():
    targets = _targets({}, context={"agentId": 5, "userId": "u1", "sessionId": "s1"})
    assert targets.as_list() == ["episodic"]


def test_importance_thresholds():
    assert _targets(metadata={"importance": 0.65}).as_list() == ["semantic"]
    assert _targets(metadata={"importance": 0.75}).as_list() == ["working", "semantic"]
    assert _targets(metadata={"importance": 0.6}).as_list() == ["episodic"]


def test_content_type_routing():
    assert _targets(metadata={"content_type": "context"}).working
    assert _targets(metadata={"contentType": "conversation"}).episodic
    assert _targets(metadata={"content_type": "fact"}).semantic
    assert _targets(metadata={"content_type": "behavior"}).procedural
    assert _targets(metadata={"isLearned": True}).procedural


def test_content_type_is_read_from_metadata_only():
    targets = _targets({"type": "knowledge"}, metadata={})
    assert targets.as_list() == ["episodic"]


def test_at_least_one_target_for_any_flag_combination():
    flags = ["isImmediate", "isKnowledge", "isLearned"]
    content_types = [None, "context", "interaction", "knowledge", "pattern", "other"]
    sessions = [None, "s1"]
    importances = [None, 0.1, 0.65, 0.9]
    for values, content_type, session, importance in itertools.product(
        itertools.product([False, True], repeat=len(flags)), content_types, sessions, importances
    ):
        metadata = dict(zip(flags, values))
        if content_type:
            metadata["content_type"] = content_type
        if importance is not None:
            metadata["importance"] = importance
        context = MemoryContext(agent_id=5, user_id="u1", session_id=session)
        assert determine_storage_targets({}, context, metadata).any()
