"""
Storage classification: decide which memory types receive a write.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from core.context import MemoryContext
from core.services.memory_envelopes import StorageTargets

DEFAULT_IMPORTANCE = 0.5

EPISODIC_CONTENT_TYPES = {"interaction", "conversation"}
SEMANTIC_CONTENT_TYPES = {"knowledge", "fact"}
PROCEDURAL_CONTENT_TYPES = {"pattern", "behavior"}


def _flag(metadata: Mapping[str, Any], snake: str, camel: str) -> bool:
    return bool(metadata.get(snake, metadata.get(camel, False)))


def _importance(metadata: Mapping[str, Any]) -> float:
    value = metadata.get("importance")
    if value is None or isinstance(value, bool):
        return DEFAULT_IMPORTANCE
    try:
        return float(value)
    except (TypeError, ValueError):
        return DEFAULT_IMPORTANCE


def _content_type(metadata: Mapping[str, Any]) -> Optional[str]:
    return metadata.get("content_type", metadata.get("contentType"))


def determine_storage_targets(
    content: Any,
    context: Optional[MemoryContext | Mapping[str, Any]],
    metadata: Optional[Mapping[str, Any]],
) -> StorageTargets:
    metadata = metadata or {}
    ctx = MemoryContext.from_value(context)
    importance = _importance(metadata)
    content_type = _content_type(metadata)

    working = (
        _flag(metadata, "is_immediate", "isImmediate")
        or importance > 0.7
        or content_type == "context"
    )
    episodic = bool(ctx.session_id) or content_type in EPISODIC_CONTENT_TYPES
    semantic = (
        _flag(metadata, "is_knowledge", "isKnowledge")
        or importance > 0.6
        or content_type in SEMANTIC_CONTENT_TYPES
    )
    procedural = (
        content_type in PROCEDURAL_CONTENT_TYPES
        or _flag(metadata, "is_learned", "isLearned")
    )

    if not (working or episodic or semantic or procedural):
        episodic = True

    return StorageTargets(
        working=working,
        episodic=episodic,
        semantic=semantic,
        procedural=procedural,
    )
