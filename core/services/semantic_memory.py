"""
Semantic memory: long-lived facts and knowledge.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

import core.config as config
from core.context import MemoryContext
from core.models import SemanticMemory
from core.services.memory_stores import (
    MemoryTypeStore,
    attr,
    clamp,
    content_text,
    has_keyword,
    iso,
    keyword_score,
    normalize_content,
)

logger = config.logger

TECHNICAL_KEYWORDS = (
    "function", "class", "method", "algorithm", "database", "api",
    "framework", "library", "protocol", "architecture", "pattern",
)
PROCEDURAL_KEYWORDS = (
    "how to", "step by step", "first", "then", "next", "finally",
    "process", "workflow", "procedure", "method", "approach",
)
CONCEPTUAL_KEYWORDS = (
    "concept", "principle", "theory", "definition", "meaning",
    "understand", "explain", "what is", "represents", "signifies",
)
DEPTH_TERMS = ("algorithm", "implementation", "architecture", "pattern", "methodology")
CONNECTORS = ("because", "therefore", "however", "in contrast", "similar to")


def categorize_knowledge(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> str:
    if (
        attr(metadata, "is_technical", "isTechnical")
        or attr(ctx, "is_technical", "isTechnical")
        or has_keyword(content, TECHNICAL_KEYWORDS)
    ):
        return "technical"
    if attr(ctx, "user_interaction", "userInteraction") or attr(metadata, "from_episodic", "fromEpisodic"):
        return "experiential"
    if (
        attr(metadata, "is_procedural", "isProcedural")
        or attr(ctx, "is_procedural", "isProcedural")
        or has_keyword(content, PROCEDURAL_KEYWORDS)
    ):
        return "procedural"
    if (
        attr(metadata, "is_conceptual", "isConceptual")
        or attr(ctx, "is_conceptual", "isConceptual")
        or has_keyword(content, CONCEPTUAL_KEYWORDS)
    ):
        return "conceptual"
    if ctx.session_id or attr(ctx, "specific_context", "specificContext"):
        return "contextual"
    return "factual"


def calculate_confidence(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> float:
    confidence = 0.5
    if isinstance(content, str):
        if len(content) > 500:
            confidence += 0.2
        if len(content) > 1000:
            confidence += 0.2
        if has_keyword(content, DEPTH_TERMS):
            confidence += 0.25
        if has_keyword(content, CONNECTORS):
            confidence += 0.15

    if attr(ctx, "is_expert_domain", "isExpertDomain"):
        confidence += 0.3
    if attr(ctx, "problem_solved", "problemSolved"):
        confidence += 0.25
    if attr(ctx, "knowledge_gap", "knowledgeGap"):
        confidence += 0.2
    if attr(ctx, "cross_domain", "crossDomain"):
        confidence += 0.15

    if attr(metadata, "is_breakthrough", "isBreakthrough"):
        confidence += 0.4
    if attr(metadata, "user_validated", "userValidated"):
        confidence += 0.2
    if attr(metadata, "frequently_accessed", "frequentlyAccessed"):
        confidence += 0.15
    if attr(metadata, "is_novel", "isNovel"):
        confidence += 0.2
    return clamp(confidence)


class SemanticMemoryStore(MemoryTypeStore):
    memory_type = "semantic"
    model = SemanticMemory

    def _store_sync(self, content: Any, ctx: MemoryContext, metadata: dict) -> dict:
        knowledge_type = categorize_knowledge(content, ctx, metadata)
        confidence = calculate_confidence(content, ctx, metadata)
        stored_content = normalize_content(content)
        if ctx.domain and "domain" not in stored_content:
            stored_content["domain"] = ctx.domain
        source_type = metadata.get("source_type")
        if not source_type:
            source_type = "episodic" if attr(metadata, "from_episodic", "fromEpisodic") else "user_input"
        now = datetime.utcnow()
        row = SemanticMemory(
            agent_id=self.agent_id,
            user_id=self.user_id,
            content=stored_content,
            knowledge_type=knowledge_type,
            confidence_score=confidence,
            source_type=source_type,
            source_id=metadata.get("source_id") or ctx.session_id,
            usage_count=0,
            last_accessed=now,
            created_at=now,
        )
        db = self._session()
        try:
            db.add(row)
            db.commit()
            return {
                "id": str(row.id),
                "stored": True,
                "knowledge_type": knowledge_type,
                "confidence_score": confidence,
                "created_at": iso(row.created_at),
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _retrieve_sync(self, query: Optional[str], ctx: MemoryContext, options: dict) -> list[dict]:
        db = self._session()
        try:
            q = self._owned(db)
            knowledge_types = options.get("knowledge_types")
            if knowledge_types:
                q = q.filter(SemanticMemory.knowledge_type.in_(list(knowledge_types)))
            rows = q.order_by(SemanticMemory.created_at.desc()).limit(config.STORE_SCAN_LIMIT).all()

            scored = []
            for row in rows:
                match = keyword_score(query, content_text(row.content))
                if query and match == 0.0:
                    continue
                relevance = clamp(0.5 * row.confidence_score + 0.5 * match) if query else row.confidence_score
                scored.append((relevance, row, match))
            scored.sort(key=lambda item: item[0], reverse=True)
            selected = scored[: self._scan_limit(options)]

            now = datetime.utcnow()
            results = []
            for relevance, row, match in selected:
                row.usage_count = (row.usage_count or 0) + 1
                row.last_accessed = now
                entry = self._serialize(row, query)
                entry["relevance_score"] = relevance
                entry["query_match"] = match
                results.append(entry)
            if selected:
                db.commit()
            return results
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _serialize(self, row: SemanticMemory, query: Optional[str]) -> dict:
        content = row.content or {}
        return {
            "id": str(row.id),
            "agent_id": row.agent_id,
            "user_id": row.user_id,
            "content": content,
            "domain": content.get("domain") if isinstance(content, dict) else None,
            "knowledge_type": row.knowledge_type,
            "confidence_score": row.confidence_score,
            "source_type": row.source_type,
            "usage_count": row.usage_count,
            "relevance_score": row.confidence_score,
            "query_match": keyword_score(query, content_text(content)),
            "last_accessed": iso(row.last_accessed),
            "created_at": iso(row.created_at),
        }
