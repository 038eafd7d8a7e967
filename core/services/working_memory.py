"""
Working memory: short-lived, TTL-bound context for the current interaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import core.config as config
from core.context import MemoryContext
from core.models import WorkingMemory
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

IMPORTANT_KEYWORDS = ("error", "help", "how to", "explain", "show me")


def calculate_relevance(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> float:
    relevance = 0.5
    if isinstance(content, str):
        if len(content) > 100:
            relevance += 0.1
        if len(content) > 500:
            relevance += 0.1
        if "?" in content:
            relevance += 0.1
        if has_keyword(content, IMPORTANT_KEYWORDS):
            relevance += 0.2

    if attr(ctx, "has_screenshot", "hasScreenshot"):
        relevance += 0.2
    if attr(ctx, "is_user_initiated", "isUserInitiated"):
        relevance += 0.1
    if attr(ctx, "session_start", "sessionStart"):
        relevance += 0.3

    if attr(metadata, "is_important", "isImportant"):
        relevance += 0.3
    rating = attr(metadata, "user_rating", "userRating")
    if isinstance(rating, (int, float)) and rating > 0.7:
        relevance += 0.2
    if attr(metadata, "follow_up", "followUp"):
        relevance += 0.1

    return clamp(relevance)


def determine_context_type(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> str:
    is_mapping = isinstance(content, Mapping)
    if attr(ctx, "has_screenshot", "hasScreenshot") or (is_mapping and content.get("image")):
        return "screenshot"
    if attr(ctx, "has_audio", "hasAudio") or (is_mapping and content.get("audio")):
        return "audio"
    if attr(metadata, "tool_result", "toolResult") or (is_mapping and content.get("tool")):
        return "tool_result"
    return "text"


def is_persistent_context(content: Any, ctx: MemoryContext) -> bool:
    if attr(ctx, "session_start", "sessionStart"):
        return True
    if has_keyword(content, ("error",)):
        return True
    conversation_length = attr(ctx, "conversation_length", "conversationLength", 0)
    return isinstance(conversation_length, (int, float)) and conversation_length > 5


def estimate_tokens(content: Any) -> int:
    text = content_text(content)
    return -(-len(text) // 4)


class WorkingMemoryStore(MemoryTypeStore):
    memory_type = "working"
    model = WorkingMemory

    def __init__(self, agent_id: Any, user_id: str, ttl_seconds: Optional[int] = None):
        super().__init__(agent_id, user_id)
        self.ttl_seconds = ttl_seconds or config.WORKING_MEMORY_TTL_SECONDS
        self.max_entries = config.WORKING_MEMORY_MAX_ENTRIES
        self.attention_sink_threshold = config.WORKING_ATTENTION_SINK_THRESHOLD
        self.metrics["attention_sinks"] = 0
        self.metrics["trimmed"] = 0

    def _store_sync(self, content: Any, ctx: MemoryContext, metadata: dict) -> dict:
        relevance = calculate_relevance(content, ctx, metadata)
        attention_sink = bool(
            relevance >= self.attention_sink_threshold
            or attr(metadata, "is_attention_sink", "isAttentionSink")
            or is_persistent_context(content, ctx)
        )
        now = datetime.utcnow()
        row = WorkingMemory(
            agent_id=self.agent_id,
            user_id=self.user_id,
            session_id=ctx.session_id or "default",
            content=normalize_content(content),
            context_type=determine_context_type(content, ctx, metadata),
            relevance_score=relevance,
            attention_sink=attention_sink,
            token_count=estimate_tokens(content),
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        db = self._session()
        try:
            db.add(row)
            db.flush()
            trimmed = self._trim_window(db, now)
            db.commit()
            record = {
                "id": str(row.id),
                "stored": True,
                "relevance_score": relevance,
                "attention_sink": attention_sink,
                "context_type": row.context_type,
                "created_at": iso(row.created_at),
                "expires_at": iso(row.expires_at),
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if attention_sink:
            self.metrics["attention_sinks"] += 1
        self.metrics["trimmed"] += trimmed
        return record

    def _trim_window(self, db, now: datetime) -> int:
        """Drop the least relevant non-sink rows beyond the window size."""
        window = (
            self._owned(db)
            .filter(WorkingMemory.attention_sink.is_(False))
            .filter(WorkingMemory.expires_at > now)
        )
        excess = window.count() - self.max_entries
        if excess <= 0:
            return 0
        victims = (
            window.order_by(WorkingMemory.relevance_score.asc(), WorkingMemory.created_at.asc())
            .limit(excess)
            .all()
        )
        for victim in victims:
            db.delete(victim)
        logger.info(
            "Trimmed working memory window",
            extra={"agent_id": self.agent_id, "user_id": self.user_id, "removed": len(victims)},
        )
        return len(victims)

    def _retrieve_sync(self, query: Optional[str], ctx: MemoryContext, options: dict) -> list[dict]:
        now = datetime.utcnow()
        min_relevance = options.get("min_relevance", 0.1)
        db = self._session()
        try:
            q = (
                self._owned(db)
                .filter(WorkingMemory.expires_at > now)
                .filter(WorkingMemory.relevance_score >= min_relevance)
            )
            if options.get("session_only") and ctx.session_id:
                q = q.filter(WorkingMemory.session_id == ctx.session_id)
            context_types = options.get("context_types")
            if context_types:
                q = q.filter(WorkingMemory.context_type.in_(list(context_types)))
            rows = (
                q.order_by(
                    WorkingMemory.attention_sink.desc(),
                    WorkingMemory.relevance_score.desc(),
                    WorkingMemory.created_at.desc(),
                )
                .limit(self._scan_limit(options))
                .all()
            )
            return [self._serialize(row, query) for row in rows]
        finally:
            db.close()

    def _serialize(self, row: WorkingMemory, query: Optional[str]) -> dict:
        return {
            "id": str(row.id),
            "agent_id": row.agent_id,
            "user_id": row.user_id,
            "session_id": row.session_id,
            "content": row.content,
            "context_type": row.context_type,
            "attention_sink": row.attention_sink,
            "token_count": row.token_count,
            "relevance_score": row.relevance_score,
            "query_match": keyword_score(query, content_text(row.content)),
            "created_at": iso(row.created_at),
            "expires_at": iso(row.expires_at),
        }
