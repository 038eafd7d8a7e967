"""
Episodic memory: session-scoped interactions and events.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

import core.config as config
from core.context import MemoryContext
from core.models import EpisodicMemory
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

EPISODE_SIGNALS = (
    ("error", ("is_error", "isError"), ("error", "failed", "broke", "problem", "issue", "bug")),
    ("success", ("is_success", "isSuccess"), ("success", "complete", "finished", "solved", "working", "done")),
    ("task", ("is_task", "isTask"), ("create", "build", "make", "implement", "design", "develop")),
    ("learning", ("is_learning", "isLearning"), ("how to", "explain", "what is", "why", "teach", "learn")),
    ("discovery", ("is_discovery", "isDiscovery"), ("found", "discovered", "new", "interesting", "unexpected")),
)
TECHNICAL_TERMS = ("function", "error", "solution", "method", "process")
SIMILAR_EPISODE_WINDOW = timedelta(days=30)
SIMILAR_EPISODE_MIN = 3
SANITIZED_CONTEXT_KEYS = {"screenshot", "audio", "raw_data", "rawData"}
MAX_CONTEXT_STRING = 500


def classify_episode(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> str:
    explicit = attr(metadata, "episode_type", "episodeType") or attr(ctx, "episode_type", "episodeType")
    if isinstance(explicit, str) and explicit:
        return explicit
    for episode_type, (snake, camel), keywords in EPISODE_SIGNALS:
        if attr(metadata, snake, camel) or attr(ctx, snake, camel):
            return episode_type
        if has_keyword(content, keywords):
            return episode_type
    return "conversation"


def calculate_importance(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any], episode_type: str) -> float:
    importance = 0.5
    if isinstance(content, str):
        if len(content) > 200:
            importance += 0.1
        if len(content) > 500:
            importance += 0.1
        if "?" in content and "." in content:
            importance += 0.15
        if has_keyword(content, TECHNICAL_TERMS):
            importance += 0.1

    if attr(ctx, "is_user_initiated", "isUserInitiated"):
        importance += 0.1
    if attr(ctx, "has_screenshot", "hasScreenshot"):
        importance += 0.15
    if attr(ctx, "session_start", "sessionStart"):
        importance += 0.2
    conversation_length = attr(ctx, "conversation_length", "conversationLength", 0)
    if isinstance(conversation_length, (int, float)) and conversation_length > 5:
        importance += 0.1

    if attr(metadata, "is_task_completion", "isTaskCompletion"):
        importance += 0.3
    rating = attr(metadata, "user_rating", "userRating")
    if isinstance(rating, (int, float)) and rating > 0.7:
        importance += 0.2
    if attr(metadata, "is_learning_moment", "isLearningMoment"):
        importance += 0.25
    if attr(metadata, "problem_solved", "problemSolved"):
        importance += 0.2

    if episode_type == "error":
        # recent errors weigh more
        importance += 0.3

    return clamp(importance)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def extract_user_satisfaction(ctx: MemoryContext, metadata: Mapping[str, Any]) -> Optional[float]:
    rating = _number(attr(metadata, "user_rating", "userRating"))
    if rating is not None:
        return rating
    feedback = _number(attr(ctx, "user_feedback", "userFeedback"))
    if feedback is not None:
        return feedback

    satisfaction = None
    if attr(ctx, "conversation_continued", "conversationContinued"):
        satisfaction = 0.7
    quick_follow_up = _number(attr(ctx, "quick_follow_up", "quickFollowUp"))
    if quick_follow_up and quick_follow_up < 30:
        satisfaction = 0.3
    duration = _number(attr(ctx, "session_duration", "sessionDuration"))
    if duration:
        if duration > 300:
            satisfaction = 0.8
        elif duration < 30:
            satisfaction = 0.2
    if attr(metadata, "task_completed", "taskCompleted"):
        satisfaction = 0.9
    return satisfaction


def infer_outcome(ctx: MemoryContext) -> str:
    if attr(ctx, "task_completed", "taskCompleted"):
        return "success"
    if attr(ctx, "is_error", "isError"):
        return "failure"
    if attr(ctx, "conversation_continued", "conversationContinued"):
        return "ongoing"
    return "completed"


def sanitize_context(ctx: MemoryContext) -> dict:
    sanitized = {}
    for key, value in ctx.as_dict().items():
        if key in SANITIZED_CONTEXT_KEYS or value is None:
            continue
        if isinstance(value, str) and len(value) > MAX_CONTEXT_STRING:
            value = value[:MAX_CONTEXT_STRING] + "..."
        sanitized[key] = value
    return sanitized


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class EpisodicMemoryStore(MemoryTypeStore):
    memory_type = "episodic"
    model = EpisodicMemory

    def __init__(self, agent_id: Any, user_id: str):
        super().__init__(agent_id, user_id)
        self.promotion_threshold = config.EPISODIC_PROMOTION_THRESHOLD
        self.metrics["average_importance"] = 0.0
        self.metrics["promotion_candidates"] = 0
        self.metrics["promoted_to_semantic"] = 0

    def _store_sync(self, content: Any, ctx: MemoryContext, metadata: dict) -> dict:
        episode_type = classify_episode(content, ctx, metadata)
        importance = calculate_importance(content, ctx, metadata, episode_type)
        satisfaction = extract_user_satisfaction(ctx, metadata)
        duration = attr(ctx, "session_duration", "sessionDuration")
        row = EpisodicMemory(
            agent_id=self.agent_id,
            user_id=self.user_id,
            session_id=ctx.session_id or generate_session_id(),
            episode_type=episode_type,
            content=normalize_content(content),
            context=sanitize_context(ctx),
            outcome=metadata.get("outcome") or infer_outcome(ctx),
            user_satisfaction=satisfaction,
            importance_score=importance,
            session_duration=int(duration) if isinstance(duration, (int, float)) else None,
            promoted_to_semantic=False,
            created_at=datetime.utcnow(),
        )
        db = self._session()
        try:
            db.add(row)
            db.flush()
            promoted = importance >= self.promotion_threshold and self._should_promote(db, row)
            if promoted:
                row.promoted_to_semantic = True
            db.commit()
            record = {
                "id": str(row.id),
                "stored": True,
                "session_id": row.session_id,
                "episode_type": episode_type,
                "importance_score": importance,
                "user_satisfaction": satisfaction,
                "promoted_to_semantic": promoted,
                "created_at": iso(row.created_at),
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        alpha = config.STATS_SMOOTHING_ALPHA
        self.metrics["average_importance"] = (
            alpha * importance + (1 - alpha) * self.metrics["average_importance"]
        )
        if importance >= self.promotion_threshold:
            self.metrics["promotion_candidates"] += 1
        if promoted:
            self.metrics["promoted_to_semantic"] += 1
            logger.info(
                "Episode promoted to semantic memory",
                extra={"agent_id": self.agent_id, "user_id": self.user_id, "episode_id": record["id"]},
            )
        return record

    def _should_promote(self, db, row: EpisodicMemory) -> bool:
        """Successes, learning moments and discoveries generalize; so do recurring episodes."""
        satisfaction = row.user_satisfaction
        if row.episode_type == "success" and satisfaction is not None and satisfaction > 0.7:
            return True
        if row.episode_type == "learning" and satisfaction is not None and satisfaction > 0.6:
            return True
        if row.episode_type == "discovery":
            return True
        similar = (
            self._owned(db)
            .filter(EpisodicMemory.episode_type == row.episode_type)
            .filter(EpisodicMemory.importance_score > row.importance_score - 0.1)
            .filter(EpisodicMemory.id != row.id)
            .filter(EpisodicMemory.created_at >= row.created_at - SIMILAR_EPISODE_WINDOW)
            .count()
        )
        return similar >= SIMILAR_EPISODE_MIN

    def _retrieve_sync(self, query: Optional[str], ctx: MemoryContext, options: dict) -> list[dict]:
        min_importance = options.get("min_importance", 0.1)
        db = self._session()
        try:
            q = self._owned(db).filter(EpisodicMemory.importance_score >= min_importance)
            session_filter = options.get("session_id")
            if session_filter:
                q = q.filter(EpisodicMemory.session_id == session_filter)
            episode_types = options.get("episode_types")
            if episode_types:
                q = q.filter(EpisodicMemory.episode_type.in_(list(episode_types)))
            if not options.get("include_promoted"):
                q = q.filter(EpisodicMemory.promoted_to_semantic.is_(False))
            rows = (
                q.order_by(EpisodicMemory.importance_score.desc(), EpisodicMemory.created_at.desc())
                .limit(self._scan_limit(options))
                .all()
            )
            return [self._serialize(row, query) for row in rows]
        finally:
            db.close()

    def _serialize(self, row: EpisodicMemory, query: Optional[str]) -> dict:
        context = row.context or {}
        return {
            "id": str(row.id),
            "agent_id": row.agent_id,
            "user_id": row.user_id,
            "session_id": row.session_id,
            "episode_type": row.episode_type,
            "content": row.content,
            "context": context,
            "domain": context.get("domain"),
            "outcome": row.outcome,
            "user_satisfaction": row.user_satisfaction,
            "importance_score": row.importance_score,
            "relevance_score": row.importance_score,
            "promoted_to_semantic": bool(row.promoted_to_semantic),
            "query_match": keyword_score(query, content_text(row.content)),
            "created_at": iso(row.created_at),
        }
