"""
Procedural memory: learned behaviors scored by usage and success.
"""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime
from typing import Any, Mapping, Optional

import core.config as config
from core.context import MemoryContext
from core.errors import ValidationIssue
from core.models import ProceduralMemory
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

TASK_SEQUENCE_KEYWORDS = ("first", "then", "next", "finally", "step")
ERROR_HANDLING_KEYWORDS = ("error", "exception", "retry", "fallback", "recover")
OPTIMIZATION_KEYWORDS = ("faster", "optimize", "improve", "efficient", "performance")
MAX_ADAPTATION_HISTORY = 20


def classify_behavior(content: Any, ctx: MemoryContext, metadata: Mapping[str, Any]) -> str:
    if attr(ctx, "is_response", "isResponse") or attr(metadata, "is_response", "isResponse"):
        return "response_pattern"
    if attr(metadata, "is_task_sequence", "isTaskSequence") or has_keyword(content, TASK_SEQUENCE_KEYWORDS):
        return "task_sequence"
    if attr(ctx, "is_error", "isError") or has_keyword(content, ERROR_HANDLING_KEYWORDS):
        return "error_handling"
    if attr(metadata, "is_user_preference", "isUserPreference") or attr(ctx, "user_preference", "userPreference"):
        return "user_preference"
    if has_keyword(content, OPTIMIZATION_KEYWORDS):
        return "optimization"
    if attr(metadata, "is_adaptation", "isAdaptation") or attr(ctx, "is_adaptation", "isAdaptation"):
        return "adaptation"
    return "response_pattern"


def calculate_effectiveness(content: Any, metadata: Mapping[str, Any]) -> float:
    effectiveness = 0.5
    if isinstance(content, str):
        if len(content) > 200:
            effectiveness += 0.1
        if len(content) > 500:
            effectiveness += 0.1
    was_successful = attr(metadata, "was_successful", "wasSuccessful")
    if was_successful is True:
        effectiveness += 0.2
    elif was_successful is False:
        effectiveness -= 0.2
    rating = attr(metadata, "user_rating", "userRating")
    if isinstance(rating, (int, float)):
        effectiveness += (rating - 0.5) * 0.4
    return clamp(effectiveness)


def procedure_name_for(content: Any, behavior_type: str, metadata: Mapping[str, Any]) -> str:
    explicit = attr(metadata, "procedure_name", "procedureName")
    if explicit:
        return str(explicit)
    digest = hashlib.sha1(content_text(content).encode("utf-8")).hexdigest()[:12]
    return f"{behavior_type}:{digest}"


def _history_append(history: Optional[list], entry: dict) -> list:
    updated = list(history or [])
    updated.append(entry)
    return updated[-MAX_ADAPTATION_HISTORY:]


class ProceduralMemoryStore(MemoryTypeStore):
    memory_type = "procedural"
    model = ProceduralMemory

    def __init__(self, agent_id: Any, user_id: str):
        super().__init__(agent_id, user_id)
        self.adaptation_rate = config.PROCEDURAL_ADAPTATION_RATE
        self.metrics["reinforcements"] = 0
        self.metrics["executions"] = 0

    def _store_sync(self, content: Any, ctx: MemoryContext, metadata: dict) -> dict:
        behavior_type = classify_behavior(content, ctx, metadata)
        effectiveness = calculate_effectiveness(content, metadata)
        name = procedure_name_for(content, behavior_type, metadata)
        now = datetime.utcnow()
        procedure_data = {
            "content": normalize_content(content),
            "triggers": list(metadata.get("triggers") or []),
        }
        conditions = {key: value for key, value in ctx.as_dict().items() if value is not None}

        db = self._session()
        try:
            row = self._owned(db).filter(ProceduralMemory.procedure_name == name).first()
            updated = row is not None
            if row is None:
                row = ProceduralMemory(
                    agent_id=self.agent_id,
                    user_id=self.user_id,
                    procedure_name=name,
                    procedure_type=behavior_type,
                    procedure_data=procedure_data,
                    context_conditions=conditions,
                    success_rate=effectiveness,
                    usage_count=1,
                    adaptation_history=[],
                    is_active=True,
                    last_used=now,
                    created_at=now,
                )
                db.add(row)
            else:
                row.procedure_data = procedure_data
                row.context_conditions = conditions
                row.usage_count = (row.usage_count or 0) + 1
                row.success_rate = self._smooth(row.success_rate, effectiveness)
                row.last_used = now
                row.is_active = True
                row.adaptation_history = _history_append(
                    row.adaptation_history,
                    {"timestamp": now.isoformat(), "type": "reinforced", "effectiveness": effectiveness},
                )
            db.commit()
            record = {
                "id": str(row.id),
                "stored": True,
                "updated": updated,
                "procedure_name": row.procedure_name,
                "procedure_type": row.procedure_type,
                "success_rate": row.success_rate,
                "usage_count": row.usage_count,
                "created_at": iso(row.created_at),
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if updated:
            self.metrics["reinforcements"] += 1
        return record

    def _smooth(self, current: Optional[float], observed: float) -> float:
        current = 0.5 if current is None else current
        return clamp((1 - self.adaptation_rate) * current + self.adaptation_rate * observed)

    def _retrieve_sync(self, query: Optional[str], ctx: MemoryContext, options: dict) -> list[dict]:
        min_effectiveness = options.get("min_effectiveness", 0.3)
        db = self._session()
        try:
            q = (
                self._owned(db)
                .filter(ProceduralMemory.is_active.is_(True))
                .filter(ProceduralMemory.success_rate >= min_effectiveness)
            )
            behavior_types = options.get("behavior_types")
            if behavior_types:
                q = q.filter(ProceduralMemory.procedure_type.in_(list(behavior_types)))
            rows = (
                q.order_by(ProceduralMemory.success_rate.desc(), ProceduralMemory.last_used.desc())
                .limit(self._scan_limit(options))
                .all()
            )
            results = [self._serialize(row, query) for row in rows]
            results.sort(key=lambda item: item["relevance_score"], reverse=True)
            return results
        finally:
            db.close()

    def _serialize(self, row: ProceduralMemory, query: Optional[str]) -> dict:
        data = row.procedure_data or {}
        match = keyword_score(query, content_text(data.get("content", data)))
        usage = row.usage_count or 0
        relevance = clamp(0.6 * row.success_rate + 0.2 * min(1.0, usage / 10) + 0.2 * match)
        return {
            "id": str(row.id),
            "agent_id": row.agent_id,
            "user_id": row.user_id,
            "procedure_name": row.procedure_name,
            "procedure_type": row.procedure_type,
            "procedure_data": data,
            "context_conditions": row.context_conditions or {},
            "domain": (row.context_conditions or {}).get("domain"),
            "success_rate": row.success_rate,
            "usage_count": usage,
            "adaptation_history": row.adaptation_history or [],
            "relevance_score": relevance,
            "query_match": match,
            "last_used": iso(row.last_used),
            "created_at": iso(row.created_at),
        }

    async def record_execution(self, behavior_id: str, success: bool, feedback: Optional[dict] = None) -> dict:
        """Count one execution of a behavior and fold its outcome into the success rate."""
        if not self.initialized:
            await self.initialize()
        result = await asyncio.to_thread(self._record_execution_sync, behavior_id, success, feedback)
        self.metrics["executions"] += 1
        return result

    def _record_execution_sync(self, behavior_id: str, success: bool, feedback: Optional[dict]) -> dict:
        now = datetime.utcnow()
        db = self._session()
        try:
            row = self._owned(db).filter(ProceduralMemory.id == behavior_id).first()
            if row is None:
                raise ValidationIssue(
                    f"Behavior not found: {behavior_id}",
                    field="behavior_id",
                    error_type="not_found",
                )
            row.usage_count = (row.usage_count or 0) + 1
            row.last_used = now
            row.success_rate = self._smooth(row.success_rate, 1.0 if success else 0.0)
            if feedback:
                row.adaptation_history = _history_append(
                    row.adaptation_history,
                    {"timestamp": now.isoformat(), "type": "feedback", "success": success, "feedback": feedback},
                )
            db.commit()
            return self._serialize(row, None)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
