"""
Merge and rank heterogeneous candidates from the four memory stores.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core.config import DEFAULT_RETRIEVE_LIMIT
from core.context import MemoryContext

MEMORY_TYPE_ORDER = ("working", "episodic", "semantic", "procedural")

WORKING_RECENCY_WINDOW_MS = 10 * 60 * 1000
WORKING_RECENCY_WEIGHT = 0.2
EPISODIC_SESSION_BONUS = 0.15
PROCEDURAL_USAGE_STEP = 0.02
PROCEDURAL_USAGE_CAP = 0.2


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _as_datetime(value: Any) -> Optional[datetime]:
    """Normalize to naive UTC, the form stores write with ``datetime.utcnow()``."""
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return _naive_utc(parsed)
    return None


def _working_bonus(candidate: Mapping[str, Any], now: datetime) -> float:
    created_at = _as_datetime(candidate.get("created_at"))
    if created_at is None:
        return 0.0
    age_ms = max(0.0, (now - created_at).total_seconds() * 1000)
    return max(0.0, 1 - age_ms / WORKING_RECENCY_WINDOW_MS) * WORKING_RECENCY_WEIGHT


def _score(memory_type: str, base: float, candidate: Mapping[str, Any], ctx: MemoryContext, now: datetime) -> float:
    if memory_type == "working":
        return base + _working_bonus(candidate, now)
    if memory_type == "episodic":
        if ctx.session_id and candidate.get("session_id") == ctx.session_id:
            return base + EPISODIC_SESSION_BONUS
        return base
    if memory_type == "procedural":
        usage = candidate.get("usage_count") or 0
        return base + min(PROCEDURAL_USAGE_CAP, usage * PROCEDURAL_USAGE_STEP)
    return base


def rank_memories(
    results: Mapping[str, list],
    context: Optional[MemoryContext | Mapping[str, Any]] = None,
    options: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> list[dict]:
    """
    Flatten per-type candidate lists and order them by final score.

    Ties keep flatten order (working, episodic, semantic, procedural, then the
    order each store returned).
    """
    options = options or {}
    ctx = MemoryContext.from_value(context)
    now = _naive_utc(now) if now is not None else datetime.utcnow()
    limit = options.get("limit") or DEFAULT_RETRIEVE_LIMIT

    ranked = []
    for memory_type in MEMORY_TYPE_ORDER:
        for candidate in results.get(memory_type) or []:
            base = candidate.get("relevance_score") or 0
            entry = dict(candidate)
            entry["memory_type"] = memory_type
            entry["base_score"] = base
            entry["final_score"] = _score(memory_type, base, candidate, ctx, now)
            ranked.append(entry)

    ranked.sort(key=lambda item: item["final_score"], reverse=True)
    return ranked[:limit]
