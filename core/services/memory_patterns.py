"""
Pattern discovery services.

Watches what each memory instance stores, upserts confident patterns into
``discovered_patterns`` and uses them to boost matching retrieval candidates.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import desc

import core.config as config
from core.context import MemoryContext
from core.db import DB
from core.models import DiscoveredPattern
from core.services.memory_stores import iso

logger = config.logger

ENHANCEMENT_WEIGHT = 0.1
COMBINATION_RELEVANCE = 0.2
DOMAIN_RELEVANCE = 0.3
DOMAIN_MIN_FREQUENCY = 0.4
RELEVANT_PATTERN_LIMIT = 10


def combination_confidence(frequency: float) -> float:
    return min(1.0, frequency * 2)


def domain_confidence(frequency: float) -> float:
    return frequency if frequency > DOMAIN_MIN_FREQUENCY else 0.0


def pattern_relevance(candidate: Mapping[str, Any], memory_type: str, pattern: Mapping[str, Any]) -> float:
    data = pattern.get("pattern_data") or {}
    if pattern.get("pattern_type") == "memory_combination":
        if memory_type in (pattern.get("memory_types") or []):
            return COMBINATION_RELEVANCE
    elif pattern.get("pattern_type") == "domain_preference":
        domain = data.get("domain")
        if domain and candidate.get("domain") == domain:
            return DOMAIN_RELEVANCE
    return 0.0


def _serialize_pattern(row: DiscoveredPattern) -> dict:
    return {
        "id": row.id,
        "instance_key": row.instance_key,
        "pattern_type": row.pattern_type,
        "pattern_name": row.pattern_name,
        "pattern_data": row.pattern_data or {},
        "confidence_score": row.confidence_score,
        "occurrences": row.occurrences,
        "memory_types": row.memory_types or [],
        "last_seen": iso(row.last_seen),
        "created_at": iso(row.created_at),
    }


def _upsert_pattern_sync(
    instance_key: str,
    pattern_type: str,
    pattern_name: str,
    confidence: float,
    pattern_data: dict,
    memory_types: list[str],
) -> None:
    now = datetime.utcnow()
    db = DB.SessionLocal()
    try:
        row = (
            db.query(DiscoveredPattern)
            .filter(DiscoveredPattern.instance_key == instance_key)
            .filter(DiscoveredPattern.pattern_type == pattern_type)
            .filter(DiscoveredPattern.pattern_name == pattern_name)
            .first()
        )
        if row is None:
            db.add(
                DiscoveredPattern(
                    instance_key=instance_key,
                    pattern_type=pattern_type,
                    pattern_name=pattern_name,
                    pattern_data=pattern_data,
                    confidence_score=confidence,
                    occurrences=1,
                    memory_types=memory_types,
                    last_seen=now,
                    created_at=now,
                )
            )
        else:
            row.pattern_data = pattern_data
            row.confidence_score = confidence
            row.occurrences = (row.occurrences or 0) + 1
            row.memory_types = memory_types
            row.last_seen = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _list_patterns_sync(
    instance_key: str,
    pattern_type: Optional[str],
    min_confidence: Optional[float],
    limit: int,
) -> list[dict]:
    db = DB.SessionLocal()
    try:
        query = db.query(DiscoveredPattern).filter(DiscoveredPattern.instance_key == instance_key)
        if pattern_type:
            query = query.filter(DiscoveredPattern.pattern_type == pattern_type)
        if min_confidence is not None:
            query = query.filter(DiscoveredPattern.confidence_score >= min_confidence)
        rows = (
            query.order_by(desc(DiscoveredPattern.confidence_score), desc(DiscoveredPattern.last_seen))
            .limit(limit)
            .all()
        )
        return [_serialize_pattern(row) for row in rows]
    finally:
        db.close()


class PatternHandler:
    """Per-instance pattern state: counters of what this instance has stored."""

    def __init__(self, discovery: "PatternDiscovery", agent_id: Any, user_id: str, instance_key: str):
        self.discovery = discovery
        self.agent_id = agent_id
        self.user_id = user_id
        self.instance_key = instance_key
        self.analyses = 0
        self.combinations: Counter = Counter()
        self.domains: Counter = Counter()
        self.discoveries: list[dict] = []
        self.last_analysis: Optional[datetime] = None

    async def analyze_new_memory(self, content: Any, context: Any, storage_results: Mapping[str, Any]) -> list[dict]:
        """Update counters from one store call and upsert any pattern that became confident."""
        ctx = MemoryContext.from_value(context)
        results = storage_results.get("results") or {}
        active_types = sorted(
            memory_type for memory_type, result in results.items()
            if isinstance(result, Mapping) and result.get("stored")
        )
        self.analyses += 1
        found = []

        if len(active_types) > 1:
            combination = "+".join(active_types)
            self.combinations[combination] += 1
            count = self.combinations[combination]
            frequency = count / self.analyses
            confidence = combination_confidence(frequency)
            if count >= self.discovery.min_support and confidence >= self.discovery.confidence_threshold:
                found.append(
                    {
                        "pattern_type": "memory_combination",
                        "pattern_name": f"Memory types used together: {combination}",
                        "confidence": confidence,
                        "pattern_data": {
                            "combination": combination,
                            "frequency": frequency,
                            "historical_count": count,
                        },
                        "memory_types": active_types,
                    }
                )

        domain = ctx.domain or "general"
        self.domains[domain] += 1
        if self.analyses >= self.discovery.min_support:
            frequency = self.domains[domain] / self.analyses
            confidence = domain_confidence(frequency)
            if confidence >= self.discovery.confidence_threshold:
                found.append(
                    {
                        "pattern_type": "domain_preference",
                        "pattern_name": f"Frequent domain: {domain}",
                        "confidence": confidence,
                        "pattern_data": {
                            "domain": domain,
                            "frequency": frequency,
                            "domain_distribution": dict(self.domains),
                        },
                        "memory_types": active_types,
                    }
                )

        for pattern in found:
            await asyncio.to_thread(
                _upsert_pattern_sync,
                self.instance_key,
                pattern["pattern_type"],
                pattern["pattern_name"],
                pattern["confidence"],
                pattern["pattern_data"],
                pattern["memory_types"],
            )
            self.discoveries.append({"pattern": pattern, "discovered_at": datetime.utcnow().isoformat()})
            self.discovery.record_discovery()

        self.last_analysis = datetime.utcnow()
        return found

    async def enhance_retrieval(self, memories: Mapping[str, list], query: Optional[str], context: Any) -> dict:
        """Boost candidates that match this instance's confident patterns."""
        patterns = await asyncio.to_thread(
            _list_patterns_sync,
            self.instance_key,
            None,
            self.discovery.confidence_threshold,
            RELEVANT_PATTERN_LIMIT,
        )
        enhanced = {}
        for memory_type, candidates in memories.items():
            if not patterns:
                enhanced[memory_type] = list(candidates)
                continue
            boosted = []
            for candidate in candidates:
                entry = dict(candidate)
                for pattern in patterns:
                    relevance = pattern_relevance(entry, memory_type, pattern)
                    if relevance > 0:
                        entry["relevance_score"] = (
                            (entry.get("relevance_score") or 0)
                            + relevance * pattern["confidence_score"] * ENHANCEMENT_WEIGHT
                        )
                boosted.append(entry)
            enhanced[memory_type] = boosted
        return enhanced


class PatternDiscovery:
    def __init__(
        self,
        confidence_threshold: Optional[float] = None,
        min_support: Optional[int] = None,
    ):
        self.initialized = False
        self.confidence_threshold = (
            config.PATTERN_CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        )
        self.min_support = config.PATTERN_MIN_SUPPORT if min_support is None else min_support
        self._handlers: dict[str, PatternHandler] = {}
        self.metrics = {
            "patterns_discovered": 0,
            "last_discovery": None,
        }

    async def initialize(self) -> None:
        self.initialized = True

    def create_instance_handler(self, agent_id: Any, user_id: str, instance_key: str) -> PatternHandler:
        handler = self._handlers.get(instance_key)
        if handler is None:
            handler = PatternHandler(self, agent_id, user_id, instance_key)
            self._handlers[instance_key] = handler
        return handler

    def release_handler(self, instance_key: str) -> None:
        self._handlers.pop(instance_key, None)

    def record_discovery(self) -> None:
        self.metrics["patterns_discovered"] += 1
        self.metrics["last_discovery"] = datetime.utcnow().isoformat()

    async def get_discovered_patterns(self, instance_key: str, options: Optional[dict] = None) -> list[dict]:
        options = options or {}
        limit = options.get("limit") or config.PATTERN_LIST_LIMIT_DEFAULT
        return await asyncio.to_thread(
            _list_patterns_sync,
            instance_key,
            options.get("type"),
            None,
            limit,
        )

    def get_stats(self) -> dict:
        return {
            "initialized": self.initialized,
            **self.metrics,
            "active_instances": len(self._handlers),
            "confidence_threshold": self.confidence_threshold,
            "min_support": self.min_support,
        }
