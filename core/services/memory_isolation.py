"""
Per-instance isolation contexts.

Each memory instance gets one context; retrieval results are filtered through
it so a candidate owned by another (agent_id, user_id) pair never leaks out.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

import core.config as config

logger = config.logger

AUDIT_LOG_LIMIT = 500


@dataclass
class IsolationContext:
    context_id: str
    agent_id: str
    user_id: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_accessed: datetime = field(default_factory=datetime.utcnow)
    access_count: int = 0
    violations: int = 0

    def touch(self) -> None:
        self.last_accessed = datetime.utcnow()
        self.access_count += 1

    def owns(self, candidate: dict) -> bool:
        agent_id = candidate.get("agent_id")
        user_id = candidate.get("user_id")
        if agent_id is None and user_id is None:
            return True
        return str(agent_id) == self.agent_id and str(user_id) == self.user_id


class MemoryIsolation:
    def __init__(self):
        self.initialized = False
        self._contexts: dict[str, IsolationContext] = {}
        self._audit: deque = deque(maxlen=AUDIT_LOG_LIMIT)
        self.metrics = {
            "total_isolation_contexts": 0,
            "access_denials": 0,
            "cross_contamination_prevented": 0,
        }

    async def initialize(self) -> None:
        self.initialized = True

    def create_context(self, agent_id: Any, user_id: str) -> IsolationContext:
        context_id = f"{agent_id}:{user_id}"
        existing = self._contexts.get(context_id)
        if existing is not None:
            return existing
        context = IsolationContext(context_id=context_id, agent_id=str(agent_id), user_id=str(user_id))
        self._contexts[context_id] = context
        self.metrics["total_isolation_contexts"] += 1
        return context

    def release_context(self, context_id: str) -> None:
        self._contexts.pop(context_id, None)

    def filter_results(self, context: IsolationContext, memory_type: str, candidates: Iterable[dict]) -> list[dict]:
        context.touch()
        kept = []
        for candidate in candidates:
            if context.owns(candidate):
                kept.append(candidate)
                continue
            context.violations += 1
            self.metrics["access_denials"] += 1
            self.metrics["cross_contamination_prevented"] += 1
            self._audit.append(
                {
                    "timestamp": datetime.utcnow().isoformat(),
                    "context_id": context.context_id,
                    "memory_type": memory_type,
                    "candidate_id": candidate.get("id"),
                }
            )
            logger.warning(
                "Dropped memory candidate outside isolation boundary",
                extra={"context_id": context.context_id, "memory_type": memory_type},
            )
        return kept

    def get_violations(self, limit: int = 50) -> list[dict]:
        return list(self._audit)[-limit:]

    def get_stats(self) -> dict:
        return {
            "initialized": self.initialized,
            **self.metrics,
            "active_contexts": len(self._contexts),
            "audit_log_size": len(self._audit),
        }
