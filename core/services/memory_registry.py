"""
Registry of live memory instances, one per (agent_id, user_id).

Creation is single-flight: concurrent first lookups for the same key await
one shared initialization task. An instance is only registered once all of
its stores initialized; on failure nothing is kept.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import core.config as config
from core.context import resolve_agent_id
from core.errors import MemoryInitializationError
from core.services.episodic_memory import EpisodicMemoryStore
from core.services.memory_isolation import IsolationContext, MemoryIsolation
from core.services.memory_metrics import ServiceMetrics
from core.services.memory_patterns import PatternDiscovery, PatternHandler
from core.services.procedural_memory import ProceduralMemoryStore
from core.services.semantic_memory import SemanticMemoryStore
from core.services.working_memory import WorkingMemoryStore

logger = config.logger


def default_store_factory(agent_id: Any, user_id: str) -> dict:
    return {
        "working": WorkingMemoryStore(agent_id, user_id),
        "episodic": EpisodicMemoryStore(agent_id, user_id),
        "semantic": SemanticMemoryStore(agent_id, user_id),
        "procedural": ProceduralMemoryStore(agent_id, user_id),
    }


def instance_key(agent_id: Any, user_id: Any) -> str:
    return f"{resolve_agent_id(agent_id)}:{user_id}"


@dataclass
class MemoryInstance:
    key: str
    agent_id: Any
    user_id: str
    working: Any
    episodic: Any
    semantic: Any
    procedural: Any
    isolation: Optional[IsolationContext] = None
    patterns: Optional[PatternHandler] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_accessed: float = 0.0

    def stores(self) -> dict:
        return {
            "working": self.working,
            "episodic": self.episodic,
            "semantic": self.semantic,
            "procedural": self.procedural,
        }


class MemoryInstanceRegistry:
    def __init__(
        self,
        store_factory: Callable[[Any, str], dict] = default_store_factory,
        pattern_discovery: Optional[PatternDiscovery] = None,
        isolation: Optional[MemoryIsolation] = None,
        metrics: Optional[ServiceMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store_factory = store_factory
        self._pattern_discovery = pattern_discovery
        self._isolation = isolation
        self._metrics = metrics
        self._clock = clock
        self._instances: dict[str, MemoryInstance] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, key: str) -> bool:
        return key in self._instances

    def get(self, key: str) -> Optional[MemoryInstance]:
        return self._instances.get(key)

    def keys(self) -> list[str]:
        return list(self._instances)

    def _record_lookup(self, hit: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_instance_lookup(hit)

    def _update_gauge(self) -> None:
        if self._metrics is not None:
            self._metrics.set_instance_count(len(self._instances))

    async def get_or_create(self, agent_id: Any, user_id: Any) -> MemoryInstance:
        agent_id = resolve_agent_id(agent_id)
        user_id = str(user_id)
        key = instance_key(agent_id, user_id)

        instance = self._instances.get(key)
        if instance is not None:
            instance.last_accessed = self._clock()
            self._record_lookup(True)
            return instance

        task = self._inflight.get(key)
        if task is None:
            self._record_lookup(False)
            task = asyncio.create_task(self._create(key, agent_id, user_id), name=f"memory-instance:{key}")
            self._inflight[key] = task
        else:
            self._record_lookup(True)
        # one waiter being cancelled must not cancel the shared creation
        return await asyncio.shield(task)

    async def _create(self, key: str, agent_id: Any, user_id: str) -> MemoryInstance:
        handler = None
        isolation_context = None
        try:
            stores = self._store_factory(agent_id, user_id)
            if self._isolation is not None:
                isolation_context = self._isolation.create_context(agent_id, user_id)
            if self._pattern_discovery is not None:
                handler = self._pattern_discovery.create_instance_handler(agent_id, user_id, key)
            instance = MemoryInstance(
                key=key,
                agent_id=agent_id,
                user_id=user_id,
                working=stores["working"],
                episodic=stores["episodic"],
                semantic=stores["semantic"],
                procedural=stores["procedural"],
                isolation=isolation_context,
                patterns=handler,
                last_accessed=self._clock(),
            )
            results = await asyncio.gather(
                *(store.initialize() for store in instance.stores().values()),
                return_exceptions=True,
            )
            failures = [result for result in results if isinstance(result, BaseException)]
            if failures:
                raise failures[0]
        except Exception as exc:
            self._release(key, isolation_context is not None, handler is not None)
            logger.error(
                "Memory instance initialization failed",
                extra={"instance_key": key, "error": str(exc)},
            )
            if isinstance(exc, MemoryInitializationError):
                raise
            raise MemoryInitializationError(key, exc) from exc
        finally:
            self._inflight.pop(key, None)

        self._instances[key] = instance
        self._update_gauge()
        logger.info("Memory instance created", extra={"instance_key": key})
        return instance

    def _release(self, key: str, isolation: bool = True, patterns: bool = True) -> None:
        if isolation and self._isolation is not None:
            self._isolation.release_context(key)
        if patterns and self._pattern_discovery is not None:
            self._pattern_discovery.release_handler(key)

    def remove(self, key: str) -> Optional[MemoryInstance]:
        instance = self._instances.pop(key, None)
        if instance is not None:
            self._release(key)
            self._update_gauge()
        return instance

    def evict_inactive(self, idle_seconds: Optional[float] = None) -> list[str]:
        """Drop instances not accessed for more than ``idle_seconds``; returns their keys."""
        idle_seconds = config.INSTANCE_IDLE_TIMEOUT_SECONDS if idle_seconds is None else idle_seconds
        now = self._clock()
        evicted = [
            key for key, instance in self._instances.items()
            if now - instance.last_accessed > idle_seconds
        ]
        for key in evicted:
            self.remove(key)
        if evicted:
            logger.info("Evicted inactive memory instances", extra={"count": len(evicted)})
        return evicted

    def clear(self) -> None:
        for key in list(self._instances):
            self.remove(key)
