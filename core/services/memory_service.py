"""
Agent memory orchestration service.

Routes each write to the memory types the classifier selects, fans reads out
to all four stores, ranks the merged candidates, captions screenshots for
visual memories and keeps the registry, background queue and lifecycle loops
running for the life of the process.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func

import core.config as config
from core.context import MemoryContext, resolve_agent_id
from core.db import DB, check_db_health
from core.errors import ValidationIssue
from core.models import (
    DiscoveredPattern,
    EpisodicMemory,
    ProceduralMemory,
    SemanticMemory,
    WorkingMemory,
)
from core.services.memory_background import BackgroundTaskQueue
from core.services.memory_captioning import build_caption_provider, generate_caption
from core.services.memory_classifier import determine_storage_targets
from core.services.memory_evolution import MemoryEvolution
from core.services.memory_isolation import MemoryIsolation
from core.services.memory_lifecycle import MemoryLifecycle
from core.services.memory_metrics import ServiceMetrics
from core.services.memory_patterns import PatternDiscovery
from core.services.memory_ranking import rank_memories
from core.services.memory_registry import (
    MemoryInstance,
    MemoryInstanceRegistry,
    default_store_factory,
    instance_key,
)
from core.services.memory_visual import (
    VisualMemoryRequest,
    episodic_visual_write,
    working_reference_write,
    working_visual_write,
)
from core.validators import (
    VISUAL_MEMORY_TYPES,
    validate_identifier as _validate_identifier,
    validate_limit as _validate_limit,
    validate_memory_type as _validate_memory_type,
    validate_metadata as _validate_metadata,
    validate_optional_text as _validate_optional_text,
)

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

MEMORY_TYPES = ["working", "episodic", "semantic", "procedural"]
FEATURES = ["pattern_discovery", "memory_evolution", "isolation", "agent_agnostic"]
RECENT_VIOLATIONS_LIMIT = 20

MEMORY_TABLES = {
    "working": WorkingMemory,
    "episodic": EpisodicMemory,
    "semantic": SemanticMemory,
    "procedural": ProceduralMemory,
}


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


# =============================================================================
# Database helpers
# =============================================================================


def _clear_memories_sync(agent_id: str, user_id: str, key: str) -> dict:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        deleted = {}
        for memory_type, model in MEMORY_TABLES.items():
            deleted[memory_type] = (
                db.query(model)
                .filter(model.agent_id == agent_id, model.user_id == user_id)
                .delete(synchronize_session=False)
            )
        deleted["patterns"] = (
            db.query(DiscoveredPattern)
            .filter(DiscoveredPattern.instance_key == key)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _count_rows_sync() -> dict:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        return {
            "total_working_memories": db.query(func.count(WorkingMemory.id)).scalar() or 0,
            "total_episodic_memories": db.query(func.count(EpisodicMemory.id)).scalar() or 0,
            "total_semantic_memories": db.query(func.count(SemanticMemory.id)).scalar() or 0,
            "total_procedural_memories": db.query(func.count(ProceduralMemory.id)).scalar() or 0,
            "total_patterns": db.query(func.count(DiscoveredPattern.id)).scalar() or 0,
        }
    finally:
        db.close()


# =============================================================================
# Service
# =============================================================================


class AgentMemoryService:
    def __init__(
        self,
        store_factory=default_store_factory,
        pattern_discovery: Optional[PatternDiscovery] = None,
        memory_evolution: Optional[MemoryEvolution] = None,
        isolation: Optional[MemoryIsolation] = None,
        caption_provider=None,
        background: Optional[BackgroundTaskQueue] = None,
        metrics: Optional[ServiceMetrics] = None,
        clock=time.monotonic,
    ):
        self.metrics = metrics or ServiceMetrics()
        self.pattern_discovery = pattern_discovery or PatternDiscovery()
        self.memory_evolution = memory_evolution or MemoryEvolution()
        self.isolation = isolation or MemoryIsolation()
        self.caption_provider = caption_provider if caption_provider is not None else build_caption_provider()
        self.background = background or BackgroundTaskQueue()
        self.registry = MemoryInstanceRegistry(
            store_factory=store_factory,
            pattern_discovery=self.pattern_discovery,
            isolation=self.isolation,
            metrics=self.metrics,
            clock=clock,
        )
        self.lifecycle = MemoryLifecycle(
            self.registry,
            self.metrics,
            on_evicted=self.memory_evolution.forget_instance,
        )
        self.initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        if self.initialized:
            return
        await self.pattern_discovery.initialize()
        await self.memory_evolution.initialize()
        await self.isolation.initialize()
        self.initialized = True
        logger.info("Agent memory service initialized")

    async def start(self) -> None:
        """Initialize and start the background worker and periodic loops."""
        await self.initialize()
        self.background.start()
        self.lifecycle.start()

    async def shutdown(self) -> None:
        await self.lifecycle.stop()
        await self.background.stop(drain=True)
        self.registry.clear()
        self.initialized = False
        logger.info("Agent memory service stopped")

    async def get_memory_instance(self, agent_id: Any, user_id: Any) -> MemoryInstance:
        agent_id = resolve_agent_id(agent_id)
        _validate_identifier(agent_id, "agent_id")
        _validate_identifier(user_id, "user_id")
        if not self.initialized:
            await self.initialize()
        if not self.background.running:
            # used without start(): post-store hooks still need a worker
            self.background.start()
        return await self.registry.get_or_create(agent_id, user_id)

    # -------------------------------------------------------------------------
    # Store / retrieve
    # -------------------------------------------------------------------------

    async def store_memory(self, content: Any, context: Any, metadata: Optional[dict] = None) -> dict:
        """
        Write content to every memory type the classifier selects.

        All selected writes settle before this returns. A failed write turns
        the whole call into ``success: False``; writes that already landed in
        sibling stores are kept.
        """
        start = time.perf_counter()
        try:
            ctx = MemoryContext.from_value(context)
            metadata = dict(metadata or {})
            _validate_metadata(metadata, "metadata")
            if ctx.user_id is None:
                raise ValidationIssue("user_id is required", field="user_id", error_type="required")
            instance = await self.get_memory_instance(ctx.agent_id, ctx.user_id)

            selected = determine_storage_targets(content, ctx, metadata).as_list()
            stores = instance.stores()
            outcomes = await asyncio.gather(
                *(stores[memory_type].store(content, ctx, metadata) for memory_type in selected),
                return_exceptions=True,
            )
            for memory_type, outcome in zip(selected, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Memory write failed",
                        extra={"instance_key": instance.key, "memory_type": memory_type, "error": str(outcome)},
                    )
                    raise outcome

            response_time = _elapsed_ms(start)
            self.metrics.record_request(response_time)
            response = {
                "success": True,
                "response_time_ms": response_time,
                "storage_targets": selected,
                "results": dict(zip(selected, outcomes)),
            }
            self._queue_post_store(instance, content, ctx, response)
            return response
        except Exception as exc:
            logger.error(f"Memory store failed: {exc}")
            return {"success": False, "error": str(exc), "response_time_ms": _elapsed_ms(start)}

    def _queue_post_store(self, instance: MemoryInstance, content: Any, ctx: MemoryContext, response: dict) -> None:
        if instance.patterns is not None:
            self.background.submit(
                f"patterns:{instance.key}",
                lambda: self._analyze_patterns(instance, content, ctx, response),
            )
        self.background.submit(
            f"evolution:{instance.key}",
            lambda: self.memory_evolution.evaluate_evolution(instance, content, ctx),
        )

    async def _analyze_patterns(self, instance: MemoryInstance, content: Any, ctx: MemoryContext, response: dict) -> None:
        found = await instance.patterns.analyze_new_memory(content, ctx, response)
        if found:
            self.metrics.record_pattern_discoveries(len(found))

    async def retrieve_memory(self, query: Optional[str], context: Any, options: Optional[dict] = None) -> dict:
        start = time.perf_counter()
        try:
            ctx = MemoryContext.from_value(context)
            options = dict(options or {})
            limit = options.get("limit", config.DEFAULT_RETRIEVE_LIMIT)
            _validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
            _validate_optional_text(query, "query", config.MAX_QUERY_LENGTH)
            if ctx.user_id is None:
                raise ValidationIssue("user_id is required", field="user_id", error_type="required")
            instance = await self.get_memory_instance(ctx.agent_id, ctx.user_id)

            stores = instance.stores()
            outcomes = await asyncio.gather(
                *(store.retrieve(query, ctx, options) for store in stores.values()),
                return_exceptions=True,
            )
            for memory_type, outcome in zip(stores, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Memory read failed",
                        extra={"instance_key": instance.key, "memory_type": memory_type, "error": str(outcome)},
                    )
                    raise outcome

            per_type = {memory_type: list(outcome) for memory_type, outcome in zip(stores, outcomes)}
            breakdown = {memory_type: len(candidates) for memory_type, candidates in per_type.items()}
            if instance.isolation is not None:
                per_type = {
                    memory_type: self.isolation.filter_results(instance.isolation, memory_type, candidates)
                    for memory_type, candidates in per_type.items()
                }
            if instance.patterns is not None:
                try:
                    per_type = await instance.patterns.enhance_retrieval(per_type, query, ctx)
                except Exception as exc:
                    logger.warning(f"Pattern enhancement failed: {exc}")

            memories = rank_memories(per_type, ctx, {"limit": limit})
            response_time = _elapsed_ms(start)
            self.metrics.record_request(response_time)
            return {
                "success": True,
                "response_time_ms": response_time,
                "memories": memories,
                "breakdown": breakdown,
            }
        except Exception as exc:
            logger.error(f"Memory retrieve failed: {exc}")
            return {
                "success": False,
                "error": str(exc),
                "response_time_ms": _elapsed_ms(start),
                "memories": [],
            }

    # -------------------------------------------------------------------------
    # Visual memories
    # -------------------------------------------------------------------------

    async def store_visual_memory_with_llm(
        self,
        agent_id: Any,
        user_id: Any,
        memory_type: str,
        visual_memory_data: Any,
    ) -> dict:
        """
        Caption a screenshot and store it as a working or episodic memory.

        Episodic writes also leave a working-memory reference to the stored
        visual memory so the current context can point at it.
        """
        start = time.perf_counter()
        try:
            _validate_memory_type(memory_type, VISUAL_MEMORY_TYPES)
            instance = await self.get_memory_instance(agent_id, user_id)
            request = VisualMemoryRequest.from_value(visual_memory_data)
            caption = await generate_caption(
                self.caption_provider,
                request.query,
                request.image_data,
                request.is_descriptive,
                request.metadata,
            )

            if memory_type == "working":
                result = await instance.working.store(*working_visual_write(request, caption))
            else:
                result = await instance.episodic.store(*episodic_visual_write(request, caption))
                await instance.working.store(*working_reference_write(request, result["id"], caption))

            logger.info(
                "Visual memory stored",
                extra={"instance_key": instance.key, "memory_type": memory_type, "memory_id": result.get("id")},
            )
            return {
                "success": True,
                "memory_id": result.get("id"),
                "caption": caption,
                "memory_type": memory_type,
                "response_time_ms": _elapsed_ms(start),
            }
        except Exception as exc:
            logger.error(f"Failed to store visual memory in {memory_type}: {exc}")
            return {
                "success": False,
                "error": str(exc),
                "memory_type": memory_type,
                "response_time_ms": _elapsed_ms(start),
            }

    async def record_behavior_execution(
        self,
        agent_id: Any,
        user_id: Any,
        behavior_id: str,
        success: bool,
        feedback: Optional[dict] = None,
    ) -> dict:
        instance = await self.get_memory_instance(agent_id, user_id)
        return await instance.procedural.record_execution(behavior_id, success, feedback)

    # -------------------------------------------------------------------------
    # Patterns / evolution
    # -------------------------------------------------------------------------

    async def get_discovered_patterns(self, agent_id: Any, user_id: Any, options: Optional[dict] = None) -> list[dict]:
        try:
            return await self.pattern_discovery.get_discovered_patterns(instance_key(agent_id, user_id), options)
        except Exception as exc:
            logger.warning(f"Failed to get discovered patterns: {exc}")
            return []

    def get_evolution_stats(self) -> dict:
        return self.memory_evolution.get_stats()

    def get_evolution_history(self, agent_id: Any, user_id: Any, options: Optional[dict] = None) -> list[dict]:
        options = options or {}
        return self.memory_evolution.get_evolution_history(instance_key(agent_id, user_id), options.get("limit"))

    # -------------------------------------------------------------------------
    # Maintenance / stats
    # -------------------------------------------------------------------------

    async def clear_memories(self, agent_id: Any, user_id: Any) -> dict:
        """Drop the live instance and delete every stored row for the pair."""
        agent_id = resolve_agent_id(agent_id)
        key = instance_key(agent_id, user_id)
        self.registry.remove(key)
        self.memory_evolution.forget_instance(key)
        try:
            deleted = await asyncio.to_thread(_clear_memories_sync, str(agent_id), str(user_id), key)
        except Exception as exc:
            logger.error(f"Failed to clear memories for {key}: {exc}")
            raise
        logger.info("Cleared memories", extra={"instance_key": key, **deleted})
        return deleted

    def get_stats(self) -> dict:
        return {
            "initialized": self.initialized,
            **self.metrics.snapshot(),
            "memory_types": list(MEMORY_TYPES),
            "features": list(FEATURES),
        }

    async def get_system_stats(self) -> dict:
        stats = {
            "service": self.get_stats(),
            "pattern_discovery": self.pattern_discovery.get_stats(),
            "memory_evolution": {
                **self.memory_evolution.get_stats(),
                "current_strategies": self.memory_evolution.get_current_strategies(),
            },
            "memory_isolation": {
                **self.isolation.get_stats(),
                "recent_violations": self.isolation.get_violations(RECENT_VIOLATIONS_LIMIT),
            },
            "background": self.background.stats(),
            "database": {
                "total_working_memories": 0,
                "total_episodic_memories": 0,
                "total_semantic_memories": 0,
                "total_procedural_memories": 0,
                "total_patterns": 0,
            },
        }
        try:
            stats["database"].update(await asyncio.to_thread(_count_rows_sync))
        except Exception as exc:
            logger.warning(f"Failed to count stored memories: {exc}")
            stats["database"]["error"] = str(exc)
        return stats

    async def health_check(self) -> dict:
        if not self.initialized:
            return {"status": "not_initialized"}
        try:
            db_health = await asyncio.to_thread(check_db_health)
            if not db_health.get("ok"):
                raise RuntimeError(db_health.get("error") or "database unavailable")
            return {
                "status": "healthy",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "service": self.initialized,
                    "pattern_discovery": self.pattern_discovery.initialized,
                    "memory_evolution": self.memory_evolution.initialized,
                    "memory_isolation": self.isolation.initialized,
                    "database": True,
                },
                "metrics": self.get_stats(),
            }
        except Exception as exc:
            return {
                "status": "unhealthy",
                "timestamp": datetime.utcnow().isoformat(),
                "error": str(exc),
                "components": {
                    "service": False,
                    "pattern_discovery": False,
                    "memory_evolution": False,
                    "memory_isolation": False,
                    "database": False,
                },
            }
