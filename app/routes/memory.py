"""
Memory endpoints.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import core.config as config
from core.context import MemoryContext
from core.errors import ValidationIssue
from core.services.memory_service import AgentMemoryService
from core.validators import (
    VISUAL_MEMORY_TYPES,
    validate_identifier,
    validate_limit,
    validate_memory_type,
    validate_metadata,
    validate_optional_text,
)
from app.deps import get_memory_service


router = APIRouter(prefix="/memory")


class StoreRequest(BaseModel):
    content: Any = Field(..., description="Memory payload, text or object")
    context: dict[str, Any] = Field(..., description="agent_id, user_id and optional session_id")
    metadata: Optional[dict[str, Any]] = Field(None, description="Classification hints")


class RetrieveRequest(BaseModel):
    query: Optional[str] = Field(None, description="Free-text query")
    context: dict[str, Any] = Field(..., description="agent_id, user_id and optional session_id")
    limit: int = Field(config.DEFAULT_RETRIEVE_LIMIT, description="Maximum number of memories returned")


class VisualMemoryBody(BaseModel):
    memory_type: str = Field("working", description="working or episodic")
    query: Optional[str] = None
    image_data: Optional[str] = Field(None, description="Base64 screenshot or data URI")
    is_descriptive: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class BehaviorExecution(BaseModel):
    success: bool
    feedback: Optional[dict[str, Any]] = None


def _bad_request(exc: ValidationIssue) -> HTTPException:
    status_code = 404 if exc.error_type == "not_found" else 400
    return HTTPException(
        status_code=status_code,
        detail={"error": str(exc), "field": exc.field, "error_type": exc.error_type},
    )


def _validate_context(context: dict) -> MemoryContext:
    ctx = MemoryContext.from_value(context)
    if ctx.user_id is None:
        raise ValidationIssue("user_id is required", field="user_id", error_type="required")
    validate_identifier(ctx.agent_id, "agent_id")
    validate_identifier(ctx.user_id, "user_id")
    return ctx


@router.post("/store")
async def store_memory(body: StoreRequest, service: AgentMemoryService = Depends(get_memory_service)):
    try:
        _validate_context(body.context)
        validate_metadata(body.metadata, "metadata")
    except ValidationIssue as exc:
        raise _bad_request(exc) from exc
    result = await service.store_memory(body.content, body.context, body.metadata)
    if not result.get("success"):
        raise HTTPException(status_code=500, detail=result)
    return result


@router.post("/retrieve")
async def retrieve_memory(body: RetrieveRequest, service: AgentMemoryService = Depends(get_memory_service)):
    try:
        _validate_context(body.context)
        validate_optional_text(body.query, "query", config.MAX_QUERY_LENGTH)
        validate_limit(body.limit, "limit", config.MAX_RESULT_LIMIT)
    except ValidationIssue as exc:
        raise _bad_request(exc) from exc
    result = await service.retrieve_memory(body.query, body.context, {"limit": body.limit})
    if not result.get("success"):
        raise HTTPException(status_code=500, detail=result)
    return result


@router.post("/visual/{agent_id}/{user_id}")
async def store_visual_memory(
    agent_id: str,
    user_id: str,
    body: VisualMemoryBody,
    service: AgentMemoryService = Depends(get_memory_service),
):
    try:
        validate_memory_type(body.memory_type, VISUAL_MEMORY_TYPES)
        validate_metadata(body.metadata, "metadata")
    except ValidationIssue as exc:
        raise _bad_request(exc) from exc
    result = await service.store_visual_memory_with_llm(
        agent_id,
        user_id,
        body.memory_type,
        {
            "query": body.query,
            "image_data": body.image_data,
            "is_descriptive": body.is_descriptive,
            "metadata": body.metadata,
        },
    )
    if not result.get("success"):
        raise HTTPException(status_code=500, detail=result)
    return result


@router.get("/patterns/{agent_id}/{user_id}")
async def discovered_patterns(
    agent_id: str,
    user_id: str,
    type: Optional[str] = None,
    limit: int = config.PATTERN_LIST_LIMIT_DEFAULT,
    service: AgentMemoryService = Depends(get_memory_service),
):
    try:
        validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    except ValidationIssue as exc:
        raise _bad_request(exc) from exc
    patterns = await service.get_discovered_patterns(agent_id, user_id, {"type": type, "limit": limit})
    return {"patterns": patterns, "count": len(patterns)}


@router.get("/evolution/stats")
async def evolution_stats(service: AgentMemoryService = Depends(get_memory_service)):
    return service.get_evolution_stats()


@router.get("/evolution/history/{agent_id}/{user_id}")
async def evolution_history(
    agent_id: str,
    user_id: str,
    limit: Optional[int] = None,
    service: AgentMemoryService = Depends(get_memory_service),
):
    history = service.get_evolution_history(agent_id, user_id, {"limit": limit})
    return {"history": history, "count": len(history)}


@router.get("/stats")
async def system_stats(service: AgentMemoryService = Depends(get_memory_service)):
    return await service.get_system_stats()


@router.delete("/instance/{agent_id}/{user_id}")
async def clear_memories(agent_id: str, user_id: str, service: AgentMemoryService = Depends(get_memory_service)):
    deleted = await service.clear_memories(agent_id, user_id)
    return {"success": True, "deleted": deleted}


@router.post("/procedural/{agent_id}/{user_id}/behavior/{behavior_id}")
async def record_behavior_execution(
    agent_id: str,
    user_id: str,
    behavior_id: str,
    body: BehaviorExecution,
    service: AgentMemoryService = Depends(get_memory_service),
):
    try:
        behavior = await service.record_behavior_execution(agent_id, user_id, behavior_id, body.success, body.feedback)
    except ValidationIssue as exc:
        raise _bad_request(exc) from exc
    return {"success": True, "behavior": behavior}
