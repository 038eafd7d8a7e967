"""
Health endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from core.services.memory_service import AgentMemoryService
from app.deps import get_memory_service


router = APIRouter()


@router.get("/health")
async def health(service: AgentMemoryService = Depends(get_memory_service)):
    """Health check endpoint."""
    status = await service.health_check()
    if status.get("status") != "healthy":
        raise HTTPException(status_code=503, detail=status)
    return {"service": "AgentMemory", "version": "0.1.0", **status}
