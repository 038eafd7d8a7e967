"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from core.services.memory_service import AgentMemoryService


def get_memory_service(request: Request) -> AgentMemoryService:
    service = getattr(request.app.state, "memory_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Memory service not initialized")
    return service
