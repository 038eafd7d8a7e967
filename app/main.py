"""
Standalone FastAPI app wiring for AgentMemory.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.db import dispose_db, init_db
from core.services.memory_service import AgentMemoryService
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.memory import router as memory_router
from app.routes.root import router as root_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    service = AgentMemoryService()
    await service.start()
    app.state.memory_service = service
    try:
        yield
    finally:
        await service.shutdown()
        app.state.memory_service = None
        dispose_db()


app = FastAPI(title="AgentMemory", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)

app.include_router(health_router)
app.include_router(root_router)
app.include_router(memory_router)
