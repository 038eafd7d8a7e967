"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "AgentMemory",
        "version": "0.1.0",
        "description": "Multi-tier memory service for AI agents",
        "database_backend": config.DB_BACKEND_EFFECTIVE,
        "caption_provider": config.CAPTION_PROVIDER,
        "endpoints": {
            "health": "/health",
            "store": "/memory/store",
            "retrieve": "/memory/retrieve",
            "visual": "/memory/visual/{agent_id}/{user_id}",
            "patterns": "/memory/patterns/{agent_id}/{user_id}",
            "evolution_stats": "/memory/evolution/stats",
            "evolution_history": "/memory/evolution/history/{agent_id}/{user_id}",
            "stats": "/memory/stats",
            "clear": "/memory/instance/{agent_id}/{user_id}",
            "behavior": "/memory/procedural/{agent_id}/{user_id}/behavior/{behavior_id}",
        },
    }
