"""
AgentMemory - multi-tier memory service for AI agents
Process entry point for the FastAPI app.
"""

import os

import uvicorn

import core.config as config
from app.main import app

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = config._get_int("PORT", 8080)


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    config.logger.info("AgentMemory starting...")
    uvicorn.run(app, host=HOST, port=PORT)
