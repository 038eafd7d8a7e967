"""
Shared configuration for the agent memory core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agentmemory")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/agentmemory.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Instance registry
DEFAULT_AGENT_ID = _get_int("AGENTMEMORY_DEFAULT_AGENT_ID", 1)
INSTANCE_IDLE_TIMEOUT_SECONDS = _get_int("INSTANCE_IDLE_TIMEOUT_SECONDS", 30 * 60)

# Lifecycle cadence
WORKING_CLEANUP_INTERVAL_SECONDS = _get_int("WORKING_CLEANUP_INTERVAL_SECONDS", 5 * 60)
INSTANCE_SWEEP_INTERVAL_SECONDS = _get_int("INSTANCE_SWEEP_INTERVAL_SECONDS", 30 * 60)
STATS_INTERVAL_SECONDS = _get_int("STATS_INTERVAL_SECONDS", 5 * 60)
STATS_SMOOTHING_ALPHA = _get_float("STATS_SMOOTHING_ALPHA", 0.1)

# Background hooks
BACKGROUND_QUEUE_SIZE = _get_int("BACKGROUND_QUEUE_SIZE", 1000)

# Working memory
WORKING_MEMORY_TTL_SECONDS = _get_int("WORKING_MEMORY_TTL_SECONDS", 60 * 60)
WORKING_MEMORY_MAX_ENTRIES = _get_int("WORKING_MEMORY_MAX_ENTRIES", 50)
WORKING_ATTENTION_SINK_THRESHOLD = _get_float("WORKING_ATTENTION_SINK_THRESHOLD", 0.8)

# Episodic memory
EPISODIC_PROMOTION_THRESHOLD = _get_float("EPISODIC_PROMOTION_THRESHOLD", 0.8)

# Procedural memory
PROCEDURAL_ADAPTATION_RATE = _get_float("PROCEDURAL_ADAPTATION_RATE", 0.1)

# Request/input limits
DEFAULT_RETRIEVE_LIMIT = _get_int("AGENTMEMORY_DEFAULT_RETRIEVE_LIMIT", 10)
MAX_RESULT_LIMIT = _get_int("AGENTMEMORY_MAX_RESULT_LIMIT", 100)
MAX_QUERY_LENGTH = _get_int("AGENTMEMORY_MAX_QUERY_LENGTH", 4000)
MAX_SHORT_TEXT_LENGTH = _get_int("AGENTMEMORY_MAX_SHORT_TEXT_LENGTH", 255)
MAX_METADATA_BYTES = _get_int("AGENTMEMORY_MAX_METADATA_BYTES", 20000)
STORE_SCAN_LIMIT = _get_int("AGENTMEMORY_STORE_SCAN_LIMIT", 200)

# Pattern discovery
PATTERN_CONFIDENCE_THRESHOLD = _get_float("PATTERN_CONFIDENCE_THRESHOLD", 0.7)
PATTERN_MIN_SUPPORT = _get_int("PATTERN_MIN_SUPPORT", 3)
PATTERN_LIST_LIMIT_DEFAULT = _get_int("PATTERN_LIST_LIMIT_DEFAULT", 20)

# Memory evolution
EVOLUTION_ENABLED = _get_bool("EVOLUTION_ENABLED", True)
EVOLUTION_INTERVAL_SECONDS = _get_int("EVOLUTION_INTERVAL_SECONDS", 12 * 60 * 60)
EVOLUTION_PERFORMANCE_THRESHOLD = _get_float("EVOLUTION_PERFORMANCE_THRESHOLD", 0.8)
EVOLUTION_MIN_OPERATIONS = _get_int("EVOLUTION_MIN_OPERATIONS", 25)
EVOLUTION_MUTATION_RATE = _get_float("EVOLUTION_MUTATION_RATE", 0.05)
EVOLUTION_HISTORY_LIMIT = _get_int("EVOLUTION_HISTORY_LIMIT", 50)

# Caption provider
CAPTION_PROVIDER = os.environ.get("CAPTION_PROVIDER", "openai").strip().lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
CAPTION_MODEL = os.environ.get("CAPTION_MODEL", "gpt-4o")
CAPTION_MAX_TOKENS = _get_int("CAPTION_MAX_TOKENS", 300)
CAPTION_TIMEOUT_SECONDS = _get_float("CAPTION_TIMEOUT_SECONDS", 30.0)
CAPTION_RETRY_MAX = _get_int("CAPTION_RETRY_MAX", 2)
CAPTION_RETRY_BACKOFF_SECONDS = _get_float("CAPTION_RETRY_BACKOFF_SECONDS", 0.5)
CAPTION_RETRY_JITTER_SECONDS = _get_float("CAPTION_RETRY_JITTER_SECONDS", 0.25)
CAPTION_FAILURE_THRESHOLD = _get_int("CAPTION_FAILURE_THRESHOLD", 5)
CAPTION_COOLDOWN_SECONDS = _get_int("CAPTION_COOLDOWN_SECONDS", 60)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if CAPTION_PROVIDER not in {"openai", "none"}:
        errors.append("CAPTION_PROVIDER must be 'openai' or 'none'")
    if CAPTION_PROVIDER == "openai" and not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; visual captions will use fallback templates.")

    if not 0.0 < STATS_SMOOTHING_ALPHA <= 1.0:
        errors.append("STATS_SMOOTHING_ALPHA must be in (0, 1]")
    if WORKING_MEMORY_TTL_SECONDS <= 0:
        errors.append("WORKING_MEMORY_TTL_SECONDS must be positive")
    if BACKGROUND_QUEUE_SIZE <= 0:
        errors.append("BACKGROUND_QUEUE_SIZE must be positive")

    DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
