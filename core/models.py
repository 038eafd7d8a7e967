"""
AgentMemory Database Models
Four memory-type tables plus pattern and evolution bookkeeping.
"""

from datetime import datetime
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean,
    DateTime, Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=False) if DB_BACKEND_EFFECTIVE == "postgres" else String(36)


def _uuid_default() -> str:
    return str(uuid.uuid4())


Base = declarative_base()


# =============================================================================
# Working Memory (short-lived, TTL bound)
# =============================================================================

class WorkingMemory(Base):
    __tablename__ = "working_memory"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    agent_id = Column(String(100), nullable=False)
    user_id = Column(String(255), nullable=False)
    session_id = Column(String(255))
    content = Column(JSON_TYPE, nullable=False)
    context_type = Column(String(50), nullable=False, default="text")
    relevance_score = Column(Float, nullable=False, default=0.5)
    attention_sink = Column(Boolean, nullable=False, default=False)
    token_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_working_memory_agent_user", "agent_id", "user_id"),
        Index("ix_working_memory_expires_at", "expires_at"),
    )


# =============================================================================
# Episodic Memory (session-scoped interactions)
# =============================================================================

class EpisodicMemory(Base):
    __tablename__ = "episodic_memory"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    agent_id = Column(String(100), nullable=False)
    user_id = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=False)
    episode_type = Column(String(50), nullable=False, default="conversation")
    content = Column(JSON_TYPE, nullable=False)
    context = Column(JSON_TYPE, default=dict)
    outcome = Column(String(50))
    user_satisfaction = Column(Float)
    importance_score = Column(Float, nullable=False, default=0.5)
    session_duration = Column(Integer)
    promoted_to_semantic = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_episodic_memory_agent_user", "agent_id", "user_id"),
        Index("ix_episodic_memory_session", "session_id"),
    )


# =============================================================================
# Semantic Memory (long-lived knowledge)
# =============================================================================

class SemanticMemory(Base):
    __tablename__ = "semantic_memory"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    agent_id = Column(String(100), nullable=False)
    user_id = Column(String(255), nullable=False)
    content = Column(JSON_TYPE, nullable=False)
    knowledge_type = Column(String(50), nullable=False, default="fact")
    confidence_score = Column(Float, nullable=False, default=0.5)
    source_type = Column(String(50))
    source_id = Column(String(255))
    usage_count = Column(Integer, nullable=False, default=0)
    last_accessed = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_semantic_memory_agent_user", "agent_id", "user_id"),
    )


# =============================================================================
# Procedural Memory (learned behaviors)
# =============================================================================

class ProceduralMemory(Base):
    __tablename__ = "procedural_memory"

    id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    agent_id = Column(String(100), nullable=False)
    user_id = Column(String(255), nullable=False)
    procedure_name = Column(String(255), nullable=False)
    procedure_type = Column(String(50), nullable=False, default="behavior")
    procedure_data = Column(JSON_TYPE, nullable=False)
    context_conditions = Column(JSON_TYPE, default=dict)
    success_rate = Column(Float, nullable=False, default=0.5)
    usage_count = Column(Integer, nullable=False, default=0)
    adaptation_history = Column(JSON_TYPE, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "agent_id", "user_id", "procedure_name",
            name="uq_procedural_memory_agent_user_name",
        ),
        Index("ix_procedural_memory_agent_user", "agent_id", "user_id"),
    )


# =============================================================================
# Pattern discovery and evolution bookkeeping
# =============================================================================

class DiscoveredPattern(Base):
    __tablename__ = "discovered_patterns"

    id = Column(Integer, primary_key=True)
    instance_key = Column(String(300), nullable=False)
    pattern_type = Column(String(50), nullable=False)
    pattern_name = Column(String(255), nullable=False)
    pattern_data = Column(JSON_TYPE, default=dict)
    confidence_score = Column(Float, nullable=False, default=0.0)
    occurrences = Column(Integer, nullable=False, default=1)
    memory_types = Column(JSON_TYPE, default=list)
    last_seen = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "instance_key", "pattern_type", "pattern_name",
            name="uq_discovered_patterns_key_type_name",
        ),
        Index("ix_discovered_patterns_instance_key", "instance_key"),
    )


class MemoryEvolutionLog(Base):
    __tablename__ = "memory_evolution_log"

    id = Column(Integer, primary_key=True)
    instance_key = Column(String(300), nullable=False)
    generation = Column(Integer, nullable=False)
    reason = Column(String(50), nullable=False)
    strategies_changed = Column(JSON_TYPE, default=list)
    avg_fitness = Column(Float)
    evolution_data = Column(JSON_TYPE, default=dict)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_memory_evolution_log_instance_key", "instance_key"),
    )


MEMORY_MODELS = {
    "working": WorkingMemory,
    "episodic": EpisodicMemory,
    "semantic": SemanticMemory,
    "procedural": ProceduralMemory,
}
