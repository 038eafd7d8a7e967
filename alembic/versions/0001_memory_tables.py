"""Create memory type and pattern tables.

Revision ID: 0001_memory_tables
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_memory_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    uuid_type = postgresql.UUID(as_uuid=False) if is_postgres else sa.String(length=36)

    op.create_table(
        "working_memory",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("agent_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("session_id", sa.String(length=255)),
        sa.Column("content", json_type, nullable=False),
        sa.Column("context_type", sa.String(length=50), nullable=False, server_default="text"),
        sa.Column("relevance_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("attention_sink", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("token_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_working_memory_agent_user", "working_memory", ["agent_id", "user_id"])
    op.create_index("ix_working_memory_expires_at", "working_memory", ["expires_at"])

    op.create_table(
        "episodic_memory",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("agent_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("session_id", sa.String(length=255), nullable=False),
        sa.Column("episode_type", sa.String(length=50), nullable=False, server_default="conversation"),
        sa.Column("content", json_type, nullable=False),
        sa.Column("context", json_type),
        sa.Column("outcome", sa.String(length=50)),
        sa.Column("user_satisfaction", sa.Float()),
        sa.Column("importance_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("session_duration", sa.Integer()),
        sa.Column("promoted_to_semantic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_episodic_memory_agent_user", "episodic_memory", ["agent_id", "user_id"])
    op.create_index("ix_episodic_memory_session", "episodic_memory", ["session_id"])

    op.create_table(
        "semantic_memory",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("agent_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("content", json_type, nullable=False),
        sa.Column("knowledge_type", sa.String(length=50), nullable=False, server_default="fact"),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("source_type", sa.String(length=50)),
        sa.Column("source_id", sa.String(length=255)),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_semantic_memory_agent_user", "semantic_memory", ["agent_id", "user_id"])

    op.create_table(
        "procedural_memory",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("agent_id", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("procedure_name", sa.String(length=255), nullable=False),
        sa.Column("procedure_type", sa.String(length=50), nullable=False, server_default="behavior"),
        sa.Column("procedure_data", json_type, nullable=False),
        sa.Column("context_conditions", json_type),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("adaptation_history", json_type),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "agent_id", "user_id", "procedure_name",
            name="uq_procedural_memory_agent_user_name",
        ),
    )
    op.create_index("ix_procedural_memory_agent_user", "procedural_memory", ["agent_id", "user_id"])

    op.create_table(
        "discovered_patterns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instance_key", sa.String(length=300), nullable=False),
        sa.Column("pattern_type", sa.String(length=50), nullable=False),
        sa.Column("pattern_name", sa.String(length=255), nullable=False),
        sa.Column("pattern_data", json_type),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("occurrences", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("memory_types", json_type),
        sa.Column("last_seen", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "instance_key", "pattern_type", "pattern_name",
            name="uq_discovered_patterns_key_type_name",
        ),
    )
    op.create_index("ix_discovered_patterns_instance_key", "discovered_patterns", ["instance_key"])


def downgrade() -> None:
    op.drop_index("ix_discovered_patterns_instance_key", table_name="discovered_patterns")
    op.drop_table("discovered_patterns")
    op.drop_index("ix_procedural_memory_agent_user", table_name="procedural_memory")
    op.drop_table("procedural_memory")
    op.drop_index("ix_semantic_memory_agent_user", table_name="semantic_memory")
    op.drop_table("semantic_memory")
    op.drop_index("ix_episodic_memory_session", table_name="episodic_memory")
    op.drop_index("ix_episodic_memory_agent_user", table_name="episodic_memory")
    op.drop_table("episodic_memory")
    op.drop_index("ix_working_memory_expires_at", table_name="working_memory")
    op.drop_index("ix_working_memory_agent_user", table_name="working_memory")
    op.drop_table("working_memory")
