"""Add memory evolution log table.

Revision ID: 0002_memory_evolution_log
Revises: 0001_memory_tables
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_memory_evolution_log"
down_revision = "0001_memory_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "memory_evolution_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("instance_key", sa.String(length=300), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("strategies_changed", json_type),
        sa.Column("avg_fitness", sa.Float()),
        sa.Column("evolution_data", json_type),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_memory_evolution_log_instance_key",
        "memory_evolution_log",
        ["instance_key"],
    )


def downgrade() -> None:
    op.drop_index("ix_memory_evolution_log_instance_key", table_name="memory_evolution_log")
    op.drop_table("memory_evolution_log")
