"""Create reference entity and checkpoint tables.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from refsync.adapters.sqlalchemy.mappings import UTCDateTime

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "reference_entity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("authority", sa.String(length=64), nullable=False),
        sa.Column("scheme", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("stale", sa.Boolean(), nullable=False),
        sa.Column("created_run_id", sa.Uuid(), nullable=True),
        sa.Column("seen_run_id", sa.Uuid(), nullable=True),
        sa.Column("changed_run_id", sa.Uuid(), nullable=True),
        sa.Column("updated_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_reference_entity")),
        sa.UniqueConstraint(
            "authority", "scheme", "code", name="uq_reference_entity_identity"
        ),
    )
    op.create_index(
        "ix_reference_entity_seen_run_id", "reference_entity", ["seen_run_id"], unique=False
    )
    op.create_table(
        "reconcile_checkpoint",
        sa.Column("run_key", sa.String(length=64), nullable=False),
        sa.Column("run_id", sa.Uuid(), nullable=False),
        sa.Column("source_url", sa.String(), nullable=False),
        sa.Column("cache_digest", sa.String(length=64), nullable=True),
        sa.Column("rows_consumed", sa.Integer(), nullable=False),
        sa.Column("chunks_committed", sa.Integer(), nullable=False),
        sa.Column("rows_skipped", sa.Integer(), nullable=False),
        sa.Column("finalized", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("step", sa.String(length=32), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("updated_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("run_key", name=op.f("pk_reconcile_checkpoint")),
    )


def downgrade() -> None:
    op.drop_table("reconcile_checkpoint")
    op.drop_index("ix_reference_entity_seen_run_id", table_name="reference_entity")
    op.drop_table("reference_entity")
