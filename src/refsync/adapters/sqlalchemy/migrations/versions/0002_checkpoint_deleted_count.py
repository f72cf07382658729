"""Record the deletion pass result on the checkpoint.

Revision ID: 0002_checkpoint_deleted_count
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_checkpoint_deleted_count"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("reconcile_checkpoint") as batch_op:
        batch_op.add_column(
            sa.Column("deleted_or_stale", sa.Integer(), nullable=False, server_default="0")
        )


def downgrade() -> None:
    with op.batch_alter_table("reconcile_checkpoint") as batch_op:
        batch_op.drop_column("deleted_or_stale")
