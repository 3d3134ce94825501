"""analytics snapshots

Revision ID: 202610201000
Revises: 202610190900
Create Date: 2026-10-20 10:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610201000"
down_revision = "202610190900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "analytics_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cache_key", sa.String(length=160), nullable=False, unique=True),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("granularity", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_analytics_snapshots_subject_id", "analytics_snapshots", ["subject_id"]
    )
    op.create_index(
        "ix_analytics_snapshots_computed_at", "analytics_snapshots", ["computed_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_analytics_snapshots_computed_at", table_name="analytics_snapshots")
    op.drop_index("ix_analytics_snapshots_subject_id", table_name="analytics_snapshots")
    op.drop_table("analytics_snapshots")
