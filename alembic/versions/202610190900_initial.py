"""transaction copies and user profiles

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
TRANSACTION_STATUS = sa.Enum(
    "completed", "pending", "failed", name="transactionstatus"
)


def upgrade() -> None:
    op.create_table(
        "transaction_copies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("original_id", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("status", TRANSACTION_STATUS, nullable=False),
        sa.Column("last_modified_at", sa.DateTime(), nullable=False),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "original_id", "subject_id", name="uq_transaction_copy_original_subject"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transaction_copies_amount"),
    )
    op.create_index(
        "ix_transaction_copies_subject_occurred",
        "transaction_copies",
        ["subject_id", "occurred_at"],
    )
    op.create_index(
        "ix_transaction_copies_subject_type_occurred",
        "transaction_copies",
        ["subject_id", "type", "occurred_at"],
    )
    op.create_index(
        "ix_transaction_copies_subject_synced",
        "transaction_copies",
        ["subject_id", "synced_at"],
    )

    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subject_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=254), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column(
            "monthly_income_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_synced_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("user_profiles")
    op.drop_index(
        "ix_transaction_copies_subject_synced", table_name="transaction_copies"
    )
    op.drop_index(
        "ix_transaction_copies_subject_type_occurred", table_name="transaction_copies"
    )
    op.drop_index(
        "ix_transaction_copies_subject_occurred", table_name="transaction_copies"
    )
    op.drop_table("transaction_copies")
