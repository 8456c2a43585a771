"""Add recovery_tokens table for single-use, purpose-tagged account tokens.

Revision ID: 20251127100000
Revises: 20251127000000
Create Date: 2025-11-27

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20251127100000"
down_revision: Union[str, None] = "20251127000000"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "recovery_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column(
            "purpose",
            sa.String(length=32),
            nullable=False,
            server_default="password_recovery",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_by_ip", sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recovery_tokens_token"), "recovery_tokens", ["token"], unique=True)
    op.create_index(
        "ix_recovery_tokens_account_active",
        "recovery_tokens",
        ["account_id", "is_used", "expires_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_recovery_tokens_account_active", table_name="recovery_tokens")
    op.drop_index(op.f("ix_recovery_tokens_token"), table_name="recovery_tokens")
    op.drop_table("recovery_tokens")
