"""sow_comments

Adds threaded reviewer comments:
  - sow_comments: one row per comment; parent_id points at the comment
    being replied to, version snapshots the revision number

Created conditionally like the initial workflow tables.

Revision ID: 8b4e2f61c0a3
Revises: 3f1a9c2d7e10
Create Date: 2026-10-19 14:37:05.220871
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '8b4e2f61c0a3'
down_revision = '3f1a9c2d7e10'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    if "sow_comments" in sa_inspect(bind).get_table_names():
        return

    op.create_table(
        "sow_comments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sow_id", sa.String(length=36), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["sow_id"], ["sows.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["sow_comments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sow_comments_sow_id", "sow_comments", ["sow_id"])
    op.create_index("ix_sow_comments_parent_id", "sow_comments", ["parent_id"])
    op.create_index("ix_sow_comments_user_id", "sow_comments", ["user_id"])
    op.create_index("idx_sow_comments_sow_ts", "sow_comments", ["sow_id", "created_at"])


def downgrade():
    op.drop_table("sow_comments")
