"""sow_workflow_tables

Creates the SOW revision & approval tables:
  - sows: one row per SOW revision (lineage via parent_id)
  - approval_stages: ordered stage configuration
  - sow_approvals: one decision record per (sow, stage)
  - sow_changelog: append-only audit trail
  - notifications: in-app workflow notifications

Tables created conditionally (IF NOT EXISTS semantics) so databases that
already received them via db.create_all() in development upgrade cleanly.

Revision ID: 3f1a9c2d7e10
Revises:
Create Date: 2026-10-19 09:12:44.103512
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '3f1a9c2d7e10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── SOW revisions ─────────────────────────────────────────────────────
    if "sows" not in existing:
        op.create_table(
            "sows",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("parent_id", sa.String(length=36), nullable=True,
                      comment="Root revision id; NULL only on the root itself"),
            sa.Column("lineage_root_id", sa.String(length=36), nullable=False,
                      comment="parent_id or id, denormalised for the (root, version) unique constraint"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("is_latest", sa.Boolean(), nullable=False),
            sa.Column("products", sa.JSON(), nullable=False, comment="Product ids (set semantics)"),
            sa.Column("pricing_roles", sa.JSON(), nullable=False, comment="[{role_id, units}]"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("client_name", sa.String(length=200), nullable=True),
            sa.Column("client_email", sa.String(length=200), nullable=True),
            sa.Column("client_signer_name", sa.String(length=200), nullable=True),
            sa.Column("deliverables", sa.Text(), nullable=True),
            sa.Column("objectives_description", sa.Text(), nullable=True),
            sa.Column("custom_intro_content", sa.Text(), nullable=True),
            sa.Column("custom_scope_content", sa.Text(), nullable=True),
            sa.Column("custom_assumptions_content", sa.Text(), nullable=True),
            sa.Column("timeline_weeks", sa.Integer(), nullable=True),
            sa.Column("project_start_date", sa.Date(), nullable=True),
            sa.Column("opportunity_amount", sa.Numeric(precision=14, scale=2), nullable=True),
            sa.Column("signature_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="draft | in_review | approved | rejected | recalled"),
            sa.Column("submitted_by", sa.String(length=36), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_by", sa.String(length=36), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejected_by", sa.String(length=36), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approval_comments", sa.Text(), nullable=True),
            sa.Column("author_id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["parent_id"], ["sows.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("lineage_root_id", "version", name="uq_sow_lineage_version"),
        )
        op.create_index("ix_sows_parent_id", "sows", ["parent_id"])
        op.create_index("ix_sows_lineage_root_id", "sows", ["lineage_root_id"])
        op.create_index("ix_sows_author_id", "sows", ["author_id"])
        op.create_index("ix_sows_lineage_latest", "sows", ["lineage_root_id", "is_latest"])

    # ── Approval stages ───────────────────────────────────────────────────
    if "approval_stages" not in existing:
        op.create_table(
            "approval_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(length=60), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False),
            sa.Column("requires_comment", sa.Boolean(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    # ── Approval decisions ────────────────────────────────────────────────
    if "sow_approvals" not in existing:
        op.create_table(
            "sow_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sow_id", sa.String(length=36), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="pending | approved | rejected | skipped"),
            sa.Column("approver_id", sa.String(length=36), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["sow_id"], ["sows.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["approval_stages.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sow_id", "stage_id", name="uq_sow_approval_stage"),
        )
        op.create_index("ix_sow_approvals_sow_id", "sow_approvals", ["sow_id"])

    # ── Changelog ─────────────────────────────────────────────────────────
    if "sow_changelog" not in existing:
        op.create_table(
            "sow_changelog",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("sow_id", sa.String(length=36), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("field_name", sa.String(length=100), nullable=True),
            sa.Column("change_type", sa.String(length=30), nullable=False,
                      comment="field_update | content_edit | status_change | version_created | comment_added"),
            sa.Column("previous_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("diff_summary", sa.Text(), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["sow_id"], ["sows.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sow_changelog_sow_id", "sow_changelog", ["sow_id"])
        op.create_index("ix_sow_changelog_user_id", "sow_changelog", ["user_id"])
        op.create_index("idx_sow_changelog_sow_ts", "sow_changelog", ["sow_id", "created_at"])
        op.create_index("idx_sow_changelog_type", "sow_changelog", ["change_type"])

    # ── Notifications ─────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("event", sa.String(length=60), nullable=False,
                      comment="sow.approved / sow.recalled / ..."),
            sa.Column("recipient", sa.String(length=150), nullable=True,
                      comment="User id or 'all' for broadcast"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_event", "notifications", ["event"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])


def downgrade():
    op.drop_table("notifications")
    op.drop_table("sow_changelog")
    op.drop_table("sow_approvals")
    op.drop_table("approval_stages")
    op.drop_table("sows")
