"""
SOW Workflow Engine
Approval domain models.

Models:
    - ApprovalStage: named, ordered stage definition (configuration, not state)
    - SowApproval:   one decision record per (sow, stage) created at submission

Business rules:
    - SowApproval rows leave 'pending' exactly once and are never edited afterwards.
    - Recall deletes the whole set for the recalled revision; nothing else deletes them.
"""

from datetime import datetime, timezone

from sowflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = {"pending", "approved", "rejected", "skipped"}
RESOLVED_STATUSES = frozenset({"approved", "skipped"})

# action → resulting approval status
DECISION_ACTIONS = {
    "approve": "approved",
    "reject": "rejected",
    "skip": "skipped",
}

DEFAULT_STAGES = [
    {
        "slug": "professional-services",
        "name": "Professional Services",
        "description": "Professional Services review of scope and staffing",
        "sort_order": 1,
        "requires_comment": False,
    },
    {
        "slug": "project-management",
        "name": "Project Management",
        "description": "PMO review, required when the SOW meets the PM hour designation",
        "sort_order": 2,
        "requires_comment": False,
    },
    {
        "slug": "sr-leadership",
        "name": "Sr. Leadership",
        "description": "Final sign-off by senior leadership",
        "sort_order": 3,
        "requires_comment": False,
    },
]


class ApprovalStage(db.Model):
    """Approval checkpoint definition. Administered outside the engine."""

    __tablename__ = "approval_stages"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(60), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, default="")
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    requires_comment = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "sort_order": self.sort_order,
            "requires_comment": self.requires_comment,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<ApprovalStage {self.slug} #{self.sort_order}>"


class SowApproval(db.Model):
    """
    Per-(sow, stage) decision record.

    status: pending → approved | rejected | skipped
    Non-required stages are written as 'skipped' at submission time with
    no approver and no comment, so every submission shows all stages.
    """

    __tablename__ = "sow_approvals"
    __table_args__ = (
        db.UniqueConstraint("sow_id", "stage_id", name="uq_sow_approval_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sow_id = db.Column(
        db.String(36),
        db.ForeignKey("sows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_stages.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | approved | rejected | skipped",
    )
    approver_id = db.Column(db.String(36), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    sow = db.relationship("Sow", back_populates="approvals")
    stage = db.relationship("ApprovalStage", lazy="joined")

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def to_dict(self, include_stage=True):
        d = {
            "id": self.id,
            "sow_id": self.sow_id,
            "stage_id": self.stage_id,
            "status": self.status,
            "approver_id": self.approver_id,
            "comments": self.comments,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_stage and self.stage is not None:
            d["stage"] = {
                "slug": self.stage.slug,
                "name": self.stage.name,
                "sort_order": self.stage.sort_order,
                "requires_comment": self.stage.requires_comment,
            }
        return d

    def __repr__(self):
        return f"<SowApproval #{self.id} sow={self.sow_id} stage={self.stage_id} {self.status}>"
