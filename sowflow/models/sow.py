"""
SOW Workflow Engine
Statement-of-Work domain model.

Models:
    - Sow: one revision of a Statement of Work. Revisions sharing a
      lineage root form the version history of a single document.

Lineage rules:
    - The root revision has parent_id = NULL and version = 1.
    - Every later revision points parent_id at the ROOT (not at the
      previous revision), so a lineage is {root} ∪ {rows with parent_id = root}.
    - lineage_root_id is stored redundantly (parent_id or id) so that
      (lineage_root_id, version) can carry a unique constraint.
"""

import uuid
from datetime import datetime, timezone

from sowflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SOW_STATUSES = {"draft", "in_review", "approved", "rejected", "recalled"}

# Columns that identify a revision inside its lineage
IDENTITY_FIELDS = frozenset({
    "id", "parent_id", "lineage_root_id", "version", "is_latest",
    "author_id", "created_at", "updated_at",
})

# Workflow metadata, reported through the approval history instead of the content diff
APPROVAL_BOOKKEEPING_FIELDS = frozenset({
    "submitted_by", "submitted_at",
    "approved_by", "approved_at",
    "rejected_by", "rejected_at",
    "approval_comments",
})

# Cleared on every new revision
REVISION_RESET_FIELDS = APPROVAL_BOOKKEEPING_FIELDS | {"signature_date"}

LINEAGE_VERSION_CONSTRAINT = "uq_sow_lineage_version"


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Sow(db.Model):
    """
    One revision of a Statement of Work.

    Lifecycle: draft → in_review → approved | rejected
               in_review → recalled (new draft revision created)
               rejected  → new draft revision created
    """

    __tablename__ = "sows"
    __table_args__ = (
        db.UniqueConstraint("lineage_root_id", "version", name=LINEAGE_VERSION_CONSTRAINT),
        db.Index("ix_sows_lineage_latest", "lineage_root_id", "is_latest"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)

    # ── Lineage ──────────────────────────────────────────────────────────
    parent_id = db.Column(
        db.String(36),
        db.ForeignKey("sows.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Root revision id; NULL only on the root itself",
    )
    lineage_root_id = db.Column(
        db.String(36), nullable=False, index=True,
        comment="parent_id or id, denormalised for the (root, version) unique constraint",
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    is_latest = db.Column(db.Boolean, nullable=False, default=True)

    # ── Workflow-relevant content ────────────────────────────────────────
    products = db.Column(db.JSON, nullable=False, default=list, comment="Product ids (set semantics)")
    pricing_roles = db.Column(db.JSON, nullable=False, default=list, comment="[{role_id, units}]")

    # ── Document content ─────────────────────────────────────────────────
    title = db.Column(db.String(300), nullable=False, default="")
    client_name = db.Column(db.String(200), nullable=True)
    client_email = db.Column(db.String(200), nullable=True)
    client_signer_name = db.Column(db.String(200), nullable=True)
    deliverables = db.Column(db.Text, nullable=True)
    objectives_description = db.Column(db.Text, nullable=True)
    custom_intro_content = db.Column(db.Text, nullable=True)
    custom_scope_content = db.Column(db.Text, nullable=True)
    custom_assumptions_content = db.Column(db.Text, nullable=True)
    timeline_weeks = db.Column(db.Integer, nullable=True)
    project_start_date = db.Column(db.Date, nullable=True)
    opportunity_amount = db.Column(db.Numeric(14, 2), nullable=True)
    signature_date = db.Column(db.Date, nullable=True)

    # ── Lifecycle ────────────────────────────────────────────────────────
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | in_review | approved | rejected | recalled",
    )

    # ── Approval bookkeeping ─────────────────────────────────────────────
    submitted_by = db.Column(db.String(36), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(36), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(36), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_comments = db.Column(db.Text, nullable=True)

    # ── Ownership ────────────────────────────────────────────────────────
    author_id = db.Column(db.String(36), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    approvals = db.relationship(
        "SowApproval",
        back_populates="sow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    @classmethod
    def content_field_names(cls) -> list[str]:
        """Columns carried from one revision to the next."""
        return [
            c.name for c in cls.__table__.columns
            if c.name not in IDENTITY_FIELDS
            and c.name not in REVISION_RESET_FIELDS
            and c.name != "status"
        ]

    def snapshot(self) -> dict:
        """Plain column → value mapping, used by the diff engine."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "lineage_root_id": self.lineage_root_id,
            "version": self.version,
            "is_latest": self.is_latest,
            "status": self.status,
            "title": self.title,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_signer_name": self.client_signer_name,
            "products": list(self.products or []),
            "pricing_roles": list(self.pricing_roles or []),
            "deliverables": self.deliverables,
            "objectives_description": self.objectives_description,
            "custom_intro_content": self.custom_intro_content,
            "custom_scope_content": self.custom_scope_content,
            "custom_assumptions_content": self.custom_assumptions_content,
            "timeline_weeks": self.timeline_weeks,
            "project_start_date": _iso(self.project_start_date),
            "opportunity_amount": (
                str(self.opportunity_amount) if self.opportunity_amount is not None else None
            ),
            "signature_date": _iso(self.signature_date),
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": _iso(self.rejected_at),
            "approval_comments": self.approval_comments,
            "author_id": self.author_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Sow {self.id} v{self.version} {self.status}{' latest' if self.is_latest else ''}>"
