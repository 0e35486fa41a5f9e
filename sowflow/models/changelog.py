"""
SOW Workflow Engine
Changelog domain model.

Models:
    - SowChangelog: immutable, append-only audit record of content edits,
      status transitions, revision creation and comments.
"""

import json
from datetime import datetime, timezone

from sowflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CHANGE_TYPES = {
    "field_update",
    "content_edit",
    "status_change",
    "version_created",
    "comment_added",
}


class SowChangelog(db.Model):
    """
    One audit row per recorded change.

    Rows are NEVER updated or deleted. The ``version`` column snapshots the
    revision number at write time so history stays readable after the
    lineage grows.
    """

    __tablename__ = "sow_changelog"
    __table_args__ = (
        db.Index("idx_sow_changelog_sow_ts", "sow_id", "created_at"),
        db.Index("idx_sow_changelog_type", "change_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sow_id = db.Column(
        db.String(36),
        db.ForeignKey("sows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    field_name = db.Column(db.String(100), nullable=True)
    change_type = db.Column(
        db.String(30), nullable=False,
        comment="field_update | content_edit | status_change | version_created | comment_added",
    )
    previous_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    diff_summary = db.Column(db.Text, nullable=False, default="")
    user_id = db.Column(db.String(36), nullable=True, index=True)
    metadata_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def metadata_dict(self) -> dict:
        if not self.metadata_json:
            return {}
        try:
            return json.loads(self.metadata_json)
        except (TypeError, ValueError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "sow_id": self.sow_id,
            "version": self.version,
            "field_name": self.field_name,
            "change_type": self.change_type,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "diff_summary": self.diff_summary,
            "user_id": self.user_id,
            "metadata": self.metadata_dict,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<SowChangelog #{self.id} {self.sow_id} {self.change_type}:{self.field_name}>"
