"""
SOW Workflow Engine
Reviewer comment model.

Models:
    - SowComment: free-text discussion on a revision. A comment with
      parent_id set is a reply; replies to replies are allowed and form
      a tree per revision.
"""

from datetime import datetime, timezone

from sowflow.models import db


class SowComment(db.Model):
    """
    One comment on one SOW revision.

    ``version`` snapshots the revision number when the comment was
    written, like SowChangelog.version.
    """

    __tablename__ = "sow_comments"
    __table_args__ = (
        db.Index("idx_sow_comments_sow_ts", "sow_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sow_id = db.Column(
        db.String(36),
        db.ForeignKey("sows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(
        db.Integer,
        db.ForeignKey("sow_comments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    comment = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "sow_id": self.sow_id,
            "parent_id": self.parent_id,
            "version": self.version,
            "user_id": self.user_id,
            "comment": self.comment,
            "is_internal": self.is_internal,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<SowComment #{self.id} sow={self.sow_id} parent={self.parent_id}>"
