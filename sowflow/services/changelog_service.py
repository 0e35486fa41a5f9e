"""
SOW Changelog Service

Append-only audit trail for SOW revisions. Recording functions only
``flush`` so the calling workflow operation keeps transaction control;
nothing in this module updates or deletes a SowChangelog row.

Usage:
    from sowflow.services import changelog_service

    changelog_service.record_change(sow, "status", "status_change", "draft", "in_review", user_id)
    entries = changelog_service.get_changelog(sow_id, change_type="status_change")
    threads = changelog_service.get_comments(sow_id)
    csv_text = changelog_service.export_changelog_csv(sow_id)
"""

from __future__ import annotations

import csv
import io
import json
import logging
from collections import Counter
from datetime import datetime

from sqlalchemy import select

from sowflow.core.exceptions import NotFoundError, ValidationError
from sowflow.models import db
from sowflow.models.changelog import CHANGE_TYPES, SowChangelog
from sowflow.models.comment import SowComment
from sowflow.models.sow import Sow
from sowflow.services.changelog_differ import ChangeRecord, generate_diff_summary
from sowflow.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Date", "User", "Change Type", "Field",
    "Previous Value", "New Value", "Diff Summary", "Version",
]


# ── Recording (flush only) ───────────────────────────────────────────────────


def record_change(
    sow: Sow,
    field_name: str | None,
    change_type: str,
    previous_value=None,
    new_value=None,
    user_id: str | None = None,
    *,
    diff_summary: str | None = None,
    metadata: dict | None = None,
) -> SowChangelog:
    """Append one changelog row for ``sow``. Flushes, never commits."""
    if change_type not in CHANGE_TYPES:
        raise ValidationError(
            f"change_type must be one of {sorted(CHANGE_TYPES)}",
            details={"change_type": change_type},
        )
    prev_str = "" if previous_value is None else str(previous_value)
    new_str = "" if new_value is None else str(new_value)
    if diff_summary is None:
        diff_summary = generate_diff_summary(field_name or "", prev_str, new_str, change_type)

    entry = SowChangelog(
        sow_id=sow.id,
        version=sow.version or 1,
        field_name=field_name,
        change_type=change_type,
        previous_value=prev_str or None,
        new_value=new_str or None,
        diff_summary=diff_summary,
        user_id=user_id,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record_changes(sow: Sow, changes: list[ChangeRecord], user_id: str | None = None,
                   metadata: dict | None = None) -> list[SowChangelog]:
    """Append one row per ChangeRecord (content edits between snapshots)."""
    return [
        record_change(
            sow, c.field_name, c.change_type, c.previous_value, c.new_value, user_id,
            diff_summary=c.diff_summary, metadata=metadata,
        )
        for c in changes
    ]


def record_status_change(sow: Sow, previous: str, new: str, user_id: str | None,
                         metadata: dict | None = None) -> SowChangelog:
    return record_change(sow, "status", "status_change", previous, new, user_id, metadata=metadata)


def record_version_created(sow: Sow, user_id: str | None, source: Sow | None = None,
                           reason: str | None = None) -> SowChangelog:
    if source is None:
        summary = f"SOW created (version {sow.version})"
    else:
        summary = f"New version {sow.version} created from version {source.version}"
    metadata = {"reason": reason} if reason else {}
    if source is not None:
        metadata["source_sow_id"] = source.id
    return record_change(
        sow, "version", "version_created",
        source.version if source is not None else None, sow.version, user_id,
        diff_summary=summary, metadata=metadata or None,
    )


# ── Comments ─────────────────────────────────────────────────────────────────


def add_comment(sow_id: str, actor, comment: str, parent_id: int | None = None,
                *, is_internal: bool = False) -> dict:
    """Attach a reviewer comment (or a reply to one) to a revision.

    The comment row snapshots the revision's version; a comment_added
    changelog row is written in the same transaction.

    Raises:
        ValidationError: blank or non-string comment, malformed parent_id.
        NotFoundError: unknown sow, or parent comment not on this sow.
    """
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": "must be a string"})
    text = (comment or "").strip()
    if not text:
        raise ValidationError("comment is required", details={"comment": "blank"})
    if parent_id is not None and (isinstance(parent_id, bool) or not isinstance(parent_id, int)):
        raise ValidationError("parent_id must be an integer", details={"parent_id": "invalid value"})

    with unit_of_work("add_comment", sow_id=sow_id, actor_id=actor.actor_id):
        sow = get_or_raise(Sow, sow_id, "Sow")
        if parent_id is not None:
            parent = db.session.get(SowComment, parent_id)
            if parent is None or parent.sow_id != sow.id:
                raise NotFoundError(resource="SowComment", resource_id=parent_id)

        entry = SowComment(
            sow_id=sow.id,
            parent_id=parent_id,
            version=sow.version or 1,
            user_id=actor.actor_id,
            comment=text,
            is_internal=bool(is_internal),
        )
        db.session.add(entry)
        db.session.flush()
        record_change(
            sow, "comment", "comment_added", None, text, actor.actor_id,
            diff_summary=(f"Reply added by {actor.email or actor.actor_id}" if parent_id
                          else f"Comment added by {actor.email or actor.actor_id}"),
            metadata={"comment_id": entry.id, "parent_id": parent_id},
        )

    logger.info("Comment added to sow %s", sow_id, extra={"sow_id": sow_id, "actor_id": actor.actor_id})
    return entry.to_dict()


def get_comments(sow_id: str) -> list[dict]:
    """Comment threads for one revision.

    Top-level comments oldest first, each with a nested ``replies`` list
    (also oldest first, any depth).
    """
    get_or_raise(Sow, sow_id, "Sow")
    rows = db.session.execute(
        select(SowComment)
        .where(SowComment.sow_id == sow_id)
        .order_by(SowComment.created_at.asc(), SowComment.id.asc())
    ).scalars().all()

    nodes = {c.id: {**c.to_dict(), "replies": []} for c in rows}
    threads = []
    for c in rows:
        parent = nodes.get(c.parent_id) if c.parent_id is not None else None
        if parent is None:
            threads.append(nodes[c.id])
        else:
            parent["replies"].append(nodes[c.id])
    return threads


# ── Queries ──────────────────────────────────────────────────────────────────


def changelog_query(
    sow_id: str,
    *,
    change_type: str | None = None,
    field_name: str | None = None,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Select for one revision's changelog, newest first, optionally filtered.

    Returns an unexecuted statement so callers can paginate in SQL.
    """
    get_or_raise(Sow, sow_id, "Sow")
    stmt = select(SowChangelog).where(SowChangelog.sow_id == sow_id)
    if change_type:
        stmt = stmt.where(SowChangelog.change_type == change_type)
    if field_name:
        stmt = stmt.where(SowChangelog.field_name == field_name)
    if user_id:
        stmt = stmt.where(SowChangelog.user_id == user_id)
    if start:
        stmt = stmt.where(SowChangelog.created_at >= start)
    if end:
        stmt = stmt.where(SowChangelog.created_at <= end)
    return stmt.order_by(SowChangelog.created_at.desc(), SowChangelog.id.desc())


def get_changelog(sow_id: str, **filters) -> list[SowChangelog]:
    """All matching changelog rows; see changelog_query for the filters."""
    return list(db.session.execute(changelog_query(sow_id, **filters)).scalars().all())


def get_changelog_summary(sow_id: str) -> dict:
    """Totals by change type, user and field plus a 20-entry timeline."""
    entries = get_changelog(sow_id)
    by_type = Counter(e.change_type for e in entries)
    by_user = Counter(e.user_id or "system" for e in entries)
    by_field = Counter(e.field_name for e in entries if e.field_name)
    return {
        "sow_id": sow_id,
        "total_changes": len(entries),
        "changes_by_type": dict(by_type),
        "changes_by_user": dict(by_user),
        "changes_by_field": dict(by_field),
        "timeline": [
            {
                "date": e.created_at.isoformat() if e.created_at else None,
                "change_type": e.change_type,
                "user": e.user_id or "system",
                "field": e.field_name or "N/A",
                "summary": e.diff_summary,
            }
            for e in entries[:20]
        ],
    }


def export_changelog_csv(sow_id: str) -> str:
    """Render the changelog as CSV text (newest first)."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for e in get_changelog(sow_id):
        writer.writerow([
            e.created_at.isoformat() if e.created_at else "",
            e.user_id or "system",
            e.change_type,
            e.field_name or "",
            e.previous_value or "",
            e.new_value or "",
            e.diff_summary or "",
            e.version,
        ])
    return buf.getvalue()
