"""
Version Lineage Service

Guarantees the lineage invariants whenever a SOW revision is created:

  - exactly one revision per lineage has is_latest = True
  - that revision carries the highest version number
  - versions are strictly increasing within the lineage

A lineage is the root revision plus every row whose parent_id is the
root. ``create_revision`` locks the source and lineage rows (SELECT ...
FOR UPDATE) before computing the next version; the
(lineage_root_id, version) unique constraint rejects any writer that
slipped past the lock.

Transaction rules:
  - ``create_revision`` only flushes; the calling workflow operation
    (recall, revision-from-rejected) owns the commit so the whole
    operation is one atomic unit.
  - ``create_sow`` is a standalone operation and commits.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from sowflow.core.exceptions import ConcurrentRevisionError, NotFoundError, ValidationError
from sowflow.models import db
from sowflow.models.sow import LINEAGE_VERSION_CONSTRAINT, Sow
from sowflow.services import changelog_service
from sowflow.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)


# ── Lineage queries ──────────────────────────────────────────────────────────


def lineage_root_id(sow: Sow) -> str:
    return sow.parent_id or sow.id


def _lineage_filter(root_id: str):
    return or_(Sow.id == root_id, Sow.parent_id == root_id)


def get_lineage(root_id: str, *, for_update: bool = False) -> list[Sow]:
    """All revisions of a lineage, oldest version first."""
    stmt = select(Sow).where(_lineage_filter(root_id)).order_by(Sow.version.asc())
    if for_update:
        stmt = stmt.with_for_update()
    return list(db.session.execute(stmt).scalars().all())


def get_latest(root_id: str) -> Sow | None:
    return db.session.execute(
        select(Sow).where(_lineage_filter(root_id), Sow.is_latest.is_(True))
    ).scalar_one_or_none()


def list_revisions(sow_id: str) -> list[dict]:
    """Revision list for any member of a lineage, ordered by version.

    Author / approver / rejector are returned as ids; display names are
    resolved by the presentation layer.
    """
    sow = get_or_raise(Sow, sow_id, "Sow")
    return [
        {
            "id": r.id,
            "version": r.version,
            "status": r.status,
            "is_latest": r.is_latest,
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            "approved_at": r.approved_at.isoformat() if r.approved_at else None,
            "rejected_at": r.rejected_at.isoformat() if r.rejected_at else None,
            "approval_comments": r.approval_comments,
            "author_id": r.author_id,
            "approved_by": r.approved_by,
            "rejected_by": r.rejected_by,
        }
        for r in get_lineage(lineage_root_id(sow))
    ]


def verify_lineage(root_id: str) -> dict:
    """Check the single-latest / max-version invariant for one lineage.

    Returns:
        {"valid": bool, "latest_ids": [...], "max_version": int, "latest_version": int|None}
    """
    revisions = get_lineage(root_id)
    latest = [r for r in revisions if r.is_latest]
    top = max((r.version for r in revisions), default=0)
    latest_version = latest[0].version if len(latest) == 1 else None
    return {
        "valid": len(latest) == 1 and latest_version == top,
        "latest_ids": [r.id for r in latest],
        "max_version": top,
        "latest_version": latest_version,
    }


# ── Writes ───────────────────────────────────────────────────────────────────


def create_sow(author_id: str, **content) -> Sow:
    """Create the root revision of a new lineage (version 1, draft, latest)."""
    new_id = str(uuid.uuid4())
    allowed = set(Sow.content_field_names())
    unknown = set(content) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown SOW field(s): {', '.join(sorted(unknown))}",
            details={f: "unknown" for f in sorted(unknown)},
        )

    with unit_of_work("create_sow", sow_id=new_id, actor_id=author_id):
        sow = Sow(
            id=new_id,
            parent_id=None,
            lineage_root_id=new_id,
            version=1,
            is_latest=True,
            status="draft",
            author_id=author_id,
            **content,
        )
        db.session.add(sow)
        db.session.flush()
        changelog_service.record_version_created(sow, author_id, reason="created")
    logger.info("SOW created", extra={"sow_id": new_id, "actor_id": author_id})
    return sow


def create_revision(source_id: str, actor_id: str) -> Sow:
    """Mint the next draft revision of ``source_id``'s lineage.

    The new row copies content from the source, gets version = max + 1,
    parent_id = lineage root, is_latest = True, author = actor, status =
    draft, and has every approval / rejection / submission / signature
    field cleared. Every other lineage row loses is_latest. Flushes only.

    Concurrency: the source row and every lineage row are read FOR UPDATE
    before the max version is computed, so a second writer on PostgreSQL
    blocks until this transaction ends and then sees the new maximum.
    There is no separate re-check after the lookup; if a writer still
    inserts the same version (SQLite, or rows created outside the lock),
    the lineage version unique constraint fails the flush and that is
    reported as ConcurrentRevisionError. Any other integrity failure
    propagates unchanged.

    Raises:
        NotFoundError: source revision does not exist.
        ConcurrentRevisionError: another revision with the same version
            was written to the lineage first.
    """
    source = db.session.get(Sow, source_id, with_for_update=True)
    if source is None:
        raise NotFoundError(resource="Sow", resource_id=source_id)

    root_id = lineage_root_id(source)
    lineage = get_lineage(root_id, for_update=True)
    next_version = max((r.version for r in lineage), default=0) + 1

    db.session.execute(
        update(Sow)
        .where(_lineage_filter(root_id))
        .values(is_latest=False)
        .execution_options(synchronize_session="fetch")
    )

    revision = Sow(
        id=str(uuid.uuid4()),
        parent_id=root_id,
        lineage_root_id=root_id,
        version=next_version,
        is_latest=True,
        status="draft",
        author_id=actor_id,
        **{name: _copy_value(getattr(source, name)) for name in Sow.content_field_names()},
    )
    db.session.add(revision)
    try:
        db.session.flush()
    except IntegrityError as exc:
        if not _is_lineage_version_conflict(exc):
            raise
        logger.warning(
            "Concurrent revision detected for lineage %s (version %d)", root_id, next_version,
            extra={"lineage_root_id": root_id, "actor_id": actor_id},
        )
        raise ConcurrentRevisionError(root_id, next_version) from exc

    logger.info(
        "Revision v%d created from v%d", next_version, source.version,
        extra={"sow_id": revision.id, "lineage_root_id": root_id, "actor_id": actor_id},
    )
    return revision


def _is_lineage_version_conflict(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint; SQLite only lists its columns
    diag = getattr(exc.orig, "diag", None)
    if getattr(diag, "constraint_name", None) == LINEAGE_VERSION_CONSTRAINT:
        return True
    message = str(exc.orig)
    return (
        LINEAGE_VERSION_CONSTRAINT in message
        or "UNIQUE constraint failed: sows.lineage_root_id, sows.version" in message
    )


def _copy_value(value):
    # JSON columns must not share list/dict objects between rows
    if isinstance(value, list):
        return [dict(v) if isinstance(v, dict) else v for v in value]
    if isinstance(value, dict):
        return dict(value)
    return value
