"""
SOW Approval Workflow Service (state machine)

Document states:   draft → in_review → approved | rejected
                   in_review → recalled      (recall_service)
                   rejected  → new draft     (recall_service.create_revision_from_rejected)

Approval states:   pending → approved | rejected | skipped   (exactly once)

Rules enforced here (never in the blueprint):
  - submit only from draft; the stage set is re-evaluated from current
    content on every submission, non-required stages are written as
    explicit 'skipped' rows
  - decide requires the sow to be in_review and the approval pending
  - role → stage authorisation (permission.STAGE_APPROVER_ROLES)
  - stage.requires_comment enforced for approve / reject / skip
  - a single reject short-circuits the sow to rejected
  - the sow becomes approved once every approval is approved or skipped;
    this check runs while holding a row lock on the sow

Usage:
    from sowflow.services import approval_workflow

    approvals = approval_workflow.submit(sow_id, actor)
    approval_workflow.decide(approval_id, "approve", actor, comments="LGTM")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from sowflow.core.exceptions import (
    AlreadySubmittedError,
    CommentRequiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from sowflow.models import db
from sowflow.models.approval import DECISION_ACTIONS, RESOLVED_STATUSES, SowApproval
from sowflow.models.sow import Sow
from sowflow.services import changelog_service, notification, version_lineage
from sowflow.services.permission import Actor, check_stage_permission
from sowflow.services.stage_requirements import (
    SowContent,
    current_rules,
    evaluate,
    load_active_stages,
)
from sowflow.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _approvals_for(sow_id: str) -> list[SowApproval]:
    return list(db.session.execute(
        select(SowApproval).where(SowApproval.sow_id == sow_id).order_by(SowApproval.id)
    ).scalars().all())


# ── Submit ───────────────────────────────────────────────────────────────────


def submit(sow_id: str, actor: Actor) -> list[SowApproval]:
    """Route a draft into approval.

    Creates one SowApproval per active stage: 'pending' for required
    stages, 'skipped' (no approver, no comment) for the rest.

    Raises:
        NotFoundError, AlreadySubmittedError, ValidationError (no active stages),
        WorkflowInternalError
    """
    with unit_of_work("submit", sow_id=sow_id, actor_id=actor.actor_id):
        sow = get_or_raise(Sow, sow_id, "Sow", for_update=True)
        if sow.status != "draft":
            raise AlreadySubmittedError(sow.id, sow.status)

        stages = load_active_stages()
        requirements = evaluate(SowContent.from_sow(sow), stages, current_rules())
        if not requirements:
            raise ValidationError("No active approval stages are configured",
                                  details={"approval_stages": "none active"})

        # Leftover rows can only exist if a draft was manipulated outside the engine
        if _approvals_for(sow.id):
            raise InvalidStateError("Sow", sow.id, sow.status, "submit",
                                    "approval records already exist for this revision")

        now = _utcnow()
        approvals = []
        for req in requirements:
            approval = SowApproval(
                sow_id=sow.id,
                stage_id=req.stage_id,
                status="pending" if req.required else "skipped",
                decided_at=None if req.required else now,
            )
            db.session.add(approval)
            approvals.append(approval)

        previous = sow.status
        sow.status = "in_review"
        sow.submitted_by = actor.actor_id
        sow.submitted_at = now
        db.session.flush()

        changelog_service.record_status_change(
            sow, previous, sow.status, actor.actor_id,
            metadata={
                "stages": {r.stage_slug: r.status for r in requirements},
                "reasons": {r.stage_slug: r.reason for r in requirements},
            },
        )

    logger.info(
        "SOW submitted: %d pending, %d skipped",
        sum(1 for a in approvals if a.status == "pending"),
        sum(1 for a in approvals if a.status == "skipped"),
        extra={"sow_id": sow.id, "actor_id": actor.actor_id, "event_type": "sow.submitted"},
    )
    notification.notify("sow.submitted", {
        "sow_id": sow.id,
        "version": sow.version,
        "message": f"Submitted by {actor.email or actor.actor_id}",
    })
    return approvals


# ── Decide ───────────────────────────────────────────────────────────────────


def decide(
    approval_id: int,
    action: str,
    actor: Actor,
    comments: str | None = None,
    *,
    sow_id: str | None = None,
) -> SowApproval:
    """Record one stage decision and recompute the sow's overall status.

    Args:
        approval_id: SowApproval primary key.
        action:      approve | reject | skip
        actor:       Authenticated caller (role drives stage authorisation).
        comments:    Free text; mandatory when the stage requires a comment.
        sow_id:      Optional owning sow; a mismatch is reported as not found.

    Raises:
        NotFoundError, ValidationError, InvalidStateError,
        PermissionDeniedError, CommentRequiredError, WorkflowInternalError
    """
    if not isinstance(action, str) or action not in DECISION_ACTIONS:
        raise ValidationError(
            f"action must be one of {sorted(DECISION_ACTIONS)}",
            details={"action": action if isinstance(action, str) else "must be a string"},
        )
    if comments is not None and not isinstance(comments, str):
        raise ValidationError("comments must be a string", details={"comments": "must be a string"})
    new_status = DECISION_ACTIONS[action]

    with unit_of_work("decide", sow_id=sow_id, approval_id=approval_id, actor_id=actor.actor_id):
        approval = db.session.get(SowApproval, approval_id)
        if approval is None or (sow_id is not None and approval.sow_id != sow_id):
            raise NotFoundError(resource="SowApproval", resource_id=approval_id)

        # Row lock on the sow serialises the completion check across stages
        sow = get_or_raise(Sow, approval.sow_id, "Sow", for_update=True)
        if sow.status != "in_review":
            raise InvalidStateError("Sow", sow.id, sow.status, action,
                                    "decisions are only accepted while the SOW is in review")
        db.session.refresh(approval)
        if not approval.is_pending:
            raise InvalidStateError("SowApproval", approval.id, approval.status, action,
                                    "approval has already been decided")

        stage = approval.stage
        check_stage_permission(actor, stage)

        text = (comments or "").strip()
        if stage.requires_comment and not text:
            raise CommentRequiredError(stage.slug, approval.id)

        now = _utcnow()
        approval.status = new_status
        approval.approver_id = actor.actor_id
        approval.comments = text or None
        approval.decided_at = now

        changelog_service.record_change(
            sow, f"approval.{stage.slug}", "status_change", "pending", new_status, actor.actor_id,
            diff_summary=f"{stage.name} {new_status} by {actor.email or actor.actor_id}",
            metadata={"approval_id": approval.id, "stage": stage.slug, "comments": text or None},
        )
        if text:
            changelog_service.record_change(
                sow, f"approval.{stage.slug}.comments", "comment_added", None, text, actor.actor_id,
                diff_summary=f"Comment on {stage.name}",
            )

        previous_status = sow.status
        if new_status == "rejected":
            sow.status = "rejected"
            sow.rejected_by = actor.actor_id
            sow.rejected_at = now
            sow.approval_comments = text or None
        else:
            db.session.flush()
            if all(a.status in RESOLVED_STATUSES for a in _approvals_for(sow.id)):
                sow.status = "approved"
                sow.approved_by = actor.actor_id
                sow.approved_at = now
                if text:
                    sow.approval_comments = text

        if sow.status != previous_status:
            changelog_service.record_status_change(
                sow, previous_status, sow.status, actor.actor_id,
                metadata={"approval_id": approval.id, "stage": stage.slug},
            )

    logger.info(
        "Approval %s %s", stage.slug, new_status,
        extra={"sow_id": sow.id, "approval_id": approval.id, "stage": stage.slug,
               "actor_id": actor.actor_id, "event_type": f"approval.{action}"},
    )

    if sow.status in ("approved", "rejected") and sow.status != previous_status:
        notification.notify(f"sow.{sow.status}", {
            "sow_id": sow.id,
            "version": sow.version,
            "stage": stage.name,
            "recipient": sow.author_id,
            "message": text,
        })
    return approval


# ── Status ───────────────────────────────────────────────────────────────────


def get_workflow_status(sow_id: str) -> dict:
    """Approval progress for one revision, stages in sort_order."""
    sow = get_or_raise(Sow, sow_id, "Sow")
    approvals = sorted(
        _approvals_for(sow.id),
        key=lambda a: (a.stage.sort_order if a.stage else 0, a.id),
    )
    total = len(approvals)
    resolved = sum(1 for a in approvals if a.status in RESOLVED_STATUSES)
    pending = [a for a in approvals if a.status == "pending"]
    rules = current_rules()
    pm = next((a for a in approvals if a.stage and a.stage.slug == rules.pm_stage_slug), None)
    return {
        "sow_id": sow.id,
        "sow_status": sow.status,
        "version": sow.version,
        "total_stages": total,
        "completed_stages": resolved,
        "approved_stages": sum(1 for a in approvals if a.status == "approved"),
        "skipped_stages": sum(1 for a in approvals if a.status == "skipped"),
        "completion_percentage": round(resolved / total * 100) if total else 0,
        "requires_pm_approval": pm is not None and pm.status != "skipped",
        "current_stage": pending[0].to_dict() if pending else None,
        "approvals": [a.to_dict() for a in approvals],
    }


# ── Consistency check ────────────────────────────────────────────────────────


def validate_workflow(sow_id: str) -> dict:
    """Read-only consistency report for one revision.

    Compares the sow status with its approval rows, checks every decided
    row carries an approver and a decision time, and verifies the
    single-latest / max-version invariant of the lineage. Nothing is
    written or repaired.

    Returns:
        {"sow_id", "status", "valid": bool,
         "issues": [{"code", "message", "approval_id"?}, ...],
         "lineage": version_lineage.verify_lineage(...)}
    """
    sow = get_or_raise(Sow, sow_id, "Sow")
    approvals = _approvals_for(sow.id)
    statuses = [a.status for a in approvals]
    issues = []

    def issue(code, message, approval_id=None):
        entry = {"code": code, "message": message}
        if approval_id is not None:
            entry["approval_id"] = approval_id
        issues.append(entry)

    if sow.status in ("draft", "recalled") and approvals:
        issue(f"{sow.status}_has_approvals",
              f"{sow.status} revision still has {len(approvals)} approval record(s)")
    elif sow.status == "in_review":
        if not approvals:
            issue("in_review_without_approvals", "revision is in review but has no approval records")
        elif "rejected" in statuses:
            issue("in_review_with_rejection", "an approval is rejected but the revision is still in review")
        elif all(s in RESOLVED_STATUSES for s in statuses):
            issue("in_review_all_resolved", "every approval is resolved but the revision is still in review")
    elif sow.status == "approved":
        if not approvals:
            issue("approved_without_approvals", "revision is approved but has no approval records")
        if "pending" in statuses:
            issue("approved_with_pending", "revision is approved while an approval is still pending")
        if "rejected" in statuses:
            issue("approved_with_rejection", "revision is approved although an approval was rejected")
        if not (sow.approved_by and sow.approved_at):
            issue("approved_without_approver", "approved_by / approved_at are not set")
    elif sow.status == "rejected":
        if "rejected" not in statuses:
            issue("rejected_without_rejection", "revision is rejected but no approval was rejected")
        if not (sow.rejected_by and sow.rejected_at):
            issue("rejected_without_rejector", "rejected_by / rejected_at are not set")

    for a in approvals:
        if a.status == "pending" and (a.approver_id or a.decided_at):
            issue("pending_has_decision", "pending approval carries decision data", a.id)
        elif a.status in ("approved", "rejected") and not (a.approver_id and a.decided_at):
            issue("decision_incomplete", f"{a.status} approval lacks approver or decision time", a.id)

    lineage = version_lineage.verify_lineage(version_lineage.lineage_root_id(sow))
    if not lineage["valid"]:
        issue("lineage_invalid",
              f"lineage has {len(lineage['latest_ids'])} latest revision(s), "
              f"max version {lineage['max_version']}")

    if issues:
        logger.warning(
            "Workflow consistency check found %d issue(s)", len(issues),
            extra={"sow_id": sow.id, "event_type": "workflow.validate"},
        )
    return {
        "sow_id": sow.id,
        "status": sow.status,
        "valid": not issues,
        "issues": issues,
        "lineage": lineage,
    }
