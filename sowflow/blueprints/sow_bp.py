"""
SOW Revision & Approval Blueprint.

Thin HTTP layer over the workflow services: parse the request, call one
service operation, serialise the result. Every business rule lives in
sowflow/services; service exceptions are mapped to JSON errors by the
handlers registered below.

Routes (prefix /api/v1):
  POST   /sows                                  – create root revision (v1 draft)
  GET    /sows/<sid>                            – one revision
  PATCH  /sows/<sid>                            – edit a draft
  GET    /sows/<sid>/stage-requirements         – preview required stages
  POST   /sows/<sid>/submit                     – draft → in_review
  GET    /sows/<sid>/approvals                  – workflow status + approvals
  GET    /sows/<sid>/approvals/validate         – read-only consistency report
  POST   /sows/<sid>/approvals/<aid>/decide     – approve / reject / skip
  POST   /sows/<sid>/recall                     – in_review → recalled + new draft
  POST   /sows/<sid>/revision                   – rejected → new draft
  GET    /sows/<sid>/revisions                  – lineage revision list
  GET    /sows/<a>/diff/<b>                     – field diff between revisions
  GET    /sows/<sid>/changelog                  – audit trail (filterable)
  GET    /sows/<sid>/changelog/summary          – audit totals + timeline
  GET    /sows/<sid>/changelog/export           – audit trail as CSV
  GET    /sows/<sid>/comments                   – comment threads
  POST   /sows/<sid>/comments                   – add reviewer comment or reply
  GET    /approval-stages                       – active stage configuration
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from sowflow.auth import current_actor
from sowflow.blueprints import paginate_query
from sowflow.core.exceptions import (
    AlreadyApprovedError,
    AlreadySubmittedError,
    CommentRequiredError,
    ConcurrentRevisionError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    UnrelatedRevisionsError,
    ValidationError,
    WorkflowInternalError,
)
from sowflow.models.sow import Sow
from sowflow.services import (
    approval_workflow,
    changelog_differ,
    changelog_service,
    recall_service,
    sow_service,
    stage_requirements,
    stage_service,
    version_lineage,
)
from sowflow.services.permission import required_roles_for_stage
from sowflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

sow_bp = Blueprint("sow_bp", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@sow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error),
                     details={"resource": error.resource, "id": error.resource_id})


@sow_bp.errorhandler(AlreadySubmittedError)
def _handle_already_submitted(error: AlreadySubmittedError):
    return api_error(E.ALREADY_SUBMITTED, str(error),
                     details={"current_status": error.current_status})


@sow_bp.errorhandler(AlreadyApprovedError)
def _handle_already_approved(error: AlreadyApprovedError):
    return api_error(E.ALREADY_APPROVED, str(error),
                     details={"approved_stages": error.approved_stages})


@sow_bp.errorhandler(InvalidStateError)
def _handle_invalid_state(error: InvalidStateError):
    return api_error(E.INVALID_STATE, str(error),
                     details={"current_status": error.current_status, "action": error.action})


@sow_bp.errorhandler(PermissionDeniedError)
def _handle_permission(error: PermissionDeniedError):
    logger.warning("Permission denied: %s", error, extra={"actor_id": error.actor_id})
    details = {"role": error.role, "action": error.action}
    if error.action == "decide stage" and error.target:
        details["required_roles"] = required_roles_for_stage(error.target)
    return api_error(E.FORBIDDEN, str(error), details=details)


@sow_bp.errorhandler(CommentRequiredError)
def _handle_comment_required(error: CommentRequiredError):
    return api_error(E.COMMENT_REQUIRED, str(error), details={"stage": error.stage_slug})


@sow_bp.errorhandler(UnrelatedRevisionsError)
def _handle_unrelated(error: UnrelatedRevisionsError):
    return api_error(E.UNRELATED_REVISIONS, str(error), details=error.details)


@sow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@sow_bp.errorhandler(ConcurrentRevisionError)
def _handle_concurrent(error: ConcurrentRevisionError):
    return api_error(E.CONCURRENT_REVISION, str(error),
                     details={"lineage_root_id": error.lineage_root_id})


@sow_bp.errorhandler(WorkflowInternalError)
def _handle_internal(error: WorkflowInternalError):
    # Already logged with full context where it was raised
    return api_error(E.INTERNAL, "Internal server error", details={"operation": error.operation})


@sow_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in sow_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── helpers ──────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _parse_datetime_arg(name: str) -> datetime | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date/time", details={name: raw})


# ═════════════════════════════════════════════════════════════════════════════
# SOW CRUD
# ═════════════════════════════════════════════════════════════════════════════


@sow_bp.route("/sows", methods=["POST"])
def create_sow():
    """Create a new SOW lineage. The caller becomes the author."""
    actor = current_actor()
    content = sow_service.coerce_content(
        _json_body(), allowed=frozenset(Sow.content_field_names()),
    )
    if not (content.get("title") or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    sow = version_lineage.create_sow(actor.actor_id, **content)
    return jsonify(sow.to_dict()), 201


@sow_bp.route("/sows/<sow_id>", methods=["GET"])
def get_sow(sow_id):
    return jsonify(sow_service.get_sow(sow_id).to_dict())


@sow_bp.route("/sows/<sow_id>", methods=["PATCH"])
def update_sow(sow_id):
    """Edit draft content; every changed field lands in the changelog."""
    sow = sow_service.update_draft(sow_id, current_actor(), _json_body())
    return jsonify(sow.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# APPROVAL WORKFLOW
# ═════════════════════════════════════════════════════════════════════════════


@sow_bp.route("/sows/<sow_id>/stage-requirements", methods=["GET"])
def get_stage_requirements(sow_id):
    """Which stages a submission would require right now, with reasons."""
    reqs = stage_requirements.evaluate_stage_requirements(sow_id)
    return jsonify({
        "sow_id": sow_id,
        "requires_pm_approval": any(
            r.required and r.stage_slug == stage_requirements.current_rules().pm_stage_slug
            for r in reqs
        ),
        "stages": [r.to_dict() for r in reqs],
    })


@sow_bp.route("/sows/<sow_id>/submit", methods=["POST"])
def submit_sow(sow_id):
    approvals = approval_workflow.submit(sow_id, current_actor())
    sow = sow_service.get_sow(sow_id)
    return jsonify({
        "sow": sow.to_dict(),
        "approvals": [a.to_dict() for a in approvals],
    })


@sow_bp.route("/sows/<sow_id>/approvals", methods=["GET"])
def get_approvals(sow_id):
    return jsonify(approval_workflow.get_workflow_status(sow_id))


@sow_bp.route("/sows/<sow_id>/approvals/validate", methods=["GET"])
def validate_approvals(sow_id):
    """Approval rows vs. sow status, plus the lineage invariant. Never writes."""
    return jsonify(approval_workflow.validate_workflow(sow_id))


@sow_bp.route("/sows/<sow_id>/approvals/<int:approval_id>/decide", methods=["POST"])
def decide_approval(sow_id, approval_id):
    """Record a stage decision.

    Body: { action: approve|reject|skip, comments? }
    """
    data = _json_body()
    action = data.get("action")
    if action is not None and not isinstance(action, str):
        raise ValidationError("action must be a string", details={"action": "must be a string"})
    action = (action or "").strip().lower()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    approval = approval_workflow.decide(
        approval_id, action, current_actor(), data.get("comments"), sow_id=sow_id,
    )
    sow = sow_service.get_sow(sow_id)
    return jsonify({"approval": approval.to_dict(), "sow": sow.to_dict()})


# ═════════════════════════════════════════════════════════════════════════════
# REVISIONS
# ═════════════════════════════════════════════════════════════════════════════


@sow_bp.route("/sows/<sow_id>/recall", methods=["POST"])
def recall_sow(sow_id):
    revision = recall_service.recall(sow_id, current_actor())
    return jsonify(revision.to_dict()), 201


@sow_bp.route("/sows/<sow_id>/revision", methods=["POST"])
def create_revision(sow_id):
    revision = recall_service.create_revision_from_rejected(sow_id, current_actor())
    return jsonify(revision.to_dict()), 201


@sow_bp.route("/sows/<sow_id>/revisions", methods=["GET"])
def list_revisions(sow_id):
    revisions = version_lineage.list_revisions(sow_id)
    return jsonify({"items": revisions, "total": len(revisions)})


@sow_bp.route("/sows/<sow_id>/diff/<other_id>", methods=["GET"])
def diff_revisions(sow_id, other_id):
    changes = changelog_differ.diff_revisions(sow_id, other_id)
    return jsonify({
        "from": sow_id,
        "to": other_id,
        "changes": [c.to_dict() for c in changes],
        "total": len(changes),
    })


# ═════════════════════════════════════════════════════════════════════════════
# CHANGELOG & COMMENTS
# ═════════════════════════════════════════════════════════════════════════════


@sow_bp.route("/sows/<sow_id>/changelog", methods=["GET"])
def get_changelog(sow_id):
    """Audit trail, newest first.

    Query: change_type, field_name, user_id, start, end, limit, offset
    """
    stmt = changelog_service.changelog_query(
        sow_id,
        change_type=request.args.get("change_type"),
        field_name=request.args.get("field_name"),
        user_id=request.args.get("user_id"),
        start=_parse_datetime_arg("start"),
        end=_parse_datetime_arg("end"),
    )
    page, total = paginate_query(stmt)
    return jsonify({"items": [e.to_dict() for e in page], "total": total})


@sow_bp.route("/sows/<sow_id>/changelog/summary", methods=["GET"])
def get_changelog_summary(sow_id):
    return jsonify(changelog_service.get_changelog_summary(sow_id))


@sow_bp.route("/sows/<sow_id>/changelog/export", methods=["GET"])
def export_changelog(sow_id):
    csv_text = changelog_service.export_changelog_csv(sow_id)
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="sow-{sow_id}-changelog.csv"'},
    )


@sow_bp.route("/sows/<sow_id>/comments", methods=["GET"])
def list_comments(sow_id):
    threads = changelog_service.get_comments(sow_id)
    return jsonify({"items": threads, "total": len(threads)})


@sow_bp.route("/sows/<sow_id>/comments", methods=["POST"])
def add_comment(sow_id):
    """Body: { comment, parent_id?, is_internal? }"""
    data = _json_body()
    entry = changelog_service.add_comment(
        sow_id, current_actor(), data.get("comment"), data.get("parent_id"),
        is_internal=data.get("is_internal") is True,
    )
    return jsonify(entry), 201


# ═════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═════════════════════════════════════════════════════════════════════════════


@sow_bp.route("/approval-stages", methods=["GET"])
def list_approval_stages():
    include_inactive = request.args.get("include_inactive") == "true"
    return jsonify([s.to_dict() for s in stage_service.list_stages(include_inactive)])
