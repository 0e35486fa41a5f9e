"""Standardised API error responses.

Usage
-----
    from sowflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Sow not found")
    return api_error(E.COMMENT_REQUIRED, str(exc), details={"stage": "sr-leadership"})
"""

from __future__ import annotations

from flask import g, has_request_context, jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • WF_   prefix for approval-workflow errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Identity – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Workflow
    INVALID_STATE = "WF_INVALID_STATE"
    ALREADY_SUBMITTED = "WF_ALREADY_SUBMITTED"
    ALREADY_APPROVED = "WF_ALREADY_APPROVED"
    COMMENT_REQUIRED = "WF_COMMENT_REQUIRED"
    CONCURRENT_REVISION = "WF_CONCURRENT_REVISION"
    UNRELATED_REVISIONS = "WF_UNRELATED_REVISIONS"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.INVALID_STATE: 409,
    E.ALREADY_SUBMITTED: 409,
    E.ALREADY_APPROVED: 409,
    E.COMMENT_REQUIRED: 422,
    E.CONCURRENT_REVISION: 409,
    E.UNRELATED_REVISIONS: 422,
    E.INTERNAL: 500,
}


def status_for(code: str) -> int:
    """HTTP status for an error code; unknown codes are client errors."""
    return _DEFAULT_STATUS.get(code, 400)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Build ``(jsonify(body), status)`` for an error response.

    The body is ``{"error", "code"}`` plus ``details`` when given and the
    ``request_id`` assigned by middleware/timing.py, so a failed call can
    be matched to its log lines.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if has_request_context() and getattr(g, "request_id", None):
        body["request_id"] = g.request_id
    return jsonify(body), status or status_for(code)
