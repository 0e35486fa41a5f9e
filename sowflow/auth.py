"""
SOW Workflow Engine
Request identity middleware.

The engine does not authenticate users: an upstream gateway / SSO layer
does, and forwards the result as request headers:

    X-User-Id: opaque user id (required)
    X-User-Role: one of permission.ROLES (required)
    X-User-Email: optional, used in changelog summaries and notifications

``init_auth`` turns those headers into ``g.actor`` for every /api/v1
route; the service layer authorises against the Actor's role.

Configuration:
    SOW_REQUIRE_ACTOR: when False, requests without headers run as an
                       anonymous 'user' (read-only in practice)
"""

import logging

from flask import current_app, g, request

from sowflow.services.permission import ROLES, Actor
from sowflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ANONYMOUS = Actor(actor_id="anonymous", role="user")


def actor_from_headers(headers):
    """Build an Actor from request headers, or None when id/role are missing."""
    actor_id = (headers.get("X-User-Id") or "").strip()
    role = (headers.get("X-User-Role") or "").strip().lower()
    if not actor_id or not role:
        return None
    email = (headers.get("X-User-Email") or "").strip() or None
    return Actor(actor_id=actor_id, role=role, email=email)


def current_actor():
    """The Actor for this request (set by the before_request hook)."""
    return getattr(g, "actor", None) or ANONYMOUS


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json when a body is sent. HTML forms cannot
    send application/json, so this doubles as a lightweight CSRF guard.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json for state-changing requests",
                status=415,
            )
    return None


def init_auth(app):
    """
    Install the identity hook on the Flask app.

    - Skips non-API routes, the health check and CORS pre-flight
    - Rejects unknown roles and, when SOW_REQUIRE_ACTOR is set, missing headers
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        actor = actor_from_headers(request.headers)
        if actor is None:
            if current_app.config.get("SOW_REQUIRE_ACTOR", True):
                return api_error(E.UNAUTHENTICATED, "X-User-Id and X-User-Role headers are required")
            g.actor = ANONYMOUS
            return None

        if actor.role not in ROLES:
            logger.warning("Unknown role '%s' for user %s", actor.role, actor.actor_id,
                           extra={"actor_id": actor.actor_id})
            return api_error(E.UNAUTHENTICATED, f"Unknown role: {actor.role}",
                             details={"allowed_roles": sorted(ROLES)})

        g.actor = actor
        return None

    logger.info(
        "Identity middleware installed (require_actor=%s)",
        app.config.get("SOW_REQUIRE_ACTOR", True),
    )
