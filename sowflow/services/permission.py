"""
Approval Role-Based Access Control

Fixed role → stage table for approval decisions, plus the author-or-manager
rule used by recall and revision creation. The engine performs no
authentication: the Actor is built by the request layer and trusted.

Usage:
    from sowflow.services.permission import Actor, check_stage_permission

    actor = Actor(actor_id="u-1", role="pmo", email="pmo@example.com")
    check_stage_permission(actor, stage)          # raises PermissionDeniedError
    if can_decide_stage(actor.role, "sr-leadership"):
        ...
"""

from dataclasses import dataclass

from sowflow.core.exceptions import PermissionDeniedError

ROLES = {"user", "sales", "pro_services", "solution_consultant", "manager", "pmo", "admin"}

# Roles that may act on any sow regardless of authorship
SOW_MANAGER_ROLES = frozenset({"manager", "admin"})

# Stage slug → roles allowed to decide it. admin is implied for every stage.
STAGE_APPROVER_ROLES = {
    "professional-services": frozenset({"manager"}),
    "project-management": frozenset({"pmo"}),
    "sr-leadership": frozenset({"manager"}),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity layer."""

    actor_id: str
    role: str
    email: str | None = None


def required_roles_for_stage(stage_slug: str) -> list[str]:
    """Roles that may decide ``stage_slug``; unknown stages are admin-only."""
    return sorted(STAGE_APPROVER_ROLES.get(stage_slug, frozenset()) | {"admin"})


def can_decide_stage(role: str | None, stage_slug: str) -> bool:
    if role == "admin":
        return True
    return role in STAGE_APPROVER_ROLES.get(stage_slug, frozenset())


def check_stage_permission(actor: Actor, stage) -> None:
    """Raise PermissionDeniedError unless ``actor`` may decide ``stage``."""
    if not can_decide_stage(actor.role, stage.slug):
        raise PermissionDeniedError(actor.actor_id, actor.role, "decide stage", stage.slug)


def can_manage_sow(actor: Actor, sow) -> bool:
    """Author of the revision, or a manager/admin."""
    return actor.role in SOW_MANAGER_ROLES or (
        sow.author_id is not None and sow.author_id == actor.actor_id
    )


def check_sow_owner_or_manager(actor: Actor, sow, action: str) -> None:
    if not can_manage_sow(actor, sow):
        raise PermissionDeniedError(actor.actor_id, actor.role, action, f"Sow {sow.id}")
