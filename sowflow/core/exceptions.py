"""
Workflow-engine exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and get consistent HTTP status codes everywhere.
Each exception carries enough context (entity, id, stage, status) to be
logged and surfaced to the caller verbatim.

Usage:
    from sowflow.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="Sow", resource_id=sow_id)
    raise InvalidStateError("Sow", sow.id, sow.status, action="submit")
"""


class NotFoundError(Exception):
    """Raised when a referenced entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Sow", "SowApproval").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness guarantee.

    Args:
        resource: Model name.
        field: The unique field (or field tuple) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow state errors ────────────────────────────────────────────────────


class InvalidStateError(Exception):
    """Raised when an operation is attempted from a status that forbids it."""

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        current_status: str | None,
        action: str,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current_status
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} {resource} id={resource_id} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AlreadySubmittedError(InvalidStateError):
    """Raised when submit is called on a sow that is not a draft."""

    def __init__(self, sow_id: str, current_status: str) -> None:
        super().__init__("Sow", sow_id, current_status, "submit",
                         "only draft revisions can be submitted")


class AlreadyApprovedError(InvalidStateError):
    """Raised when recall is attempted after any stage has signed off."""

    def __init__(self, sow_id: str, approved_stages: list[str]) -> None:
        super().__init__(
            "Sow", sow_id, "in_review", "recall",
            f"stage(s) already approved: {', '.join(approved_stages)}; reject instead",
        )
        self.approved_stages = approved_stages


class PermissionDeniedError(PermissionError):
    """Raised when the actor's role does not allow the action or stage."""

    def __init__(self, actor_id: str | None, role: str | None, action: str, target: str | None = None) -> None:
        self.actor_id = actor_id
        self.role = role
        self.action = action
        self.target = target
        msg = f"User {actor_id} (role={role}) is not permitted to {action}"
        if target:
            msg += f" {target}"
        super().__init__(msg)


class CommentRequiredError(Exception):
    """Raised when a stage mandates a comment that was not supplied."""

    def __init__(self, stage_slug: str, approval_id: int | None = None) -> None:
        self.stage_slug = stage_slug
        self.approval_id = approval_id
        super().__init__(f"Stage '{stage_slug}' requires a comment for this decision")


# ── Lineage errors ───────────────────────────────────────────────────────────


class ConcurrentRevisionError(ConflictError):
    """Raised when another revision was written to the lineage mid-operation."""

    def __init__(self, lineage_root_id: str, expected_version: int) -> None:
        super().__init__("Sow", "(lineage_root_id, version)", f"{lineage_root_id}, {expected_version}")
        self.lineage_root_id = lineage_root_id
        self.expected_version = expected_version


class UnrelatedRevisionsError(ValidationError):
    """Raised when two sows from different lineages are compared."""

    def __init__(self, sow_id_a: str, root_a: str, sow_id_b: str, root_b: str) -> None:
        super().__init__(
            f"Sow {sow_id_a} and Sow {sow_id_b} belong to different lineages",
            details={"lineage_roots": {sow_id_a: root_a, sow_id_b: root_b}},
        )
        self.sow_id_a = sow_id_a
        self.sow_id_b = sow_id_b


# ── Infrastructure ───────────────────────────────────────────────────────────


class WorkflowInternalError(Exception):
    """Wraps unexpected persistence failures. Logged with full context where raised."""

    def __init__(self, operation: str, context: dict | None = None) -> None:
        self.operation = operation
        self.context = context or {}
        super().__init__(f"Internal error during {operation}")
