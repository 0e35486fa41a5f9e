"""
SOW Draft Service

Reading revisions and editing draft content. Every content edit is
diffed against the pre-edit snapshot and appended to the changelog as
one field_update / content_edit row per changed column.

Request payloads arrive as JSON, so ``coerce_content`` converts dates
and numbers into column types before they reach the model.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from email_validator import EmailNotValidError, validate_email

from sowflow.core.exceptions import InvalidStateError, ValidationError
from sowflow.models import db
from sowflow.models.sow import Sow
from sowflow.services import changelog_service
from sowflow.services.changelog_differ import compare_fields
from sowflow.services.permission import Actor, check_sow_owner_or_manager
from sowflow.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)

DATE_FIELDS = {"project_start_date", "signature_date"}
EMAIL_FIELDS = {"client_email"}
INTEGER_FIELDS = {"timeline_weeks"}
DECIMAL_FIELDS = {"opportunity_amount"}
LIST_FIELDS = {"products", "pricing_roles"}

# Editable on a draft: carried content plus the signature date
EDITABLE_FIELDS = frozenset(Sow.content_field_names()) | {"signature_date"}


def get_sow(sow_id: str) -> Sow:
    return get_or_raise(Sow, sow_id, "Sow")


def coerce_content(data: dict, *, allowed=EDITABLE_FIELDS) -> dict:
    """Validate field names and convert JSON values to column types.

    Raises:
        ValidationError: unknown field or unparseable value (details per field).
    """
    errors = {}
    out = {}
    for name, value in (data or {}).items():
        if name not in allowed:
            errors[name] = "unknown or read-only field"
            continue
        if value is None or value == "":
            out[name] = [] if name in LIST_FIELDS else ("" if name == "title" else None)
            continue
        try:
            if name in DATE_FIELDS:
                out[name] = value if isinstance(value, date) else date.fromisoformat(str(value))
            elif name in EMAIL_FIELDS:
                out[name] = validate_email(str(value), check_deliverability=False).normalized
            elif name in INTEGER_FIELDS:
                if isinstance(value, bool):
                    raise ValueError(value)
                out[name] = int(value)
            elif name in DECIMAL_FIELDS:
                out[name] = Decimal(str(value))
            elif name == "products":
                if not isinstance(value, list):
                    raise ValueError(value)
                out[name] = sorted({str(p) for p in value})
            elif name == "pricing_roles":
                if not isinstance(value, list) or not all(isinstance(r, dict) for r in value):
                    raise ValueError(value)
                out[name] = [dict(r) for r in value]
            else:
                out[name] = value if isinstance(value, str) else str(value)
        except (ValueError, TypeError, InvalidOperation, EmailNotValidError):
            errors[name] = "invalid value"

    if errors:
        raise ValidationError("Invalid SOW content", details=errors)
    return out


def update_draft(sow_id: str, actor: Actor, changes: dict) -> Sow:
    """Apply content changes to a draft and record one changelog row per field.

    Raises:
        NotFoundError, InvalidStateError (not a draft), PermissionDeniedError,
        ValidationError, WorkflowInternalError
    """
    with unit_of_work("update_draft", sow_id=sow_id, actor_id=actor.actor_id):
        sow = get_or_raise(Sow, sow_id, "Sow", for_update=True)
        if sow.status != "draft":
            raise InvalidStateError("Sow", sow.id, sow.status, "edit",
                                    "only draft revisions can be edited")
        check_sow_owner_or_manager(actor, sow, "edit")

        values = coerce_content(changes)
        before = sow.snapshot()
        for name, value in values.items():
            setattr(sow, name, value)
        db.session.flush()
        db.session.refresh(sow)

        recorded = compare_fields(before, sow.snapshot())
        changelog_service.record_changes(sow, recorded, actor.actor_id)

    if recorded:
        logger.info(
            "Draft updated: %s", ", ".join(c.field_name for c in recorded),
            extra={"sow_id": sow.id, "actor_id": actor.actor_id},
        )
    return sow
