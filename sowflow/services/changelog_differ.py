"""
Changelog Differ

Field-level diff between two SOW revisions of the same lineage. Used by
the revision-comparison API and, through ``compare_fields``, by draft
editing to decide which changelog rows to append.

Output ordering is deterministic:
    change_type precedence  field_update < content_edit < status_change
    then field_name ascending

Excluded from content diffs:
    - identity / lineage columns (id, parent_id, version, is_latest, ...)
    - status (surfaced by the revision list header)
    - approval bookkeeping (submitted/approved/rejected by+at, approval_comments),
      reported through the approval history instead
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sowflow.core.exceptions import UnrelatedRevisionsError
from sowflow.models.sow import APPROVAL_BOOKKEEPING_FIELDS, IDENTITY_FIELDS, Sow
from sowflow.utils.helpers import get_or_raise

DIFF_EXCLUDED_FIELDS = IDENTITY_FIELDS | APPROVAL_BOOKKEEPING_FIELDS | {"status"}

CHANGE_TYPE_PRECEDENCE = {
    "field_update": 0,
    "content_edit": 1,
    "status_change": 2,
}

# Fields holding set-valued data; element order is not a change
SET_VALUED_FIELDS = frozenset({"products"})

FIELD_DISPLAY_NAMES = {
    "title": "SOW Title",
    "client_name": "Client Name",
    "client_email": "Client Email",
    "client_signer_name": "Client Signer Name",
    "products": "Products",
    "pricing_roles": "Pricing Roles",
    "deliverables": "Deliverables",
    "objectives_description": "Objectives Description",
    "custom_intro_content": "Introduction Content",
    "custom_scope_content": "Scope Content",
    "custom_assumptions_content": "Assumptions Content",
    "timeline_weeks": "Timeline Weeks",
    "project_start_date": "Project Start Date",
    "opportunity_amount": "Opportunity Amount",
    "signature_date": "Signature Date",
    "status": "Status",
}


@dataclass(frozen=True)
class ChangeRecord:
    field_name: str
    change_type: str
    previous_value: str
    new_value: str
    diff_summary: str

    def to_dict(self) -> dict:
        return {
            "field_name": self.field_name,
            "change_type": self.change_type,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "diff_summary": self.diff_summary,
        }


# ── Value helpers ────────────────────────────────────────────────────────────


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def value_to_string(value, field_name: str | None = None) -> str:
    """Stable string form of a column value; None becomes ''."""
    if value is None:
        return ""
    if field_name in SET_VALUED_FIELDS and isinstance(value, (list, tuple, set, frozenset)):
        value = sorted(set(value), key=str)
    if isinstance(value, (dict, list, tuple, set, frozenset)):
        return json.dumps(value, sort_keys=True, default=_json_default)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def get_change_type(field_name: str) -> str:
    if field_name == "status":
        return "status_change"
    if field_name.startswith("custom_") or "content" in field_name:
        return "content_edit"
    return "field_update"


def get_field_display_name(field_name: str) -> str:
    return FIELD_DISPLAY_NAMES.get(field_name) or field_name.replace("_", " ").title()


def generate_diff_summary(field_name: str, previous: str, new: str, change_type: str) -> str:
    """Human-readable one-liner for audit display."""
    label = get_field_display_name(field_name)

    if change_type == "status_change":
        return f'Status changed from "{previous or "None"}" to "{new or "None"}"'

    if change_type == "content_edit":
        if previous and new:
            direction = "expanded" if len(new) > len(previous) else "shortened"
            return f"{label} content {direction} ({len(previous)} → {len(new)} characters)"
        if new:
            return f"{label} content added ({len(new)} characters)"
        if previous:
            return f"{label} content removed"
        return f"{label} content updated"

    if previous and new:
        return f'{label} changed from "{previous}" to "{new}"'
    if new:
        return f'{label} set to "{new}"'
    if previous:
        return f'{label} cleared (was "{previous}")'
    return f"{label} updated"


def sort_changes(changes: list[ChangeRecord]) -> list[ChangeRecord]:
    return sorted(
        changes,
        key=lambda c: (CHANGE_TYPE_PRECEDENCE.get(c.change_type, len(CHANGE_TYPE_PRECEDENCE)), c.field_name),
    )


# ── Diff ─────────────────────────────────────────────────────────────────────


def compare_fields(before: dict, after: dict, *, excluded=DIFF_EXCLUDED_FIELDS) -> list[ChangeRecord]:
    """Diff two column → value mappings, ordered deterministically."""
    changes = []
    for name in set(before) | set(after):
        if name in excluded:
            continue
        prev_raw, new_raw = before.get(name), after.get(name)
        prev_str = value_to_string(prev_raw, name)
        new_str = value_to_string(new_raw, name)
        if prev_str == new_str:
            continue
        change_type = get_change_type(name)
        changes.append(ChangeRecord(
            field_name=name,
            change_type=change_type,
            previous_value=prev_str,
            new_value=new_str,
            diff_summary=generate_diff_summary(name, prev_str, new_str, change_type),
        ))
    return sort_changes(changes)


def diff(sow_a: Sow, sow_b: Sow) -> list[ChangeRecord]:
    """Content diff from ``sow_a`` to ``sow_b``. Read-only.

    Raises:
        UnrelatedRevisionsError: the two revisions have different lineage roots.
    """
    root_a = sow_a.parent_id or sow_a.id
    root_b = sow_b.parent_id or sow_b.id
    if root_a != root_b:
        raise UnrelatedRevisionsError(sow_a.id, root_a, sow_b.id, root_b)
    return compare_fields(sow_a.snapshot(), sow_b.snapshot())


def diff_revisions(sow_id_a: str, sow_id_b: str) -> list[ChangeRecord]:
    """Load two revisions by id and diff them."""
    sow_a = get_or_raise(Sow, sow_id_a, "Sow")
    sow_b = get_or_raise(Sow, sow_id_b, "Sow")
    return diff(sow_a, sow_b)
