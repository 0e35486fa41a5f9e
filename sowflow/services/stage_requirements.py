"""
Stage Requirement Evaluator

Pure mapping from SOW content to the approval stage set for one
submission. No database access, no caching: the same content always
yields the same requirements, at submission time and at any later
inspection.

Rules:
  - intake stage (Professional Services)      → always required
  - project-management stage                  → required iff the SOW meets
                                                the PM hour designation
  - leadership stage (Sr. Leadership)         → always required
  - any other active stage                    → required

PM hour designation:
    filtered = products − excluded_product_ids
    len(filtered) >= 3  OR  sum(numeric units) >= 100

Usage:
    from sowflow.services.stage_requirements import SowContent, evaluate

    reqs = evaluate(SowContent.from_sow(sow), stages)
    reqs = evaluate(content, stages, rules=StageRules(pm_unit_threshold=50))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Number
from typing import Any, Iterable

from flask import current_app, has_app_context
from sqlalchemy import select

from sowflow.models import db
from sowflow.models.approval import ApprovalStage
from sowflow.models.sow import Sow
from sowflow.utils.helpers import get_or_raise

# BookIt Links: no-cost add-on that never counts toward the PM designation
BOOKIT_LINKS_PRODUCT_ID = "511f28fa-6cc4-41f9-9234-dc45056aa2d2"


@dataclass(frozen=True)
class StageRules:
    """Every constant the evaluator depends on."""

    excluded_product_ids: frozenset[str] = frozenset({BOOKIT_LINKS_PRODUCT_ID})
    pm_product_threshold: int = 3
    pm_unit_threshold: float = 100
    intake_stage_slug: str = "professional-services"
    pm_stage_slug: str = "project-management"
    leadership_stage_slug: str = "sr-leadership"

    @classmethod
    def from_config(cls, config) -> "StageRules":
        """Build from a Flask config mapping, falling back to defaults."""
        rules = config.get("SOW_STAGE_RULES")
        if isinstance(rules, cls):
            return rules
        defaults = cls()
        excluded = config.get("SOW_EXCLUDED_PRODUCT_IDS")
        return cls(
            excluded_product_ids=(
                frozenset(excluded) if excluded is not None else defaults.excluded_product_ids
            ),
            pm_product_threshold=config.get("SOW_PM_PRODUCT_THRESHOLD", defaults.pm_product_threshold),
            pm_unit_threshold=config.get("SOW_PM_UNIT_THRESHOLD", defaults.pm_unit_threshold),
        )


DEFAULT_RULES = StageRules()


@dataclass(frozen=True)
class SowContent:
    """The slice of a SOW the evaluator reads."""

    products: frozenset[str] = field(default_factory=frozenset)
    pricing_roles: tuple = ()

    @classmethod
    def from_sow(cls, sow) -> "SowContent":
        return cls(
            products=frozenset(sow.products or ()),
            pricing_roles=tuple(sow.pricing_roles or ()),
        )


@dataclass(frozen=True)
class StageRequirement:
    stage_id: int | None
    stage_slug: str
    stage_name: str
    sort_order: int
    required: bool
    reason: str

    @property
    def status(self) -> str:
        return "required" if self.required else "not_required"

    def to_dict(self) -> dict:
        return {
            "stage_id": self.stage_id,
            "stage_slug": self.stage_slug,
            "stage_name": self.stage_name,
            "sort_order": self.sort_order,
            "required": self.required,
            "status": self.status,
            "reason": self.reason,
        }


# ── Rule primitives ──────────────────────────────────────────────────────────


def _numeric_units(role: Any) -> float:
    # Only real numbers count; strings, None, bools and missing keys are 0
    units = role.get("units") if isinstance(role, dict) else None
    if isinstance(units, bool) or not isinstance(units, Number):
        return 0
    return units


def total_units(pricing_roles: Iterable) -> float:
    return sum(_numeric_units(r) for r in (pricing_roles or ()))


def filtered_products(content: SowContent, rules: StageRules = DEFAULT_RULES) -> frozenset[str]:
    return frozenset(content.products) - rules.excluded_product_ids


def pm_designation_reasons(content: SowContent, rules: StageRules = DEFAULT_RULES) -> list[str]:
    """Which PM-designation criteria the content meets (empty if none)."""
    reasons = []
    if len(filtered_products(content, rules)) >= rules.pm_product_threshold:
        reasons.append(f"{rules.pm_product_threshold}+ products")
    if total_units(content.pricing_roles) >= rules.pm_unit_threshold:
        reasons.append(f"{_fmt(rules.pm_unit_threshold)}+ units")
    return reasons


def requires_pm_approval(content: SowContent, rules: StageRules = DEFAULT_RULES) -> bool:
    return bool(pm_designation_reasons(content, rules))


def _fmt(number) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


# ── Evaluation ───────────────────────────────────────────────────────────────


def evaluate(content: SowContent, stages: Iterable, rules: StageRules = DEFAULT_RULES) -> list[StageRequirement]:
    """Return one StageRequirement per active stage, in sort_order.

    ``stages`` is any iterable of objects exposing id, slug, name,
    sort_order and is_active (ApprovalStage rows or plain stand-ins).
    """
    active = sorted(
        (s for s in stages if getattr(s, "is_active", True)),
        key=lambda s: (s.sort_order, s.id if s.id is not None else 0),
    )
    results = []
    for stage in active:
        required, reason = _stage_rule(stage.slug, content, rules)
        results.append(StageRequirement(
            stage_id=stage.id,
            stage_slug=stage.slug,
            stage_name=stage.name,
            sort_order=stage.sort_order,
            required=required,
            reason=reason,
        ))
    return results


def _stage_rule(slug: str, content: SowContent, rules: StageRules) -> tuple[bool, str]:
    if slug == rules.pm_stage_slug:
        met = pm_designation_reasons(content, rules)
        if met:
            return True, f"SOW meets PM hour designation ({', '.join(met)})"
        return False, (
            "SOW does not meet PM hour designation "
            f"(fewer than {rules.pm_product_threshold} products and "
            f"under {_fmt(rules.pm_unit_threshold)} units)"
        )
    if slug == rules.intake_stage_slug:
        return True, "Professional Services review is always required"
    if slug == rules.leadership_stage_slug:
        return True, "Sr. Leadership sign-off is always required"
    return True, "Stage is always required"


# ── Service entry point ──────────────────────────────────────────────────────


def load_active_stages() -> list[ApprovalStage]:
    return list(db.session.execute(
        select(ApprovalStage)
        .where(ApprovalStage.is_active.is_(True))
        .order_by(ApprovalStage.sort_order, ApprovalStage.id)
    ).scalars().all())


def current_rules() -> StageRules:
    if has_app_context():
        return StageRules.from_config(current_app.config)
    return DEFAULT_RULES


def evaluate_stage_requirements(sow_id: str) -> list[StageRequirement]:
    """Read-only preview of the stage set a submission would produce now."""
    sow = get_or_raise(Sow, sow_id, "Sow")
    return evaluate(SowContent.from_sow(sow), load_active_stages(), current_rules())
