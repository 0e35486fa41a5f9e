"""Approval stage configuration: listing and default seeding."""

import logging

from sowflow.models import db
from sowflow.models.approval import DEFAULT_STAGES, ApprovalStage

logger = logging.getLogger(__name__)


def list_stages(include_inactive=False):
    q = ApprovalStage.query
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(ApprovalStage.sort_order, ApprovalStage.id).all()


def seed_default_stages():
    """
    Insert the three default approval stages.
    Safe to run multiple times; skips slugs that already exist.

    Flushes only; call this from a Flask CLI command or a test fixture
    and commit there.
    """
    created = 0
    for s in DEFAULT_STAGES:
        if ApprovalStage.query.filter_by(slug=s["slug"]).first() is None:
            db.session.add(ApprovalStage(**s))
            created += 1

    if created > 0:
        db.session.flush()
        logger.info("Seeded %d approval stages", created)

    return created
