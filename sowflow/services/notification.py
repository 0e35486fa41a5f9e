"""
SOW Workflow Engine
Notification Service.

Best-effort, fire-and-forget delivery of workflow events. Workflow
operations call ``notify`` only AFTER their own transaction has
committed; a failure here is logged and discarded and never rolls back
or fails the operation that triggered it.

Events:
    sow.submitted, sow.approved, sow.rejected, sow.recalled
"""

import logging

from sowflow.models import db
from sowflow.models.notification import Notification

logger = logging.getLogger(__name__)

# event → (category, severity, title template)
EVENT_TEMPLATES = {
    "sow.submitted": ("approval", "info", "SOW v{version} submitted for approval"),
    "sow.approved": ("approval", "success", "SOW v{version} fully approved"),
    "sow.rejected": ("approval", "error", "SOW v{version} rejected at {stage}"),
    "sow.recalled": ("recall", "warning", "SOW v{previous_version} recalled; draft v{version} created"),
}


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def create(*, event, title, message="", category="system", severity="info",
               recipient="all", entity_type="sow", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            event=event,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif


def notify(event: str, payload: dict) -> None:
    """Deliver a workflow event. Never raises."""
    try:
        category, severity, template = EVENT_TEMPLATES.get(
            event, ("system", "info", event),
        )
        NotificationService.create(
            event=event,
            title=template.format_map(_SafeDict(payload)),
            message=payload.get("message", ""),
            category=category,
            severity=severity,
            recipient=payload.get("recipient") or "all",
            entity_id=payload.get("sow_id"),
        )
        logger.info("Notification sent: %s", event, extra={"event_type": event, "sow_id": payload.get("sow_id")})
    except Exception:
        db.session.rollback()
        logger.exception(
            "Notification failed for %s (discarded)", event,
            extra={"event_type": event, "sow_id": payload.get("sow_id")},
        )


class _SafeDict(dict):
    def __missing__(self, key):
        return "?"
