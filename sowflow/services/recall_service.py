"""
Recall & Revision Service

Two ways a new draft revision enters a lineage after submission:

  recall(sow_id, actor)
      in_review, nothing approved yet → every approval row deleted,
      current revision marked 'recalled' (no longer latest), new draft
      at version max+1. Author or manager/admin only.

  create_revision_from_rejected(sow_id, actor)
      rejected and still the latest revision → new draft at version
      max+1; the rejected revision keeps its status and approvals for
      audit. Author or manager/admin only.

Both run as a single transaction: any failure rolls back every write.
The recall notification is sent after commit and never affects the result.
"""

import logging

from sowflow.core.exceptions import AlreadyApprovedError, InvalidStateError
from sowflow.models import db
from sowflow.models.sow import Sow
from sowflow.services import changelog_service, notification, version_lineage
from sowflow.services.permission import Actor, check_sow_owner_or_manager
from sowflow.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)


def recall(sow_id: str, actor: Actor) -> Sow:
    """Pull an in-review revision back into editing.

    Checks run in this order: status, permission, no stage approved.

    Returns:
        The new draft revision.

    Raises:
        NotFoundError, InvalidStateError, PermissionDeniedError,
        AlreadyApprovedError, ConcurrentRevisionError, WorkflowInternalError
    """
    with unit_of_work("recall", sow_id=sow_id, actor_id=actor.actor_id):
        sow = get_or_raise(Sow, sow_id, "Sow", for_update=True)
        if sow.status != "in_review":
            raise InvalidStateError("Sow", sow.id, sow.status, "recall",
                                    "only SOWs in review can be recalled")

        check_sow_owner_or_manager(actor, sow, "recall")

        approved = sorted(a.stage.slug for a in sow.approvals if a.status == "approved")
        if approved:
            raise AlreadyApprovedError(sow.id, approved)

        removed = len(sow.approvals)
        sow.approvals.clear()  # delete-orphan cascade removes the rows
        sow.status = "recalled"
        sow.is_latest = False
        db.session.flush()

        changelog_service.record_status_change(
            sow, "in_review", "recalled", actor.actor_id,
            metadata={"approvals_removed": removed},
        )

        revision = version_lineage.create_revision(sow.id, actor.actor_id)
        changelog_service.record_version_created(revision, actor.actor_id, source=sow, reason="recall")

    logger.info(
        "SOW v%d recalled, draft v%d created", sow.version, revision.version,
        extra={"sow_id": sow.id, "lineage_root_id": revision.lineage_root_id,
               "actor_id": actor.actor_id, "event_type": "sow.recalled"},
    )
    notification.notify("sow.recalled", {
        "sow_id": revision.id,
        "version": revision.version,
        "previous_version": sow.version,
        "message": f"Recalled by {actor.email or actor.actor_id}",
    })
    return revision


def create_revision_from_rejected(sow_id: str, actor: Actor) -> Sow:
    """Start a new draft from the latest rejected revision.

    Raises:
        NotFoundError, InvalidStateError, PermissionDeniedError,
        ConcurrentRevisionError, WorkflowInternalError
    """
    with unit_of_work("create_revision", sow_id=sow_id, actor_id=actor.actor_id):
        sow = get_or_raise(Sow, sow_id, "Sow", for_update=True)
        if sow.status != "rejected":
            raise InvalidStateError("Sow", sow.id, sow.status, "revise",
                                    "only rejected SOWs can be revised")
        if not sow.is_latest:
            raise InvalidStateError("Sow", sow.id, sow.status, "revise",
                                    "a newer revision already exists")

        check_sow_owner_or_manager(actor, sow, "create revision of")

        revision = version_lineage.create_revision(sow.id, actor.actor_id)
        changelog_service.record_version_created(revision, actor.actor_id, source=sow, reason="rejected")

    logger.info(
        "Revision v%d created from rejected v%d", revision.version, sow.version,
        extra={"sow_id": revision.id, "lineage_root_id": revision.lineage_root_id,
               "actor_id": actor.actor_id},
    )
    return revision
