"""Shared persistence helpers for the service layer.

get_or_raise:  primary-key lookup that raises NotFoundError
unit_of_work:  one transaction per operation; commits on success, rolls
               back on any failure and wraps unexpected database errors
               into WorkflowInternalError
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from sowflow.core.exceptions import NotFoundError, WorkflowInternalError
from sowflow.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label=None, *, for_update=False):
    """Fetch a model instance by primary key or raise NotFoundError.

    ``for_update=True`` takes a row lock (SELECT ... FOR UPDATE) on
    backends that support it; SQLite ignores the clause.
    """
    label = label or model.__name__
    if pk is None:
        raise NotFoundError(resource=label, resource_id=pk)
    if for_update:
        obj = db.session.get(model, pk, with_for_update=True)
    else:
        obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


@contextmanager
def unit_of_work(operation: str, **context):
    """Run the body as one transaction and commit when it completes.

    Workflow errors raised inside the block roll the session back and
    propagate unchanged. Anything the database raises (on a query, a
    flush or the commit itself) is rolled back, logged with the supplied
    context and surfaced as WorkflowInternalError. Nothing is retried.

    Usage:
        with unit_of_work("submit", sow_id=sow_id, actor_id=actor.actor_id):
            ...
    """
    try:
        yield
        db.session.commit()
    except OperationalError as exc:
        db.session.rollback()
        logger.exception(
            "Database operational error during %s", operation,
            extra={"event_type": operation, **_log_context(context)},
        )
        raise WorkflowInternalError(operation, context) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception(
            "Unexpected database error during %s", operation,
            extra={"event_type": operation, **_log_context(context)},
        )
        raise WorkflowInternalError(operation, context) from exc
    except Exception:
        db.session.rollback()
        raise


def _log_context(context: dict) -> dict:
    # LogRecord reserves some attribute names; keep the known-safe keys only
    allowed = {"sow_id", "approval_id", "stage", "actor_id", "lineage_root_id"}
    return {k: v for k, v in context.items() if k in allowed}
