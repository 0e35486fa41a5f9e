"""
SOW Workflow Engine
Blueprint registry.
"""

from flask import request
from sqlalchemy import func, select

from sowflow.models import db


def paginate_query(stmt, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy select.

    The count and the page are both computed by the database.

    Query params:
        limit:  max items (default 200, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    try:
        limit = max(min(int(request.args.get("limit", default_limit)), max_limit), 1)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = db.session.execute(stmt.limit(limit).offset(offset)).scalars().all()
    return list(items), total
