"""
Shared pytest fixtures for the SOW workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, default stages seeded (autouse)
    - client: Flask test client (function-scoped)
    - stages: slug → ApprovalStage for the seeded defaults
    - author / manager / pmo / admin / sales: Actor fixtures
    - make_sow: factory creating a v1 draft through the service layer
"""

import pytest
from sqlalchemy import delete

from sowflow import create_app
from sowflow.models import db as _db
from sowflow.models.approval import ApprovalStage
from sowflow.models.sow import Sow
from sowflow.services import version_lineage
from sowflow.services.permission import Actor
from sowflow.services.stage_service import seed_default_stages


# Default products for make_sow (neither is excluded from the PM count)
PRODUCT_A = "prod-analytics"
PRODUCT_B = "prod-booking"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _drop_tables()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed stages, rollback and recreate tables after."""
    with app.app_context():
        seed_default_stages()
        _db.session.commit()
        yield
        _db.session.rollback()
        _drop_tables()
        _db.create_all()


def _drop_tables():
    """Drop every table. Revisions reference their root through a RESTRICT
    foreign key that SQLite enforces, so they go first."""
    _db.session.execute(delete(Sow).where(Sow.parent_id.isnot(None)))
    _db.session.commit()
    _db.drop_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def stages():
    return {s.slug: s for s in ApprovalStage.query.all()}


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def author():
    return Actor(actor_id="u-author", role="sales", email="author@example.com")


@pytest.fixture()
def sales():
    return Actor(actor_id="u-other-sales", role="sales", email="other@example.com")


@pytest.fixture()
def manager():
    return Actor(actor_id="u-manager", role="manager", email="manager@example.com")


@pytest.fixture()
def pmo():
    return Actor(actor_id="u-pmo", role="pmo", email="pmo@example.com")


@pytest.fixture()
def admin():
    return Actor(actor_id="u-admin", role="admin", email="admin@example.com")


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_sow(author):
    """Factory: create a v1 draft; defaults to 2 products / 40 units (no PM)."""
    def _make(**overrides):
        content = {
            "title": "Acme Rollout",
            "client_name": "Acme Corp",
            "products": [PRODUCT_A, PRODUCT_B],
            "pricing_roles": [{"role_id": "consultant", "units": 40}],
        }
        content.update(overrides)
        return version_lineage.create_sow(author.actor_id, **content)
    return _make
