"""
Shared pytest fixtures for the MAAP Snapshot Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - organization: Pre-created Organization entity
    - manager: Pre-created Employee who captures and finalizes snapshots
"""

import pytest

from maap import create_app
from maap.models import db as _db
from maap.models.organization import Employee, Organization


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
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables.

    Finalization commits per employee, so tables are rebuilt rather than
    relying on an outer transaction.
    """
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def organization():
    org = Organization(name="Acme Engineering")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def manager():
    """Employee recorded as ``created_by`` / finalizer."""
    emp = Employee(full_name="Morgan Manager", email="morgan@example.com")
    _db.session.add(emp)
    _db.session.commit()
    return emp
