"""
Shared pytest fixtures for the Docflow routing & escalation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - transport: fresh in-memory realtime transport per test (autouse)
    - client: Flask test client (function-scoped)
"""

import pytest

from docflow import create_app
from docflow.models import db as _db
from docflow.services import realtime


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def transport():
    """Record real-time pushes in-process; swapped back after the test."""
    previous = realtime.get_transport()
    recorder = realtime.InMemoryTransport()
    realtime.set_transport(recorder)
    yield recorder
    realtime.set_transport(previous)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()
