"""
Shared pytest fixtures for the workgraph test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, cache reset, rollback + recreate (autouse)
    - make_workstream / make_release / make_assignment: row factories
    - tree: Root → Child → Grandchild workstreams
"""

from datetime import date

import pytest

from workgraph import create_app
from workgraph.models import db as _db
from workgraph.models.release import ChecklistAssignment, Release
from workgraph.models.workstream import Workstream
from workgraph.services import cache_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    """Per-test: open app context, clear the cache, recreate tables afterwards."""
    with app.app_context():
        # ids are reused after each recreate; stale cached views would leak across tests
        cache_service.reset_backend()
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_workstream():
    """Insert a workstream row directly (depth derived from the parent row)."""

    def _make(name="Workstream", parent=None, owner_id=None, type="initiative", status="active"):
        ws = Workstream(
            name=name,
            type=type,
            status=status,
            owner_id=owner_id,
            parent_workstream_id=parent.id if parent is not None else None,
            hierarchy_depth=parent.hierarchy_depth + 1 if parent is not None else 1,
        )
        _db.session.add(ws)
        _db.session.flush()
        return ws

    return _make


@pytest.fixture()
def make_release():
    def _make(workstream, name="Release", target_date=date(2026, 11, 1), status="planned"):
        release = Release(
            workstream_id=workstream.id,
            name=name,
            target_date=target_date,
            status=status,
        )
        _db.session.add(release)
        _db.session.flush()
        return release

    return _make


@pytest.fixture()
def make_assignment():
    def _make(release, title="Task", status="pending", due_date=None):
        assignment = ChecklistAssignment(
            release_id=release.id,
            title=title,
            status=status,
            due_date=due_date,
        )
        _db.session.add(assignment)
        _db.session.flush()
        return assignment

    return _make


@pytest.fixture()
def tree(make_workstream):
    """Root (depth 1) → Child (depth 2) → Grandchild (depth 3)."""
    root = make_workstream("Root", type="product_line", owner_id=1)
    child = make_workstream("Child", parent=root)
    grandchild = make_workstream("Grandchild", parent=child, type="experiment")
    _db.session.commit()
    return root, child, grandchild
