"""
Shared pytest fixtures for the Content Approval Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - core: the app's CoreServices bundle
    - make_org / make_user / add_membership: directory seed factories
    - auth_headers: X-User-Id (+ optional tenant header) for API calls
"""

from datetime import datetime, timedelta, timezone

import pytest

from contentflow import create_app
from contentflow.core.container import get_core
from contentflow.models import db as _db
from contentflow.models.auth import Organization, OrganizationMembership, User


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        core = get_core()
        # Limiter counters and the audit buffer live on the session-scoped app.
        core.rate_limiter.reset()
        core.audit.clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def core(app):
    return get_core()


# ── Seed factories ───────────────────────────────────────────────────────


_BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def make_org():
    def _make(org_id, *, name=None, is_active=True):
        org = Organization(
            id=org_id,
            name=name or f"Org {org_id}",
            slug=f"org-{org_id.lower()}",
            is_active=is_active,
        )
        _db.session.add(org)
        _db.session.flush()
        return org
    return _make


@pytest.fixture()
def make_user():
    def _make(user_id, *, role="CREATIVE", is_super_admin=False, email=None):
        user = User(
            id=user_id,
            email=email or f"{user_id.lower()}@example.com",
            full_name=f"User {user_id}",
            role=role,
            is_super_admin=is_super_admin,
        )
        _db.session.add(user)
        _db.session.flush()
        return user
    return _make


@pytest.fixture()
def add_membership():
    """Membership factory; *joined_days* orders memberships (bigger = newer)."""
    def _add(user, org, *, role="MEMBER", is_active=True, joined_days=0, permissions=None):
        m = OrganizationMembership(
            user_id=user.id,
            organization_id=org.id,
            role=role,
            permissions=permissions or [],
            is_active=is_active,
            joined_at=_BASE_TIME + timedelta(days=joined_days),
        )
        _db.session.add(m)
        _db.session.flush()
        return m
    return _add


@pytest.fixture()
def auth_headers():
    def _headers(user_id, org_id=None):
        headers = {"X-User-Id": user_id}
        if org_id:
            headers["X-Selected-Organization"] = org_id
        return headers
    return _headers
