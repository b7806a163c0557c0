"""
Shared pytest fixtures for the approval workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant / other_tenant: Pre-created Tenant entities
    - members: one active Member per role in the default tenant
    - headers: builds X-Tenant-ID / X-Member-ID request headers
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services.approval_roles import Role


def _make_tenant(name: str, slug: str):
    from app.models.auth import Tenant

    tenant = Tenant(name=name, slug=slug)
    _db.session.add(tenant)
    _db.session.commit()
    return tenant


def _make_member(tenant_id: int, display_name: str, role: Role, is_active: bool = True):
    from app.models.auth import Member

    member = Member(tenant_id=tenant_id, display_name=display_name, role=role.value, is_active=is_active)
    _db.session.add(member)
    _db.session.commit()
    return member


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


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenant & member fixtures ─────────────────────────────────────────────


@pytest.fixture()
def default_tenant():
    return _make_tenant("Test Default", "test-default")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Other Tenant", "other-tenant")


@pytest.fixture()
def members(default_tenant):
    """{Role: Member} — one active member per role in the default tenant."""
    return {
        role: _make_member(default_tenant.id, f"{role.value.title()} One", role)
        for role in Role
    }


@pytest.fixture()
def make_member():
    """Factory for extra members: make_member(tenant_id, name, role, is_active=True)."""
    return _make_member


@pytest.fixture()
def headers(default_tenant):
    """headers(member=None, tenant_id=None) → request headers for the approval API."""

    def _build(member=None, tenant_id=None):
        result = {"X-Tenant-ID": str(tenant_id if tenant_id is not None else default_tenant.id)}
        if member is not None:
            result["X-Member-ID"] = str(member.id)
        return result

    return _build
