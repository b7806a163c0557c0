"""
Tests for app/services/helpers/scoped_queries.py

These tests are security-critical: they verify the tenant isolation
helper behaves correctly under adversarial conditions.

Scenarios covered:
  1. ValueError when tenant_id is None
  2. ValueError when the model has no tenant_id column
  3. NotFoundError when PK is correct but the tenant does not match
  4. Correct entity returned when PK + tenant both match
  5. get_scoped_or_none returns None instead of raising NotFoundError
  6. for_update re-reads the row, overwriting stale identity-map state

Test isolation strategy:
  Relies on the autouse `session` fixture from conftest.py which rolls back
  and recreates tables after every test. Each test creates its own data.
"""

import pytest

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.approval import ApprovalRoute
from app.models.auth import Tenant
from app.services.helpers.scoped_queries import get_scoped, get_scoped_or_none


def _make_route(tenant_id: int, name: str = "Route"):
    route = ApprovalRoute(tenant_id=tenant_id, name=name)
    db.session.add(route)
    db.session.flush()
    return route


# ── 1-2. ValueError: unscoped lookups ───────────────────────────────────────


class TestRequiresScope:
    def test_none_tenant_raises(self):
        with pytest.raises(ValueError, match="requires a tenant_id scope"):
            get_scoped(ApprovalRoute, 1, tenant_id=None)

    def test_error_message_includes_model_name(self):
        with pytest.raises(ValueError, match="ApprovalRoute"):
            get_scoped(ApprovalRoute, 1, tenant_id=None)

    def test_model_without_tenant_column(self, default_tenant):
        with pytest.raises(ValueError, match="no tenant_id column"):
            get_scoped(Tenant, default_tenant.id, tenant_id=default_tenant.id)

    def test_or_none_still_raises_value_error(self):
        with pytest.raises(ValueError):
            get_scoped_or_none(ApprovalRoute, 1, tenant_id=None)


# ── 3-5. Isolation ───────────────────────────────────────────────────────────


class TestTenantIsolation:
    def test_matching_scope_returns_entity(self, default_tenant):
        route = _make_route(default_tenant.id)
        assert get_scoped(ApprovalRoute, route.id, tenant_id=default_tenant.id) is route

    def test_other_tenant_is_not_found(self, default_tenant, other_tenant):
        route = _make_route(default_tenant.id)
        with pytest.raises(NotFoundError) as exc:
            get_scoped(ApprovalRoute, route.id, tenant_id=other_tenant.id)
        assert exc.value.resource == "ApprovalRoute"
        assert exc.value.resource_id == route.id
        assert exc.value.tenant_id == other_tenant.id

    def test_missing_pk_is_not_found(self, default_tenant):
        with pytest.raises(NotFoundError):
            get_scoped(ApprovalRoute, 99999, tenant_id=default_tenant.id)

    def test_or_none(self, default_tenant, other_tenant):
        route = _make_route(default_tenant.id)
        assert get_scoped_or_none(ApprovalRoute, route.id, tenant_id=other_tenant.id) is None
        assert get_scoped_or_none(ApprovalRoute, route.id, tenant_id=default_tenant.id) is route

    def test_each_tenant_sees_only_its_own(self, default_tenant, other_tenant):
        mine = _make_route(default_tenant.id, "Mine")
        theirs = _make_route(other_tenant.id, "Theirs")
        assert get_scoped_or_none(ApprovalRoute, theirs.id, tenant_id=default_tenant.id) is None
        assert get_scoped_or_none(ApprovalRoute, mine.id, tenant_id=other_tenant.id) is None


# ── 6. for_update ────────────────────────────────────────────────────────────


class TestForUpdate:
    def test_refreshes_identity_map_state(self, default_tenant):
        route = _make_route(default_tenant.id, "Stored")
        db.session.commit()
        assert route.name == "Stored"

        db.session.execute(
            db.text("UPDATE approval_routes SET name = :name WHERE id = :id"),
            {"name": "Changed elsewhere", "id": route.id},
        )
        fresh = get_scoped(ApprovalRoute, route.id, tenant_id=default_tenant.id, for_update=True)
        assert fresh is route
        assert fresh.name == "Changed elsewhere"
