"""
Approval Workflow API tests.

Tests cover:
  - Tenant / member boundary (X-Tenant-ID, X-Member-ID)
  - Route CRUD, step numbering, condition normalisation, delete conflict
  - Template CRUD, schema validation, deactivation
  - Submission validation (all errors together) and condition filtering
  - Approve / reject state machine through HTTP, incl. the high-value scenario
  - Stale step / decided application conflicts, role mismatch
  - Listing filters
  - Seeded sample routes accept any valid submission
"""

import pytest

from app.services import approval_service
from app.services.approval_roles import Role

API = "/api/v1/approval"

HIGH_VALUE_STEPS = [
    {"approver_role": "ACCOUNTANT", "require_all": False, "condition": {"minAmount": 10000}},
    {"approver_role": "ADMIN", "require_all": True},
]

PURCHASE_FIELDS = {
    "items": [
        {"id": "purpose", "label": "Purpose", "type": "text", "required": True},
        {"id": "amount", "label": "Amount", "type": "number", "min": 0},
        {
            "id": "category",
            "label": "Category",
            "type": "select",
            "options": [
                {"label": "Equipment", "value": "equipment"},
                {"label": "Travel", "value": "travel"},
            ],
        },
    ],
}


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def admin(members):
    return members[Role.ADMIN]


@pytest.fixture()
def accountant(members):
    return members[Role.ACCOUNTANT]


@pytest.fixture()
def applicant(members):
    return members[Role.MEMBER]


@pytest.fixture()
def route(client, headers, admin):
    """High-value purchase route: ACCOUNTANT (amount ≥ 10000) → every ADMIN."""
    res = client.post(
        f"{API}/routes",
        json={"name": "High-value purchase", "steps": HIGH_VALUE_STEPS},
        headers=headers(admin),
    )
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def template(client, headers, admin, route):
    res = client.post(
        f"{API}/templates",
        json={"route_id": route["id"], "name": "Purchase request", "fields": PURCHASE_FIELDS},
        headers=headers(admin),
    )
    assert res.status_code == 201
    return res.get_json()


def _submit(client, headers, member, template, amount, title="New laptop"):
    return client.post(
        f"{API}/applications",
        json={
            "template_id": template["id"],
            "title": title,
            "data": {"purpose": "Replace broken laptop", "amount": amount, "category": "equipment"},
        },
        headers=headers(member),
    )


def _act(client, headers, member, application_id, action, **extra):
    return client.post(
        f"{API}/applications/{application_id}/act",
        json={"action": action, **extra},
        headers=headers(member),
    )


# ═════════════════════════════════════════════════════════════════════════
# TENANT / MEMBER BOUNDARY
# ═════════════════════════════════════════════════════════════════════════


class TestBoundary:
    def test_missing_tenant_header(self, client, default_tenant):
        res = client.get(f"{API}/routes")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_tenant(self, client, default_tenant):
        res = client.get(f"{API}/routes", headers={"X-Tenant-ID": "9999"})
        assert res.status_code == 404

    def test_inactive_tenant(self, client, headers, default_tenant):
        from app.models import db

        default_tenant.is_active = False
        db.session.commit()
        res = client.get(f"{API}/routes", headers=headers())
        assert res.status_code == 404

    def test_write_requires_member(self, client, headers):
        res = client.post(f"{API}/routes", json={"name": "X", "steps": HIGH_VALUE_STEPS}, headers=headers())
        assert res.status_code == 400
        assert "X-Member-ID" in res.get_json()["error"]

    def test_member_from_other_tenant_is_not_found(self, client, headers, other_tenant, make_member):
        stranger = make_member(other_tenant.id, "Stranger", Role.ADMIN)
        res = client.post(
            f"{API}/routes", json={"name": "X", "steps": HIGH_VALUE_STEPS}, headers=headers(stranger)
        )
        assert res.status_code == 404

    def test_route_of_other_tenant_is_not_found(self, client, headers, route, other_tenant):
        res = client.get(f"{API}/routes/{route['id']}", headers=headers(tenant_id=other_tenant.id))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════
# ROUTES
# ═════════════════════════════════════════════════════════════════════════


class TestRoutes:
    def test_create_route_numbers_steps(self, client, headers, admin):
        res = client.post(
            f"{API}/routes",
            json={
                "name": "Three stage",
                "steps": [
                    {"approver_role": "accountant", "order": 7},
                    {"approverRole": "AUDITOR", "order": 7},
                    {"role": "ADMIN", "requireAll": True},
                ],
            },
            headers=headers(admin),
        )
        assert res.status_code == 201
        steps = res.get_json()["steps"]
        assert [s["order"] for s in steps] == [1, 2, 3]
        assert [s["approver_role"] for s in steps] == ["ACCOUNTANT", "AUDITOR", "ADMIN"]
        assert steps[2]["require_all"] is True

    def test_condition_shorthand_is_normalised(self, route):
        condition = route["steps"][0]["condition"]
        assert condition == {"type": "numeric_range", "field": "amount", "min": 10000.0, "max": None}
        assert route["steps"][1]["condition"] is None

    def test_non_admin_cannot_create(self, client, headers, accountant):
        res = client.post(
            f"{API}/routes", json={"name": "X", "steps": HIGH_VALUE_STEPS}, headers=headers(accountant)
        )
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_empty_steps_rejected(self, client, headers, admin):
        res = client.post(f"{API}/routes", json={"name": "X", "steps": []}, headers=headers(admin))
        assert res.status_code == 400

    def test_unknown_role_rejected(self, client, headers, admin):
        res = client.post(
            f"{API}/routes",
            json={"name": "X", "steps": [{"approver_role": "ACCOUNTANTS"}]},
            headers=headers(admin),
        )
        assert res.status_code == 400
        assert "ADMIN" in res.get_json()["details"]["allowed_roles"]

    def test_malformed_condition_rejected(self, client, headers, admin):
        res = client.post(
            f"{API}/routes",
            json={
                "name": "X",
                "steps": [{"approver_role": "ADMIN", "condition": {"minAmount": 500, "maxAmount": 100}}],
            },
            headers=headers(admin),
        )
        assert res.status_code == 400

    def test_list_and_get(self, client, headers, route):
        res = client.get(f"{API}/routes", headers=headers())
        assert res.status_code == 200
        assert [r["id"] for r in res.get_json()] == [route["id"]]

        res = client.get(f"{API}/routes/{route['id']}", headers=headers())
        assert res.get_json()["name"] == "High-value purchase"

    def test_delete_unused_route(self, client, headers, admin, route):
        res = client.delete(f"{API}/routes/{route['id']}", headers=headers(admin))
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True
        assert client.get(f"{API}/routes/{route['id']}", headers=headers()).status_code == 404

    def test_delete_route_in_use_conflicts(self, client, headers, admin, route, template):
        res = client.delete(f"{API}/routes/{route['id']}", headers=headers(admin))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
        assert client.get(f"{API}/routes/{route['id']}", headers=headers()).status_code == 200

    def test_delete_missing_route(self, client, headers, admin):
        res = client.delete(f"{API}/routes/424242", headers=headers(admin))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═════════════════════════════════════════════════════════════════════════


class TestTemplates:
    def test_create_template(self, template, route):
        assert template["route_id"] == route["id"]
        assert [f["id"] for f in template["fields"]["items"]] == ["purpose", "amount", "category"]
        assert template["is_active"] is True

    def test_unknown_route_is_validation_error(self, client, headers, admin):
        res = client.post(
            f"{API}/templates",
            json={"route_id": 9999, "name": "T", "fields": PURCHASE_FIELDS},
            headers=headers(admin),
        )
        assert res.status_code == 400

    def test_select_without_options(self, client, headers, admin, route):
        fields = {"items": [{"id": "kind", "label": "Kind", "type": "select", "options": []}]}
        res = client.post(
            f"{API}/templates",
            json={"route_id": route["id"], "name": "T", "fields": fields},
            headers=headers(admin),
        )
        assert res.status_code == 400

    def test_duplicate_field_id(self, client, headers, admin, route):
        fields = {
            "items": [
                {"id": "a", "label": "A", "type": "text"},
                {"id": "a", "label": "Again", "type": "number"},
            ]
        }
        res = client.post(
            f"{API}/templates",
            json={"route_id": route["id"], "name": "T", "fields": fields},
            headers=headers(admin),
        )
        assert res.status_code == 400
        assert "duplicated" in res.get_json()["error"]

    def test_deactivate_hides_and_blocks_submit(self, client, headers, admin, applicant, template):
        res = client.post(f"{API}/templates/{template['id']}/deactivate", headers=headers(admin))
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

        active = client.get(f"{API}/templates?active=true", headers=headers()).get_json()
        assert active == []
        everything = client.get(f"{API}/templates", headers=headers()).get_json()
        assert len(everything) == 1

        res = _submit(client, headers, applicant, template, 15000)
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# APPLICATIONS
# ═════════════════════════════════════════════════════════════════════════


class TestApplicationFlow:
    def test_high_value_approve_then_reject(self, client, headers, admin, accountant, applicant, template):
        res = _submit(client, headers, applicant, template, 15000)
        assert res.status_code == 201
        app_ = res.get_json()
        assert app_["status"] == "PENDING"
        assert app_["current_step"] == 1
        assert app_["applicant_id"] == applicant.id
        assert [(a["order"], a["status"], a["approver_role"]) for a in app_["assignments"]] == [
            (1, "IN_PROGRESS", "ACCOUNTANT"),
            (2, "WAITING", "ADMIN"),
        ]

        res = _act(client, headers, accountant, app_["id"], "approve", step=1)
        assert res.status_code == 200
        app_ = res.get_json()
        assert app_["status"] == "PENDING"
        assert app_["current_step"] == 2
        assert [a["status"] for a in app_["assignments"]] == ["APPROVED", "IN_PROGRESS"]
        assert app_["assignments"][0]["assigned_to_id"] == accountant.id

        res = _act(client, headers, admin, app_["id"], "reject", step=2, comment="budget exceeded")
        assert res.status_code == 200
        app_ = res.get_json()
        assert app_["status"] == "REJECTED"
        assert app_["current_step"] is None
        first, second = app_["assignments"]
        assert first["status"] == "APPROVED"
        assert second["status"] == "REJECTED"
        assert second["comment"] == "budget exceeded"
        assert second["acted_at"] is not None

    def test_low_amount_skips_conditional_step(self, client, headers, admin, applicant, template):
        app_ = _submit(client, headers, applicant, template, 5000).get_json()
        assert app_["current_step"] == 2
        assert [(a["order"], a["status"]) for a in app_["assignments"]] == [(2, "IN_PROGRESS")]

        res = _act(client, headers, admin, app_["id"], "approve", step=2)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "APPROVED"
        assert body["current_step"] is None
        assert all(a["status"] != "IN_PROGRESS" for a in body["assignments"])

    def test_submission_errors_are_collected(self, client, headers, applicant, template):
        res = client.post(
            f"{API}/applications",
            json={
                "template_id": template["id"],
                "title": "  ",
                "data": {"amount": -5, "category": "food", "unknown": "dropped"},
            },
            headers=headers(applicant),
        )
        assert res.status_code == 400
        errors = res.get_json()["details"]["errors"]
        assert "Title is required." in errors
        assert "Purpose is required." in errors
        assert any("Amount" in e for e in errors)
        assert any("Category" in e for e in errors)

        listed = client.get(f"{API}/applications", headers=headers()).get_json()
        assert listed == []

    def test_unknown_fields_dropped_and_numbers_coerced(self, client, headers, applicant, template):
        res = client.post(
            f"{API}/applications",
            json={
                "template_id": template["id"],
                "title": "Desk",
                "data": {"purpose": " Desk ", "amount": "12000", "extra": 1},
            },
            headers=headers(applicant),
        )
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data == {"purpose": "Desk", "amount": 12000, "category": None}

    def test_wrong_role_is_forbidden_and_mutates_nothing(self, client, headers, members, applicant, template):
        app_ = _submit(client, headers, applicant, template, 15000).get_json()
        res = _act(client, headers, members[Role.AUDITOR], app_["id"], "approve", step=1)
        assert res.status_code == 403
        assert res.get_json()["details"]["required_role"] == "ACCOUNTANT"

        after = client.get(f"{API}/applications/{app_['id']}", headers=headers()).get_json()
        assert after["current_step"] == 1
        assert after["version"] == app_["version"]
        assert [a["status"] for a in after["assignments"]] == ["IN_PROGRESS", "WAITING"]

    def test_stale_step_conflicts(self, client, headers, accountant, applicant, template):
        app_ = _submit(client, headers, applicant, template, 15000).get_json()
        assert _act(client, headers, accountant, app_["id"], "approve", step=1).status_code == 200

        res = _act(client, headers, accountant, app_["id"], "approve", step=1)
        assert res.status_code == 409

    def test_step_is_required(self, client, headers, accountant, applicant, template):
        app_ = _submit(client, headers, applicant, template, 15000).get_json()
        res = _act(client, headers, accountant, app_["id"], "approve")
        assert res.status_code == 400
        assert res.get_json()["error"] == "step is required"

        after = client.get(f"{API}/applications/{app_['id']}", headers=headers()).get_json()
        assert after["current_step"] == 1
        assert after["version"] == app_["version"]

    def test_repeated_approve_on_same_role_steps_advances_once(self, client, headers, admin, accountant, applicant):
        route = client.post(
            f"{API}/routes",
            json={"name": "Double check", "steps": [{"approver_role": "ACCOUNTANT"}, {"approver_role": "ACCOUNTANT"}]},
            headers=headers(admin),
        ).get_json()
        app_ = client.post(
            f"{API}/applications",
            json={"route_id": route["id"], "title": "Audit fee", "data": {"purpose": "Audit fee"}},
            headers=headers(applicant),
        ).get_json()

        assert _act(client, headers, accountant, app_["id"], "approve", step=1).status_code == 200
        res = _act(client, headers, accountant, app_["id"], "approve", step=1)
        assert res.status_code == 409

        after = client.get(f"{API}/applications/{app_['id']}", headers=headers()).get_json()
        assert after["status"] == "PENDING"
        assert after["current_step"] == 2
        assert [a["status"] for a in after["assignments"]] == ["APPROVED", "IN_PROGRESS"]

    def test_acting_on_decided_application_conflicts(self, client, headers, admin, applicant, template):
        app_ = _submit(client, headers, applicant, template, 10).get_json()
        assert _act(client, headers, admin, app_["id"], "reject", step=2).status_code == 200
        res = _act(client, headers, admin, app_["id"], "approve", step=2)
        assert res.status_code == 409
        assert "already rejected" in res.get_json()["error"]

    def test_unknown_action(self, client, headers, accountant, applicant, template):
        app_ = _submit(client, headers, applicant, template, 15000).get_json()
        res = _act(client, headers, accountant, app_["id"], "escalate", step=1)
        assert res.status_code == 400

    def test_no_live_step_is_internal_error(self, client, headers, admin, applicant):
        route = client.post(
            f"{API}/routes",
            json={"name": "Only big", "steps": [{"approver_role": "ADMIN", "condition": {"minAmount": 100}}]},
            headers=headers(admin),
        ).get_json()
        res = client.post(
            f"{API}/applications",
            json={"route_id": route["id"], "title": "Pens", "data": {"purpose": "Pens", "amount": 3}},
            headers=headers(applicant),
        )
        assert res.status_code == 500
        body = res.get_json()
        assert body == {"error": "Internal server error", "code": "ERR_INTERNAL"}

    def test_submit_for_route_uses_common_template(self, client, headers, admin, applicant, route):
        payload = {"route_id": route["id"], "title": "Chair", "data": {"purpose": "Chair", "amount": 20000}}
        first = client.post(f"{API}/applications", json=payload, headers=headers(applicant))
        second = client.post(f"{API}/applications", json=payload, headers=headers(applicant))
        assert first.status_code == 201
        assert second.status_code == 201
        assert first.get_json()["template_id"] == second.get_json()["template_id"]

        templates = client.get(f"{API}/templates", headers=headers()).get_json()
        assert [(t["name"], t["is_default"]) for t in templates] == [("Common application", True)]
        assert [f["id"] for f in templates[0]["fields"]["items"]] == [
            "purpose", "amount", "attachment", "neededBy", "details",
        ]

    def test_missing_template_and_route(self, client, headers, applicant):
        res = client.post(f"{API}/applications", json={"title": "X", "data": {}}, headers=headers(applicant))
        assert res.status_code == 400

    def test_application_of_other_tenant_is_not_found(
        self, client, headers, applicant, template, other_tenant
    ):
        app_ = _submit(client, headers, applicant, template, 15000).get_json()
        res = client.get(f"{API}/applications/{app_['id']}", headers=headers(tenant_id=other_tenant.id))
        assert res.status_code == 404


class TestSampleRoutes:
    @pytest.mark.parametrize("data", [
        {"purpose": "Pens"},
        {"purpose": "Pens", "amount": 9999.5},
        {"purpose": "Server rack", "amount": 25000},
    ])
    def test_every_sample_route_takes_valid_submissions(self, client, headers, default_tenant, applicant, data):
        approval_service.seed_samples(default_tenant.id)
        routes = client.get(f"{API}/routes", headers=headers()).get_json()
        assert len(routes) == 3

        for route_ in routes:
            res = client.post(
                f"{API}/applications",
                json={"route_id": route_["id"], "title": data["purpose"], "data": data},
                headers=headers(applicant),
            )
            assert res.status_code == 201, (route_["name"], res.get_json())
            assert res.get_json()["status"] == "PENDING"

    def test_small_purchase_goes_to_accountant(self, client, headers, default_tenant, accountant, applicant):
        approval_service.seed_samples(default_tenant.id)
        routes = {r["name"]: r for r in client.get(f"{API}/routes", headers=headers()).get_json()}
        res = client.post(
            f"{API}/applications",
            json={
                "route_id": routes["Equipment purchase (under 10,000)"]["id"],
                "title": "Pens",
                "data": {"purpose": "Pens"},
            },
            headers=headers(applicant),
        )
        app_ = res.get_json()
        assert [(a["order"], a["approver_role"]) for a in app_["assignments"]] == [(1, "ACCOUNTANT")]

        res = _act(client, headers, accountant, app_["id"], "approve", step=1)
        assert res.get_json()["status"] == "APPROVED"


class TestApplicationQueries:
    def test_filters(self, client, headers, admin, accountant, applicant, template):
        big = _submit(client, headers, applicant, template, 15000, title="Big").get_json()
        small = _submit(client, headers, applicant, template, 500, title="Small").get_json()
        other = _submit(client, headers, accountant, template, 20000, title="Other").get_json()
        _act(client, headers, admin, small["id"], "approve", step=2)

        def ids(query):
            res = client.get(f"{API}/applications{query}", headers=headers(applicant))
            assert res.status_code == 200
            return {a["id"] for a in res.get_json()}

        assert ids("") == {big["id"], small["id"], other["id"]}
        assert ids("?status=approved") == {small["id"]}
        assert ids("?awaiting_role=ACCOUNTANT") == {big["id"], other["id"]}
        assert ids("?awaiting_role=ADMIN") == set()
        assert ids("?mine=true") == {big["id"], small["id"]}
        assert ids(f"?applicant_id={accountant.id}") == {other["id"]}
        assert ids(f"?template_id={template['id']}&limit=1") <= {big["id"], small["id"], other["id"]}
        assert len(ids("?limit=2")) == 2

    def test_invalid_filter(self, client, headers):
        res = client.get(f"{API}/applications?status=LOST", headers=headers())
        assert res.status_code == 400
        res = client.get(f"{API}/applications?limit=abc", headers=headers())
        assert res.status_code == 400


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200

    def test_summary(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "healthy"
        assert body["tables"]["approval_routes"]["count"] == 0
