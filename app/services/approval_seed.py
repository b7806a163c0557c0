"""
Sample approval routes.

Used by ``flask seed-approval-samples`` and scripts/seed_approval_demo.py.
Idempotent per tenant: a route whose name already exists is left untouched.
Every seeded route gets its "Common application" template so it can take
submissions immediately. Each route keeps at least one unconditioned step, so
any valid submission resolves to a live step.
"""

from __future__ import annotations

import logging

from app.services.approval_engine import ApprovalDefinitionService

logger = logging.getLogger(__name__)

SAMPLE_ROUTES = [
    {
        "name": "Equipment purchase (under 10,000)",
        "description": "Small equipment purchases checked by the accountant only.",
        "steps": [
            {"approver_role": "ACCOUNTANT", "require_all": False},
        ],
    },
    {
        "name": "Equipment purchase (10,000 and over)",
        "description": "Accountant then every admin for high-value equipment.",
        "steps": [
            {"approver_role": "ACCOUNTANT", "require_all": False, "condition": {"minAmount": 10000}},
            {"approver_role": "ADMIN", "require_all": True},
        ],
    },
    {
        "name": "Leave and business trip",
        "description": "Two-stage check by an admin and then an auditor.",
        "steps": [
            {"approver_role": "ADMIN", "require_all": False},
            {"approver_role": "AUDITOR", "require_all": False},
        ],
    },
]


def seed_sample_routes(definitions: ApprovalDefinitionService, tenant_id: int) -> dict:
    """Create the sample routes (and default templates) missing for ``tenant_id``.

    Returns:
        {"created": [route names], "skipped": [route names]}
    """
    existing = {route.name for route in definitions.list_routes(tenant_id)}
    created, skipped = [], []
    for sample in SAMPLE_ROUTES:
        if sample["name"] in existing:
            skipped.append(sample["name"])
            continue
        route = definitions.create_route(
            tenant_id, sample["name"], sample["steps"], description=sample["description"]
        )
        with definitions.uow.atomic():
            definitions.ensure_default_template(tenant_id, route.id)
        created.append(route.name)
        logger.info("Seeded approval route %r", route.name, extra={"tenant_id": tenant_id, "route_id": route.id})
    return {"created": created, "skipped": skipped}
