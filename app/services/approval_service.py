"""
Approval Workflow Service — the application-facing facade.

Binds the transport-agnostic engine (approval_engine.py) to the Flask app:
builds a SQL unit of work on ``db.session``, reads the configured role set,
converts request payloads into engine calls and logs one INFO line per
committed state change. The engine itself never logs.

Design decisions:
    - Every function takes tenant_id explicitly; nothing reads ``g`` here,
      so the seed CLI and tests call the same code as the blueprint.
    - Functions return plain dicts ready for jsonify().
    - Errors are the app.core.exceptions taxonomy; the blueprint maps them.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from flask import current_app

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models import db
from app.services.approval_engine import ApprovalDefinitionService, ApprovalEngine
from app.services.approval_repositories import SqlApprovalUnitOfWork
from app.services.approval_roles import has_capability, parse_role, roles_from_config
from app.services.approval_seed import seed_sample_routes
from app.services.approval_types import ApplicationFilters, ApplicationStatus

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


# ── Wiring ─────────────────────────────────────────────────────────────────────


def _uow() -> SqlApprovalUnitOfWork:
    return SqlApprovalUnitOfWork(db.session)


def configured_roles():
    return roles_from_config(current_app.config.get("APPROVAL_ROLES") or ())


def _definitions(uow=None) -> ApprovalDefinitionService:
    return ApprovalDefinitionService(uow or _uow(), allowed_roles=configured_roles())


def _engine(uow=None) -> ApprovalEngine:
    return ApprovalEngine(uow or _uow())


# ── Private helpers ────────────────────────────────────────────────────────────


def _optional_int(value: Any, name: str, minimum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer") from None
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    return number


def require_capability(member, capability: str) -> None:
    """Raise AuthorizationError unless ``member``'s role holds ``capability``."""
    if member is None or not has_capability(member.role, capability):
        raise AuthorizationError(f"Your role may not perform '{capability}'")


def parse_filters(args: Mapping[str, Any]) -> ApplicationFilters:
    """Build ApplicationFilters from query-string style values."""
    status = args.get("status")
    if status:
        try:
            status = ApplicationStatus(str(status).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Unknown status {status!r}",
                details={"allowed_statuses": [s.value for s in ApplicationStatus]},
            ) from None
    else:
        status = None

    awaiting_role = args.get("awaiting_role")
    awaiting_role = parse_role(awaiting_role, allowed=configured_roles()) if awaiting_role else None

    limit = _optional_int(args.get("limit"), "limit", minimum=1) or 50
    return ApplicationFilters(
        status=status,
        applicant_id=_optional_int(args.get("applicant_id"), "applicant_id"),
        template_id=_optional_int(args.get("template_id"), "template_id"),
        awaiting_role=awaiting_role,
        limit=min(limit, MAX_PAGE_SIZE),
        offset=_optional_int(args.get("offset"), "offset", minimum=0) or 0,
    )


# ── Routes ─────────────────────────────────────────────────────────────────────


def list_routes(tenant_id: int) -> list[dict]:
    return [r.to_dict() for r in _definitions().list_routes(tenant_id)]


def get_route(tenant_id: int, route_id: int) -> dict:
    return _definitions().get_route(tenant_id, route_id).to_dict()


def create_route(tenant_id: int, data: Mapping) -> dict:
    """Create a route from ``{name, description?, steps: [...]}``."""
    route = _definitions().create_route(
        tenant_id, data.get("name"), data.get("steps"), description=data.get("description")
    )
    logger.info(
        "Approval route created: %r (%d steps)", route.name, len(route.steps),
        extra={"tenant_id": tenant_id, "route_id": route.id},
    )
    return route.to_dict()


def delete_route(tenant_id: int, route_id: int) -> dict:
    route = _definitions().delete_route(tenant_id, route_id)
    logger.info("Approval route deleted: %r", route.name, extra={"tenant_id": tenant_id, "route_id": route_id})
    return {"deleted": True, "id": route_id}


# ── Templates ──────────────────────────────────────────────────────────────────


def list_templates(tenant_id: int, active_only: bool = False) -> list[dict]:
    return [t.to_dict() for t in _definitions().list_templates(tenant_id, active_only=active_only)]


def get_template(tenant_id: int, template_id: int) -> dict:
    return _definitions().get_template(tenant_id, template_id).to_dict()


def create_template(tenant_id: int, data: Mapping) -> dict:
    """Create a template from ``{route_id, name, description?, fields}``."""
    template = _definitions().create_template(
        tenant_id,
        data.get("route_id"),
        data.get("name"),
        data.get("fields"),
        description=data.get("description"),
    )
    logger.info(
        "Approval template created: %r", template.name,
        extra={"tenant_id": tenant_id, "template_id": template.id, "route_id": template.route_id},
    )
    return template.to_dict()


def deactivate_template(tenant_id: int, template_id: int) -> dict:
    template = _definitions().deactivate_template(tenant_id, template_id)
    logger.info("Approval template deactivated", extra={"tenant_id": tenant_id, "template_id": template_id})
    return template.to_dict()


# ── Applications ───────────────────────────────────────────────────────────────


def submit_application(tenant_id: int, applicant_id: int | None, data: Mapping) -> dict:
    """Submit through ``template_id`` or, failing that, the route's default template.

    Body: {template_id | route_id, title, data: {field_id: value}}
    """
    template_id = _optional_int(data.get("template_id"), "template_id")
    route_id = _optional_int(data.get("route_id"), "route_id")
    raw = data.get("data")
    raw = {} if raw is None else raw

    engine = _engine()
    if template_id is not None:
        application = engine.submit(tenant_id, template_id, applicant_id, data.get("title"), raw)
    elif route_id is not None:
        application = engine.submit_for_route(tenant_id, route_id, applicant_id, data.get("title"), raw)
    else:
        raise ValidationError("template_id or route_id is required")

    logger.info(
        "Application submitted: %r at step %s (%d assignments)",
        application.title, application.current_step, len(application.assignments),
        extra={
            "tenant_id": tenant_id,
            "application_id": application.id,
            "template_id": application.template_id,
        },
    )
    return application.to_dict()


def get_application(tenant_id: int, application_id: int) -> dict:
    return _engine().get_application(tenant_id, application_id).to_dict()


def list_applications(tenant_id: int, args: Mapping[str, Any]) -> list[dict]:
    filters = parse_filters(args)
    return [a.to_dict() for a in _engine().list_applications(tenant_id, filters)]


def act_on_application(tenant_id: int, application_id: int, member_id: int, data: Mapping) -> dict:
    """Approve or reject the current step as ``member_id``.

    Body: {action: "approve" | "reject", step, comment?}
    ``step`` is the step order the caller is looking at; if the application
    has moved on since, the call fails with ConflictError. It is required:
    when consecutive steps share a role, a retried or concurrent approve
    without it would land on the next step.
    """
    uow = _uow()
    role = uow.directory.role_of(tenant_id, member_id)
    if role is None:
        raise NotFoundError(resource="Member", resource_id=member_id, tenant_id=tenant_id)
    expected_step = _optional_int(data.get("step"), "step", minimum=1)
    if expected_step is None:
        raise ValidationError("step is required")

    application = _engine(uow).act(
        tenant_id,
        application_id,
        role,
        data.get("action"),
        comment=data.get("comment"),
        actor_id=member_id,
        expected_step=expected_step,
    )
    logger.info(
        "Application %s by %s: status=%s current_step=%s",
        str(data.get("action")).strip().lower(), role.value,
        application.status.value, application.current_step,
        extra={
            "tenant_id": tenant_id,
            "application_id": application_id,
            "member_id": member_id,
            "action": str(data.get("action")).strip().lower(),
        },
    )
    return application.to_dict()


# ── Seeding ────────────────────────────────────────────────────────────────────


def seed_samples(tenant_id: int) -> dict:
    return seed_sample_routes(_definitions(), tenant_id)
