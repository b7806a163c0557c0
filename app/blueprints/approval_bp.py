"""
Approval Workflow Blueprint.

Routes (prefix /api/v1/approval):
  GET    /routes                          – list routes
  POST   /routes                          – create route            (manage_routes)
  GET    /routes/<route_id>               – route detail
  DELETE /routes/<route_id>               – delete unused route     (manage_routes)
  GET    /templates                       – list templates (?active=true)
  POST   /templates                       – create template         (manage_routes)
  POST   /templates/<template_id>/deactivate                        (manage_routes)
  GET    /applications                    – list (?status, applicant_id, template_id,
                                            awaiting_role, mine, limit, offset)
  POST   /applications                    – submit (template_id or route_id)
  GET    /applications/<application_id>   – application + assignments
  POST   /applications/<application_id>/act – approve / reject current step

Tenant and member come from tenant_context middleware (g.tenant_id, g.member).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import app.services.approval_service as approval_service
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1/approval")


# ── Error handlers ────────────────────────────────────────────────────────────


@approval_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), status=error.http_status, details=error.details)


@approval_bp.errorhandler(AuthorizationError)
def _handle_forbidden(error: AuthorizationError):
    details = {"required_role": error.required_role} if error.required_role else None
    return api_error(E.FORBIDDEN, str(error), status=error.http_status, details=details)


@approval_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    # resource_id/tenant_id stay in logs only
    logger.debug("Not found: %s", error)
    return api_error(E.NOT_FOUND, f"{error.resource} not found", status=error.http_status)


@approval_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error), status=error.http_status)


@approval_bp.errorhandler(InvariantViolation)
def _handle_invariant(error: InvariantViolation):
    logger.error(
        "Approval invariant violated endpoint=%s", request.endpoint,
        exc_info=error,
        extra={"tenant_id": getattr(g, "tenant_id", None)},
    )
    return api_error(E.INTERNAL, "Internal server error", status=error.http_status)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _member_id() -> int | None:
    member = getattr(g, "member", None)
    return member.id if member is not None else None


def _require_manager() -> None:
    approval_service.require_capability(g.member, "manage_routes")


# ═════════════════════════════════════════════════════════════════════════════
# ROUTES
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/routes", methods=["GET"])
def list_routes():
    return jsonify(approval_service.list_routes(g.tenant_id)), 200


@approval_bp.route("/routes", methods=["POST"])
def create_route():
    """Create a route.

    Body: {name, description?, steps: [{approver_role, require_all?, condition?}]}
    Step order is assigned from list position.
    """
    _require_manager()
    return jsonify(approval_service.create_route(g.tenant_id, _json_body())), 201


@approval_bp.route("/routes/<int:route_id>", methods=["GET"])
def get_route(route_id):
    return jsonify(approval_service.get_route(g.tenant_id, route_id)), 200


@approval_bp.route("/routes/<int:route_id>", methods=["DELETE"])
def delete_route(route_id):
    """Delete a route; 409 while any template still references it."""
    _require_manager()
    return jsonify(approval_service.delete_route(g.tenant_id, route_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/templates", methods=["GET"])
def list_templates():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    return jsonify(approval_service.list_templates(g.tenant_id, active_only=active_only)), 200


@approval_bp.route("/templates", methods=["POST"])
def create_template():
    """Create a template.

    Body: {route_id, name, description?, fields: {items: [...], instructions?, version?}}
    """
    _require_manager()
    return jsonify(approval_service.create_template(g.tenant_id, _json_body())), 201


@approval_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(approval_service.get_template(g.tenant_id, template_id)), 200


@approval_bp.route("/templates/<int:template_id>/deactivate", methods=["POST"])
def deactivate_template(template_id):
    _require_manager()
    return jsonify(approval_service.deactivate_template(g.tenant_id, template_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# APPLICATIONS
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/applications", methods=["GET"])
def list_applications():
    """List applications, newest first.

    ``mine=true`` restricts to the calling member's own submissions.
    """
    args = request.args.to_dict()
    if args.pop("mine", "").lower() in ("1", "true", "yes"):
        member_id = _member_id()
        if member_id is None:
            raise ValidationError("mine=true requires the X-Member-ID header")
        args["applicant_id"] = member_id
    return jsonify(approval_service.list_applications(g.tenant_id, args)), 200


@approval_bp.route("/applications", methods=["POST"])
def submit_application():
    """Submit an application.

    Body: {template_id | route_id, title, data: {field_id: value}}
    """
    approval_service.require_capability(g.member, "submit_application")
    result = approval_service.submit_application(g.tenant_id, _member_id(), _json_body())
    return jsonify(result), 201


@approval_bp.route("/applications/<int:application_id>", methods=["GET"])
def get_application(application_id):
    return jsonify(approval_service.get_application(g.tenant_id, application_id)), 200


@approval_bp.route("/applications/<int:application_id>/act", methods=["POST"])
def act_on_application(application_id):
    """Approve or reject the current step.

    Body: {action: "approve" | "reject", step, comment?}
    ``step`` must be the application's current step; 409 if it has moved on.
    """
    result = approval_service.act_on_application(g.tenant_id, application_id, _member_id(), _json_body())
    return jsonify(result), 200
