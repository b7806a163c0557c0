"""
Error taxonomy of the approval service.

Services and the engine raise these; the approval blueprint maps each one to
an HTTP status and an ``E.*`` code (app/utils/errors.py). Nothing below knows
about HTTP beyond the ``http_status`` hint.

    ApprovalServiceError
    ├── ValidationError      400  input is malformed; fix it and resubmit
    ├── AuthorizationError   403  the acting role/member may not do this
    ├── NotFoundError        404  missing, or owned by another tenant
    ├── ConflictError        409  state changed underneath the caller
    └── InvariantViolation   500  the engine broke its own guarantee

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ApprovalRoute", resource_id=42, tenant_id=1)
    raise ValidationError("Submission is invalid", details={"errors": [...]})
"""


class ApprovalServiceError(Exception):
    http_status = 500


class ValidationError(ApprovalServiceError):
    """Route, step, template or submission input is malformed.

    Submission validation collects every problem first, so
    ``details["errors"]`` holds the complete list.
    """

    http_status = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class AuthorizationError(ApprovalServiceError):
    """The acting member's role (or identity, for bound assignments) does not own the action."""

    http_status = 403

    def __init__(self, message: str = "Not permitted", required_role: str | None = None) -> None:
        super().__init__(message)
        self.required_role = required_role


class NotFoundError(ApprovalServiceError):
    """Record absent within the caller's tenant.

    Cross-tenant reads raise this too, so a caller cannot probe for ids owned
    by other tenants. ``resource_id`` and ``tenant_id`` end up in logs only.
    """

    http_status = 404

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        parts = [resource]
        if resource_id is not None:
            parts.append(f"id={resource_id}")
        parts.append("not found")
        if tenant_id is not None:
            parts.append(f"(tenant={tenant_id})")
        super().__init__(" ".join(parts))


class ConflictError(ApprovalServiceError):
    """The record's current state rejects the operation.

    Raised for acting on a decided application, a stale ``expected_step``,
    a lost optimistic-lock race, or deleting a route a template still uses.
    The caller may re-read and retry; the engine never retries itself.
    """

    http_status = 409

    def __init__(self, resource: str, message: str, resource_id: int | None = None) -> None:
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class InvariantViolation(ApprovalServiceError):
    """A PENDING application without live work, a route with no applicable step, and the like.

    The message is for logs; HTTP clients only see a generic 500.
    """
