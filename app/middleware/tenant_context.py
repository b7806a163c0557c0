"""
Tenant Context Middleware — resolves the owning tenant and the acting member.

Every approval API request carries:
  X-Tenant-ID  (required)  primary key of an active tenant
  X-Member-ID  (optional on reads, required on writes) a member of that tenant

On success the hook sets:
  g.tenant     Tenant instance
  g.tenant_id  int
  g.member     Member instance or None

A member id from another tenant resolves to "not found", exactly like a
missing one. Downstream services filter every query by g.tenant_id.

Chain order:
  timing.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request
from sqlalchemy import select

from app.models import db
from app.models.auth import Member, Tenant
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Only these API prefixes are tenant-scoped.
TENANT_PREFIXES = ("/api/v1/approval",)

_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _parse_id_header(name: str):
    raw = (request.headers.get(name) or "").strip()
    if not raw:
        return None, False
    if not raw.isdigit():
        return None, True
    return int(raw), False


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.tenant_id = None
        g.member = None

        if not request.path.startswith(TENANT_PREFIXES):
            return None
        if request.method == "OPTIONS":
            return None

        tenant_id, malformed = _parse_id_header("X-Tenant-ID")
        if malformed:
            return api_error(E.VALIDATION_INVALID, "X-Tenant-ID must be an integer")
        if tenant_id is None:
            return api_error(E.VALIDATION_REQUIRED, "X-Tenant-ID header is required")

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning("Request for unknown or inactive tenant_id=%s", tenant_id)
            return api_error(E.NOT_FOUND, "Tenant not found")

        g.tenant = tenant
        g.tenant_id = tenant.id

        member_id, malformed = _parse_id_header("X-Member-ID")
        if malformed:
            return api_error(E.VALIDATION_INVALID, "X-Member-ID must be an integer")
        if member_id is not None:
            member = db.session.execute(
                select(Member).where(
                    Member.id == member_id,
                    Member.tenant_id == tenant.id,
                    Member.is_active.is_(True),
                )
            ).scalar_one_or_none()
            if member is None:
                logger.warning("Member id=%s not found in tenant=%s", member_id, tenant.id)
                return api_error(E.NOT_FOUND, "Member not found")
            g.member = member

        if request.method in _WRITE_METHODS and g.member is None:
            return api_error(E.VALIDATION_REQUIRED, "X-Member-ID header is required")

        return None

    logger.info("Tenant context middleware installed")
