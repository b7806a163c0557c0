"""
Approver roles and the role directory.

Roles are a closed enumeration. Route steps, assignments and members all
store the enum's string value; every comparison goes through ``parse_role``
/ ``coerce_role`` so a typo such as "Accountant " or "ACCOUNTANTS" is caught
when a route is saved rather than silently never matching an actor.

The role directory answers two questions for the engine: which role does a
member hold, and which members hold a role (used to fan out ``require_all``
steps). The SQL implementation reads the ``members`` table.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Protocol

from sqlalchemy import select

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    AUDITOR = "AUDITOR"
    MEMBER = "MEMBER"


DEFAULT_APPROVAL_ROLES: tuple[Role, ...] = tuple(Role)

# Capability → roles that hold it.
CAPABILITIES: dict[str, frozenset[Role]] = {
    "manage_routes": frozenset({Role.ADMIN}),
    "submit_application": frozenset(Role),
}


def coerce_role(value) -> Role | None:
    """Return the Role for ``value`` (case/whitespace-insensitive) or None."""
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def parse_role(value, allowed: Iterable[Role] | None = None) -> Role:
    """Parse an approver role, rejecting names outside the configured set.

    Raises:
        ValidationError: unknown role name, or a role not in ``allowed``.
    """
    allowed_set = frozenset(allowed) if allowed is not None else frozenset(DEFAULT_APPROVAL_ROLES)
    role = coerce_role(value)
    if role is None or role not in allowed_set:
        raise ValidationError(
            f"Unknown approver role {value!r}",
            details={"allowed_roles": sorted(r.value for r in allowed_set)},
        )
    return role


def has_capability(role: Role | str | None, capability: str) -> bool:
    role = coerce_role(role)
    if role is None:
        return False
    return role in CAPABILITIES.get(capability, frozenset())


def can_act_on(role: Role | str | None, assignment) -> bool:
    """True when ``role`` is the approver role stored on the assignment."""
    acting = coerce_role(role)
    return acting is not None and acting == coerce_role(assignment.approver_role)


def roles_from_config(names: Iterable[str]) -> tuple[Role, ...]:
    """Resolve the APPROVAL_ROLES config value; unknown names fail loudly."""
    roles = []
    for name in names:
        role = coerce_role(name)
        if role is None:
            raise ValueError(f"APPROVAL_ROLES contains unknown role {name!r}")
        roles.append(role)
    if not roles:
        raise ValueError("APPROVAL_ROLES must name at least one role")
    return tuple(roles)


# ── Role directory ──────────────────────────────────────────────────────────


class RoleDirectory(Protocol):
    """Pluggable lookup of member roles within a tenant."""

    def role_of(self, tenant_id: int, member_id: int) -> Role | None:
        ...

    def members_with_role(self, tenant_id: int, role: Role) -> list[int]:
        ...


class SqlRoleDirectory:
    """RoleDirectory backed by the ``members`` table."""

    def __init__(self, session):
        self.session = session

    def role_of(self, tenant_id: int, member_id: int) -> Role | None:
        from app.models.auth import Member

        member = self.session.execute(
            select(Member).where(
                Member.id == member_id,
                Member.tenant_id == tenant_id,
                Member.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if member is None:
            return None
        role = coerce_role(member.role)
        if role is None:
            logger.warning("Member id=%s tenant=%s has unknown role %r", member_id, tenant_id, member.role)
        return role

    def members_with_role(self, tenant_id: int, role: Role) -> list[int]:
        from app.models.auth import Member

        rows = self.session.execute(
            select(Member.id)
            .where(
                Member.tenant_id == tenant_id,
                Member.role == Role(role).value,
                Member.is_active.is_(True),
            )
            .order_by(Member.id)
        ).scalars()
        return list(rows)
