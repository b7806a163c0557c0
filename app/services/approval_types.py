"""
Approval workflow domain types.

Plain dataclasses shared by the engine and the repositories. The engine only
ever sees these; ORM rows are mapped in and out by the SQL repositories
(app/services/approval_repositories.py).

Status machines:

    Application:  PENDING ──► APPROVED
                     └──────► REJECTED

    Assignment:   WAITING ──► IN_PROGRESS ──► APPROVED
                                   │  └─────► REJECTED
                                   └────────► WAITING   (sibling of a rejected
                                                         requireAll assignment)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.core.exceptions import InvariantViolation
from app.models.base import isoformat
from app.services.approval_conditions import NumericRange
from app.services.approval_roles import Role
from app.services.approval_schema import FormSchema


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AssignmentStatus(str, Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.PENDING: frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}

ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.WAITING: frozenset({AssignmentStatus.IN_PROGRESS}),
    AssignmentStatus.IN_PROGRESS: frozenset({
        AssignmentStatus.APPROVED,
        AssignmentStatus.REJECTED,
        AssignmentStatus.WAITING,
    }),
    AssignmentStatus.APPROVED: frozenset(),
    AssignmentStatus.REJECTED: frozenset(),
}


# ── Definitions ──────────────────────────────────────────────────────────────


@dataclass
class StepDefinition:
    order: int
    approver_role: Role
    require_all: bool = False
    condition: NumericRange | None = None
    id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order": self.order,
            "approver_role": self.approver_role.value,
            "require_all": self.require_all,
            "condition": self.condition.to_dict() if self.condition else None,
        }


@dataclass
class RouteDefinition:
    tenant_id: int
    name: str
    steps: list[StepDefinition]
    description: str | None = None
    id: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "created_at": isoformat(self.created_at),
        }


@dataclass
class TemplateDefinition:
    tenant_id: int
    route_id: int
    name: str
    schema: FormSchema
    description: str | None = None
    is_active: bool = True
    is_default: bool = False
    id: int | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "route_id": self.route_id,
            "name": self.name,
            "description": self.description,
            "fields": self.schema.to_dict(),
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_at": isoformat(self.created_at),
        }


# ── Runtime state ────────────────────────────────────────────────────────────


@dataclass
class Assignment:
    step_order: int
    approver_role: Role
    status: AssignmentStatus = AssignmentStatus.WAITING
    require_all: bool = False
    step_id: int | None = None
    assigned_to_id: int | None = None
    is_bound: bool = False
    comment: str | None = None
    acted_at: datetime | None = None
    id: int | None = None

    def transition(self, new_status: AssignmentStatus) -> None:
        if new_status not in ASSIGNMENT_TRANSITIONS[self.status]:
            raise InvariantViolation(
                f"Assignment {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "order": self.step_order,
            "approver_role": self.approver_role.value,
            "require_all": self.require_all,
            "status": self.status.value,
            "comment": self.comment,
            "acted_at": isoformat(self.acted_at),
            "assigned_to_id": self.assigned_to_id,
            "is_bound": self.is_bound,
        }


@dataclass
class Application:
    tenant_id: int
    template_id: int
    applicant_id: int | None
    title: str
    data: dict[str, Any]
    status: ApplicationStatus = ApplicationStatus.PENDING
    current_step: int | None = None
    assignments: list[Assignment] = field(default_factory=list)
    id: int | None = None
    version: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def transition(self, new_status: ApplicationStatus) -> None:
        if new_status not in APPLICATION_TRANSITIONS[self.status]:
            raise InvariantViolation(
                f"Application {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def assignments_at(self, order: int | None) -> list[Assignment]:
        return [a for a in self.assignments if a.step_order == order]

    def current_assignments(self) -> list[Assignment]:
        """IN_PROGRESS assignments at ``current_step``."""
        return [
            a for a in self.assignments_at(self.current_step)
            if a.status == AssignmentStatus.IN_PROGRESS
        ]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "template_id": self.template_id,
            "applicant_id": self.applicant_id,
            "title": self.title,
            "data": self.data,
            "status": self.status.value,
            "current_step": self.current_step,
            "version": self.version,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "assignments": [
                a.to_dict() for a in sorted(self.assignments, key=lambda a: (a.step_order, a.id or 0))
            ],
        }


@dataclass(frozen=True)
class ApplicationFilters:
    status: ApplicationStatus | None = None
    applicant_id: int | None = None
    template_id: int | None = None
    awaiting_role: Role | None = None
    limit: int = 50
    offset: int = 0

    def matches(self, application: Application) -> bool:
        """In-process equivalent of the SQL filter, used by non-SQL repositories."""
        if self.status is not None and application.status != self.status:
            return False
        if self.applicant_id is not None and application.applicant_id != self.applicant_id:
            return False
        if self.template_id is not None and application.template_id != self.template_id:
            return False
        if self.awaiting_role is not None:
            if application.status != ApplicationStatus.PENDING:
                return False
            if not any(a.approver_role == self.awaiting_role for a in application.current_assignments()):
                return False
        return True
