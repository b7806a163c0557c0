"""
Repository interfaces for the approval engine, plus their SQLAlchemy
implementation.

The engine depends only on the Protocols below; it never touches
``db.session``. Production wires ``SqlApprovalUnitOfWork(db.session)``;
tests can wire in-memory fakes that satisfy the same Protocols.

Transactions:
    with uow.atomic():
        application = uow.applications.get(tenant_id, app_id, for_update=True)
        ...
        uow.applications.save(application)

``atomic()`` commits on clean exit and rolls back on any exception. A stale
optimistic-lock UPDATE (SQLAlchemy StaleDataError from the application's
version counter) surfaces as ConflictError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError
from app.models.approval import (
    ApprovalApplication,
    ApprovalAssignment,
    ApprovalRoute,
    ApprovalStep,
    ApprovalTemplate,
)
from app.models.base import utcnow
from app.services.approval_conditions import condition_from_dict
from app.services.approval_roles import Role, RoleDirectory, SqlRoleDirectory
from app.services.approval_schema import parse_form_schema
from app.services.approval_types import (
    Application,
    ApplicationFilters,
    ApplicationStatus,
    Assignment,
    AssignmentStatus,
    RouteDefinition,
    StepDefinition,
    TemplateDefinition,
)
from app.services.helpers.scoped_queries import get_scoped_or_none

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Interfaces
# ═════════════════════════════════════════════════════════════════════════════


class RouteRepository(Protocol):
    def add(self, route: RouteDefinition) -> RouteDefinition: ...

    def get(self, tenant_id: int, route_id: int, for_update: bool = False) -> RouteDefinition | None: ...

    def list(self, tenant_id: int) -> list[RouteDefinition]: ...

    def delete(self, tenant_id: int, route_id: int) -> None: ...


class TemplateRepository(Protocol):
    def add(self, template: TemplateDefinition) -> TemplateDefinition: ...

    def get(self, tenant_id: int, template_id: int) -> TemplateDefinition | None: ...

    def list(self, tenant_id: int, active_only: bool = False) -> list[TemplateDefinition]: ...

    def count_for_route(self, tenant_id: int, route_id: int) -> int: ...

    def find_default(self, tenant_id: int, route_id: int) -> TemplateDefinition | None: ...

    def set_active(self, tenant_id: int, template_id: int, active: bool) -> TemplateDefinition | None: ...


class ApplicationRepository(Protocol):
    def add(self, application: Application) -> Application: ...

    def get(self, tenant_id: int, application_id: int, for_update: bool = False) -> Application | None: ...

    def save(self, application: Application) -> Application: ...

    def list(self, tenant_id: int, filters: ApplicationFilters) -> list[Application]: ...


class ApprovalUnitOfWork(Protocol):
    routes: RouteRepository
    templates: TemplateRepository
    applications: ApplicationRepository
    directory: RoleDirectory | None

    def atomic(self): ...


# ═════════════════════════════════════════════════════════════════════════════
# Row ↔ domain mapping
# ═════════════════════════════════════════════════════════════════════════════


def _route_from_row(row: ApprovalRoute) -> RouteDefinition:
    return RouteDefinition(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        steps=[
            StepDefinition(
                id=s.id,
                order=s.step_order,
                approver_role=Role(s.approver_role),
                require_all=s.require_all,
                condition=condition_from_dict(s.condition),
            )
            for s in sorted(row.steps, key=lambda s: s.step_order)
        ],
    )


def _template_from_row(row: ApprovalTemplate) -> TemplateDefinition:
    return TemplateDefinition(
        id=row.id,
        tenant_id=row.tenant_id,
        route_id=row.route_id,
        name=row.name,
        description=row.description,
        schema=parse_form_schema(row.fields),
        is_active=row.is_active,
        is_default=row.is_default,
        created_at=row.created_at,
    )


def _assignment_from_row(row: ApprovalAssignment) -> Assignment:
    return Assignment(
        id=row.id,
        step_id=row.step_id,
        step_order=row.step_order,
        approver_role=Role(row.approver_role),
        require_all=row.require_all,
        status=AssignmentStatus(row.status),
        comment=row.comment,
        acted_at=row.acted_at,
        assigned_to_id=row.assigned_to_id,
        is_bound=row.is_bound,
    )


def _application_from_row(row: ApprovalApplication) -> Application:
    return Application(
        id=row.id,
        tenant_id=row.tenant_id,
        template_id=row.template_id,
        applicant_id=row.applicant_id,
        title=row.title,
        data=dict(row.data or {}),
        status=ApplicationStatus(row.status),
        current_step=row.current_step,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        assignments=[
            _assignment_from_row(a)
            for a in sorted(row.assignments, key=lambda a: (a.step_order, a.id))
        ],
    )


def _copy_assignment_state(target: ApprovalAssignment, source: Assignment) -> None:
    target.status = source.status.value
    target.comment = source.comment
    target.acted_at = source.acted_at
    target.assigned_to_id = source.assigned_to_id


# ═════════════════════════════════════════════════════════════════════════════
# SQLAlchemy implementation
# ═════════════════════════════════════════════════════════════════════════════


class SqlRouteRepository:
    def __init__(self, session):
        self.session = session

    def add(self, route: RouteDefinition) -> RouteDefinition:
        row = ApprovalRoute(tenant_id=route.tenant_id, name=route.name, description=route.description)
        row.steps = [
            ApprovalStep(
                step_order=s.order,
                approver_role=s.approver_role.value,
                require_all=s.require_all,
                condition=s.condition.to_dict() if s.condition else None,
            )
            for s in route.steps
        ]
        self.session.add(row)
        self.session.flush()
        return _route_from_row(row)

    def get(self, tenant_id: int, route_id: int, for_update: bool = False) -> RouteDefinition | None:
        row = get_scoped_or_none(
            ApprovalRoute, route_id, tenant_id=tenant_id, session=self.session, for_update=for_update
        )
        return _route_from_row(row) if row else None

    def list(self, tenant_id: int) -> list[RouteDefinition]:
        rows = self.session.execute(
            ApprovalRoute.query_for_tenant(tenant_id).order_by(ApprovalRoute.id)
        ).scalars()
        return [_route_from_row(r) for r in rows]

    def delete(self, tenant_id: int, route_id: int) -> None:
        row = get_scoped_or_none(ApprovalRoute, route_id, tenant_id=tenant_id, session=self.session)
        if row is not None:
            self.session.delete(row)
            self.session.flush()


class SqlTemplateRepository:
    def __init__(self, session):
        self.session = session

    def add(self, template: TemplateDefinition) -> TemplateDefinition:
        row = ApprovalTemplate(
            tenant_id=template.tenant_id,
            route_id=template.route_id,
            name=template.name,
            description=template.description,
            fields=template.schema.to_dict(),
            is_active=template.is_active,
            is_default=template.is_default,
        )
        self.session.add(row)
        self.session.flush()
        return _template_from_row(row)

    def get(self, tenant_id: int, template_id: int) -> TemplateDefinition | None:
        row = get_scoped_or_none(ApprovalTemplate, template_id, tenant_id=tenant_id, session=self.session)
        return _template_from_row(row) if row else None

    def list(self, tenant_id: int, active_only: bool = False) -> list[TemplateDefinition]:
        stmt = ApprovalTemplate.query_for_tenant(tenant_id)
        if active_only:
            stmt = stmt.where(ApprovalTemplate.is_active.is_(True))
        rows = self.session.execute(stmt.order_by(ApprovalTemplate.id)).scalars()
        return [_template_from_row(r) for r in rows]

    def count_for_route(self, tenant_id: int, route_id: int) -> int:
        return self.session.execute(
            select(func.count(ApprovalTemplate.id)).where(
                ApprovalTemplate.tenant_id == tenant_id,
                ApprovalTemplate.route_id == route_id,
            )
        ).scalar_one()

    def find_default(self, tenant_id: int, route_id: int) -> TemplateDefinition | None:
        row = self.session.execute(
            ApprovalTemplate.query_for_tenant(tenant_id)
            .where(
                ApprovalTemplate.route_id == route_id,
                ApprovalTemplate.is_default.is_(True),
                ApprovalTemplate.is_active.is_(True),
            )
            .order_by(ApprovalTemplate.id)
            .limit(1)
        ).scalar_one_or_none()
        return _template_from_row(row) if row else None

    def set_active(self, tenant_id: int, template_id: int, active: bool) -> TemplateDefinition | None:
        row = get_scoped_or_none(ApprovalTemplate, template_id, tenant_id=tenant_id, session=self.session)
        if row is None:
            return None
        row.is_active = active
        self.session.flush()
        return _template_from_row(row)


class SqlApplicationRepository:
    def __init__(self, session):
        self.session = session

    def add(self, application: Application) -> Application:
        row = ApprovalApplication(
            tenant_id=application.tenant_id,
            template_id=application.template_id,
            applicant_id=application.applicant_id,
            title=application.title,
            data=application.data,
            status=application.status.value,
            current_step=application.current_step,
        )
        row.assignments = [
            ApprovalAssignment(
                step_id=a.step_id,
                step_order=a.step_order,
                approver_role=a.approver_role.value,
                require_all=a.require_all,
                status=a.status.value,
                assigned_to_id=a.assigned_to_id,
                is_bound=a.is_bound,
            )
            for a in application.assignments
        ]
        self.session.add(row)
        self.session.flush()
        return _application_from_row(row)

    def get(self, tenant_id: int, application_id: int, for_update: bool = False) -> Application | None:
        row = get_scoped_or_none(
            ApprovalApplication, application_id,
            tenant_id=tenant_id, session=self.session, for_update=for_update,
        )
        if row is None:
            return None
        if for_update:
            # Assignments are part of the same aggregate; reload them too.
            self.session.execute(
                select(ApprovalAssignment)
                .where(ApprovalAssignment.application_id == row.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars().all()
        return _application_from_row(row)

    def save(self, application: Application) -> Application:
        row = get_scoped_or_none(
            ApprovalApplication, application.id, tenant_id=application.tenant_id, session=self.session
        )
        if row is None:
            raise ConflictError("ApprovalApplication", "Application no longer exists", application.id)
        if application.version is not None and row.version != application.version:
            raise ConflictError(
                "ApprovalApplication",
                "Application was changed by another request",
                application.id,
            )

        row.status = application.status.value
        row.current_step = application.current_step
        # Always touch the aggregate root so the version counter moves.
        row.updated_at = utcnow()
        rows_by_id = {a.id: a for a in row.assignments}
        for assignment in application.assignments:
            target = rows_by_id.get(assignment.id)
            if target is None:
                raise ConflictError("ApprovalAssignment", "Assignment no longer exists", assignment.id)
            _copy_assignment_state(target, assignment)

        self.session.flush()
        return _application_from_row(row)

    def list(self, tenant_id: int, filters: ApplicationFilters) -> list[Application]:
        stmt = ApprovalApplication.query_for_tenant(tenant_id)
        if filters.status is not None:
            stmt = stmt.where(ApprovalApplication.status == filters.status.value)
        if filters.applicant_id is not None:
            stmt = stmt.where(ApprovalApplication.applicant_id == filters.applicant_id)
        if filters.template_id is not None:
            stmt = stmt.where(ApprovalApplication.template_id == filters.template_id)
        if filters.awaiting_role is not None:
            awaiting = (
                select(ApprovalAssignment.id)
                .where(
                    ApprovalAssignment.application_id == ApprovalApplication.id,
                    ApprovalAssignment.step_order == ApprovalApplication.current_step,
                    ApprovalAssignment.status == AssignmentStatus.IN_PROGRESS.value,
                    ApprovalAssignment.approver_role == filters.awaiting_role.value,
                )
                .exists()
            )
            stmt = stmt.where(ApprovalApplication.status == ApplicationStatus.PENDING.value, awaiting)
        stmt = (
            stmt.order_by(ApprovalApplication.created_at.desc(), ApprovalApplication.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return [_application_from_row(r) for r in self.session.execute(stmt).scalars()]


class SqlApprovalUnitOfWork:
    """Bundles the SQL repositories around one SQLAlchemy session."""

    def __init__(self, session, directory: RoleDirectory | None = None):
        self.session = session
        self.routes = SqlRouteRepository(session)
        self.templates = SqlTemplateRepository(session)
        self.applications = SqlApplicationRepository(session)
        self.directory = directory if directory is not None else SqlRoleDirectory(session)

    @contextmanager
    def atomic(self) -> Iterator["SqlApprovalUnitOfWork"]:
        try:
            yield self
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            logger.warning("Optimistic lock failure: %s", exc)
            raise ConflictError("ApprovalApplication", "Application was changed by another request") from exc
        except Exception:
            self.session.rollback()
            raise
