"""
Approval workflow engine — route/template definitions and the application
state machine.

Transport-agnostic: both classes take an ApprovalUnitOfWork (see
approval_repositories.py) and return domain dataclasses. The HTTP facade
(approval_service.py), the seed CLI and the tests all bind here.

The engine performs no logging and no notification; every mutating call
returns the updated object so the caller can log, audit or notify.

State machine (per application):

    submit ─► PENDING(current_step = first included step)
                 │ approve, more steps   ─► PENDING(current_step = next)
                 │ approve, last step    ─► APPROVED(current_step = None)
                 └ reject                ─► REJECTED(current_step = None)

For a require_all step fanned out to several members, the step advances only
once every assignment at that order is APPROVED.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from app.models.base import utcnow
from app.services.approval_conditions import applies, parse_condition
from app.services.approval_roles import (
    DEFAULT_APPROVAL_ROLES,
    Role,
    can_act_on,
    coerce_role,
    parse_role,
)
from app.services.approval_schema import (
    DEFAULT_FORM_SCHEMA,
    parse_form_schema,
    validate_submission,
)
from app.services.approval_types import (
    Action,
    Application,
    ApplicationFilters,
    ApplicationStatus,
    Assignment,
    AssignmentStatus,
    RouteDefinition,
    StepDefinition,
    TemplateDefinition,
)

DEFAULT_TEMPLATE_NAME = "Common application"

_MAX_NAME_LENGTH = 200
_MAX_TITLE_LENGTH = 255


def _required_text(value: Any, label: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return value


def _optional_text(value: Any, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    return value.strip() or None


def _first_present(raw: Mapping, *keys: str, default=None):
    for key in keys:
        if key in raw:
            return raw[key]
    return default


def parse_action(value: Any) -> Action:
    """'approve' / 'reject' (case-insensitive) → Action; anything else is invalid."""
    if isinstance(value, Action):
        return value
    if isinstance(value, str):
        try:
            return Action(value.strip().lower())
        except ValueError:
            pass
    raise ValidationError(
        f"Unknown action {value!r}",
        details={"allowed_actions": [a.value for a in Action]},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Definitions: routes & templates
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalDefinitionService:
    """Create, read and retire routes and templates for a tenant."""

    def __init__(self, uow, allowed_roles: Iterable[Role] = DEFAULT_APPROVAL_ROLES):
        self.uow = uow
        self.allowed_roles = tuple(allowed_roles)

    # ── Routes ───────────────────────────────────────────────────────────────

    def parse_steps(self, steps: Any) -> list[StepDefinition]:
        """Validate raw step input and number the steps 1..N in given order.

        Each step accepts ``approver_role`` (or ``approverRole``/``role``),
        ``require_all`` (or ``requireAll``) and an optional ``condition``.
        Any client-supplied order is ignored.
        """
        if not isinstance(steps, list) or not steps:
            raise ValidationError("A route needs at least one step")

        parsed = []
        for index, raw in enumerate(steps, start=1):
            if not isinstance(raw, Mapping):
                raise ValidationError(f"Step {index} must be an object")
            role = parse_role(
                _first_present(raw, "approver_role", "approverRole", "role"),
                allowed=self.allowed_roles,
            )
            require_all = _first_present(raw, "require_all", "requireAll", default=False)
            if not isinstance(require_all, bool):
                raise ValidationError(f"Step {index} require_all must be true or false")
            try:
                condition = parse_condition(raw.get("condition"))
            except ValidationError as exc:
                raise ValidationError(f"Step {index}: {exc}", details=exc.details) from exc
            parsed.append(
                StepDefinition(order=index, approver_role=role, require_all=require_all, condition=condition)
            )
        return parsed

    def create_route(self, tenant_id: int, name: Any, steps: Any, description: Any = None) -> RouteDefinition:
        route = RouteDefinition(
            tenant_id=tenant_id,
            name=_required_text(name, "Route name", _MAX_NAME_LENGTH),
            description=_optional_text(description, "description"),
            steps=self.parse_steps(steps),
        )
        with self.uow.atomic():
            return self.uow.routes.add(route)

    def get_route(self, tenant_id: int, route_id: int) -> RouteDefinition:
        route = self.uow.routes.get(tenant_id, route_id)
        if route is None:
            raise NotFoundError(resource="ApprovalRoute", resource_id=route_id, tenant_id=tenant_id)
        return route

    def list_routes(self, tenant_id: int) -> list[RouteDefinition]:
        return self.uow.routes.list(tenant_id)

    def delete_route(self, tenant_id: int, route_id: int) -> RouteDefinition:
        """Delete a route nobody references; the check and delete share one transaction."""
        with self.uow.atomic():
            route = self.uow.routes.get(tenant_id, route_id, for_update=True)
            if route is None:
                raise NotFoundError(resource="ApprovalRoute", resource_id=route_id, tenant_id=tenant_id)
            in_use = self.uow.templates.count_for_route(tenant_id, route_id)
            if in_use:
                raise ConflictError(
                    "ApprovalRoute",
                    f"Route is used by {in_use} template(s) and cannot be deleted",
                    route_id,
                )
            self.uow.routes.delete(tenant_id, route_id)
        return route

    # ── Templates ────────────────────────────────────────────────────────────

    def create_template(
        self,
        tenant_id: int,
        route_id: Any,
        name: Any,
        fields: Any,
        description: Any = None,
    ) -> TemplateDefinition:
        if isinstance(route_id, bool) or not isinstance(route_id, int):
            raise ValidationError("route_id must be an integer")
        template = TemplateDefinition(
            tenant_id=tenant_id,
            route_id=route_id,
            name=_required_text(name, "Template name", _MAX_NAME_LENGTH),
            description=_optional_text(description, "description"),
            schema=parse_form_schema(fields),
        )
        with self.uow.atomic():
            # Lock the route so a concurrent delete cannot slip in between.
            if self.uow.routes.get(tenant_id, route_id, for_update=True) is None:
                raise ValidationError(
                    f"Route {route_id} does not exist",
                    details={"route_id": route_id},
                )
            return self.uow.templates.add(template)

    def get_template(self, tenant_id: int, template_id: int) -> TemplateDefinition:
        template = self.uow.templates.get(tenant_id, template_id)
        if template is None:
            raise NotFoundError(resource="ApprovalTemplate", resource_id=template_id, tenant_id=tenant_id)
        return template

    def list_templates(self, tenant_id: int, active_only: bool = False) -> list[TemplateDefinition]:
        return self.uow.templates.list(tenant_id, active_only=active_only)

    def deactivate_template(self, tenant_id: int, template_id: int) -> TemplateDefinition:
        with self.uow.atomic():
            template = self.uow.templates.set_active(tenant_id, template_id, False)
            if template is None:
                raise NotFoundError(resource="ApprovalTemplate", resource_id=template_id, tenant_id=tenant_id)
        return template

    def ensure_default_template(self, tenant_id: int, route_id: int) -> TemplateDefinition:
        """Find or create the route's "Common application" template.

        Must be called inside an open ``uow.atomic()`` block.
        """
        existing = self.uow.templates.find_default(tenant_id, route_id)
        if existing is not None:
            return existing
        if self.uow.routes.get(tenant_id, route_id, for_update=True) is None:
            raise NotFoundError(resource="ApprovalRoute", resource_id=route_id, tenant_id=tenant_id)
        return self.uow.templates.add(
            TemplateDefinition(
                tenant_id=tenant_id,
                route_id=route_id,
                name=DEFAULT_TEMPLATE_NAME,
                schema=DEFAULT_FORM_SCHEMA,
                is_default=True,
            )
        )


# ═════════════════════════════════════════════════════════════════════════════
# Applications: the state machine
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalEngine:
    """Creates applications and drives them through their assignments.

    Args:
        uow: ApprovalUnitOfWork. ``uow.directory`` (optional) is used to fan
            out require_all steps to every member holding the step's role.
        clock: returns the current time; stamped on acted assignments.
    """

    def __init__(self, uow, clock: Callable[[], datetime] = utcnow):
        self.uow = uow
        self.clock = clock
        self.definitions = ApprovalDefinitionService(uow)

    # ── Creation ─────────────────────────────────────────────────────────────

    def submit(
        self,
        tenant_id: int,
        template_id: int,
        applicant_id: int | None,
        title: Any,
        raw_data: Any,
    ) -> Application:
        with self.uow.atomic():
            template = self.uow.templates.get(tenant_id, template_id)
            if template is None or not template.is_active:
                raise NotFoundError(resource="ApprovalTemplate", resource_id=template_id, tenant_id=tenant_id)
            return self._create(tenant_id, template, applicant_id, title, raw_data)

    def submit_for_route(
        self,
        tenant_id: int,
        route_id: int,
        applicant_id: int | None,
        title: Any,
        raw_data: Any,
    ) -> Application:
        """Submit through the route's default "Common application" template."""
        with self.uow.atomic():
            template = self.definitions.ensure_default_template(tenant_id, route_id)
            return self._create(tenant_id, template, applicant_id, title, raw_data)

    def _create(
        self,
        tenant_id: int,
        template: TemplateDefinition,
        applicant_id: int | None,
        title: Any,
        raw_data: Any,
    ) -> Application:
        route = self.uow.routes.get(tenant_id, template.route_id)
        if route is None:
            raise InvariantViolation(f"Template {template.id} references missing route {template.route_id}")

        errors, cleaned = validate_submission(template.schema, raw_data)
        if not isinstance(title, str) or not title.strip():
            errors.insert(0, "Title is required.")
        elif len(title.strip()) > _MAX_TITLE_LENGTH:
            errors.insert(0, f"Title must be at most {_MAX_TITLE_LENGTH} characters.")
        if errors:
            raise ValidationError("Submission is invalid", details={"errors": errors})

        included = [step for step in route.steps if applies(step.condition, cleaned)]
        if not included:
            raise InvariantViolation(
                f"Route {route.id} resolves to no steps for this submission"
            )

        first_order = included[0].order
        assignments: list[Assignment] = []
        for step in included:
            status = AssignmentStatus.IN_PROGRESS if step.order == first_order else AssignmentStatus.WAITING
            assignments.extend(self._assignments_for(tenant_id, step, status))

        application = Application(
            tenant_id=tenant_id,
            template_id=template.id,
            applicant_id=applicant_id,
            title=title.strip(),
            data=cleaned,
            status=ApplicationStatus.PENDING,
            current_step=first_order,
            assignments=assignments,
        )
        return self.uow.applications.add(application)

    def _assignments_for(self, tenant_id: int, step: StepDefinition, status: AssignmentStatus) -> list[Assignment]:
        members: list[int] = []
        if step.require_all and self.uow.directory is not None:
            members = self.uow.directory.members_with_role(tenant_id, step.approver_role)
        if not members:
            return [
                Assignment(
                    step_id=step.id,
                    step_order=step.order,
                    approver_role=step.approver_role,
                    require_all=step.require_all,
                    status=status,
                )
            ]
        return [
            Assignment(
                step_id=step.id,
                step_order=step.order,
                approver_role=step.approver_role,
                require_all=True,
                status=status,
                assigned_to_id=member_id,
                is_bound=True,
            )
            for member_id in members
        ]

    # ── Acting ───────────────────────────────────────────────────────────────

    def act(
        self,
        tenant_id: int,
        application_id: int,
        acting_role: Role | str | None,
        action: Action | str,
        comment: str | None = None,
        actor_id: int | None = None,
        expected_step: int | None = None,
    ) -> Application:
        """Approve or reject the application's current step.

        Raises:
            ValidationError: unknown action.
            NotFoundError: application missing or owned by another tenant.
            ConflictError: already decided, the step moved on since the caller
                looked (``expected_step``), or the actor already approved.
            AuthorizationError: role (or bound member) does not own the step.
            InvariantViolation: a PENDING application has nothing IN_PROGRESS.
        """
        action = parse_action(action)
        role = coerce_role(acting_role)
        if role is None:
            raise AuthorizationError(f"Unknown acting role {acting_role!r}")
        comment = _optional_text(comment, "comment")

        with self.uow.atomic():
            application = self.uow.applications.get(tenant_id, application_id, for_update=True)
            if application is None:
                raise NotFoundError(resource="ApprovalApplication", resource_id=application_id, tenant_id=tenant_id)
            if application.status != ApplicationStatus.PENDING:
                raise ConflictError(
                    "ApprovalApplication",
                    f"Application is already {application.status.value.lower()}",
                    application_id,
                )
            if expected_step is not None and expected_step != application.current_step:
                raise ConflictError(
                    "ApprovalApplication",
                    f"Application has moved to step {application.current_step}",
                    application_id,
                )

            current = application.current_assignments()
            if not current:
                raise InvariantViolation(
                    f"Application {application_id} is PENDING at step {application.current_step} "
                    "with no IN_PROGRESS assignment"
                )
            if not can_act_on(role, current[0]):
                raise AuthorizationError(
                    f"Step {application.current_step} requires role {current[0].approver_role.value}",
                    required_role=current[0].approver_role.value,
                )

            target = self._select_target(application, current, actor_id)
            now = self.clock()
            if action is Action.REJECT:
                self._reject(application, target, comment, actor_id, now)
            else:
                self._approve(application, target, comment, actor_id, now)
            return self.uow.applications.save(application)

    @staticmethod
    def _select_target(application: Application, current: list[Assignment], actor_id: int | None) -> Assignment:
        bound = [a for a in current if a.is_bound]
        if not bound:
            return current[0]
        for assignment in bound:
            if actor_id is not None and assignment.assigned_to_id == actor_id:
                return assignment
        already = [
            a for a in application.assignments_at(application.current_step)
            if a.is_bound and a.assigned_to_id == actor_id and a.status == AssignmentStatus.APPROVED
        ]
        if actor_id is not None and already:
            raise ConflictError(
                "ApprovalAssignment",
                "You have already approved this step",
                already[0].id,
            )
        raise AuthorizationError("This step is assigned to other approvers")

    @staticmethod
    def _stamp(target: Assignment, comment: str | None, actor_id: int | None, now: datetime) -> None:
        target.comment = comment
        target.acted_at = now
        if not target.is_bound and actor_id is not None:
            target.assigned_to_id = actor_id

    def _reject(self, application: Application, target: Assignment, comment, actor_id, now) -> None:
        target.transition(AssignmentStatus.REJECTED)
        self._stamp(target, comment, actor_id, now)
        # Fanned-out siblings still waiting on their own approver stand down.
        for sibling in application.current_assignments():
            sibling.transition(AssignmentStatus.WAITING)
        application.transition(ApplicationStatus.REJECTED)
        application.current_step = None

    def _approve(self, application: Application, target: Assignment, comment, actor_id, now) -> None:
        target.transition(AssignmentStatus.APPROVED)
        self._stamp(target, comment, actor_id, now)

        order = application.current_step
        if any(a.status != AssignmentStatus.APPROVED for a in application.assignments_at(order)):
            return

        later = sorted({a.step_order for a in application.assignments if a.step_order > order})
        if not later:
            application.transition(ApplicationStatus.APPROVED)
            application.current_step = None
            return

        application.current_step = later[0]
        for assignment in application.assignments_at(later[0]):
            assignment.transition(AssignmentStatus.IN_PROGRESS)

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_application(self, tenant_id: int, application_id: int) -> Application:
        application = self.uow.applications.get(tenant_id, application_id)
        if application is None:
            raise NotFoundError(resource="ApprovalApplication", resource_id=application_id, tenant_id=tenant_id)
        return application

    def list_applications(self, tenant_id: int, filters: ApplicationFilters | None = None) -> list[Application]:
        return self.uow.applications.list(tenant_id, filters or ApplicationFilters())
