"""
Approval Workflow Models — routes, steps, templates, applications, assignments.

    ApprovalRoute ──< ApprovalStep
        │
        └──< ApprovalTemplate ──< ApprovalApplication ──< ApprovalAssignment

Business rules:
- A route's steps are numbered 1..N contiguously; the service assigns the
  numbers, clients never do.
- approval_templates.route_id is ON DELETE RESTRICT: a route referenced by a
  template cannot be deleted (the service also checks under a row lock).
- Assignments copy approver_role and require_all from the step at submission
  time; later step edits never reach running applications.
- ApprovalApplication.version is the optimistic-locking counter; every UPDATE
  bumps it and a stale UPDATE raises StaleDataError.
"""

from app.models import db
from app.models.base import TenantModel, TimestampMixin, tenant_index


# ═══════════════════════════════════════════════════════════════
# 1. ROUTES & STEPS
# ═══════════════════════════════════════════════════════════════
class ApprovalRoute(TenantModel):
    __tablename__ = "approval_routes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    steps = db.relationship(
        "ApprovalStep",
        back_populates="route",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        tenant_index("approval_routes", "name"),
    )


class ApprovalStep(TimestampMixin, db.Model):
    __tablename__ = "approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_routes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = db.Column(db.Integer, nullable=False, comment="1-based, contiguous")
    approver_role = db.Column(db.String(30), nullable=False)
    require_all = db.Column(db.Boolean, nullable=False, default=False)
    condition = db.Column(
        db.JSON,
        nullable=True,
        comment='Normalised: {"type": "numeric_range", "field": ..., "min": ..., "max": ...}',
    )

    route = db.relationship("ApprovalRoute", back_populates="steps")

    __table_args__ = (
        db.UniqueConstraint("route_id", "step_order", name="uq_approval_step_route_order"),
    )


# ═══════════════════════════════════════════════════════════════
# 2. TEMPLATES
# ═══════════════════════════════════════════════════════════════
class ApprovalTemplate(TenantModel):
    __tablename__ = "approval_templates"

    id = db.Column(db.Integer, primary_key=True)
    route_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_routes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    fields = db.Column(db.JSON, nullable=False, comment="Form schema: {items, instructions, version}")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Common application template auto-created for a route",
    )

    route = db.relationship("ApprovalRoute")

    __table_args__ = (
        tenant_index("approval_templates", "is_active"),
    )


# ═══════════════════════════════════════════════════════════════
# 3. APPLICATIONS & ASSIGNMENTS
# ═══════════════════════════════════════════════════════════════
class ApprovalApplication(TenantModel):
    __tablename__ = "approval_applications"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_templates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    applicant_id = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="PENDING",
        comment="PENDING | APPROVED | REJECTED",
    )
    current_step = db.Column(db.Integer, nullable=True, comment="NULL once terminal")
    version = db.Column(db.Integer, nullable=False, default=1)

    template = db.relationship("ApprovalTemplate")
    assignments = db.relationship(
        "ApprovalAssignment",
        back_populates="application",
        order_by="ApprovalAssignment.step_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        tenant_index("approval_applications", "status"),
    )


class ApprovalAssignment(TimestampMixin, db.Model):
    __tablename__ = "approval_assignments"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_steps.id", ondelete="SET NULL"),
        nullable=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    approver_role = db.Column(db.String(30), nullable=False, comment="Copied from the step at submit")
    require_all = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(
        db.String(20), nullable=False, default="WAITING",
        comment="WAITING | IN_PROGRESS | APPROVED | REJECTED",
    )
    comment = db.Column(db.Text, nullable=True)
    acted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_to_id = db.Column(
        db.Integer,
        db.ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
        comment="Bound approver (requireAll fan-out) or the member who acted",
    )
    is_bound = db.Column(db.Boolean, nullable=False, default=False)

    application = db.relationship("ApprovalApplication", back_populates="assignments")

    __table_args__ = (
        db.Index("ix_approval_assignments_app_order", "application_id", "step_order"),
    )
