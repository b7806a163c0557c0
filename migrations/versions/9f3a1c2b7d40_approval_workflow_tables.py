"""approval_workflow_tables

Creates the tenant / member directory and the approval workflow tables:
  - tenants, members
  - approval_routes, approval_steps
  - approval_templates              (route_id ON DELETE RESTRICT)
  - approval_applications           (version = optimistic-lock counter)
  - approval_assignments

Tables created conditionally (IF NOT EXISTS semantics) so the migration can
run against a development database that already received them via
db.create_all().

Revision ID: 9f3a1c2b7d40
Revises:
Create Date: 2026-10-17 09:12:44.501233
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '9f3a1c2b7d40'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Tenants & members ─────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "members" not in existing:
        op.create_table(
            "members",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=False),
            sa.Column(
                "role", sa.String(length=30), nullable=False, server_default="MEMBER",
                comment="ADMIN | ACCOUNTANT | AUDITOR | MEMBER",
            ),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_members_tenant_role", "members", ["tenant_id", "role"])

    # ── Routes & steps ────────────────────────────────────────────────────
    if "approval_routes" not in existing:
        op.create_table(
            "approval_routes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_routes_tenant_id", "approval_routes", ["tenant_id"])
        op.create_index("ix_approval_routes_tenant_name", "approval_routes", ["tenant_id", "name"])

    if "approval_steps" not in existing:
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("route_id", sa.Integer(), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=False, comment="1-based, contiguous"),
            sa.Column("approver_role", sa.String(length=30), nullable=False),
            sa.Column("require_all", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("condition", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["route_id"], ["approval_routes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("route_id", "step_order", name="uq_approval_step_route_order"),
        )
        op.create_index("ix_approval_steps_route_id", "approval_steps", ["route_id"])

    # ── Templates ─────────────────────────────────────────────────────────
    if "approval_templates" not in existing:
        op.create_table(
            "approval_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("route_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["route_id"], ["approval_routes.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_templates_tenant_id", "approval_templates", ["tenant_id"])
        op.create_index("ix_approval_templates_route_id", "approval_templates", ["route_id"])
        op.create_index(
            "ix_approval_templates_tenant_is_active", "approval_templates", ["tenant_id", "is_active"]
        )

    # ── Applications & assignments ────────────────────────────────────────
    if "approval_applications" not in existing:
        op.create_table(
            "approval_applications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("applicant_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("data", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("current_step", sa.Integer(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["approval_templates.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["applicant_id"], ["members.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_applications_tenant_id", "approval_applications", ["tenant_id"])
        op.create_index("ix_approval_applications_template_id", "approval_applications", ["template_id"])
        op.create_index("ix_approval_applications_applicant_id", "approval_applications", ["applicant_id"])
        op.create_index(
            "ix_approval_applications_tenant_status", "approval_applications", ["tenant_id", "status"]
        )

    if "approval_assignments" not in existing:
        op.create_table(
            "approval_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("application_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=True),
            sa.Column("step_order", sa.Integer(), nullable=False),
            sa.Column("approver_role", sa.String(length=30), nullable=False),
            sa.Column("require_all", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="WAITING"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("acted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("is_bound", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["application_id"], ["approval_applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["approval_steps.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["members.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approval_assignments_application_id", "approval_assignments", ["application_id"])
        op.create_index(
            "ix_approval_assignments_app_order", "approval_assignments", ["application_id", "step_order"]
        )


def downgrade():
    for table in (
        "approval_assignments",
        "approval_applications",
        "approval_templates",
        "approval_steps",
        "approval_routes",
        "members",
        "tenants",
    ):
        op.drop_table(table)
