"""
Tenant directory: tenants and their members.

Every approval route, template and application belongs to a tenant. A member
belongs to one tenant and holds one role; ``SqlRoleDirectory``
(app/services/approval_roles.py) reads this table to answer "what role does
member X have" and "who holds role R".
"""

from app.models import db
from app.models.base import TimestampMixin


class Tenant(TimestampMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    members = db.relationship(
        "Member", back_populates="tenant", lazy="dynamic", order_by="Member.id"
    )

    def active_members(self, role=None):
        """Active members, optionally only those holding ``role``."""
        query = self.members.filter_by(is_active=True)
        if role is not None:
            query = query.filter_by(role=getattr(role, "value", role))
        return query.all()

    def __repr__(self):
        return f"<Tenant {self.id} {self.slug}>"


class Member(TimestampMixin, db.Model):
    __tablename__ = "members"
    __table_args__ = (db.Index("ix_members_tenant_role", "tenant_id", "role"),)

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    display_name = db.Column(db.String(200), nullable=False)
    role = db.Column(
        db.String(30), nullable=False, default="MEMBER",
        comment="ADMIN | ACCOUNTANT | AUDITOR | MEMBER",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    tenant = db.relationship("Tenant", back_populates="members")

    def __repr__(self):
        return f"<Member {self.id} {self.role} tenant={self.tenant_id}>"
