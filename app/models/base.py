"""
Shared model plumbing: UTC timestamps and the tenant-owned base class.

    class ApprovalRoute(TenantModel):
        __tablename__ = "approval_routes"
        __table_args__ = (tenant_index("approval_routes", "name"),)

    db.session.execute(ApprovalRoute.query_for_tenant(tenant_id))
"""

from datetime import datetime, timezone

from app.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    """ISO-8601 with offset. SQLite hands timestamps back naive; they are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def tenant_index(table_name: str, *columns: str):
    """``ix_<table>_tenant_<cols>`` on (tenant_id, *columns)."""
    return db.Index(f"ix_{table_name}_tenant_{'_'.join(columns)}", "tenant_id", *columns)


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class TenantModel(TimestampMixin, db.Model):
    """Abstract base for rows owned by a tenant; deleting the tenant deletes them."""

    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id: int):
        """select(cls) limited to one tenant; callers add ordering and filters."""
        return db.select(cls).where(cls.tenant_id == tenant_id)
