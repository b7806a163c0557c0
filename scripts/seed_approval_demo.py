"""
Seed Approval Demo — demo tenant, one member per role, sample routes.

Usage:
    python scripts/seed_approval_demo.py              # Uses development DB
    python scripts/seed_approval_demo.py --env prod   # Uses production DB

Idempotent: safe to run repeatedly.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func, select

from app import create_app
from app.models import db
from app.models.approval import ApprovalApplication, ApprovalRoute, ApprovalTemplate
from app.models.auth import Member, Tenant
from app.services.approval_roles import Role
from app.services.approval_service import seed_samples

DEMO_TENANT = {"name": "Demo Club", "slug": "demo-club"}

DEMO_MEMBERS = [
    ("Alice Admin", Role.ADMIN),
    ("Ada Accountant", Role.ACCOUNTANT),
    ("Otto Auditor", Role.AUDITOR),
    ("Mia Member", Role.MEMBER),
]


def seed_tenant():
    """Create the demo tenant if missing."""
    tenant = db.session.execute(
        select(Tenant).where(Tenant.slug == DEMO_TENANT["slug"])
    ).scalar_one_or_none()
    if tenant is None:
        tenant = Tenant(name=DEMO_TENANT["name"], slug=DEMO_TENANT["slug"], is_active=True)
        db.session.add(tenant)
        db.session.commit()
        print(f"  Tenant created: {tenant.name} (id={tenant.id})")
    else:
        print(f"  Tenant exists:  {tenant.name} (id={tenant.id})")
    return tenant


def seed_members(tenant):
    """Create one member per role (matched by display name)."""
    created = 0
    for display_name, role in DEMO_MEMBERS:
        existing = db.session.execute(
            select(Member).where(Member.tenant_id == tenant.id, Member.display_name == display_name)
        ).scalar_one_or_none()
        if existing is None:
            db.session.add(Member(tenant_id=tenant.id, display_name=display_name, role=role.value))
            created += 1
        else:
            existing.role = role.value
    db.session.commit()
    print(f"  Members: {created} created, {len(DEMO_MEMBERS) - created} already existed")


def _count(model, tenant_id):
    return db.session.execute(
        select(func.count(model.id)).where(model.tenant_id == tenant_id)
    ).scalar_one()


def main():
    parser = argparse.ArgumentParser(description="Seed a demo tenant, members and sample approval routes")
    parser.add_argument("--env", default="development", help="App environment")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        print("=" * 60)
        print("  SEED: Approval demo")
        print("=" * 60)

        print("\nSeeding tenant...")
        tenant = seed_tenant()

        print("\nSeeding members...")
        seed_members(tenant)

        print("\nSeeding sample routes...")
        result = seed_samples(tenant.id)
        print(f"  Routes: {len(result['created'])} created, {len(result['skipped'])} already existed")

        print("\n" + "=" * 60)
        print("  SUMMARY")
        print("=" * 60)
        print(f"  Members:      {_count(Member, tenant.id)}")
        print(f"  Routes:       {_count(ApprovalRoute, tenant.id)}")
        print(f"  Templates:    {_count(ApprovalTemplate, tenant.id)}")
        print(f"  Applications: {_count(ApprovalApplication, tenant.id)}")

        print("\nMember ids (send as X-Member-ID):")
        for member in tenant.active_members():
            print(f"  {member.id:4d}  {member.role:12s} {member.display_name}")

        print("\nSeed complete!")


if __name__ == "__main__":
    main()
