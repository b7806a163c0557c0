"""
Tenant-scoped query helpers.

Every get-by-id against a tenant-owned approval table MUST go through these
helpers instead of db.session.get(Model, pk). A bare .get() ignores the
tenant boundary.

Usage:
    route = get_scoped(ApprovalRoute, route_id, tenant_id=tenant_id)

    # Inside a write transaction, lock the row and refresh it from the DB
    app_row = get_scoped(ApprovalApplication, app_id, tenant_id=tenant_id, for_update=True)

    # When absence is an expected outcome
    tpl = get_scoped_or_none(ApprovalTemplate, tpl_id, tenant_id=tenant_id)

Cross-tenant access is indistinguishable from a missing record: both raise
NotFoundError → HTTP 404.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)


def scoped_select(model, pk: int, *, tenant_id: int, for_update: bool = False):
    """Build the tenant-filtered SELECT for ``model`` id ``pk``.

    Raises:
        ValueError: tenant_id missing, or the model has no tenant_id column.
    """
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope. "
            "Unscoped lookups are forbidden."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(f"{model.__name__} has no tenant_id column; refusing an unscoped lookup.")

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    if for_update:
        # Re-read inside the transaction; never trust the identity map copy.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return stmt


def get_scoped(model, pk: int, *, tenant_id: int, session=None, for_update: bool = False):
    """Fetch a single entity by PK within a tenant.

    Args:
        model: SQLAlchemy model class with ``id`` and ``tenant_id`` columns.
        pk: Primary key value.
        tenant_id: Owning tenant.
        session: Session to use; defaults to ``db.session``.
        for_update: Lock the row (``SELECT ... FOR UPDATE`` where supported)
            and overwrite any cached state.

    Raises:
        ValueError: see ``scoped_select``.
        NotFoundError: missing, or owned by another tenant.
    """
    session = session or db.session
    result = session.execute(
        scoped_select(model, pk, tenant_id=tenant_id, for_update=for_update)
    ).scalar_one_or_none()

    if result is None:
        logger.debug("get_scoped: %s id=%s not found for tenant=%s", model.__name__, pk, tenant_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)
    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int, session=None, for_update: bool = False):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, session=session, for_update=for_update)
    except NotFoundError:
        return None
