"""
Tenant-scoped query helpers.

Every get-by-id in the service MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Usage:
    item = get_scoped(WorkItem, work_item_id, tenant_id=principal.tenant_id)
    item = get_scoped_or_none(WorkItem, work_item_id, tenant_id=principal.tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces during development/testing rather than
    silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from workitems.core.exceptions import WorkItemNotFoundError
from workitems.models import db

logger = logging.getLogger(__name__)

# Supported scope keyword → expected model column name.
_SCOPE_KWARGS = ("tenant_id",)


def get_scoped(
    model,
    pk: str,
    *,
    tenant_id: str | None = None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    At least one scope parameter MUST be provided and MUST correspond to a
    column that exists on the model. This prevents:
      1. Accidental unscoped lookups (no scope kwarg passed at all)
      2. Silent scope bypass (scope kwarg passed for a column the model lacks)

    Cross-tenant access is indistinguishable from a missing record: both
    raise WorkItemNotFoundError.

    Raises:
        ValueError: If no scope parameter is provided, or a provided scope
                    field does not exist on the model.
        WorkItemNotFoundError: If the entity does not exist OR belongs to a
                               different scope.
    """
    provided_scopes = {
        "tenant_id": tenant_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            f"({', '.join(_SCOPE_KWARGS)}). "
            "Unscoped lookups are forbidden — they bypass tenant isolation."
        )

    missing_fields = sorted(f for f in provided_scopes if not hasattr(model, f))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {missing_fields} "
            f"do not exist as columns on {model.__name__}. "
            "Refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise WorkItemNotFoundError(work_item_id=pk, tenant_id=tenant_id)

    return result


def get_scoped_or_none(
    model,
    pk: str,
    *,
    tenant_id: str | None = None,
):
    """Same as get_scoped but returns None instead of raising WorkItemNotFoundError.

    Still enforces the scope parameter requirement (raises ValueError if no
    scope is provided or a scope field is missing on the model).
    """
    try:
        return get_scoped(model, pk, tenant_id=tenant_id)
    except WorkItemNotFoundError:
        return None
