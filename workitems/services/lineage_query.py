"""Lineage query engine — read-side listings annotated with lineage.

list_work_items_with_lineage:
    Tenant-scoped, filtered anchor set, then a bounded recursive ascent
    through lineage edges (depth cap LINEAGE_DEPTH_CAP, default 10).
    Each item appears once at its shallowest depth. limit/offset apply to
    the combined result *before* the per-row read check, so a page can be
    shorter than ``limit``.

get_lineage_for_work_item:
    Every edge touching the item (as parent or child) with both endpoint
    titles, oldest first.
"""
import logging

from flask import current_app
from sqlalchemy import Integer, and_, func, literal_column, or_, select
from sqlalchemy.orm import aliased

from workitems.core.exceptions import ValidationError
from workitems.integrations.policy_gateway import policy_gateway
from workitems.models import db
from workitems.models.work_item import (
    RELATION_CONTAINS,
    WORK_ITEM_PRIORITIES,
    WORK_ITEM_STATUSES,
    WORK_ITEM_TYPES,
    LineageEdge,
    WorkItem,
)
from workitems.services.work_item_service import load_readable_work_item

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
DEFAULT_DEPTH_CAP = 10

_ENUM_FILTERS = {
    "type": WORK_ITEM_TYPES,
    "status": WORK_ITEM_STATUSES,
    "priority": WORK_ITEM_PRIORITIES,
}


def _int_param(filters, name, default, minimum, maximum=None):
    raw = filters.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"}) from exc
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}", details={name: "invalid"})
    return min(value, maximum) if maximum is not None else value


def _anchor_query(tenant_id, filters):
    """Matching items at depth 0."""
    stmt = select(WorkItem.id.label("id"), literal_column("0", Integer).label("depth")).where(
        WorkItem.tenant_id == tenant_id
    )
    for field, choices in _ENUM_FILTERS.items():
        value = filters.get(field)
        if value:
            if value not in choices:
                raise ValidationError(
                    f"{field} must be one of: {', '.join(choices)}",
                    details={field: "invalid"},
                )
            stmt = stmt.where(getattr(WorkItem, field) == value)
    if filters.get("owner_id"):
        stmt = stmt.where(WorkItem.owner_id == filters["owner_id"])
    if filters.get("parent_id"):
        stmt = stmt.join(LineageEdge, LineageEdge.child_id == WorkItem.id).where(
            LineageEdge.tenant_id == tenant_id,
            LineageEdge.parent_id == filters["parent_id"],
        )
    search = (filters.get("search") or "").strip()
    if search:
        stmt = stmt.where(or_(
            WorkItem.title.icontains(search, autoescape=True),
            WorkItem.description.icontains(search, autoescape=True),
        ))
    return stmt


def list_work_items_with_lineage(principal, filters=None):
    """List matching work items together with their ancestor chains.

    Args:
        principal: Authenticated caller; defines the tenant scope.
        filters: Mapping with optional type, status, priority, owner_id,
                 parent_id, search, limit (default 50, max 200), offset.

    Returns:
        List of work-item dicts, each with extra ``parent_id`` (the
        ``contains`` parent, or None) and ``depth`` (0 for direct matches).
    """
    filters = filters or {}
    tenant_id = principal.tenant_id
    limit = _int_param(filters, "limit", DEFAULT_LIMIT, 1, MAX_LIMIT)
    offset = _int_param(filters, "offset", 0, 0)
    depth_cap = current_app.config.get("LINEAGE_DEPTH_CAP", DEFAULT_DEPTH_CAP)

    tree = _anchor_query(tenant_id, filters).cte("lineage_tree", recursive=True)
    ascent = (
        select(LineageEdge.parent_id.label("id"), (tree.c.depth + 1).label("depth"))
        .join(tree, LineageEdge.child_id == tree.c.id)
        .where(LineageEdge.tenant_id == tenant_id, tree.c.depth < depth_cap)
    )
    tree = tree.union_all(ascent)

    shallowest = (
        select(tree.c.id, func.min(tree.c.depth).label("depth"))
        .group_by(tree.c.id)
        .subquery("shallowest")
    )
    parent_edge = aliased(LineageEdge)
    stmt = (
        select(WorkItem, shallowest.c.depth, parent_edge.parent_id)
        .join(shallowest, shallowest.c.id == WorkItem.id)
        .outerjoin(parent_edge, and_(
            parent_edge.child_id == WorkItem.id,
            parent_edge.relation_type == RELATION_CONTAINS,
        ))
        .where(WorkItem.tenant_id == tenant_id)
        .order_by(WorkItem.id, shallowest.c.depth)
        .limit(limit)
        .offset(offset)
    )
    rows = db.session.execute(stmt).all()

    results = []
    for item, depth, parent_id in rows:
        if not policy_gateway.can_read_work_item(principal, item):
            continue
        row = item.to_dict()
        row["parent_id"] = parent_id
        row["depth"] = depth
        results.append(row)

    logger.debug(
        "Lineage listing user=%s fetched=%d returned=%d",
        principal.id, len(rows), len(results),
        extra={"tenant_id": tenant_id},
    )
    return results


def get_lineage_for_work_item(principal, work_item_id):
    """Edges where the item is parent or child, with endpoint titles.

    Returns an empty list when the item is missing or not readable.
    """
    if load_readable_work_item(principal, work_item_id) is None:
        return []

    parent = aliased(WorkItem)
    child = aliased(WorkItem)
    stmt = (
        select(LineageEdge, parent.title, child.title)
        .join(parent, parent.id == LineageEdge.parent_id)
        .join(child, child.id == LineageEdge.child_id)
        .where(
            LineageEdge.tenant_id == principal.tenant_id,
            or_(LineageEdge.parent_id == work_item_id, LineageEdge.child_id == work_item_id),
        )
        .order_by(LineageEdge.created_at, LineageEdge.id)
    )

    edges = []
    for edge, parent_title, child_title in db.session.execute(stmt).all():
        row = edge.to_dict()
        row["parent_title"] = parent_title
        row["child_title"] = child_title
        edges.append(row)
    return edges
