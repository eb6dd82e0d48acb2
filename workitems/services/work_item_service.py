"""Work-item lifecycle engine.

Transaction policy: every mutation runs inside ``db_transaction()`` (one
commit on success, rollback on any exception). Events are queued while the
transaction is open and published only after it commits.

Authorization policy: every operation consults ``policy_gateway``. Reads
that fail authorization look exactly like missing records.

Operations:
- create_work_item      — lineage enforcement + hierarchy validation
- update_work_item      — partial update, status history, one-shot stamps
- delete_work_item      — refuses while the item still has children
- get_work_item_by_id   — tenant scoped, read authorized, None otherwise
- add_lineage_edge      — explicit parent → child link
- get_status_history    — append-only transition log
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from workitems.core.exceptions import (
    CannotDeleteParentError,
    ConflictError,
    InsufficientPermissionsError,
    InvalidHierarchyError,
    LineageRequiredError,
    ParentNotFoundError,
    ValidationError,
    WorkItemNotFoundError,
)
from workitems.integrations.policy_gateway import policy_gateway
from workitems.models import db
from workitems.models.work_item import (
    DEFAULT_PRIORITY,
    LINEAGE_RELATION_TYPES,
    RELATION_CONTAINS,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_IN_PROGRESS,
    WORK_ITEM_PRIORITIES,
    WORK_ITEM_STATUSES,
    WORK_ITEM_TYPES,
    LineageEdge,
    StatusHistory,
    WorkItem,
)
from workitems.services import lineage_validator
from workitems.services.event_emitter import (
    KIND_LINEAGE,
    KIND_WORK_ITEM,
    event_emitter,
    lineage_event,
    work_item_event,
)
from workitems.services.helpers.scoped_queries import get_scoped_or_none
from workitems.utils.helpers import db_transaction, parse_datetime

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "description", "status", "priority", "owner_id", "due_at", "metadata",
)


# ── Boundary validation ──────────────────────────────────────────────────


def _require_choice(field, value, choices):
    if value not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(choices)}",
            details={field: "invalid"},
        )
    return value


def _clean_title(value):
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    return title


def _clean_description(value):
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("description must be a string", details={"description": "invalid"})
    return value


def _clean_owner_id(value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("owner_id must be a non-empty string", details={"owner_id": "invalid"})
    return value


def _clean_due_at(value):
    try:
        return parse_datetime(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"due_at": "invalid"}) from exc


def _clean_metadata(value):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("metadata must be an object", details={"metadata": "invalid"})
    return value


# ── Internal helpers ─────────────────────────────────────────────────────


def load_readable_work_item(principal, work_item_id):
    """Tenant-scoped load plus read check; None when missing or unreadable."""
    item = get_scoped_or_none(WorkItem, work_item_id, tenant_id=principal.tenant_id)
    if item is None:
        return None
    if not policy_gateway.can_read_work_item(principal, item):
        logger.debug(
            "Read denied user=%s work_item=%s", principal.id, work_item_id,
            extra={"tenant_id": principal.tenant_id, "work_item_id": work_item_id},
        )
        return None
    return item


def _record_status_change(work_item_id, from_status, to_status, changed_by, reason=None):
    entry = StatusHistory(
        work_item_id=work_item_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        reason=reason,
    )
    db.session.add(entry)
    return entry


def _insert_edge(principal, parent_id, child_id, relation_type):
    edge = LineageEdge(
        tenant_id=principal.tenant_id,
        parent_id=parent_id,
        child_id=child_id,
        relation_type=relation_type,
        created_by=principal.id,
    )
    db.session.add(edge)
    db.session.flush()
    logger.info(
        "Lineage edge created id=%s parent=%s child=%s relation=%s",
        edge.id, parent_id, child_id, relation_type,
        extra={"tenant_id": principal.tenant_id, "work_item_id": child_id},
    )
    return edge


def _lock_work_item(tenant_id, work_item_id):
    """Row lock held until commit; a no-op on SQLite."""
    db.session.execute(
        select(WorkItem.id)
        .where(WorkItem.id == work_item_id, WorkItem.tenant_id == tenant_id)
        .with_for_update()
    )


def _contains_parent_id(tenant_id, child_id):
    return db.session.execute(
        select(LineageEdge.parent_id).where(
            LineageEdge.tenant_id == tenant_id,
            LineageEdge.child_id == child_id,
            LineageEdge.relation_type == RELATION_CONTAINS,
        )
    ).scalar_one_or_none()


# ═════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════


def create_work_item(principal, data):
    """Create a work item, optionally under a parent.

    Args:
        principal: Authenticated caller.
        data: Dict with ``type`` and ``title`` (required) plus optional
              description, priority, owner_id, due_at, metadata, parent_id.

    Returns:
        The created work item as a dict.

    Raises:
        ValidationError: missing or unknown type/title/priority/due_at, or a
            non-string description or owner_id.
        LineageRequiredError: policy denied creation, or a non-objective
            item has no parent and the caller is not an executive.
        ParentNotFoundError: parent missing, foreign or unreadable.
        InvalidHierarchyError: parent type may not contain this type.
    """
    work_item_type = _require_choice("type", data.get("type"), WORK_ITEM_TYPES)
    title = _clean_title(data.get("title"))
    priority = data.get("priority") or DEFAULT_PRIORITY
    _require_choice("priority", priority, WORK_ITEM_PRIORITIES)
    due_at = _clean_due_at(data.get("due_at"))
    metadata = _clean_metadata(data.get("metadata"))
    description = _clean_description(data.get("description"))
    owner_id = _clean_owner_id(data["owner_id"]) if data.get("owner_id") else principal.id
    parent_id = data.get("parent_id") or None

    pending = []
    with db_transaction():
        decision = policy_gateway.can_create_work_item(principal, work_item_type, parent_id)
        if not decision.allowed:
            raise LineageRequiredError(decision.reason, policy_id=decision.policy_id)

        if parent_id:
            parent = load_readable_work_item(principal, parent_id)
            if parent is None:
                raise ParentNotFoundError(parent_id)
            result = lineage_validator.validate(parent.type, work_item_type)
            if not result.valid:
                raise InvalidHierarchyError(
                    list(result.errors), lineage_validator.allowed_children(parent.type),
                )

        now = datetime.now(timezone.utc)
        item = WorkItem(
            tenant_id=principal.tenant_id,
            type=work_item_type,
            title=title,
            description=description,
            status=STATUS_DRAFT,
            priority=priority,
            created_by=principal.id,
            owner_id=owner_id,
            due_at=due_at,
            created_at=now,
            updated_at=now,
            metadata_json=metadata,
        )
        db.session.add(item)
        db.session.flush()

        if parent_id:
            edge = _insert_edge(principal, parent_id, item.id, RELATION_CONTAINS)
            pending.append((KIND_LINEAGE, lineage_event("edge_created", edge=edge, principal=principal)))

        _record_status_change(item.id, None, STATUS_DRAFT, principal.id)

        created = item.to_dict()
        pending.append((KIND_WORK_ITEM, work_item_event(
            "created", work_item_id=item.id, principal=principal,
            data={"work_item": created, "parent_id": parent_id},
        )))

    event_emitter.publish_pending(pending)
    logger.info(
        "Work item created id=%s type=%s parent=%s user=%s",
        created["id"], work_item_type, parent_id, principal.id,
        extra={"tenant_id": principal.tenant_id, "work_item_id": created["id"]},
    )
    return created


# ═════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════


def update_work_item(principal, work_item_id, data):
    """Apply a partial update.

    Only keys listed in ``UPDATABLE_FIELDS`` are applied; an optional
    ``reason`` is stored on the status-history row. An empty change set
    returns the current record without writing anything.

    Raises:
        WorkItemNotFoundError, InsufficientPermissionsError, ValidationError
    """
    requested = {k: data[k] for k in UPDATABLE_FIELDS if k in data}
    changes = dict(requested)

    if "title" in changes:
        changes["title"] = _clean_title(changes["title"])
    if "status" in changes:
        _require_choice("status", changes["status"], WORK_ITEM_STATUSES)
    if "priority" in changes:
        _require_choice("priority", changes["priority"], WORK_ITEM_PRIORITIES)
    if "metadata" in changes:
        changes["metadata"] = _clean_metadata(changes["metadata"])
    if "description" in changes:
        changes["description"] = _clean_description(changes["description"])
    if "owner_id" in changes:
        changes["owner_id"] = _clean_owner_id(changes["owner_id"])
    due_at = _clean_due_at(changes["due_at"]) if "due_at" in changes else None

    pending = []
    with db_transaction():
        item = load_readable_work_item(principal, work_item_id)
        if item is None:
            raise WorkItemNotFoundError(work_item_id=work_item_id, tenant_id=principal.tenant_id)
        if not policy_gateway.can_update_work_item(principal, item):
            raise InsufficientPermissionsError("update")

        if not changes:
            return item.to_dict()

        before = item.to_dict()
        now = datetime.now(timezone.utc)

        for field in ("title", "description", "priority", "owner_id"):
            if field in changes:
                setattr(item, field, changes[field])
        if "due_at" in changes:
            item.due_at = due_at
        if "metadata" in changes:
            item.metadata_json = changes["metadata"]

        if "status" in changes:
            new_status = changes["status"]
            _record_status_change(
                item.id, item.status, new_status, principal.id, reason=data.get("reason"),
            )
            if new_status == STATUS_IN_PROGRESS and item.started_at is None:
                item.started_at = now
            if new_status == STATUS_COMPLETED and item.completed_at is None:
                item.completed_at = now
            item.status = new_status

        item.updated_at = now
        db.session.flush()

        after = item.to_dict()
        pending.append((KIND_WORK_ITEM, work_item_event(
            "updated", work_item_id=item.id, principal=principal,
            data={"before": before, "after": after, "changes": requested},
        )))

    event_emitter.publish_pending(pending)
    logger.info(
        "Work item updated id=%s fields=%s user=%s",
        work_item_id, sorted(changes), principal.id,
        extra={"tenant_id": principal.tenant_id, "work_item_id": work_item_id},
    )
    return after


# ═════════════════════════════════════════════════════════════════════════
# Delete
# ═════════════════════════════════════════════════════════════════════════


def delete_work_item(principal, work_item_id):
    """Delete a leaf work item. History, edges and attachments cascade.

    Raises:
        WorkItemNotFoundError, InsufficientPermissionsError,
        CannotDeleteParentError (item still has children)
    """
    pending = []
    with db_transaction():
        item = load_readable_work_item(principal, work_item_id)
        if item is None:
            raise WorkItemNotFoundError(work_item_id=work_item_id, tenant_id=principal.tenant_id)
        if not policy_gateway.can_delete_work_item(principal, item):
            raise InsufficientPermissionsError("delete")

        child_count = db.session.execute(
            select(func.count(LineageEdge.id)).where(
                LineageEdge.tenant_id == principal.tenant_id,
                LineageEdge.parent_id == work_item_id,
            )
        ).scalar_one()
        if child_count > 0:
            raise CannotDeleteParentError(work_item_id, child_count)

        snapshot = item.to_dict()
        db.session.delete(item)
        db.session.flush()

        pending.append((KIND_WORK_ITEM, work_item_event(
            "deleted", work_item_id=work_item_id, principal=principal,
            data={"work_item": snapshot},
        )))

    event_emitter.publish_pending(pending)
    logger.info(
        "Work item deleted id=%s type=%s user=%s",
        work_item_id, snapshot["type"], principal.id,
        extra={"tenant_id": principal.tenant_id, "work_item_id": work_item_id},
    )


# ═════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════


def get_work_item_by_id(principal, work_item_id):
    """Return the work item dict, or None if missing or not readable."""
    item = load_readable_work_item(principal, work_item_id)
    return item.to_dict() if item is not None else None


def get_status_history(principal, work_item_id):
    """Status transitions for a readable work item, oldest first."""
    item = load_readable_work_item(principal, work_item_id)
    if item is None:
        raise WorkItemNotFoundError(work_item_id=work_item_id, tenant_id=principal.tenant_id)
    return [entry.to_dict() for entry in item.status_history.order_by(StatusHistory.id)]


# ═════════════════════════════════════════════════════════════════════════
# Lineage edges
# ═════════════════════════════════════════════════════════════════════════


def add_lineage_edge(principal, parent_id, child_id, relation_type=RELATION_CONTAINS):
    """Link two existing work items of the caller's tenant.

    ``contains`` edges must respect the hierarchy table and a child may
    have only one of them. Other relation types only need distinct,
    readable endpoints.

    Raises:
        ValidationError: unknown relation type.
        InvalidHierarchyError: self edge or disallowed type pair.
        ParentNotFoundError / WorkItemNotFoundError: endpoint missing or unreadable.
        InsufficientPermissionsError: caller may not manage the child's lineage.
        ConflictError: child already has a ``contains`` parent, or the pair exists.
    """
    _require_choice("relation_type", relation_type, LINEAGE_RELATION_TYPES)
    if not parent_id:
        raise ValidationError("parent_id is required", details={"parent_id": "required"})
    if parent_id == child_id:
        raise InvalidHierarchyError(["a work item cannot be linked to itself"])

    pending = []
    with db_transaction():
        child = load_readable_work_item(principal, child_id)
        if child is None:
            raise WorkItemNotFoundError(work_item_id=child_id, tenant_id=principal.tenant_id)
        parent = load_readable_work_item(principal, parent_id)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        if not policy_gateway.can_manage_lineage(principal, child):
            raise InsufficientPermissionsError("manage lineage of")

        if relation_type == RELATION_CONTAINS:
            result = lineage_validator.validate(parent.type, child.type)
            if not result.valid:
                raise InvalidHierarchyError(
                    list(result.errors), lineage_validator.allowed_children(parent.type),
                )
            _lock_work_item(principal.tenant_id, child_id)
            existing_parent = _contains_parent_id(principal.tenant_id, child_id)
            if existing_parent is not None:
                raise ConflictError("LineageEdge", "child_id", child_id)

        edge = _insert_edge(principal, parent_id, child_id, relation_type)
        created = edge.to_dict()
        pending.append((KIND_LINEAGE, lineage_event("edge_created", edge=edge, principal=principal)))

    event_emitter.publish_pending(pending)
    return created
