"""
Work-Item Lineage Service
Work-item domain models.

Hierarchy:  Objective → Strategy → Initiative → Task → Subtask

Models:
    - WorkItem:             tenant-scoped unit of work at one hierarchy level.
    - LineageEdge:          directed parent → child relation between work items.
    - StatusHistory:        append-only log of status transitions.
    - WorkItemAttachment:   file reference hanging off a work item.
    - WorkItemComment:      discussion entry on a work item.
    - DependencyEdge:       "work item depends on work item" link.

Attachments, comments and dependency edges are not used by the lifecycle
engine; they exist so that deleting a work item cascades through them.
"""

import uuid
from datetime import datetime, timezone

from workitems.models import db
from workitems.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ITEM_TYPES = ("objective", "strategy", "initiative", "task", "subtask")

WORK_ITEM_STATUSES = (
    "draft", "planned", "in_progress", "blocked",
    "review", "completed", "cancelled",
)

WORK_ITEM_PRIORITIES = ("critical", "high", "medium", "low")

RELATION_CONTAINS = "contains"
LINEAGE_RELATION_TYPES = (RELATION_CONTAINS, "supports", "derived_from")

STATUS_DRAFT = "draft"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"

DEFAULT_PRIORITY = "medium"


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    if value is None:
        return None
    # SQLite drops the offset on round-trip; stored values are always UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkItem
# ═════════════════════════════════════════════════════════════════════════════

class WorkItem(TenantModel):
    """
    A unit of work at one level of the organisational hierarchy.

    Created in ``draft``. Status moves are unrestricted but every move is
    appended to StatusHistory. ``started_at`` and ``completed_at`` are
    one-shot stamps set by the lifecycle engine.
    """

    __tablename__ = "work_items"
    __table_args__ = (
        db.Index("ix_work_items_tenant_type", "tenant_id", "type"),
        db.Index("ix_work_items_tenant_status", "tenant_id", "status"),
        db.Index("ix_work_items_tenant_owner", "tenant_id", "owner_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    type = db.Column(
        db.String(20), nullable=False,
        comment="objective | strategy | initiative | task | subtask",
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_DRAFT,
        comment="draft | planned | in_progress | blocked | review | completed | cancelled",
    )
    priority = db.Column(
        db.String(20), nullable=False, default=DEFAULT_PRIORITY,
        comment="critical | high | medium | low",
    )
    created_by = db.Column(db.String(36), nullable=False)
    owner_id = db.Column(db.String(36), nullable=False)

    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    # "metadata" is reserved on declarative classes
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    # ── Cascades (ORM-side, mirrored by ON DELETE CASCADE in the schema)
    status_history = db.relationship(
        "StatusHistory", backref="work_item", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StatusHistory.id",
    )
    parent_edges = db.relationship(
        "LineageEdge", foreign_keys="LineageEdge.child_id", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    attachments = db.relationship(
        "WorkItemAttachment", backref="work_item", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "WorkItemComment", backref="work_item", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    dependencies = db.relationship(
        "DependencyEdge", foreign_keys="DependencyEdge.work_item_id", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    dependents = db.relationship(
        "DependencyEdge", foreign_keys="DependencyEdge.depends_on_id", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "title": self.title,
            "description": self.description or "",
            "status": self.status,
            "priority": self.priority,
            "created_by": self.created_by,
            "owner_id": self.owner_id,
            "due_at": _iso(self.due_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "metadata": self.metadata_json or {},
        }

    def __repr__(self):
        return f"<WorkItem {self.id}: {self.type} '{self.title}' ({self.status})>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. LineageEdge
# ═════════════════════════════════════════════════════════════════════════════

class LineageEdge(TenantModel):
    """
    Directed parent → child relation.

    ``contains`` edges form a forest: at most one ``contains`` parent per
    child, enforced by the partial unique index below as well as by the
    lifecycle engine. Pairs are unique and self edges are rejected.
    """

    __tablename__ = "lineage_edges"
    __table_args__ = (
        db.UniqueConstraint("parent_id", "child_id", name="uq_lineage_edges_parent_child"),
        db.CheckConstraint("parent_id <> child_id", name="ck_lineage_edges_no_self"),
        db.Index("ix_lineage_edges_tenant_parent", "tenant_id", "parent_id"),
        db.Index("ix_lineage_edges_tenant_child", "tenant_id", "child_id"),
        db.Index(
            "uq_lineage_edges_contains_child", "child_id", unique=True,
            sqlite_where=db.text("relation_type = 'contains'"),
            postgresql_where=db.text("relation_type = 'contains'"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    parent_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    child_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    relation_type = db.Column(
        db.String(20), nullable=False, default=RELATION_CONTAINS,
        comment="contains | supports | derived_from",
    )
    created_by = db.Column(db.String(36), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "parent_id": self.parent_id,
            "child_id": self.child_id,
            "relation_type": self.relation_type,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<LineageEdge {self.parent_id} -{self.relation_type}-> {self.child_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. StatusHistory
# ═════════════════════════════════════════════════════════════════════════════

class StatusHistory(db.Model):
    """
    Append-only trail of status transitions.

    Rows are never updated. They disappear only through the cascade when
    their work item is deleted.
    """

    __tablename__ = "status_history"

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(36), nullable=False)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    reason = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "changed_at": _iso(self.changed_at),
            "reason": self.reason,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 4. Cascade-linked tables
# ═════════════════════════════════════════════════════════════════════════════

class WorkItemAttachment(TenantModel):
    __tablename__ = "work_item_attachments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    work_item_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(1000), nullable=False)
    uploaded_by = db.Column(db.String(36), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)


class WorkItemComment(TenantModel):
    __tablename__ = "work_item_comments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    work_item_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    author_id = db.Column(db.String(36), nullable=False)
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)


class DependencyEdge(TenantModel):
    __tablename__ = "dependency_edges"
    __table_args__ = (
        db.UniqueConstraint("work_item_id", "depends_on_id", name="uq_dependency_edges_pair"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    work_item_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_id = db.Column(
        db.String(36), db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    dependency_type = db.Column(
        db.String(30), nullable=False, default="blocks",
        comment="blocks | relates_to",
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
