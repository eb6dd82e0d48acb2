"""create_work_item_lineage_tables

Create work_items, lineage_edges, status_history and the cascade-linked
work_item_attachments, work_item_comments and dependency_edges tables.

Revision ID: a1f0c3d2e4b5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1f0c3d2e4b5"
down_revision = None
branch_labels = None
depends_on = None


def _work_item_fk(column):
    return sa.ForeignKeyConstraint([column], ["work_items.id"], ondelete="CASCADE")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "work_items" not in existing_tables:
        op.create_table(
            "work_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_items_tenant_id", "work_items", ["tenant_id"])
        op.create_index("ix_work_items_tenant_type", "work_items", ["tenant_id", "type"])
        op.create_index("ix_work_items_tenant_status", "work_items", ["tenant_id", "status"])
        op.create_index("ix_work_items_tenant_owner", "work_items", ["tenant_id", "owner_id"])

    if "lineage_edges" not in existing_tables:
        op.create_table(
            "lineage_edges",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("parent_id", sa.String(length=36), nullable=False),
            sa.Column("child_id", sa.String(length=36), nullable=False),
            sa.Column("relation_type", sa.String(length=20), nullable=False, server_default="contains"),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            _work_item_fk("parent_id"),
            _work_item_fk("child_id"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("parent_id", "child_id", name="uq_lineage_edges_parent_child"),
            sa.CheckConstraint("parent_id <> child_id", name="ck_lineage_edges_no_self"),
        )
        op.create_index("ix_lineage_edges_tenant_id", "lineage_edges", ["tenant_id"])
        op.create_index("ix_lineage_edges_tenant_parent", "lineage_edges", ["tenant_id", "parent_id"])
        op.create_index("ix_lineage_edges_tenant_child", "lineage_edges", ["tenant_id", "child_id"])
        op.create_index(
            "uq_lineage_edges_contains_child", "lineage_edges", ["child_id"], unique=True,
            sqlite_where=sa.text("relation_type = 'contains'"),
            postgresql_where=sa.text("relation_type = 'contains'"),
        )

    if "status_history" not in existing_tables:
        op.create_table(
            "status_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.String(length=36), nullable=False),
            sa.Column("from_status", sa.String(length=20), nullable=True),
            sa.Column("to_status", sa.String(length=20), nullable=False),
            sa.Column("changed_by", sa.String(length=36), nullable=False),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            _work_item_fk("work_item_id"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_status_history_work_item_id", "status_history", ["work_item_id"])

    if "work_item_attachments" not in existing_tables:
        op.create_table(
            "work_item_attachments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("work_item_id", sa.String(length=36), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("url", sa.String(length=1000), nullable=False),
            sa.Column("uploaded_by", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            _work_item_fk("work_item_id"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_item_attachments_tenant_id", "work_item_attachments", ["tenant_id"])
        op.create_index("ix_work_item_attachments_work_item_id", "work_item_attachments", ["work_item_id"])

    if "work_item_comments" not in existing_tables:
        op.create_table(
            "work_item_comments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("work_item_id", sa.String(length=36), nullable=False),
            sa.Column("author_id", sa.String(length=36), nullable=False),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            _work_item_fk("work_item_id"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_item_comments_tenant_id", "work_item_comments", ["tenant_id"])
        op.create_index("ix_work_item_comments_work_item_id", "work_item_comments", ["work_item_id"])

    if "dependency_edges" not in existing_tables:
        op.create_table(
            "dependency_edges",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("work_item_id", sa.String(length=36), nullable=False),
            sa.Column("depends_on_id", sa.String(length=36), nullable=False),
            sa.Column("dependency_type", sa.String(length=30), nullable=False, server_default="blocks"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            _work_item_fk("work_item_id"),
            _work_item_fk("depends_on_id"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("work_item_id", "depends_on_id", name="uq_dependency_edges_pair"),
        )
        op.create_index("ix_dependency_edges_tenant_id", "dependency_edges", ["tenant_id"])
        op.create_index("ix_dependency_edges_work_item_id", "dependency_edges", ["work_item_id"])
        op.create_index("ix_dependency_edges_depends_on_id", "dependency_edges", ["depends_on_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "dependency_edges",
        "work_item_comments",
        "work_item_attachments",
        "status_history",
        "lineage_edges",
        "work_items",
    ):
        if table in existing_tables:
            op.drop_table(table)
