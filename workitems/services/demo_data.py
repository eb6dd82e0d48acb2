"""Demo data for local development.

Installs a small organisation tree for the demo tenant (the tenant of the
``demo-token`` principal). Existing demo-tenant rows are removed first, so
the command is safe to re-run.

CLI:
    flask seed-demo-data
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select

from workitems.middleware.jwt_auth import DEMO_PRINCIPAL
from workitems.models import db
from workitems.models.work_item import (
    RELATION_CONTAINS,
    LineageEdge,
    StatusHistory,
    WorkItem,
)
from workitems.services import lineage_validator

logger = logging.getLogger(__name__)

DEMO_TENANT_ID = DEMO_PRINCIPAL.tenant_id

DEMO_USERS = {
    "ceo": DEMO_PRINCIPAL.id,
    "cto": "00000000-0000-0000-0000-000000000003",
    "product_manager": "00000000-0000-0000-0000-000000000004",
    "lead_developer": "00000000-0000-0000-0000-000000000005",
    "ui_designer": "00000000-0000-0000-0000-000000000006",
    "qa_lead": "00000000-0000-0000-0000-000000000007",
}

# (key, parent_key, type, title, priority, status, created_by, owner)
DEMO_ITEMS = [
    ("revenue", None, "objective", "Q1 Revenue Growth Initiative",
     "critical", "in_progress", "ceo", "ceo"),
    ("digital", None, "objective", "Digital Transformation & Innovation",
     "high", "in_progress", "ceo", "cto"),
    ("mobile", "revenue", "strategy", "Mobile App Development Project",
     "high", "in_progress", "cto", "product_manager"),
    ("cloud", "digital", "strategy", "Cloud Infrastructure Modernization",
     "high", "planned", "cto", "lead_developer"),
    ("api_perf", "mobile", "initiative", "API Performance Optimization",
     "medium", "in_progress", "product_manager", "lead_developer"),
    ("onboarding", "mobile", "initiative", "Mobile Onboarding Experience",
     "medium", "planned", "product_manager", "ui_designer"),
    ("caching", "api_perf", "task", "Introduce response caching layer",
     "high", "in_progress", "lead_developer", "lead_developer"),
    ("wireframes", "onboarding", "task", "Design onboarding wireframes",
     "medium", "review", "ui_designer", "ui_designer"),
    ("cache_tests", "caching", "subtask", "Load-test cache invalidation",
     "medium", "draft", "lead_developer", "qa_lead"),
]


def clear_demo_data():
    """Delete every demo-tenant work item; history and edges cascade."""
    ids = db.session.execute(
        select(WorkItem.id).where(WorkItem.tenant_id == DEMO_TENANT_ID)
    ).scalars().all()
    if ids:
        db.session.execute(delete(LineageEdge).where(LineageEdge.tenant_id == DEMO_TENANT_ID))
        db.session.execute(delete(StatusHistory).where(StatusHistory.work_item_id.in_(ids)))
        db.session.execute(delete(WorkItem).where(WorkItem.tenant_id == DEMO_TENANT_ID))
    return len(ids)


def install_demo_data():
    """Replace demo-tenant data with the demo tree. Caller commits.

    Returns:
        Number of work items created.
    """
    removed = clear_demo_data()
    now = datetime.now(timezone.utc)
    created = {}

    for key, parent_key, item_type, title, priority, status, creator, owner in DEMO_ITEMS:
        if parent_key is not None:
            check = lineage_validator.validate(created[parent_key].type, item_type)
            if not check.valid:
                raise ValueError(f"Invalid demo hierarchy: {check.errors}")

        item = WorkItem(
            tenant_id=DEMO_TENANT_ID,
            type=item_type,
            title=title,
            description="",
            status=status,
            priority=priority,
            created_by=DEMO_USERS[creator],
            owner_id=DEMO_USERS[owner],
            started_at=now if status not in ("draft", "planned") else None,
            created_at=now,
            updated_at=now,
            metadata_json={"demo": True},
        )
        db.session.add(item)
        db.session.flush()
        created[key] = item

        db.session.add(StatusHistory(
            work_item_id=item.id, from_status=None, to_status="draft",
            changed_by=item.created_by,
        ))
        if status != "draft":
            db.session.add(StatusHistory(
                work_item_id=item.id, from_status="draft", to_status=status,
                changed_by=item.owner_id, reason="demo data",
            ))
        if parent_key is not None:
            db.session.add(LineageEdge(
                tenant_id=DEMO_TENANT_ID,
                parent_id=created[parent_key].id,
                child_id=item.id,
                relation_type=RELATION_CONTAINS,
                created_by=item.created_by,
            ))

    db.session.flush()
    logger.info(
        "Demo data installed: removed=%d created=%d tenant=%s",
        removed, len(created), DEMO_TENANT_ID,
    )
    return len(created)
