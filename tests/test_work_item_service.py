"""Tests for workitems.services.work_item_service — the lifecycle engine.

No evaluator is configured in testing, so authorization follows the
fallback role table:
    read            Contributor and above (or owner)
    create/update   Manager and above (update: or owner)
    manage_lineage  Manager and above
    delete          Director and above

Each test creates its own data; the autouse `session` fixture recreates
tables afterwards and `events` records every published message.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from workitems.core.exceptions import (
    CannotDeleteParentError,
    ConflictError,
    InsufficientPermissionsError,
    InvalidHierarchyError,
    LineageRequiredError,
    ParentNotFoundError,
    UpstreamUnavailableError,
    ValidationError,
    WorkItemNotFoundError,
)
from workitems.models import db
from workitems.models.work_item import LineageEdge, StatusHistory, WorkItem
from workitems.services import work_item_service as svc
from workitems.services.event_emitter import event_emitter


def _count(model):
    return db.session.execute(select(func.count()).select_from(model)).scalar_one()


def _objective(principal, title="Grow revenue"):
    return svc.create_work_item(principal, {"type": "objective", "title": title})


def _chain(principal):
    """objective → strategy → initiative → task; returns dicts top-down."""
    objective = _objective(principal)
    strategy = svc.create_work_item(
        principal, {"type": "strategy", "title": "Mobile first", "parent_id": objective["id"]},
    )
    initiative = svc.create_work_item(
        principal, {"type": "initiative", "title": "New app", "parent_id": strategy["id"]},
    )
    task = svc.create_work_item(
        principal, {"type": "task", "title": "Build login", "parent_id": initiative["id"]},
    )
    return objective, strategy, initiative, task


# ═════════════════════════════════════════════════════════════════════════
# create_work_item
# ═════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_objective_created_in_draft_with_initial_history(self, manager, events):
        item = svc.create_work_item(manager, {
            "type": "objective",
            "title": "  Grow revenue  ",
            "priority": "high",
            "due_at": "2030-01-31",
            "metadata": {"quarter": "Q1"},
        })

        assert item["status"] == "draft"
        assert item["title"] == "Grow revenue"
        assert item["priority"] == "high"
        assert item["tenant_id"] == manager.tenant_id
        assert item["created_by"] == manager.id
        assert item["owner_id"] == manager.id
        assert item["due_at"].startswith("2030-01-31")
        assert item["metadata"] == {"quarter": "Q1"}
        assert item["started_at"] is None
        assert item["completed_at"] is None

        history = svc.get_status_history(manager, item["id"])
        assert len(history) == 1
        assert history[0]["from_status"] is None
        assert history[0]["to_status"] == "draft"
        assert history[0]["changed_by"] == manager.id

        created = events.messages("work_item.created")
        assert len(created) == 1
        assert created[0]["work_item_id"] == item["id"]
        assert created[0]["tenant_id"] == manager.tenant_id
        assert created[0]["user_id"] == manager.id
        assert created[0]["data"]["parent_id"] is None
        assert created[0]["data"]["work_item"]["title"] == "Grow revenue"

    def test_defaults(self, manager):
        item = _objective(manager)
        assert item["priority"] == "medium"
        assert item["description"] == ""
        assert item["metadata"] == {}

    def test_child_creates_contains_edge_and_two_events(self, manager, events):
        objective = _objective(manager)
        events.clear()

        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "Mobile", "parent_id": objective["id"]},
        )

        edges = db.session.execute(select(LineageEdge)).scalars().all()
        assert len(edges) == 1
        assert edges[0].parent_id == objective["id"]
        assert edges[0].child_id == strategy["id"]
        assert edges[0].relation_type == "contains"

        keys = [p["routing_key"] for p in events.published]
        assert keys == ["lineage.edge_created", "work_item.created"]
        assert events.published[0]["exchange"] == "lineage"
        assert events.published[1]["exchange"] == "work_items"
        assert events.published[1]["message"]["data"]["parent_id"] == objective["id"]

    def test_full_chain(self, manager):
        objective, strategy, initiative, task = _chain(manager)
        subtask = svc.create_work_item(
            manager, {"type": "subtask", "title": "Write tests", "parent_id": task["id"]},
        )
        assert subtask["type"] == "subtask"
        assert _count(LineageEdge) == 4

    def test_non_objective_without_parent_requires_executive(self, manager, events):
        with pytest.raises(LineageRequiredError) as exc_info:
            svc.create_work_item(manager, {"type": "task", "title": "Orphan"})

        assert "require a parent" in exc_info.value.reason
        assert _count(WorkItem) == 0
        assert not events.published

    def test_executive_may_create_parentless_task(self, ceo):
        item = svc.create_work_item(ceo, {"type": "task", "title": "CEO task"})
        assert item["type"] == "task"
        assert _count(LineageEdge) == 0

    def test_contributor_cannot_create(self, contributor):
        with pytest.raises(LineageRequiredError) as exc_info:
            svc.create_work_item(contributor, {"type": "objective", "title": "Nope"})
        assert exc_info.value.reason == "Denied by fallback authorization"
        assert exc_info.value.details == {"policy_id": "fallback_authorization"}

    def test_invalid_hierarchy_rejected_without_writes(self, manager, events):
        objective = _objective(manager)
        events.clear()

        with pytest.raises(InvalidHierarchyError) as exc_info:
            svc.create_work_item(
                manager, {"type": "task", "title": "Skip", "parent_id": objective["id"]},
            )

        assert exc_info.value.errors == ["objective cannot contain task"]
        assert exc_info.value.details["allowed_children"] == ["strategy"]
        assert _count(WorkItem) == 1
        assert _count(LineageEdge) == 0
        assert not events.published

    def test_strategy_under_task_is_invalid(self, ceo, manager):
        task = svc.create_work_item(ceo, {"type": "task", "title": "Loose task"})
        with pytest.raises(InvalidHierarchyError) as exc_info:
            svc.create_work_item(
                manager, {"type": "strategy", "title": "S", "parent_id": task["id"]},
            )
        assert exc_info.value.errors == ["task cannot contain strategy"]

    def test_missing_parent(self, manager):
        with pytest.raises(ParentNotFoundError):
            svc.create_work_item(
                manager, {"type": "strategy", "title": "S", "parent_id": "does-not-exist"},
            )

    def test_parent_in_other_tenant_is_not_found(self, manager, outsider):
        foreign = _objective(outsider)
        with pytest.raises(ParentNotFoundError):
            svc.create_work_item(
                manager, {"type": "strategy", "title": "S", "parent_id": foreign["id"]},
            )
        assert _count(LineageEdge) == 0

    @pytest.mark.parametrize("data,field", [
        ({"title": "No type"}, "type"),
        ({"type": "epic", "title": "Bad type"}, "type"),
        ({"type": "objective"}, "title"),
        ({"type": "objective", "title": "   "}, "title"),
        ({"type": "objective", "title": "T", "priority": "urgent"}, "priority"),
        ({"type": "objective", "title": "T", "due_at": "next tuesday"}, "due_at"),
        ({"type": "objective", "title": "T", "metadata": ["a"]}, "metadata"),
        ({"type": "objective", "title": "T", "description": {"a": 1}}, "description"),
        ({"type": "objective", "title": "T", "owner_id": 42}, "owner_id"),
        ({"type": "objective", "title": "T", "owner_id": "   "}, "owner_id"),
    ])
    def test_boundary_validation(self, manager, data, field):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_work_item(manager, data)
        assert field in exc_info.value.details
        assert _count(WorkItem) == 0

    def test_failure_after_insert_rolls_back_everything(self, manager, events):
        objective = _objective(manager)
        events.clear()

        with patch.object(svc, "_record_status_change", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                svc.create_work_item(
                    manager, {"type": "strategy", "title": "S", "parent_id": objective["id"]},
                )

        assert _count(WorkItem) == 1
        assert _count(LineageEdge) == 0
        assert not events.published

    def test_store_outage_maps_to_upstream_unavailable(self, manager, events):
        outage = OperationalError("INSERT INTO work_items", {}, Exception("database is gone"))

        with patch.object(db.session, "commit", side_effect=outage):
            with pytest.raises(UpstreamUnavailableError) as exc_info:
                svc.create_work_item(manager, {"type": "objective", "title": "Lost"})

        assert exc_info.value.upstream == "store"
        assert "database is gone" in exc_info.value.detail
        assert _count(WorkItem) == 0
        assert _count(StatusHistory) == 0
        assert not events.published

    def test_publish_failure_does_not_undo_create(self, manager):
        with patch.object(event_emitter.backend, "publish", side_effect=RuntimeError("bus down")):
            item = _objective(manager)

        assert svc.get_work_item_by_id(manager, item["id"]) is not None


# ═════════════════════════════════════════════════════════════════════════
# update_work_item
# ═════════════════════════════════════════════════════════════════════════


class TestUpdate:
    def test_status_change_records_history_and_stamps(self, manager, events):
        item = _objective(manager)
        events.clear()

        updated = svc.update_work_item(
            manager, item["id"], {"status": "in_progress", "reason": "kickoff"},
        )

        assert updated["status"] == "in_progress"
        assert updated["started_at"] is not None
        assert updated["completed_at"] is None

        history = svc.get_status_history(manager, item["id"])
        assert [(h["from_status"], h["to_status"]) for h in history] == [
            (None, "draft"), ("draft", "in_progress"),
        ]
        assert history[-1]["reason"] == "kickoff"

        message = events.messages("work_item.updated")[0]
        assert message["data"]["before"]["status"] == "draft"
        assert message["data"]["after"]["status"] == "in_progress"
        assert message["data"]["changes"] == {"status": "in_progress"}

    def test_stamps_are_set_once(self, manager):
        item = _objective(manager)
        first = svc.update_work_item(manager, item["id"], {"status": "in_progress"})
        done = svc.update_work_item(manager, item["id"], {"status": "completed"})
        assert done["completed_at"] is not None
        assert done["started_at"] == first["started_at"]

        reopened = svc.update_work_item(manager, item["id"], {"status": "in_progress"})
        again = svc.update_work_item(manager, item["id"], {"status": "completed"})
        assert reopened["started_at"] == first["started_at"]
        assert again["completed_at"] == done["completed_at"]

    def test_field_update_without_status_adds_no_history(self, manager):
        item = _objective(manager)

        updated = svc.update_work_item(manager, item["id"], {
            "title": "Renamed", "priority": "low", "description": "More words",
        })

        assert updated["title"] == "Renamed"
        assert updated["priority"] == "low"
        assert updated["description"] == "More words"
        assert len(svc.get_status_history(manager, item["id"])) == 1

    def test_unknown_keys_are_ignored(self, manager):
        item = _objective(manager)
        updated = svc.update_work_item(manager, item["id"], {
            "tenant_id": "hijack", "created_by": "someone", "title": "Still mine",
        })
        assert updated["tenant_id"] == manager.tenant_id
        assert updated["created_by"] == manager.id
        assert updated["title"] == "Still mine"

    def test_empty_update_is_a_no_op(self, manager, events):
        item = _objective(manager)
        events.clear()

        result = svc.update_work_item(manager, item["id"], {})

        assert result["id"] == item["id"]
        assert result["updated_at"] == item["updated_at"]
        assert result["status"] == "draft"
        assert not events.published
        assert len(svc.get_status_history(manager, item["id"])) == 1

    def test_event_carries_requested_changes(self, manager, events):
        item = _objective(manager)
        events.clear()

        svc.update_work_item(manager, item["id"], {"title": "  Spaced  ", "metadata": None})

        message = events.messages("work_item.updated")[0]
        assert message["data"]["changes"] == {"title": "  Spaced  ", "metadata": None}
        assert message["data"]["after"]["title"] == "Spaced"
        assert message["data"]["after"]["metadata"] == {}

    @pytest.mark.parametrize("data,field", [
        ({"description": ["not", "text"]}, "description"),
        ({"owner_id": ""}, "owner_id"),
        ({"owner_id": {"id": "x"}}, "owner_id"),
    ])
    def test_non_string_fields_rejected(self, manager, data, field):
        item = _objective(manager)
        with pytest.raises(ValidationError) as exc_info:
            svc.update_work_item(manager, item["id"], data)
        assert field in exc_info.value.details

    def test_description_can_be_cleared(self, manager):
        item = svc.create_work_item(
            manager, {"type": "objective", "title": "T", "description": "Words"},
        )
        updated = svc.update_work_item(manager, item["id"], {"description": None})
        assert updated["description"] == ""

    def test_invalid_status_rejected(self, manager):
        item = _objective(manager)
        with pytest.raises(ValidationError):
            svc.update_work_item(manager, item["id"], {"status": "done"})

    def test_missing_item(self, manager):
        with pytest.raises(WorkItemNotFoundError):
            svc.update_work_item(manager, "missing", {"title": "x"})

    def test_other_tenant_item_is_not_found(self, manager, outsider):
        item = _objective(manager)
        with pytest.raises(WorkItemNotFoundError):
            svc.update_work_item(outsider, item["id"], {"title": "x"})

    def test_contributor_cannot_update_foreign_item(self, manager, contributor):
        item = _objective(manager)
        with pytest.raises(InsufficientPermissionsError):
            svc.update_work_item(contributor, item["id"], {"title": "x"})

    def test_owner_may_update(self, manager, contributor):
        item = svc.create_work_item(manager, {
            "type": "objective", "title": "Delegated", "owner_id": contributor.id,
        })
        updated = svc.update_work_item(contributor, item["id"], {"status": "planned"})
        assert updated["status"] == "planned"


# ═════════════════════════════════════════════════════════════════════════
# delete_work_item
# ═════════════════════════════════════════════════════════════════════════


class TestDelete:
    def test_delete_leaf_cascades_and_emits(self, manager, director, events):
        objective = _objective(manager)
        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "S", "parent_id": objective["id"]},
        )
        svc.update_work_item(manager, strategy["id"], {"status": "planned"})
        events.clear()

        svc.delete_work_item(director, strategy["id"])

        assert svc.get_work_item_by_id(director, strategy["id"]) is None
        assert _count(LineageEdge) == 0
        remaining = db.session.execute(
            select(func.count()).select_from(StatusHistory)
            .where(StatusHistory.work_item_id == strategy["id"])
        ).scalar_one()
        assert remaining == 0

        deleted = events.messages("work_item.deleted")
        assert len(deleted) == 1
        assert deleted[0]["data"]["work_item"]["id"] == strategy["id"]

    def test_parent_with_children_cannot_be_deleted(self, manager, director):
        objective = _objective(manager)
        svc.create_work_item(manager, {"type": "strategy", "title": "A", "parent_id": objective["id"]})
        svc.create_work_item(manager, {"type": "strategy", "title": "B", "parent_id": objective["id"]})

        with pytest.raises(CannotDeleteParentError) as exc_info:
            svc.delete_work_item(director, objective["id"])

        assert exc_info.value.child_count == 2
        assert exc_info.value.details == {"child_count": 2}
        assert svc.get_work_item_by_id(director, objective["id"]) is not None

    def test_manager_cannot_delete(self, manager):
        item = _objective(manager)
        with pytest.raises(InsufficientPermissionsError):
            svc.delete_work_item(manager, item["id"])

    def test_missing_item(self, director):
        with pytest.raises(WorkItemNotFoundError):
            svc.delete_work_item(director, "missing")


# ═════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════


class TestRead:
    def test_get_by_id(self, manager, contributor):
        item = _objective(manager)
        assert svc.get_work_item_by_id(contributor, item["id"])["title"] == "Grow revenue"

    def test_get_by_id_hides_other_tenants(self, manager, outsider):
        item = _objective(manager)
        assert svc.get_work_item_by_id(outsider, item["id"]) is None

    def test_get_by_id_hides_unreadable(self, manager, principal_factory):
        item = _objective(manager)
        nobody = principal_factory("u-nobody")
        assert svc.get_work_item_by_id(nobody, item["id"]) is None

    def test_history_of_missing_item_raises(self, manager):
        with pytest.raises(WorkItemNotFoundError):
            svc.get_status_history(manager, "missing")


# ═════════════════════════════════════════════════════════════════════════
# add_lineage_edge
# ═════════════════════════════════════════════════════════════════════════


class TestAddLineageEdge:
    def test_attach_orphan_to_parent(self, ceo, manager, events):
        objective = _objective(manager)
        orphan = svc.create_work_item(ceo, {"type": "strategy", "title": "Orphan"})
        events.clear()

        edge = svc.add_lineage_edge(manager, objective["id"], orphan["id"])

        assert edge["parent_id"] == objective["id"]
        assert edge["child_id"] == orphan["id"]
        assert edge["relation_type"] == "contains"
        message = events.messages("lineage.edge_created")[0]
        assert message["lineage_id"] == edge["id"]
        assert message["relation_type"] == "contains"

    def test_supports_edge_between_objectives(self, manager):
        first = _objective(manager, "First")
        second = _objective(manager, "Second")

        edge = svc.add_lineage_edge(manager, first["id"], second["id"], "supports")

        assert edge["relation_type"] == "supports"

    def test_second_contains_parent_conflicts(self, manager):
        first = _objective(manager, "First")
        second = _objective(manager, "Second")
        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "S", "parent_id": first["id"]},
        )

        with pytest.raises(ConflictError):
            svc.add_lineage_edge(manager, second["id"], strategy["id"])
        assert _count(LineageEdge) == 1

    def test_second_contains_parent_rejected_by_store(self, manager):
        """The unique index holds even when the parent lookup misses a concurrent insert."""
        first = _objective(manager, "First")
        second = _objective(manager, "Second")
        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "S", "parent_id": first["id"]},
        )

        with patch.object(svc, "_contains_parent_id", return_value=None):
            with pytest.raises(ConflictError):
                svc.add_lineage_edge(manager, second["id"], strategy["id"])

        assert _count(LineageEdge) == 1
        assert svc.get_work_item_by_id(manager, strategy["id"]) is not None

    def test_second_parent_allowed_for_other_relations(self, manager):
        first = _objective(manager, "First")
        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "S", "parent_id": first["id"]},
        )
        other = svc.create_work_item(
            manager, {"type": "objective", "title": "Other"},
        )

        svc.add_lineage_edge(manager, other["id"], strategy["id"], "derived_from")

        assert _count(LineageEdge) == 2

    def test_duplicate_pair_conflicts(self, manager):
        objective = _objective(manager)
        strategy = svc.create_work_item(
            manager, {"type": "strategy", "title": "S", "parent_id": objective["id"]},
        )

        with pytest.raises(ConflictError):
            svc.add_lineage_edge(manager, objective["id"], strategy["id"], "supports")
        assert _count(LineageEdge) == 1

    def test_self_edge_rejected(self, manager):
        item = _objective(manager)
        with pytest.raises(InvalidHierarchyError):
            svc.add_lineage_edge(manager, item["id"], item["id"], "supports")

    def test_contains_respects_hierarchy(self, ceo, manager):
        objective = _objective(manager)
        task = svc.create_work_item(ceo, {"type": "task", "title": "Loose task"})
        with pytest.raises(InvalidHierarchyError) as exc_info:
            svc.add_lineage_edge(manager, objective["id"], task["id"])
        assert exc_info.value.allowed_children == ("strategy",)

    def test_unknown_relation_type(self, manager):
        first = _objective(manager, "First")
        second = _objective(manager, "Second")
        with pytest.raises(ValidationError):
            svc.add_lineage_edge(manager, first["id"], second["id"], "blocks")

    def test_parent_id_required(self, manager):
        item = _objective(manager)
        with pytest.raises(ValidationError):
            svc.add_lineage_edge(manager, None, item["id"])

    def test_missing_endpoints(self, manager):
        item = _objective(manager)
        with pytest.raises(WorkItemNotFoundError):
            svc.add_lineage_edge(manager, item["id"], "missing-child", "supports")
        with pytest.raises(ParentNotFoundError):
            svc.add_lineage_edge(manager, "missing-parent", item["id"], "supports")

    def test_contributor_cannot_manage_lineage(self, manager, contributor):
        first = _objective(manager, "First")
        second = _objective(manager, "Second")
        with pytest.raises(InsufficientPermissionsError):
            svc.add_lineage_edge(contributor, first["id"], second["id"], "supports")
