"""
Work-Item Lineage Service
Work-Item Blueprint — CRUD API for hierarchical work items and their lineage.

Endpoints:
    GET    /api/v1/work-items                   — List with lineage (filterable)
    POST   /api/v1/work-items                   — Create item
    GET    /api/v1/work-items/<id>              — Detail
    PUT    /api/v1/work-items/<id>              — Partial update
    PATCH  /api/v1/work-items/<id>              — Partial update
    DELETE /api/v1/work-items/<id>              — Delete leaf item
    GET    /api/v1/work-items/<id>/lineage      — Edges touching the item
    POST   /api/v1/work-items/<id>/lineage      — Link a parent to this item
    GET    /api/v1/work-items/<id>/history      — Status history

The authenticated principal is read from ``g.principal`` (set by the JWT
middleware) and passed explicitly to the service layer. Services own all
business rules, transactions and event publishing.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

from workitems.core.exceptions import WorkItemError
from workitems.services import lineage_query
from workitems.services import work_item_service as svc
from workitems.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)

work_item_bp = Blueprint("work_items", __name__, url_prefix="/api/v1")

_LIST_FILTERS = (
    "type", "status", "priority", "owner_id", "parent_id", "search", "limit", "offset",
)


# ── Error handlers ────────────────────────────────────────────────────────────


@work_item_bp.errorhandler(WorkItemError)
def _handle_work_item_error(error: WorkItemError):
    if error.http_status >= 500:
        logger.error("Work item request failed endpoint=%s error=%s", request.endpoint, error)
    return error_from_exception(error)


@work_item_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in work_item_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── helpers ──────────────────────────────────────────────────────────────────


def _json_body() -> dict | None:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _ok(data, status=200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


# ═════════════════════════════════════════════════════════════════════════════
# WORK ITEMS
# ═════════════════════════════════════════════════════════════════════════════


@work_item_bp.route("/work-items", methods=["GET"])
def list_work_items():
    """List work items with their ancestor chains.

    Query params:
        type, status, priority, owner_id, parent_id — exact filters
        search — case-insensitive match on title / description
        limit  — page size (default 50, max 200)
        offset — starting position (default 0)
    """
    filters = {k: request.args[k] for k in _LIST_FILTERS if k in request.args}
    items = lineage_query.list_work_items_with_lineage(g.principal, filters)
    return _ok(items, meta={"count": len(items), "filters": filters})


@work_item_bp.route("/work-items", methods=["POST"])
def create_work_item():
    """Create a work item. Body: {type, title, parent_id?, description?, priority?, ...}"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    item = svc.create_work_item(g.principal, data)
    return _ok(item, 201)


@work_item_bp.route("/work-items/<string:work_item_id>", methods=["GET"])
def get_work_item(work_item_id):
    item = svc.get_work_item_by_id(g.principal, work_item_id)
    if item is None:
        return api_error(E.NOT_FOUND, "Work item not found")
    return _ok(item)


@work_item_bp.route("/work-items/<string:work_item_id>", methods=["PUT", "PATCH"])
def update_work_item(work_item_id):
    """Partial update — only fields present in the body are applied."""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    item = svc.update_work_item(g.principal, work_item_id, data)
    return _ok(item)


@work_item_bp.route("/work-items/<string:work_item_id>", methods=["DELETE"])
def delete_work_item(work_item_id):
    svc.delete_work_item(g.principal, work_item_id)
    return _ok({"deleted": work_item_id})


# ═════════════════════════════════════════════════════════════════════════════
# LINEAGE & HISTORY
# ═════════════════════════════════════════════════════════════════════════════


@work_item_bp.route("/work-items/<string:work_item_id>/lineage", methods=["GET"])
def get_lineage(work_item_id):
    edges = lineage_query.get_lineage_for_work_item(g.principal, work_item_id)
    return _ok(edges)


@work_item_bp.route("/work-items/<string:work_item_id>/lineage", methods=["POST"])
def add_lineage(work_item_id):
    """Link a parent to this item. Body: {parent_id, relation_type?}"""
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    edge = svc.add_lineage_edge(
        g.principal,
        data.get("parent_id"),
        work_item_id,
        data.get("relation_type") or "contains",
    )
    return _ok(edge, 201)


@work_item_bp.route("/work-items/<string:work_item_id>/history", methods=["GET"])
def get_history(work_item_id):
    history = svc.get_status_history(g.principal, work_item_id)
    return _ok(history)
