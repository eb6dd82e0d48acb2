"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, event bus, policy gateway)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from workitems.integrations.policy_gateway import policy_gateway
from workitems.models import db
from workitems.services.event_emitter import event_emitter

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check: always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Event bus (reported only, never fails the check) ─────────────
    checks["event_bus"] = event_emitter.health_check()

    # ── Policy evaluator configuration ───────────────────────────────
    checks["policy"] = {
        "status": "configured" if policy_gateway.base_url else "local_only",
        "failure_mode": policy_gateway.failure_mode,
    }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Work-Item Lineage Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
