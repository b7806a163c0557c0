"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — summary: database reachable + approval table counts
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (DB, Redis rate-limit storage)
"""

import logging
import time

import redis as redis_lib
from flask import Blueprint, current_app, jsonify

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

_APPROVAL_TABLES = (
    "approval_routes",
    "approval_templates",
    "approval_applications",
)


def _check_database() -> dict:
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        return {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        logger.error("Health check: database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}


@health_bp.route("", methods=["GET"])
def summary():
    """Database status plus row counts of the approval tables."""
    database = _check_database()
    tables = {}
    if database["status"] == "ok":
        for tbl in _APPROVAL_TABLES:
            try:
                count = db.session.execute(db.text(f"SELECT COUNT(*) FROM {tbl}")).scalar()
                tables[tbl] = {"status": "ok", "count": count}
            except Exception as exc:
                db.session.rollback()
                tables[tbl] = {"status": "error", "detail": str(exc)}
    healthy = database["status"] == "ok" and all(t["status"] == "ok" for t in tables.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "database": database,
        "tables": tables,
    }), 200 if healthy else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {"database": _check_database()}
    overall = checks["database"]["status"] == "ok"

    # Redis backs the rate limiter when configured; it is optional
    storage = current_app.config.get("RATELIMIT_STORAGE_URI", "")
    if storage.startswith("redis"):
        try:
            t0 = time.perf_counter()
            redis_lib.from_url(storage, socket_timeout=2).ping()
            redis_ms = (time.perf_counter() - t0) * 1000
            checks["redis"] = {"status": "ok", "latency_ms": round(redis_ms, 1)}
        except Exception as exc:
            checks["redis"] = {"status": "error", "detail": str(exc)}
    else:
        checks["redis"] = {"status": "skipped", "detail": "rate limiter uses in-memory storage"}

    checks["app"] = {
        "name": "Approval Workflow Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
