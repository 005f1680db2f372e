"""
Health probes.

    GET /api/v1/health/ready   process is up (load balancer)
    GET /api/v1/health/live    dependency report; 503 when the database is down
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from docflow.models import db
from docflow.services import realtime
from docflow.services.escalation import load_active_policy
from docflow.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _policy_check() -> dict:
    policy = load_active_policy()
    if policy is None:
        return {"status": "missing"}
    return {"status": "ok", "name": policy.name, "levels": len(policy.levels)}


def _realtime_check() -> dict:
    transport = realtime.get_transport()
    if isinstance(transport, realtime.InMemoryTransport):
        return {"status": "skipped", "detail": "in-memory transport"}
    return {"status": "ok"} if transport.ping() else {"status": "error", "detail": "redis unreachable"}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check()}
    db_ok = checks["database"]["status"] == "ok"
    if db_ok:
        checks["escalation_policy"] = _policy_check()
    checks["realtime"] = _realtime_check()
    checks["scheduler"] = {
        "enabled": bool(current_app.config.get("SCHEDULER_ENABLED")),
        "running": SchedulerService.is_running(),
    }
    return jsonify({"status": "healthy" if db_ok else "degraded", "checks": checks}), 200 if db_ok else 503
