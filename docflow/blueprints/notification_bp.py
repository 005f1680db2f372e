"""
Docflow Routing & Escalation Engine
Notification & Scheduling Blueprint.

Provides:
    - The caller's notifications (list, unread count, mark read)
    - Scheduled job management (list, trigger, toggle)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from docflow.blueprints import current_actor_id
from docflow.services.notification import DEFAULT_LIST_LIMIT, NotificationService
from docflow.services.scheduler_service import SchedulerService
from docflow.utils.errors import E, api_error, register_error_handlers
from docflow.utils.helpers import parse_int

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  MY NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/my", methods=["GET"])
def my_notifications():
    user_id = current_actor_id()
    only_unread = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit = min(parse_int(request.args.get("limit"), DEFAULT_LIST_LIMIT), 200)
    items = NotificationService.list_for_user(user_id, only_unread=only_unread, limit=limit)
    return jsonify({
        "items": [n.to_dict() for n in items],
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/my/unread-count", methods=["GET"])
def my_unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor_id())})


@notification_bp.route("/notifications/read", methods=["POST"])
def mark_read():
    """Mark the caller's notifications read. Foreign ids are ignored."""
    data = request.get_json(silent=True) or {}
    ids = data.get("ids")
    if not isinstance(ids, list):
        return api_error(E.VALIDATION_REQUIRED, "ids must be a list")
    clean = [i for i in (parse_int(x) for x in ids) if i is not None]
    updated = NotificationService.mark_read(current_actor_id(), clean)
    return jsonify({"updated": updated})


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    updated = NotificationService.mark_all_read(current_actor_id())
    return jsonify({"updated": updated})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    return jsonify(SchedulerService.list_jobs())


@notification_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Manually trigger a scheduled job."""
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "enabled is required")
    return jsonify(SchedulerService.toggle_job(job_name, bool(data["enabled"])))
