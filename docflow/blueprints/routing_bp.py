"""
Docflow Routing & Escalation Engine
Routing Blueprint.

Provides:
    - Correspondence intake (incoming / outgoing, numbered)
    - Routing: create distribution, forward document, document timeline
    - Distribution read side (detail + SLA badge, log)
    - Distribution commands (SetStatus / Assign / AddNote) and SLA edits
    - Escalation policy view and manual scan trigger
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from docflow.blueprints import current_actor_id, request_meta
from docflow.services import distribution_service, intake_service
from docflow.services.commands import apply_command, parse_command
from docflow.services.escalation import load_active_policy, run_escalation_scan
from docflow.services.sla_policy import compute_sla_info
from docflow.utils.errors import E, api_error, register_error_handlers
from docflow.utils.helpers import utcnow

logger = logging.getLogger(__name__)

routing_bp = Blueprint("routing_bp", __name__, url_prefix="/api/v1")
register_error_handlers(routing_bp)


def _distribution_payload(dist) -> dict:
    d = dist.to_dict()
    d["sla"] = compute_sla_info(
        dist.due_at, dist.status, dist.escalation_count, utcnow(),
        due_soon_hours=current_app.config.get("SLA_DUE_SOON_HOURS", 4),
    )
    return d


# ═══════════════════════════════════════════════════════════════════════════
#  INTAKE
# ═══════════════════════════════════════════════════════════════════════════

@routing_bp.route("/incoming", methods=["POST"])
def register_incoming():
    """Register received correspondence; opens the first distribution."""
    data = request.get_json(silent=True) or {}
    record = intake_service.register_incoming(data, current_actor_id(), meta=request_meta())
    return jsonify(record.to_dict()), 201


@routing_bp.route("/outgoing", methods=["POST"])
def register_outgoing():
    data = request.get_json(silent=True) or {}
    record = intake_service.register_outgoing(data, current_actor_id(), meta=request_meta())
    return jsonify(record.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  ROUTING
# ═══════════════════════════════════════════════════════════════════════════

@routing_bp.route("/documents/<int:document_id>/distributions", methods=["POST"])
def create_distribution(document_id):
    data = request.get_json(silent=True) or {}
    dist = distribution_service.create_distribution(
        document_id,
        data.get("target_department_id"),
        assigned_to_user_id=data.get("assigned_to_user_id"),
        due_at=data.get("due_at"),
        priority=data.get("priority", 0),
        note=data.get("note"),
        actor_id=current_actor_id(),
        meta=request_meta(),
    )
    return jsonify(_distribution_payload(dist)), 201


@routing_bp.route("/documents/<int:document_id>/forward", methods=["POST"])
def forward_document(document_id):
    """Forward to another department, closing the previous open distribution by default."""
    data = request.get_json(silent=True) or {}
    dist = distribution_service.forward_document(
        document_id,
        data.get("target_department_id"),
        assigned_to_user_id=data.get("assigned_to_user_id"),
        note=data.get("note"),
        close_previous=data.get("close_previous", True) is not False,
        due_at=data.get("due_at"),
        priority=data.get("priority", 0),
        actor_id=current_actor_id(),
        meta=request_meta(),
    )
    return jsonify(_distribution_payload(dist)), 201


@routing_bp.route("/documents/<int:document_id>/timeline", methods=["GET"])
def document_timeline(document_id):
    events = distribution_service.get_document_timeline(document_id)
    return jsonify({"document_id": document_id, "items": events, "total": len(events)})


# ═══════════════════════════════════════════════════════════════════════════
#  DISTRIBUTIONS
# ═══════════════════════════════════════════════════════════════════════════

@routing_bp.route("/distributions/<int:distribution_id>", methods=["GET"])
def get_distribution(distribution_id):
    dist = distribution_service.get_distribution(distribution_id)
    return jsonify(_distribution_payload(dist))


@routing_bp.route("/distributions/<int:distribution_id>/logs", methods=["GET"])
def distribution_logs(distribution_id):
    logs = distribution_service.list_logs(distribution_id)
    return jsonify({"items": [entry.to_dict() for entry in logs], "total": len(logs)})


@routing_bp.route("/distributions/<int:distribution_id>/commands", methods=["POST"])
def distribution_command(distribution_id):
    """Apply a SetStatus / Assign / AddNote command."""
    command = parse_command(request.get_json(silent=True))
    dist = apply_command(distribution_id, command, actor_id=current_actor_id(), meta=request_meta())
    return jsonify(_distribution_payload(dist))


@routing_bp.route("/distributions/<int:distribution_id>/sla", methods=["PATCH"])
def update_distribution_sla(distribution_id):
    data = request.get_json(silent=True) or {}
    fields = {k: data[k] for k in ("due_at", "priority") if k in data}
    if not fields:
        return api_error(E.VALIDATION_REQUIRED, "due_at or priority is required")
    dist = distribution_service.update_distribution_sla(
        distribution_id, actor_id=current_actor_id(), meta=request_meta(), **fields,
    )
    return jsonify(_distribution_payload(dist))


# ═══════════════════════════════════════════════════════════════════════════
#  ESCALATION
# ═══════════════════════════════════════════════════════════════════════════

@routing_bp.route("/escalation/policy", methods=["GET"])
def escalation_policy():
    policy = load_active_policy()
    if policy is None:
        return api_error(E.NOT_FOUND, "No active escalation policy")
    return jsonify(policy.to_dict())


@routing_bp.route("/escalation/scan", methods=["POST"])
def trigger_escalation_scan():
    """Run one escalation pass now (ops/debug)."""
    result = run_escalation_scan()
    logger.info("Manual escalation scan triggered", extra={"processed_count": result["processed_count"]})
    return jsonify(result)
