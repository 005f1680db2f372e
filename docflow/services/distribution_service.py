"""
Docflow Routing & Escalation Engine
Distribution Service - the manual side of the distribution state machine.

Every mutation follows the same transaction shape:
    load row (404 if missing) -> validate -> mutate -> one DistributionLog
    -> one AuditTrail entry -> commit (rollback + re-raise on any error)

Automatic escalation lives in ``escalation.py`` and uses the same shape.

Lifecycle:
    Open / InProgress / Escalated -> any status   (manual, note recommended)
    Closed                        -> terminal      (re-open = new distribution)
    Reassignment keeps the status and is logged.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select

from docflow.core.exceptions import NotFoundError, ValidationError
from docflow.models import db
from docflow.models.directory import Department, User
from docflow.models.document import Document
from docflow.models.routing import (
    DISTRIBUTION_STATUSES,
    PRIORITY_MAX,
    PRIORITY_MIN,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    Distribution,
    DistributionLog,
)
from docflow.services import audit
from docflow.utils.helpers import as_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _system_user_id() -> int:
    return current_app.config.get("SYSTEM_USER_ID", 1)


def _actor(actor_id) -> int:
    """Acting user id; falls back to the reserved system actor."""
    return int(actor_id) if actor_id else _system_user_id()


def _priority_ceiling() -> int:
    return min(current_app.config.get("PRIORITY_CEILING", PRIORITY_MAX), PRIORITY_MAX)


def clamp_priority(value) -> int:
    try:
        value = int(value or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("priority must be an integer", details={"priority": value}) from exc
    return max(PRIORITY_MIN, min(_priority_ceiling(), value))


def _coerce_due_at(value) -> datetime | None:
    try:
        return parse_datetime(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"due_at": value}) from exc


def _meta(meta: dict | None) -> dict:
    meta = meta or {}
    return {"source_ip": meta.get("ip"), "workstation": meta.get("workstation")}


def get_distribution(distribution_id: int) -> Distribution:
    dist = db.session.get(Distribution, distribution_id)
    if dist is None:
        raise NotFoundError("Distribution", distribution_id)
    return dist


def _get_open_distribution(distribution_id: int) -> Distribution:
    dist = get_distribution(distribution_id)
    if dist.is_closed:
        raise ValidationError(
            "Distribution is closed",
            details={"distribution_id": distribution_id, "status": dist.status},
        )
    return dist


def _require_department(department_id) -> int:
    if not department_id:
        raise ValidationError("target_department_id is required", details={"target_department_id": "required"})
    if db.session.get(Department, department_id) is None:
        raise NotFoundError("Department", department_id)
    return int(department_id)


def _require_user(user_id) -> int:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("user_id must be an integer", details={"user_id": user_id}) from exc
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if not user.is_active:
        raise ValidationError("User is inactive", details={"user_id": user_id})
    return user_id


def _append_log(dist, *, old_status, new_status, note, actor_id, at=None) -> DistributionLog:
    entry = DistributionLog(
        distribution_id=dist.id,
        old_status=old_status,
        new_status=new_status,
        note=note,
        updated_by_user_id=actor_id,
    )
    if at is not None:
        entry.created_at = at
    db.session.add(entry)
    return entry


# ═════════════════════════════════════════════════════════════════════════════
# Create / forward
# ═════════════════════════════════════════════════════════════════════════════


def add_distribution(
    document_id: int,
    target_department_id: int,
    *,
    assigned_to_user_id: int | None = None,
    due_at=None,
    priority=0,
    note: str | None = None,
    actor_id: int | None = None,
    meta: dict | None = None,
    audit_action: str = "CREATE_DISTRIBUTION",
) -> Distribution:
    """Stage a new Open distribution in the current session. Does NOT commit.

    Used directly by intake so numbering, document and first distribution
    share one transaction.
    """
    actor = _actor(actor_id)
    dept_id = _require_department(target_department_id)
    assignee = _require_user(assigned_to_user_id) if assigned_to_user_id else None
    now = utcnow()

    dist = Distribution(
        document_id=document_id,
        target_department_id=dept_id,
        assigned_to_user_id=assignee,
        status=STATUS_OPEN,
        priority=clamp_priority(priority),
        due_at=_coerce_due_at(due_at),
        escalation_count=0,
        notes=note,
        created_at=now,
        last_update_at=now,
    )
    db.session.add(dist)
    db.session.flush()

    default_note = f"Routed to department {dept_id}"
    if assignee:
        default_note += f", assigned to user {assignee}"
    _append_log(dist, old_status=None, new_status=STATUS_OPEN, note=note or default_note, actor_id=actor)
    audit.log(
        action_type=audit_action,
        description=default_note,
        user_id=actor,
        document_id=document_id,
        **_meta(meta),
    )
    return dist


def create_distribution(
    document_id: int,
    target_department_id: int,
    *,
    assigned_to_user_id: int | None = None,
    due_at=None,
    priority=0,
    note: str | None = None,
    actor_id: int | None = None,
    meta: dict | None = None,
) -> Distribution:
    """Route a document to a department (and optionally a user). Starts Open."""
    if db.session.get(Document, document_id) is None:
        raise NotFoundError("Document", document_id)
    try:
        dist = add_distribution(
            document_id, target_department_id,
            assigned_to_user_id=assigned_to_user_id, due_at=due_at, priority=priority,
            note=note, actor_id=actor_id, meta=meta,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Distribution created for document %s", document_id,
                extra={"distribution_id": dist.id, "document_id": document_id})
    return dist


def forward_document(
    document_id: int,
    target_department_id: int,
    *,
    assigned_to_user_id: int | None = None,
    note: str | None = None,
    close_previous: bool = True,
    due_at=None,
    priority=0,
    actor_id: int | None = None,
    meta: dict | None = None,
) -> Distribution:
    """Forward a document to another department.

    With ``close_previous`` (default) the most recently updated Open or
    InProgress distribution of the document is closed first; that close is
    logged and audited on its own row.
    """
    if db.session.get(Document, document_id) is None:
        raise NotFoundError("Document", document_id)
    actor = _actor(actor_id)

    try:
        closed_id = None
        if close_previous:
            stmt = (
                select(Distribution)
                .where(
                    Distribution.document_id == document_id,
                    Distribution.status.in_((STATUS_OPEN, STATUS_IN_PROGRESS)),
                )
                .order_by(Distribution.last_update_at.desc(), Distribution.id.desc())
                .limit(1)
            )
            previous = db.session.execute(stmt).scalar_one_or_none()
            if previous is not None:
                old_status = previous.status
                previous.status = STATUS_CLOSED
                previous.last_update_at = utcnow()
                _append_log(previous, old_status=old_status, new_status=STATUS_CLOSED,
                            note="Closed on forward", actor_id=actor)
                audit.log(
                    action_type="DIST_STATUS",
                    description=f"Distribution {previous.id} closed on forward",
                    user_id=actor, document_id=document_id, **_meta(meta),
                )
                closed_id = previous.id

        dist = add_distribution(
            document_id, target_department_id,
            assigned_to_user_id=assigned_to_user_id, due_at=due_at, priority=priority,
            note=note, actor_id=actor, meta=meta, audit_action="FORWARD",
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Document %s forwarded to department %s (closed=%s)",
                document_id, target_department_id, closed_id,
                extra={"distribution_id": dist.id, "document_id": document_id})
    return dist


# ═════════════════════════════════════════════════════════════════════════════
# Manual transitions
# ═════════════════════════════════════════════════════════════════════════════


def update_distribution_status(distribution_id: int, status: str, note: str | None = None,
                               actor_id: int | None = None, meta: dict | None = None) -> Distribution:
    """Set any status on a non-closed distribution."""
    if status not in DISTRIBUTION_STATUSES:
        raise ValidationError(
            f"Invalid status: {status}",
            details={"status": sorted(DISTRIBUTION_STATUSES)},
        )
    dist = _get_open_distribution(distribution_id)
    actor = _actor(actor_id)
    old_status = dist.status

    try:
        dist.status = status
        dist.last_update_at = utcnow()
        _append_log(dist, old_status=old_status, new_status=status, note=note, actor_id=actor)
        description = f"Distribution status changed to {status}"
        if note:
            description += f": {note}"
        audit.log(action_type="DIST_STATUS", description=description,
                  user_id=actor, document_id=dist.document_id, **_meta(meta))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Distribution %s -> %s", old_status, status,
                extra={"distribution_id": dist.id, "document_id": dist.document_id})
    return dist


def assign_distribution(distribution_id: int, user_id: int, note: str | None = None,
                        actor_id: int | None = None, meta: dict | None = None) -> Distribution:
    """Reassign a distribution. The status is left unchanged."""
    dist = _get_open_distribution(distribution_id)
    assignee = _require_user(user_id)
    actor = _actor(actor_id)

    try:
        dist.assigned_to_user_id = assignee
        dist.last_update_at = utcnow()
        _append_log(dist, old_status=None, new_status=None,
                    note=note or f"Assigned to user {assignee}", actor_id=actor)
        description = f"Assigned to user {assignee}"
        if note:
            description += f": {note}"
        audit.log(action_type="ASSIGN", description=description,
                  user_id=actor, document_id=dist.document_id, **_meta(meta))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Distribution assigned to user %s", assignee,
                extra={"distribution_id": dist.id, "document_id": dist.document_id})
    return dist


def add_distribution_note(distribution_id: int, note: str, actor_id: int | None = None,
                          meta: dict | None = None) -> Distribution:
    """Append a free-text note. Allowed on closed distributions too."""
    if not note or not str(note).strip():
        raise ValidationError("note is required", details={"note": "required"})
    dist = get_distribution(distribution_id)
    actor = _actor(actor_id)

    try:
        dist.last_update_at = utcnow()
        _append_log(dist, old_status=None, new_status=None, note=note, actor_id=actor)
        audit.log(action_type="NOTE", description=note,
                  user_id=actor, document_id=dist.document_id, **_meta(meta))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return dist


_UNSET = object()


def update_distribution_sla(distribution_id: int, *, due_at=_UNSET, priority=_UNSET,
                            actor_id: int | None = None, meta: dict | None = None) -> Distribution:
    """Change ``due_at`` and/or ``priority``. Omitted fields are left alone.

    ``due_at=None`` clears the SLA.
    """
    if due_at is _UNSET and priority is _UNSET:
        raise ValidationError("Nothing to update", details={"fields": ["due_at", "priority"]})
    dist = _get_open_distribution(distribution_id)
    actor = _actor(actor_id)

    try:
        if due_at is not _UNSET:
            dist.due_at = _coerce_due_at(due_at)
        if priority is not _UNSET:
            dist.priority = clamp_priority(priority)
        dist.last_update_at = utcnow()
        due_text = as_utc(dist.due_at).isoformat() if dist.due_at else "none"
        _append_log(dist, old_status=None, new_status=None,
                    note=f"SLA updated: due_at={due_text}, priority={dist.priority}",
                    actor_id=actor)
        audit.log(action_type="UPDATE_DISTRIBUTION", description="Distribution SLA updated",
                  user_id=actor, document_id=dist.document_id, **_meta(meta))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return dist


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def list_logs(distribution_id: int) -> list[DistributionLog]:
    get_distribution(distribution_id)
    stmt = (
        select(DistributionLog)
        .where(DistributionLog.distribution_id == distribution_id)
        .order_by(DistributionLog.created_at, DistributionLog.id)
    )
    return list(db.session.execute(stmt).scalars())


def get_document_timeline(document_id: int) -> list[dict]:
    """Chronological merge of distribution log entries and audit entries."""
    if db.session.get(Document, document_id) is None:
        raise NotFoundError("Document", document_id)

    log_stmt = (
        select(DistributionLog)
        .join(Distribution, Distribution.id == DistributionLog.distribution_id)
        .where(Distribution.document_id == document_id)
    )
    events = []
    for entry in db.session.execute(log_stmt).scalars():
        events.append({
            "type": "distribution_log",
            "at": as_utc(entry.created_at),
            "id": entry.id,
            "distribution_id": entry.distribution_id,
            "old_status": entry.old_status,
            "new_status": entry.new_status,
            "note": entry.note,
            "actor_id": entry.updated_by_user_id,
        })
    for entry in audit.list_for_document(document_id):
        events.append({
            "type": "audit",
            "at": as_utc(entry.created_at),
            "id": entry.id,
            "action_type": entry.action_type,
            "description": entry.description,
            "actor_id": entry.user_id,
        })

    events.sort(key=lambda e: (e["at"], 0 if e["type"] == "distribution_log" else 1, e["id"]))
    for e in events:
        e["at"] = e["at"].isoformat()
    return events
