"""
Docflow Routing & Escalation Engine
Scheduled Jobs.

Jobs:
    - escalation_scan: advance overdue distributions one escalation level
    - sla_reminder: warn assignee + department manager shortly before due
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select

from docflow.models import db
from docflow.models.routing import STATUS_IN_PROGRESS, STATUS_OPEN, Distribution
from docflow.services import directory
from docflow.services.escalation import run_escalation_scan
from docflow.services.notification import NotificationService
from docflow.services.scheduler_service import register_job
from docflow.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

REMINDER_BATCH_SIZE = 500


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Escalation Scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job(
    "escalation_scan",
    interval_seconds=lambda app: app.config.get("ESCALATION_SCAN_INTERVAL_SECONDS", 300),
)
def escalation_scan(app) -> dict[str, Any]:
    """Escalate overdue distributions by one policy level."""
    return run_escalation_scan()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: SLA Reminder
# ═══════════════════════════════════════════════════════════════════════════

@register_job(
    "sla_reminder",
    interval_seconds=lambda app: app.config.get("ESCALATION_SCAN_INTERVAL_SECONDS", 300),
)
def sla_reminder(app, now=None) -> dict[str, Any]:
    """Remind assignee and department manager of distributions due soon."""
    now = as_utc(now) if now else utcnow()
    minutes_before = app.config.get("SLA_REMINDER_MINUTES_BEFORE", 30)
    horizon = now + timedelta(minutes=minutes_before)

    stmt = (
        select(Distribution)
        .where(
            Distribution.status.in_((STATUS_OPEN, STATUS_IN_PROGRESS)),
            Distribution.due_at.is_not(None),
            Distribution.due_at >= now,
            Distribution.due_at <= horizon,
        )
        .order_by(Distribution.due_at.asc())
        .limit(REMINDER_BATCH_SIZE)
    )
    rows = [
        (d.id, d.document_id, d.assigned_to_user_id, d.target_department_id, as_utc(d.due_at))
        for d in db.session.execute(stmt).scalars()
    ]

    results = {"due_soon": len(rows), "notifications": 0, "errors": 0}
    for dist_id, document_id, assignee_id, department_id, due_at in rows:
        recipients = [assignee_id, directory.find_active_admin_in_department(department_id)]
        try:
            created = NotificationService.notify(
                recipients,
                title="SLA reminder",
                body=f"Distribution #{dist_id} of document #{document_id} is due at {due_at.isoformat()}.",
                link=f"/documents/{document_id}",
                severity="warning",
            )
            results["notifications"] += len(created)
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("SLA reminder failed", extra={"distribution_id": dist_id})

    logger.info("SLA reminder: %s", results, extra={"job_name": "sla_reminder"})
    return results
