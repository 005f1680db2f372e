"""
Docflow Routing & Escalation Engine
Escalation Scheduler - periodic SLA escalation of overdue distributions.

One scan:
    1. load the active policy (failure aborts the cycle; the next tick retries)
    2. select a bounded batch of overdue Open/InProgress/Escalated rows below the
       top policy level, oldest due first
    3. per row: next level = escalation_count + 1, threshold + throttle checks,
       then count/priority/status/assignee + tagged log + audit in ONE commit
    4. after that commit, notify assignee/manager/admins (best effort)

A distribution advances at most one level per scan even when several
thresholds have been crossed. Per-row failures are logged and skipped.

Throttle: every escalation log note starts with ``ESC:L<n>``. A level is not
applied while the newest ``ESC:L<next>`` entry, or the ``ESC:L<current>``
entry that put the row at its current level, is younger than that level's
``throttle_minutes``.

Single-writer: scans in one process are serialised by a lock; running
several scheduler processes needs external leader election.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from docflow.models import db
from docflow.models.escalation import EscalationLevel, EscalationPolicy
from docflow.models.routing import (
    ACTIVE_STATUSES,
    PRIORITY_MAX,
    STATUS_ESCALATED,
    Distribution,
    DistributionLog,
)
from docflow.services import audit, directory
from docflow.services.notification import NotificationService
from docflow.services.sla_policy import next_level, overdue_minutes
from docflow.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200
MARKER_PREFIX = "ESC:L"
_MARKER_RE = re.compile(r"^ESC:L(\d+)(?=\s|$)")

_scan_lock = threading.Lock()


# ═════════════════════════════════════════════════════════════════════════════
# Marker helpers
# ═════════════════════════════════════════════════════════════════════════════


def escalation_marker(level_number: int) -> str:
    return f"{MARKER_PREFIX}{level_number}"


def parse_escalation_marker(note: str | None) -> int | None:
    """``"ESC:L3 | over 40 min..." -> 3``; None for untagged notes."""
    if not note:
        return None
    m = _MARKER_RE.match(note)
    return int(m.group(1)) if m else None


def _marker_filter(level_number: int):
    # "ESC:L1" must not match "ESC:L10"
    marker = escalation_marker(level_number)
    return or_(DistributionLog.note == marker, DistributionLog.note.startswith(marker + " "))


# ═════════════════════════════════════════════════════════════════════════════
# Policy
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class LevelRule:
    """Session-independent snapshot of an EscalationLevel."""

    level_number: int
    threshold_minutes: int
    priority_bump: int
    status_on_reach: str
    throttle_minutes: int
    auto_reassign: bool
    notify_assignee: bool
    notify_manager: bool
    notify_admin: bool

    @classmethod
    def from_model(cls, lvl: EscalationLevel) -> "LevelRule":
        return cls(
            level_number=lvl.level_number,
            threshold_minutes=lvl.threshold_minutes,
            priority_bump=lvl.priority_bump or 0,
            status_on_reach=lvl.status_on_reach,
            throttle_minutes=lvl.throttle_minutes or 0,
            auto_reassign=bool(lvl.auto_reassign),
            notify_assignee=bool(lvl.notify_assignee),
            notify_manager=bool(lvl.notify_manager),
            notify_admin=bool(lvl.notify_admin),
        )


def load_active_policy() -> EscalationPolicy | None:
    stmt = (
        select(EscalationPolicy)
        .where(EscalationPolicy.is_active.is_(True))
        .options(selectinload(EscalationPolicy.levels))
        .order_by(EscalationPolicy.id)
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


DEFAULT_POLICY_NAME = "default"
DEFAULT_LEVELS = (
    # level, threshold, bump, reassign, assignee, manager, admin
    (1, 5, 1, False, True, False, False),
    (2, 15, 1, True, True, True, False),
    (3, 30, 2, True, True, True, True),
    (4, 60, 2, True, True, True, True),
)
DEFAULT_THROTTLE_MINUTES = 10


def seed_default_policy() -> EscalationPolicy:
    """Create the four-level default policy unless one with that name exists."""
    existing = db.session.execute(
        select(EscalationPolicy).where(EscalationPolicy.name == DEFAULT_POLICY_NAME)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    policy = EscalationPolicy(name=DEFAULT_POLICY_NAME, is_active=True)
    for number, threshold, bump, reassign, assignee, manager, admin in DEFAULT_LEVELS:
        policy.levels.append(EscalationLevel(
            level_number=number,
            threshold_minutes=threshold,
            priority_bump=bump,
            status_on_reach=STATUS_ESCALATED,
            throttle_minutes=DEFAULT_THROTTLE_MINUTES,
            auto_reassign=reassign,
            notify_assignee=assignee,
            notify_manager=manager,
            notify_admin=admin,
        ))
    db.session.add(policy)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Seeded default escalation policy with %d levels", len(DEFAULT_LEVELS))
    return policy


# ═════════════════════════════════════════════════════════════════════════════
# Per-distribution evaluation
# ═════════════════════════════════════════════════════════════════════════════


def _last_marker_at(distribution_id: int, level_number: int) -> datetime | None:
    stmt = (
        select(DistributionLog.created_at)
        .where(DistributionLog.distribution_id == distribution_id, _marker_filter(level_number))
        .order_by(DistributionLog.created_at.desc(), DistributionLog.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _within_throttle(distribution_id: int, rule: LevelRule | None, now: datetime) -> bool:
    if rule is None or rule.throttle_minutes <= 0:
        return False
    last = _last_marker_at(distribution_id, rule.level_number)
    if last is None:
        return False
    minutes_since = int((now - as_utc(last)).total_seconds() // 60)
    return minutes_since < rule.throttle_minutes


def _pick_reassignee(department_id: int | None) -> int | None:
    return (
        directory.find_active_admin_in_department(department_id)
        or directory.find_any_active_user_in_department(department_id)
    )


def _recipients(rule: LevelRule, assignee_id, department_id) -> list[int]:
    ids: list[int] = []
    if rule.notify_assignee and assignee_id:
        ids.append(assignee_id)
    if rule.notify_manager:
        manager = directory.find_active_admin_in_department(department_id)
        if manager:
            ids.append(manager)
    if rule.notify_admin:
        ids.extend(directory.list_active_admins())
    return list(dict.fromkeys(ids))


def _escalate_one(distribution_id: int, rules: list[LevelRule], now: datetime,
                  ceiling: int, system_user: int) -> dict | None:
    """Apply at most one level to one distribution and commit.

    Returns a summary for notification fan-out, or None when skipped.
    """
    dist = db.session.get(Distribution, distribution_id)
    if dist is None or dist.status not in ACTIVE_STATUSES or dist.due_at is None:
        return None

    current = dist.escalation_count or 0
    rule = next_level(current, rules)
    if rule is None:
        return None
    overdue = overdue_minutes(dist.due_at, now)
    if overdue < rule.threshold_minutes:
        return None
    if _within_throttle(dist.id, rule, now):
        return None
    if _within_throttle(dist.id, next_level(current - 1, rules) if current else None, now):
        return None

    old_status = dist.status
    new_priority = min(ceiling, (dist.priority or 0) + rule.priority_bump)
    new_status = rule.status_on_reach or old_status
    reassigned_to = None
    if rule.auto_reassign and not dist.assigned_to_user_id:
        reassigned_to = _pick_reassignee(dist.target_department_id)

    due_iso = as_utc(dist.due_at).isoformat()
    dist.escalation_count = current + 1
    dist.priority = new_priority
    dist.status = new_status
    if reassigned_to:
        dist.assigned_to_user_id = reassigned_to
    dist.last_update_at = now

    db.session.add(DistributionLog(
        distribution_id=dist.id,
        old_status=old_status,
        new_status=new_status,
        note=f"{escalation_marker(rule.level_number)} | over {overdue} min, due={due_iso}",
        updated_by_user_id=system_user,
        created_at=now,
    ))
    description = f"Auto-escalation L{rule.level_number} (priority -> {new_priority})"
    if reassigned_to:
        description += f", reassigned to user {reassigned_to}"
    audit.log(
        action_type="ESCALATED",
        description=description,
        user_id=system_user,
        document_id=dist.document_id,
        created_at=now,
    )
    db.session.commit()

    logger.info(
        "Escalated to L%d (overdue %d min, priority %d)", rule.level_number, overdue, new_priority,
        extra={"distribution_id": distribution_id, "escalation_level": rule.level_number},
    )
    return {
        "distribution_id": distribution_id,
        "document_id": dist.document_id,
        "department_id": dist.target_department_id,
        "assignee_id": dist.assigned_to_user_id,
        "rule": rule,
        "overdue": overdue,
        "priority": new_priority,
    }


def _notify_escalation(outcome: dict) -> int:
    rule: LevelRule = outcome["rule"]
    recipients = _recipients(rule, outcome["assignee_id"], outcome["department_id"])
    if not recipients:
        return 0
    NotificationService.notify(
        recipients,
        title=f"Escalation level L{rule.level_number}",
        body=(
            f"Distribution #{outcome['distribution_id']} of document #{outcome['document_id']} "
            f"escalated: {outcome['overdue']} min overdue, priority now {outcome['priority']}."
        ),
        link=f"/documents/{outcome['document_id']}",
        severity="danger" if rule.level_number >= 2 else "warning",
    )
    return len(recipients)


# ═════════════════════════════════════════════════════════════════════════════
# Scan
# ═════════════════════════════════════════════════════════════════════════════


def run_escalation_scan(now: datetime | None = None, batch_size: int | None = None) -> dict:
    """Run one escalation pass.

    Args:
        now: injectable clock; defaults to the current UTC time.
        batch_size: rows per pass; defaults to ESCALATION_BATCH_SIZE.

    Returns:
        ``{"processed_count", "scanned", "skipped", "errors", "notified"}``.

    Raises:
        Whatever policy loading raises: the cycle is aborted as a whole.
    """
    if not _scan_lock.acquire(blocking=False):
        logger.warning("Escalation scan already running, skipping this tick")
        return {"processed_count": 0, "scanned": 0, "skipped": 0, "errors": 0,
                "notified": 0, "busy": True}
    try:
        return _run_scan(as_utc(now) if now else utcnow(), batch_size)
    finally:
        _scan_lock.release()


def _run_scan(now: datetime, batch_size: int | None) -> dict:
    cfg = current_app.config
    batch_size = batch_size or cfg.get("ESCALATION_BATCH_SIZE", DEFAULT_BATCH_SIZE)
    ceiling = min(cfg.get("PRIORITY_CEILING", PRIORITY_MAX), PRIORITY_MAX)
    system_user = cfg.get("SYSTEM_USER_ID", 1)

    result = {"processed_count": 0, "scanned": 0, "skipped": 0, "errors": 0, "notified": 0}

    policy = load_active_policy()
    if policy is None or not policy.levels:
        logger.debug("No active escalation policy, skipping scan")
        return result
    rules = [LevelRule.from_model(lvl) for lvl in policy.levels]
    top_level = max(rule.level_number for rule in rules)

    # Rows at the top level cannot advance and must not take batch slots
    stmt = (
        select(Distribution.id)
        .where(
            Distribution.status.in_(ACTIVE_STATUSES),
            Distribution.due_at.is_not(None),
            Distribution.due_at < now,
            Distribution.escalation_count < top_level,
        )
        .order_by(Distribution.due_at.asc(), Distribution.id.asc())
        .limit(batch_size)
    )
    ids = list(db.session.execute(stmt).scalars())
    result["scanned"] = len(ids)

    for distribution_id in ids:
        try:
            outcome = _escalate_one(distribution_id, rules, now, ceiling, system_user)
        except Exception:
            db.session.rollback()
            result["errors"] += 1
            logger.exception("Escalation failed", extra={"distribution_id": distribution_id})
            continue

        if outcome is None:
            result["skipped"] += 1
            continue
        result["processed_count"] += 1

        try:
            result["notified"] += _notify_escalation(outcome)
        except Exception:
            db.session.rollback()
            logger.exception("Escalation notification failed",
                             extra={"distribution_id": distribution_id,
                                    "escalation_level": outcome["rule"].level_number})

    if result["processed_count"] or result["errors"]:
        logger.info("Escalation scan: %s", result, extra={"processed_count": result["processed_count"]})
    return result
