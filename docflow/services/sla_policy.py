"""
SLA Policy - pure functions, no session access.

    overdue_minutes(due_at, now)          whole minutes past due, never negative
    target_level(due_at, now, levels)     highest level whose threshold is reached
    next_level(current, levels)           the only level a scan may apply
    compute_sla_info(...)                 NoSla / OnTrack / DueSoon / Overdue badge

The scanner never applies ``target_level`` directly: it advances one step
(``current + 1``) per pass even when more thresholds have been crossed.
"""

from __future__ import annotations

import math
from datetime import datetime

from docflow.models.routing import STATUS_CLOSED
from docflow.utils.helpers import as_utc

SLA_NO_SLA = "NoSla"
SLA_ON_TRACK = "OnTrack"
SLA_DUE_SOON = "DueSoon"
SLA_OVERDUE = "Overdue"

DEFAULT_DUE_SOON_HOURS = 4


def overdue_minutes(due_at: datetime | None, now: datetime) -> int:
    """``max(0, floor((now - due_at) / 1 minute))``; 0 when there is no due date."""
    if due_at is None:
        return 0
    delta = (as_utc(now) - as_utc(due_at)).total_seconds()
    if delta <= 0:
        return 0
    return int(delta // 60)


def target_level(due_at: datetime | None, now: datetime, levels) -> int:
    """Highest ``level_number`` whose ``threshold_minutes`` the overdue time reaches.

    0 when ``due_at`` is None or the item is not past due yet.
    """
    if due_at is None or as_utc(now) <= as_utc(due_at):
        return 0
    overdue = overdue_minutes(due_at, now)
    reached = [lvl.level_number for lvl in levels if overdue >= lvl.threshold_minutes]
    return max(reached, default=0)


def next_level(current_level: int, levels):
    """Level ``current_level + 1`` from ``levels``, or None when already at the top."""
    wanted = (current_level or 0) + 1
    for lvl in levels:
        if lvl.level_number == wanted:
            return lvl
    return None


def _round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def compute_sla_info(due_at, status, escalation_count, now, due_soon_hours=DEFAULT_DUE_SOON_HOURS):
    """SLA badge for one distribution.

    Closed rows are OnTrack if their due date is still ahead of ``now`` and
    Overdue otherwise. ``minutes_to_due`` is positive while time remains and
    negative once late.
    """
    is_escalated = (escalation_count or 0) > 0
    if due_at is None:
        return {
            "status": SLA_NO_SLA,
            "due_at": None,
            "minutes_to_due": None,
            "is_escalated": is_escalated,
        }

    due = as_utc(due_at)
    minutes_to_due = _round_half_up((due - as_utc(now)).total_seconds() / 60)

    if status == STATUS_CLOSED:
        sla_status = SLA_ON_TRACK if minutes_to_due >= 0 else SLA_OVERDUE
    elif minutes_to_due < 0:
        sla_status = SLA_OVERDUE
    elif minutes_to_due <= 60 * due_soon_hours:
        sla_status = SLA_DUE_SOON
    else:
        sla_status = SLA_ON_TRACK

    return {
        "status": sla_status,
        "due_at": due.isoformat(),
        "minutes_to_due": minutes_to_due,
        "is_escalated": is_escalated,
    }
