"""
Docflow Routing & Escalation Engine
Notification Service.

Persists in-app notifications and relays each one to the real-time
transport. Persisting is transactional; the push is best-effort and never
fails the caller.

Dedup-by-content: a notification identical in ``(user_id, title, body,
link)`` to an existing row is reused instead of inserted, so repeated
escalation scans or reminder ticks do not pile up duplicates.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func, select, update

from docflow.core.exceptions import TransientIntegrationError, ValidationError
from docflow.models import db
from docflow.models.notification import (
    NOTIFICATION_SEVERITIES,
    STATUS_READ,
    STATUS_UNREAD,
    Notification,
)
from docflow.services import realtime
from docflow.utils.helpers import utcnow

logger = logging.getLogger(__name__)

NOTIFY_EVENT = "notify"
DEFAULT_LIST_LIMIT = 50


def _normalise_ids(user_ids: Iterable) -> list[int]:
    seen: list[int] = []
    for uid in user_ids or ():
        if uid is None:
            continue
        uid = int(uid)
        if uid not in seen:
            seen.append(uid)
    return seen


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_ids, title, body="", link=None, severity="info", *, dedupe=True):
        """
        Persist one notification per distinct recipient and push each one.

        Args:
            user_ids: iterable of recipient ids; duplicates and None are dropped.
            dedupe: reuse an existing row with identical (user_id, title, body, link).

        Returns:
            List of Notification rows (created or reused), in recipient order.
        """
        if not title:
            raise ValidationError("Notification title is required", details={"title": "required"})
        if severity not in NOTIFICATION_SEVERITIES:
            raise ValidationError(
                f"Invalid severity: {severity}",
                details={"severity": sorted(NOTIFICATION_SEVERITIES)},
            )

        recipients = _normalise_ids(user_ids)
        if not recipients:
            return []

        rows: list[Notification] = []
        created = 0
        try:
            for uid in recipients:
                existing = None
                if dedupe:
                    existing = NotificationService._find_identical(uid, title, body, link)
                if existing is not None:
                    rows.append(existing)
                    continue
                notif = Notification(
                    user_id=uid, title=title, body=body, link=link,
                    severity=severity, status=STATUS_UNREAD,
                )
                db.session.add(notif)
                rows.append(notif)
                created += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Notify '%s': %d created, %d reused", title, created, len(rows) - created,
            extra={"user_ids": recipients},
        )
        NotificationService._push(rows)
        return rows

    @staticmethod
    def _find_identical(user_id, title, body, link):
        stmt = select(Notification).where(
            Notification.user_id == user_id,
            Notification.title == title,
            Notification.body == body,
            Notification.link.is_(None) if link is None else Notification.link == link,
        ).order_by(Notification.id).limit(1)
        return db.session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _push(rows):
        """Best-effort real-time relay; failures are logged, never raised."""
        transport = realtime.get_transport()
        for notif in rows:
            try:
                transport.push([notif.user_id], NOTIFY_EVENT, notif.to_dict())
            except TransientIntegrationError as exc:
                logger.warning("Realtime push failed for notification %s: %s", notif.id, exc,
                               extra={"user_ids": [notif.user_id]})
            except Exception:
                logger.exception("Unexpected realtime push failure for notification %s", notif.id,
                                 extra={"user_ids": [notif.user_id]})

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, only_unread=False, limit=DEFAULT_LIST_LIMIT):
        """Notifications for a user, newest first."""
        stmt = select(Notification).where(Notification.user_id == user_id)
        if only_unread:
            stmt = stmt.where(Notification.status == STATUS_UNREAD)
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(db.session.execute(stmt).scalars())

    @staticmethod
    def unread_count(user_id):
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.status == STATUS_UNREAD,
        )
        return db.session.execute(stmt).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(user_id, ids):
        """
        Mark the caller's own unread notifications as read.

        Ids owned by other users (or unknown ids) are silently ignored.

        Returns:
            Number of rows actually updated.
        """
        id_list = [int(i) for i in (ids or []) if i is not None]
        if not id_list:
            return 0
        stmt = (
            update(Notification)
            .where(
                Notification.id.in_(id_list),
                Notification.user_id == user_id,
                Notification.status == STATUS_UNREAD,
            )
            .values(status=STATUS_READ, read_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        try:
            count = db.session.execute(stmt).rowcount
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return count

    @staticmethod
    def mark_all_read(user_id):
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.status == STATUS_UNREAD)
            .values(status=STATUS_READ, read_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        try:
            count = db.session.execute(stmt).rowcount
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return count
