"""
Docflow Routing & Escalation Engine
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from docflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_SEVERITIES = {"info", "warning", "danger"}
STATUS_UNREAD = "Unread"
STATUS_READ = "Read"


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. Only the recipient mutates it, by
    marking it read.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_status", "user_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, nullable=False, default="")
    link = db.Column(db.String(500), nullable=True)
    severity = db.Column(db.String(20), default="info")
    status = db.Column(db.String(10), nullable=False, default=STATUS_UNREAD)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "body": self.body,
            "link": self.link,
            "severity": self.severity,
            "status": self.status,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id} -> user {self.user_id}: {self.title[:40]}>"
