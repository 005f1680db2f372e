"""
Docflow Routing & Escalation Engine
Distribution domain model.

Models:
    - Distribution: one assignment of a document to a department/user
    - DistributionLog: immutable, append-only transition log per distribution

Lifecycle:
    Open ──► InProgress ──► Closed
      │           │           ▲
      └──► Escalated ─────────┘

Closed is terminal. Re-opening a document means a new Distribution row.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_OPEN = "Open"
STATUS_IN_PROGRESS = "InProgress"
STATUS_CLOSED = "Closed"
STATUS_ESCALATED = "Escalated"

DISTRIBUTION_STATUSES = {STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_CLOSED, STATUS_ESCALATED}

# Statuses the escalation scanner considers
ACTIVE_STATUSES = (STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_ESCALATED)

PRIORITY_MIN = 0
PRIORITY_MAX = 10


class Distribution(db.Model):
    """
    "This document is (or was) assigned to this department/user for action."

    ``escalation_count`` is the current escalation level. It only ever
    increases and is written by the escalation scanner.
    """

    __tablename__ = "distributions"
    __table_args__ = (
        db.Index("ix_distributions_status_due", "status", "due_at"),
        db.CheckConstraint("escalation_count >= 0", name="ck_distribution_escalation_nonneg"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    target_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    assigned_to_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=STATUS_OPEN)
    priority = db.Column(db.Integer, nullable=False, default=0)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="NULL = SLA not tracked")
    escalation_count = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_update_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    document = db.relationship("Document", back_populates="distributions")
    logs = db.relationship(
        "DistributionLog", back_populates="distribution", lazy="dynamic",
        order_by="(DistributionLog.created_at, DistributionLog.id)",
    )

    @property
    def is_closed(self) -> bool:
        return self.status == STATUS_CLOSED

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "target_department_id": self.target_department_id,
            "assigned_to_user_id": self.assigned_to_user_id,
            "status": self.status,
            "priority": self.priority,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "escalation_count": self.escalation_count,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_update_at": self.last_update_at.isoformat() if self.last_update_at else None,
        }

    def __repr__(self):
        return f"<Distribution {self.id} [{self.status}] L{self.escalation_count}>"


class DistributionLog(db.Model):
    """
    Append-only transition record.

    Escalation entries carry a note starting with ``ESC:L<n>``; the scanner's
    throttle check greps that prefix, so the format must stay stable.
    """

    __tablename__ = "distribution_logs"
    __table_args__ = (
        db.Index("ix_distribution_logs_dist_created", "distribution_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    distribution_id = db.Column(
        db.Integer, db.ForeignKey("distributions.id", ondelete="CASCADE"), nullable=False,
    )
    old_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    note = db.Column(db.Text, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    distribution = db.relationship("Distribution", back_populates="logs")

    def to_dict(self):
        return {
            "id": self.id,
            "distribution_id": self.distribution_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "note": self.note,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DistributionLog {self.id} dist={self.distribution_id} {self.old_status}->{self.new_status}>"
