"""
Docflow Routing & Escalation Engine
Escalation policy models.

Models:
    - EscalationPolicy: named, switchable set of levels (one active at a time)
    - EscalationLevel: one tier of the policy, reached after ``threshold_minutes`` overdue
"""

from datetime import datetime, timezone

from docflow.models import db
from docflow.models.routing import STATUS_ESCALATED


class EscalationPolicy(db.Model):
    __tablename__ = "escalation_policies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    levels = db.relationship(
        "EscalationLevel", back_populates="policy",
        order_by="EscalationLevel.level_number",
        cascade="all, delete-orphan",
    )

    def level(self, number: int):
        """Return the level with ``level_number == number`` or None."""
        for lvl in self.levels:
            if lvl.level_number == number:
                return lvl
        return None

    def to_dict(self, include_levels=True):
        d = {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_levels:
            d["levels"] = [lvl.to_dict() for lvl in self.levels]
        return d

    def __repr__(self):
        return f"<EscalationPolicy {self.name} active={self.is_active}>"


class EscalationLevel(db.Model):
    """
    One escalation tier.

    ``throttle_minutes`` is the minimum spacing between two applications of
    this level to the same distribution; the scanner checks it against the
    newest ``ESC:L<n>`` log entry.
    """

    __tablename__ = "escalation_levels"
    __table_args__ = (
        db.UniqueConstraint("policy_id", "level_number", name="uq_escalation_policy_level"),
        db.CheckConstraint("level_number >= 1", name="ck_escalation_level_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    policy_id = db.Column(
        db.Integer, db.ForeignKey("escalation_policies.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level_number = db.Column(db.Integer, nullable=False)
    threshold_minutes = db.Column(db.Integer, nullable=False)
    priority_bump = db.Column(db.Integer, nullable=False, default=0)
    status_on_reach = db.Column(db.String(20), nullable=False, default=STATUS_ESCALATED)
    throttle_minutes = db.Column(db.Integer, nullable=False, default=30)
    auto_reassign = db.Column(db.Boolean, default=False, nullable=False)
    notify_assignee = db.Column(db.Boolean, default=True, nullable=False)
    notify_manager = db.Column(db.Boolean, default=False, nullable=False)
    notify_admin = db.Column(db.Boolean, default=False, nullable=False)

    policy = db.relationship("EscalationPolicy", back_populates="levels")

    def to_dict(self):
        return {
            "id": self.id,
            "level_number": self.level_number,
            "threshold_minutes": self.threshold_minutes,
            "priority_bump": self.priority_bump,
            "status_on_reach": self.status_on_reach,
            "throttle_minutes": self.throttle_minutes,
            "auto_reassign": self.auto_reassign,
            "notify_assignee": self.notify_assignee,
            "notify_manager": self.notify_manager,
            "notify_admin": self.notify_admin,
        }

    def __repr__(self):
        return f"<EscalationLevel L{self.level_number} >= {self.threshold_minutes}min>"
