"""
Docflow Routing & Escalation Engine
Reference-number sequence model.

One row per scope string (``INCOMING_2025``, ``OUTGOING_2025``...). The
numbers ever issued for a scope are exactly ``{1..last_number}``.
"""

from datetime import datetime, timezone

from docflow.models import db


class NumberSequence(db.Model):
    __tablename__ = "number_sequences"

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(50), nullable=False, unique=True)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "scope": self.scope,
            "last_number": self.last_number,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<NumberSequence {self.scope}={self.last_number}>"
