"""
Docflow Routing & Escalation Engine
Audit domain model.

Models:
    - AuditTrail: immutable, append-only document-level action log.
"""

from datetime import datetime, timezone

from docflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "CREATE_INCOMING",
    "CREATE_OUTGOING",
    "CREATE_DISTRIBUTION",
    "FORWARD",
    "DIST_STATUS",
    "ASSIGN",
    "NOTE",
    "UPDATE_DISTRIBUTION",
    "ESCALATED",
}


class AuditTrail(db.Model):
    """
    Append-only audit record keyed to a document.

    Rows are never updated or deleted by the engine. Search over this table
    belongs to an external collaborator.
    """

    __tablename__ = "audit_trail"
    __table_args__ = (
        db.Index("ix_audit_trail_document_created", "document_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True,
    )
    action_type = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, default="")
    source_ip = db.Column(db.String(64), nullable=True)
    workstation = db.Column(db.String(200), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "document_id": self.document_id,
            "action_type": self.action_type,
            "description": self.description,
            "source_ip": self.source_ip,
            "workstation": self.workstation,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditTrail {self.id} {self.action_type} doc={self.document_id}>"
