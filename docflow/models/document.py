"""
Docflow Routing & Escalation Engine
Document & correspondence register models.

Models:
    - Document: the routed paper/electronic document
    - IncomingRecord: register entry for received correspondence (numbered)
    - OutgoingRecord: register entry for issued correspondence (numbered)

Both register tables carry a UNIQUE reference-number column. The sequence
allocator relies on those constraints as the last line of defence against
duplicate numbers under concurrent creation.
"""

from datetime import datetime, timezone

from docflow.models import db

DELIVERY_METHODS = {"Hand", "Mail", "Email", "Courier", "Fax", "ElectronicSystem"}
DOCUMENT_STATUSES = {"Registered", "InWorkflow", "Archived"}


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(500), nullable=False)
    current_status = db.Column(db.String(30), default="Registered")
    owning_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    distributions = db.relationship(
        "Distribution", back_populates="document", lazy="dynamic",
        order_by="Distribution.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "current_status": self.current_status,
            "owning_department_id": self.owning_department_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.title[:40]}>"


class IncomingRecord(db.Model):
    """Received correspondence. ``incoming_number`` is ``YYYY/NNNNNN``."""

    __tablename__ = "incoming_records"
    __table_args__ = (
        db.UniqueConstraint("incoming_number", name="uq_incoming_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    incoming_number = db.Column(db.String(20), nullable=False)
    external_party_name = db.Column(db.String(300), nullable=False)
    delivery_method = db.Column(db.String(30), default="Hand")
    received_date = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    received_by_user_id = db.Column(db.Integer, nullable=True)

    document = db.relationship("Document")

    def to_dict(self):
        return {
            "id": self.id,
            "incoming_number": self.incoming_number,
            "external_party_name": self.external_party_name,
            "delivery_method": self.delivery_method,
            "received_date": self.received_date.isoformat() if self.received_date else None,
            "document": self.document.to_dict() if self.document else None,
        }

    def __repr__(self):
        return f"<IncomingRecord {self.incoming_number}>"


class OutgoingRecord(db.Model):
    """Issued correspondence. ``outgoing_number`` is ``YYYY/NNNNNN``."""

    __tablename__ = "outgoing_records"
    __table_args__ = (
        db.UniqueConstraint("outgoing_number", name="uq_outgoing_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    outgoing_number = db.Column(db.String(20), nullable=False)
    external_party_name = db.Column(db.String(300), nullable=False)
    send_method = db.Column(db.String(30), default="Hand")
    issue_date = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    signed_by_user_id = db.Column(db.Integer, nullable=True)

    document = db.relationship("Document")

    def to_dict(self):
        return {
            "id": self.id,
            "outgoing_number": self.outgoing_number,
            "external_party_name": self.external_party_name,
            "send_method": self.send_method,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "document": self.document.to_dict() if self.document else None,
        }

    def __repr__(self):
        return f"<OutgoingRecord {self.outgoing_number}>"
