"""
Audit Trail writer.

Routing and escalation call ``log`` inside their own transaction; the entry
commits or rolls back with the mutation it describes. Query/search over the
trail belongs to an external collaborator, except the per-document read used
by the timeline.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select

from docflow.models import db
from docflow.models.audit import AUDIT_ACTIONS, AuditTrail

logger = logging.getLogger(__name__)


def log(
    *,
    action_type: str,
    description: str = "",
    user_id: int | None = None,
    document_id: int | None = None,
    source_ip: str | None = None,
    workstation: str | None = None,
    created_at: datetime | None = None,
) -> AuditTrail:
    """Append one audit entry to the current session. Does NOT commit."""
    if action_type not in AUDIT_ACTIONS:
        logger.warning("Unregistered audit action %s", action_type, extra={"document_id": document_id})
    entry = AuditTrail(
        user_id=user_id,
        document_id=document_id,
        action_type=action_type,
        description=description,
        source_ip=source_ip,
        workstation=workstation,
    )
    if created_at is not None:
        entry.created_at = created_at
    db.session.add(entry)
    return entry


def list_for_document(document_id: int) -> list[AuditTrail]:
    stmt = (
        select(AuditTrail)
        .where(AuditTrail.document_id == document_id)
        .order_by(AuditTrail.created_at, AuditTrail.id)
    )
    return list(db.session.execute(stmt).scalars())
