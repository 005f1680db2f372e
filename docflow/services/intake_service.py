"""
Docflow Routing & Escalation Engine
Intake Service - registering incoming and outgoing correspondence.

Each registration is one create-with-number operation:
    Document -> numbered register record -> first distribution -> audit
run through ``run_with_number_retry`` so a number collision reruns the
whole operation in a fresh transaction.
"""

from __future__ import annotations

import logging

from docflow.core.exceptions import NotFoundError, ValidationError
from docflow.models import db
from docflow.models.directory import Department
from docflow.models.document import DELIVERY_METHODS, Document, IncomingRecord, OutgoingRecord
from docflow.services import audit, distribution_service
from docflow.services.sequence_allocator import allocate_number, run_with_number_retry, scope_for
from docflow.utils.helpers import parse_datetime, parse_int, utcnow

logger = logging.getLogger(__name__)


def _required_text(payload: dict, key: str) -> str:
    value = str(payload.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    return value


def _method(payload: dict, key: str) -> str:
    method = payload.get(key) or "Hand"
    if method not in DELIVERY_METHODS:
        raise ValidationError(f"Invalid {key}: {method}", details={key: sorted(DELIVERY_METHODS)})
    return method


def _validate_common(payload: dict, actor_id) -> tuple[str, int, str]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    title = _required_text(payload, "document_title")
    dept_id = parse_int(payload.get("owning_department_id"))
    if not dept_id:
        raise ValidationError("owning_department_id is required",
                              details={"owning_department_id": "required"})
    if db.session.get(Department, dept_id) is None:
        raise NotFoundError("Department", dept_id)
    party = _required_text(payload, "external_party_name")
    if not actor_id:
        raise ValidationError("Acting user is required", details={"actor_id": "required"})
    return title, dept_id, party


def _when(payload: dict, key: str):
    try:
        return parse_datetime(payload.get(key)) or utcnow()
    except ValueError as exc:
        raise ValidationError(str(exc), details={key: payload.get(key)}) from exc


def register_incoming(payload: dict, actor_id: int, meta: dict | None = None) -> IncomingRecord:
    """Register received correspondence and route it to its owning department.

    Payload keys: document_title, owning_department_id, external_party_name,
    delivery_method, received_date?, due_at?, priority?
    """
    title, dept_id, party = _validate_common(payload, actor_id)
    method = _method(payload, "delivery_method")
    received = _when(payload, "received_date")
    year = received.year
    scope = scope_for("incoming", year)

    def _create():
        document = Document(
            title=title,
            current_status="Registered",
            owning_department_id=dept_id,
            created_by_user_id=actor_id,
        )
        db.session.add(document)
        db.session.flush()

        number = allocate_number(scope, year, IncomingRecord.incoming_number)
        record = IncomingRecord(
            document_id=document.id,
            incoming_number=number,
            external_party_name=party,
            delivery_method=method,
            received_date=received,
            received_by_user_id=actor_id,
        )
        db.session.add(record)
        db.session.flush()

        distribution_service.add_distribution(
            document.id, dept_id,
            due_at=payload.get("due_at"),
            priority=payload.get("priority", 0),
            actor_id=actor_id, meta=meta,
        )
        audit.log(
            action_type="CREATE_INCOMING",
            description=f"Incoming {number} registered",
            user_id=actor_id,
            document_id=document.id,
            source_ip=(meta or {}).get("ip"),
            workstation=(meta or {}).get("workstation"),
        )
        return record

    record = run_with_number_retry(
        _create, resource="IncomingRecord", number_attr=IncomingRecord.incoming_number,
        scope=scope, year=year,
    )
    logger.info("Incoming %s registered", record.incoming_number,
                extra={"document_id": record.document_id, "scope": scope})
    return record


def register_outgoing(payload: dict, actor_id: int, meta: dict | None = None) -> OutgoingRecord:
    """Register issued correspondence. No distribution is opened for it.

    Payload keys: document_title, owning_department_id, external_party_name,
    send_method, issue_date?
    """
    title, dept_id, party = _validate_common(payload, actor_id)
    method = _method(payload, "send_method")
    issued = _when(payload, "issue_date")
    year = issued.year
    scope = scope_for("outgoing", year)

    def _create():
        document = Document(
            title=title,
            current_status="Registered",
            owning_department_id=dept_id,
            created_by_user_id=actor_id,
        )
        db.session.add(document)
        db.session.flush()

        number = allocate_number(scope, year, OutgoingRecord.outgoing_number)
        record = OutgoingRecord(
            document_id=document.id,
            outgoing_number=number,
            external_party_name=party,
            send_method=method,
            issue_date=issued,
            signed_by_user_id=actor_id,
        )
        db.session.add(record)
        db.session.flush()

        audit.log(
            action_type="CREATE_OUTGOING",
            description=f"Outgoing {number} registered",
            user_id=actor_id,
            document_id=document.id,
            source_ip=(meta or {}).get("ip"),
            workstation=(meta or {}).get("workstation"),
        )
        return record

    record = run_with_number_retry(
        _create, resource="OutgoingRecord", number_attr=OutgoingRecord.outgoing_number,
        scope=scope, year=year,
    )
    logger.info("Outgoing %s registered", record.outgoing_number,
                extra={"document_id": record.document_id, "scope": scope})
    return record
