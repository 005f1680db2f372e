"""
Tests: manual distribution state machine.

Covers:
    - create / forward (with and without closing the previous distribution)
    - status change, reassignment, note, SLA edit
    - every committed mutation writes exactly one log entry and one audit entry
    - Closed is terminal for status, assignment and SLA changes
    - command parsing and dispatch
    - document timeline ordering
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from docflow.core.exceptions import NotFoundError, ValidationError
from docflow.models import db as _db
from docflow.models.audit import AuditTrail
from docflow.models.directory import Department, User
from docflow.models.document import Document
from docflow.models.routing import (
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    Distribution,
    DistributionLog,
)
from docflow.services import distribution_service as ds
from docflow.services.commands import AddNote, Assign, SetStatus, apply_command, parse_command


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_department(name: str) -> Department:
    d = Department(name=name)
    _db.session.add(d)
    _db.session.flush()
    return d


def _make_user(department_id: int, name: str = "Clerk", active: bool = True) -> User:
    u = User(full_name=name, department_id=department_id, is_active=active)
    _db.session.add(u)
    _db.session.flush()
    return u


def _make_document(department_id: int) -> Document:
    doc = Document(title="Tender clarification", owning_department_id=department_id)
    _db.session.add(doc)
    _db.session.commit()
    return doc


def _counts(dist_id: int, document_id: int) -> tuple[int, int]:
    logs = _db.session.execute(
        select(func.count(DistributionLog.id)).where(DistributionLog.distribution_id == dist_id)
    ).scalar()
    audits = _db.session.execute(
        select(func.count(AuditTrail.id)).where(AuditTrail.document_id == document_id)
    ).scalar()
    return logs, audits


@pytest.fixture()
def world():
    registry = _make_department("Registry")
    legal = _make_department("Legal")
    clerk = _make_user(registry.id, "Clerk")
    lawyer = _make_user(legal.id, "Lawyer")
    _db.session.commit()
    doc = _make_document(registry.id)
    return {
        "registry": registry.id, "legal": legal.id,
        "clerk": clerk.id, "lawyer": lawyer.id, "doc": doc.id,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Create / forward
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_create_starts_open_with_log_and_audit(self, world):
        dist = ds.create_distribution(
            world["doc"], world["legal"], assigned_to_user_id=world["lawyer"],
            due_at="2025-05-01T12:00:00Z", priority=3, actor_id=world["clerk"],
        )
        assert dist.status == STATUS_OPEN
        assert dist.escalation_count == 0
        assert dist.priority == 3
        assert dist.due_at is not None
        assert _counts(dist.id, world["doc"]) == (1, 1)

    def test_priority_is_clamped(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], priority=99, actor_id=world["clerk"])
        assert dist.priority == 10

    def test_unknown_document_404(self, world):
        with pytest.raises(NotFoundError):
            ds.create_distribution(9999, world["legal"], actor_id=world["clerk"])

    def test_inactive_assignee_rejected(self, world):
        idle = _make_user(world["legal"], "Retired", active=False)
        _db.session.commit()
        with pytest.raises(ValidationError):
            ds.create_distribution(world["doc"], world["legal"], assigned_to_user_id=idle.id,
                                   actor_id=world["clerk"])

    def test_bad_due_at_rejected(self, world):
        with pytest.raises(ValidationError):
            ds.create_distribution(world["doc"], world["legal"], due_at="not-a-date",
                                   actor_id=world["clerk"])


class TestForward:
    def test_forward_closes_previous_and_opens_new(self, world):
        first = ds.create_distribution(world["doc"], world["registry"], actor_id=world["clerk"])
        ds.update_distribution_status(first.id, STATUS_IN_PROGRESS, "reading", actor_id=world["clerk"])

        second = ds.forward_document(world["doc"], world["legal"], note="legal opinion needed",
                                     actor_id=world["clerk"])

        _db.session.refresh(first)
        assert first.status == STATUS_CLOSED
        assert second.status == STATUS_OPEN
        assert second.target_department_id == world["legal"]
        closing = ds.list_logs(first.id)[-1]
        assert closing.new_status == STATUS_CLOSED
        assert closing.note == "Closed on forward"
        actions = _db.session.execute(
            select(AuditTrail.action_type).where(AuditTrail.document_id == world["doc"])
        ).scalars().all()
        assert actions.count("FORWARD") == 1

    def test_forward_without_close_keeps_previous(self, world):
        first = ds.create_distribution(world["doc"], world["registry"], actor_id=world["clerk"])
        ds.forward_document(world["doc"], world["legal"], close_previous=False, actor_id=world["clerk"])
        _db.session.refresh(first)
        assert first.status == STATUS_OPEN

    def test_forward_unknown_department_leaves_nothing_behind(self, world):
        first = ds.create_distribution(world["doc"], world["registry"], actor_id=world["clerk"])
        with pytest.raises(NotFoundError):
            ds.forward_document(world["doc"], 9999, actor_id=world["clerk"])
        _db.session.refresh(first)
        assert first.status == STATUS_OPEN


# ═════════════════════════════════════════════════════════════════════════════
# Manual transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitions:
    def test_status_change_writes_one_log_and_one_audit(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        before = _counts(dist.id, world["doc"])

        ds.update_distribution_status(dist.id, STATUS_IN_PROGRESS, "started", actor_id=world["lawyer"])

        after = _counts(dist.id, world["doc"])
        assert after == (before[0] + 1, before[1] + 1)
        entry = ds.list_logs(dist.id)[-1]
        assert (entry.old_status, entry.new_status) == (STATUS_OPEN, STATUS_IN_PROGRESS)
        assert entry.updated_by_user_id == world["lawyer"]

    def test_invalid_status_rejected(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        with pytest.raises(ValidationError):
            ds.update_distribution_status(dist.id, "Archived", actor_id=world["clerk"])

    def test_assign_keeps_status(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        ds.update_distribution_status(dist.id, STATUS_IN_PROGRESS, "started", actor_id=world["clerk"])

        ds.assign_distribution(dist.id, world["lawyer"], "yours", actor_id=world["clerk"])

        _db.session.refresh(dist)
        assert dist.assigned_to_user_id == world["lawyer"]
        assert dist.status == STATUS_IN_PROGRESS
        assert ds.list_logs(dist.id)[-1].new_status is None

    def test_assign_unknown_user_404(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        with pytest.raises(NotFoundError):
            ds.assign_distribution(dist.id, 9999, actor_id=world["clerk"])

    def test_sla_edit_partial(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], priority=2,
                                      due_at="2025-05-01T12:00:00Z", actor_id=world["clerk"])
        ds.update_distribution_sla(dist.id, priority=5, actor_id=world["clerk"])
        _db.session.refresh(dist)
        assert dist.priority == 5
        assert dist.due_at is not None

        ds.update_distribution_sla(dist.id, due_at=None, actor_id=world["clerk"])
        _db.session.refresh(dist)
        assert dist.due_at is None

    def test_sla_edit_requires_a_field(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        with pytest.raises(ValidationError):
            ds.update_distribution_sla(dist.id, actor_id=world["clerk"])

    def test_missing_distribution_404(self, world):
        with pytest.raises(NotFoundError):
            ds.update_distribution_status(9999, STATUS_CLOSED, "x", actor_id=world["clerk"])


class TestClosedIsTerminal:
    @pytest.fixture()
    def closed(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        ds.update_distribution_status(dist.id, STATUS_CLOSED, "done", actor_id=world["clerk"])
        return dist.id

    def test_status_change_rejected(self, world, closed):
        with pytest.raises(ValidationError):
            ds.update_distribution_status(closed, STATUS_OPEN, "reopen", actor_id=world["clerk"])

    def test_assign_rejected(self, world, closed):
        with pytest.raises(ValidationError):
            ds.assign_distribution(closed, world["lawyer"], actor_id=world["clerk"])

    def test_sla_edit_rejected(self, world, closed):
        with pytest.raises(ValidationError):
            ds.update_distribution_sla(closed, priority=1, actor_id=world["clerk"])

    def test_note_still_allowed(self, world, closed):
        ds.add_distribution_note(closed, "archived copy sent", actor_id=world["clerk"])
        assert ds.list_logs(closed)[-1].note == "archived copy sent"


# ═════════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════════


class TestCommands:
    def test_parse_set_status(self):
        cmd = parse_command({"type": "SetStatus", "status": "Closed", "note": " done "})
        assert cmd == SetStatus(status="Closed", note="done")

    def test_set_status_requires_reason(self):
        with pytest.raises(ValidationError):
            parse_command({"type": "SetStatus", "status": "Closed", "note": "  "})

    def test_parse_assign_coerces_id(self):
        assert parse_command({"type": "Assign", "user_id": "7"}) == Assign(user_id=7)

    def test_assign_rejects_boolean_id(self):
        with pytest.raises(ValidationError):
            parse_command({"type": "Assign", "user_id": True})

    @pytest.mark.parametrize("payload", [
        {"type": "Delete"},
        {},
        ["SetStatus"],
        {"type": "AddNote"},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            parse_command(payload)

    def test_apply_dispatches(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        apply_command(dist.id, AddNote(note="phoned sender"), actor_id=world["clerk"])
        apply_command(dist.id, Assign(user_id=world["lawyer"]), actor_id=world["clerk"])
        result = apply_command(dist.id, SetStatus(status=STATUS_CLOSED, note="answered"),
                               actor_id=world["lawyer"])
        assert result.status == STATUS_CLOSED
        assert result.assigned_to_user_id == world["lawyer"]
        assert len(ds.list_logs(dist.id)) == 4


# ═════════════════════════════════════════════════════════════════════════════
# Timeline
# ═════════════════════════════════════════════════════════════════════════════


class TestTimeline:
    def test_timeline_is_chronological(self, world):
        dist = ds.create_distribution(world["doc"], world["legal"], actor_id=world["clerk"])
        ds.add_distribution_note(dist.id, "first note", actor_id=world["clerk"])

        # Force a known order regardless of clock resolution
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for i, entry in enumerate(ds.list_logs(dist.id)):
            entry.created_at = base + timedelta(minutes=10 * i)
        for i, entry in enumerate(_db.session.execute(
            select(AuditTrail).where(AuditTrail.document_id == world["doc"]).order_by(AuditTrail.id)
        ).scalars()):
            entry.created_at = base + timedelta(minutes=10 * i + 5)
        _db.session.commit()

        events = ds.get_document_timeline(world["doc"])
        assert [e["type"] for e in events] == ["distribution_log", "audit", "distribution_log", "audit"]
        assert events == sorted(events, key=lambda e: e["at"])

    def test_unknown_document_404(self):
        with pytest.raises(NotFoundError):
            ds.get_document_timeline(424242)
