"""
Tests: SchedulerService job registry, run history, toggling and the SLA reminder job.

``run_job`` opens its own app context (and therefore its own DB session), so
tests commit their fixtures first and expire the outer session before
asserting on rows the job wrote.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from docflow.core.exceptions import NotFoundError
from docflow.models import db as _db
from docflow.models.directory import ADMIN_ROLE, Department, Role, User, UserRole
from docflow.models.document import Document
from docflow.models.notification import Notification
from docflow.models.routing import STATUS_CLOSED, STATUS_OPEN, Distribution
from docflow.models.scheduling import ScheduledJob
from docflow.services import scheduler_service
from docflow.services.scheduled_jobs import sla_reminder
from docflow.services.scheduler_service import SchedulerService

NOW = datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)


def _job(name: str) -> ScheduledJob | None:
    _db.session.expire_all()
    return _db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == name)
    ).scalar_one_or_none()


class TestRegistry:
    def test_builtin_jobs_registered(self):
        names = set(scheduler_service.get_registered_jobs())
        assert {"escalation_scan", "sla_reminder"} <= names

    def test_ensure_jobs_registered_is_idempotent(self, app):
        created = SchedulerService.ensure_jobs_registered()
        assert len(created) >= 2
        assert SchedulerService.ensure_jobs_registered() == []
        record = _job("escalation_scan")
        assert record.interval_seconds == app.config["ESCALATION_SCAN_INTERVAL_SECONDS"]
        assert record.is_enabled is True

    def test_existing_row_follows_configured_interval(self, app, monkeypatch):
        SchedulerService.ensure_jobs_registered()
        monkeypatch.setitem(app.config, "ESCALATION_SCAN_INTERVAL_SECONDS", 900)

        assert SchedulerService.ensure_jobs_registered() == []

        record = _job("escalation_scan")
        assert record.interval_seconds == 900
        assert record.run_count == 0

    def test_list_jobs(self):
        SchedulerService.ensure_jobs_registered()
        listed = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert listed["sla_reminder"]["db_record"]["status"] == "active"


class TestRunJob:
    def test_unknown_job(self):
        with pytest.raises(NotFoundError):
            SchedulerService.run_job("does_not_exist")

    def test_successful_run_is_recorded(self):
        SchedulerService.ensure_jobs_registered()

        result = SchedulerService.run_job("sla_reminder")

        assert result["status"] == "success"
        assert result["result"]["due_soon"] == 0
        record = _job("sla_reminder")
        assert record.run_count == 1
        assert record.last_run_status == "success"
        assert record.last_run_at is not None

    def test_failed_run_is_recorded(self, monkeypatch):
        def _broken(app):
            raise RuntimeError("database unavailable")

        monkeypatch.setitem(scheduler_service._job_registry, "broken", _broken)
        monkeypatch.setitem(scheduler_service._job_intervals, "broken", 60)
        SchedulerService.ensure_jobs_registered()

        result = SchedulerService.run_job("broken")

        assert result["status"] == "failed"
        assert "database unavailable" in result["error"]
        record = _job("broken")
        assert record.error_count == 1
        assert record.last_error == "database unavailable"


class TestToggleAndDue:
    def test_toggle(self):
        SchedulerService.ensure_jobs_registered()
        data = SchedulerService.toggle_job("sla_reminder", False)
        assert data["is_enabled"] is False
        assert data["status"] == "paused"
        assert "sla_reminder" not in SchedulerService.due_jobs(NOW)

    def test_toggle_unknown(self):
        with pytest.raises(NotFoundError):
            SchedulerService.toggle_job("nope", True)

    def test_due_after_interval(self):
        SchedulerService.ensure_jobs_registered()
        record = _job("escalation_scan")
        record.last_run_at = NOW
        _db.session.commit()

        assert "escalation_scan" not in SchedulerService.due_jobs(NOW + timedelta(seconds=10))
        later = NOW + timedelta(seconds=record.interval_seconds)
        assert "escalation_scan" in SchedulerService.due_jobs(later)

    def test_never_run_job_is_due(self):
        SchedulerService.ensure_jobs_registered()
        assert "sla_reminder" in SchedulerService.due_jobs(NOW)


class TestSlaReminder:
    def _world(self):
        dept = Department(name="Contracts")
        _db.session.add(dept)
        _db.session.flush()
        owner = User(full_name="Owner", department_id=dept.id)
        head = User(full_name="Head", department_id=dept.id)
        role = Role(role_name=ADMIN_ROLE)
        _db.session.add_all([owner, head, role])
        _db.session.flush()
        _db.session.add(UserRole(user_id=head.id, role_id=role.id))
        doc = Document(title="Lease renewal", owning_department_id=dept.id)
        _db.session.add(doc)
        _db.session.flush()
        return dept, owner, head, doc

    def _dist(self, dept, doc, owner, due_at, status=STATUS_OPEN):
        d = Distribution(document_id=doc.id, target_department_id=dept.id,
                         assigned_to_user_id=owner.id, status=status, due_at=due_at)
        _db.session.add(d)
        return d

    def test_reminds_assignee_and_manager(self, app):
        dept, owner, head, doc = self._world()
        self._dist(dept, doc, owner, NOW + timedelta(minutes=10))
        self._dist(dept, doc, owner, NOW + timedelta(hours=3))
        self._dist(dept, doc, owner, NOW + timedelta(minutes=5), status=STATUS_CLOSED)
        self._dist(dept, doc, owner, NOW - timedelta(minutes=5))
        _db.session.commit()

        result = sla_reminder(app, now=NOW)

        assert result == {"due_soon": 1, "notifications": 2, "errors": 0}
        rows = _db.session.execute(select(Notification)).scalars().all()
        assert sorted(n.user_id for n in rows) == sorted([owner.id, head.id])
        assert {n.title for n in rows} == {"SLA reminder"}

    def test_repeated_tick_does_not_duplicate(self, app):
        dept, owner, _head, doc = self._world()
        self._dist(dept, doc, owner, NOW + timedelta(minutes=10))
        _db.session.commit()

        sla_reminder(app, now=NOW)
        sla_reminder(app, now=NOW + timedelta(minutes=1))

        assert len(_db.session.execute(select(Notification)).scalars().all()) == 2
