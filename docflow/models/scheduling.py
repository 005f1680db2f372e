"""
Docflow Routing & Escalation Engine
Scheduler bookkeeping.

Models:
    - ScheduledJob: one row per registered job (interval, enabled flag, last run)
"""

from datetime import datetime, timedelta, timezone

from docflow.models import db
from docflow.utils.helpers import as_utc

JOB_ACTIVE = "active"
JOB_PAUSED = "paused"

RUN_SUCCESS = "success"
RUN_FAILED = "failed"


class ScheduledJob(db.Model):
    """
    Persisted state of a background job.

    The ticker compares ``last_run_at + interval_seconds`` with the clock;
    ``record_run`` is the only writer of the run-history columns.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="escalation_scan, sla_reminder, ...")
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=False, default=300)
    status = db.Column(db.String(20), default=JOB_ACTIVE, comment="active | paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def is_due(self, now: datetime) -> bool:
        if not self.is_enabled:
            return False
        if self.last_run_at is None:
            return True
        return as_utc(self.last_run_at) + timedelta(seconds=self.interval_seconds or 0) <= now

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        self.status = JOB_ACTIVE if enabled else JOB_PAUSED

    def record_run(self, *, status=RUN_SUCCESS, duration_ms=0, result=None, error=None, at=None):
        self.last_run_at = at or datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_seconds}s enabled={self.is_enabled}>"
