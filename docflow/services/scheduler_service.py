"""
Docflow Routing & Escalation Engine
Scheduler Service.

An interval scheduler small enough to run inside the web process or as
``flask run-scheduler``:

    @register_job(name, interval_seconds=...)   job registry (module level)
    ScheduledJob row per job                     interval, enabled flag, run history
    SchedulerService.run_job(name)               one run inside an app context
    SchedulerService.start()                     daemon thread ticking every TICK_SECONDS

Only one scheduler may run per database; nothing here coordinates between
processes.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask
from sqlalchemy import select

from docflow.core.exceptions import NotFoundError
from docflow.models import db
from docflow.models.scheduling import JOB_ACTIVE, RUN_FAILED, RUN_SUCCESS, ScheduledJob
from docflow.utils.helpers import utcnow

logger = logging.getLogger(__name__)

TICK_SECONDS = 5
DEFAULT_INTERVAL_SECONDS = 300

IntervalSpec = Callable[[Flask], int] | int

_job_registry: dict[str, Callable] = {}
_job_intervals: dict[str, IntervalSpec] = {}


def register_job(name: str, interval_seconds: IntervalSpec = DEFAULT_INTERVAL_SECONDS):
    """Register ``fn(app) -> dict`` as a scheduled job.

    ``interval_seconds`` may be a callable receiving the app so the interval
    can come from config.
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        _job_intervals[name] = interval_seconds
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _resolve_interval(app: Flask, name: str) -> int:
    spec = _job_intervals.get(name, DEFAULT_INTERVAL_SECONDS)
    return int(spec(app) if callable(spec) else spec)


def _summary_line(fn: Callable, name: str) -> str:
    doc = (fn.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else f"Scheduled job: {name}"


def _find_job(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalar_one_or_none()


class SchedulerService:
    """Class-level state: one scheduler per process."""

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound to app (%d jobs registered)", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Insert a ScheduledJob row for every registered job that lacks one.

        Existing rows pick up the currently configured interval. Returns only
        the newly created rows.
        """
        if cls._app is None:
            return []
        missing = []
        refreshed = 0
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                interval = _resolve_interval(cls._app, name)
                existing = _find_job(name)
                if existing is not None:
                    if existing.interval_seconds != interval:
                        logger.info("Job %s interval %ss -> %ss", name, existing.interval_seconds,
                                    interval, extra={"job_name": name})
                        existing.interval_seconds = interval
                        refreshed += 1
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=_summary_line(fn, name),
                    interval_seconds=interval,
                    status=JOB_ACTIVE,
                    is_enabled=True,
                    run_count=0,
                    error_count=0,
                )
                db.session.add(job)
                missing.append(job)
            if missing or refreshed:
                db.session.commit()
            if missing:
                logger.info("Registered %d scheduled job rows", len(missing))
        return missing

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Run one job now and record the outcome on its row.

        A failing job is logged and reported as ``status="failed"``; it never
        raises out of here.

        Raises:
            NotFoundError: unknown job name.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            raise NotFoundError("ScheduledJob", job_name)
        if cls._app is None:
            return {"job_name": job_name, "status": RUN_FAILED, "error": "Scheduler not initialized"}

        outcome = {"job_name": job_name, "status": RUN_SUCCESS, "result": None, "error": None}
        t0 = time.monotonic()
        with cls._app.app_context():
            try:
                outcome["result"] = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                outcome["status"] = RUN_FAILED
                outcome["error"] = str(exc)
                logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
            outcome["duration_ms"] = int((time.monotonic() - t0) * 1000)

            result = outcome["result"]
            try:
                job = _find_job(job_name)
                if job is not None:
                    job.record_run(
                        status=outcome["status"],
                        duration_ms=outcome["duration_ms"],
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=outcome["error"],
                    )
                    db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Could not record run of %s", job_name, extra={"job_name": job_name})
        return outcome

    @classmethod
    def list_jobs(cls) -> list[dict]:
        out = []
        for name in _job_registry:
            job = _find_job(name)
            out.append({"job_name": name, "registered": True, "db_record": job.to_dict() if job else None})
        return out

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict:
        job = _find_job(job_name)
        if job is None:
            raise NotFoundError("ScheduledJob", job_name)
        job.set_enabled(enabled)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused", extra={"job_name": job_name})
        return job.to_dict()

    # ── Ticker ───────────────────────────────────────────────────────────

    @classmethod
    def due_jobs(cls, now=None) -> list[str]:
        """Registered, enabled jobs whose interval has elapsed. Needs an app context."""
        now = now or utcnow()
        due = []
        for name in _job_registry:
            job = _find_job(name)
            if job is not None and job.is_due(now):
                due.append(name)
        return due

    @classmethod
    def tick(cls) -> list[dict]:
        if cls._app is None:
            return []
        with cls._app.app_context():
            names = cls.due_jobs()
        return [cls.run_job(name) for name in names]

    @classmethod
    def start(cls) -> bool:
        """Start the ticker thread; False if it is already running."""
        if cls._app is None:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls.is_running():
            return False
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(cls._stop_event,), name="docflow-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler started, tick every %ss", TICK_SECONDS)
        return True

    @classmethod
    def stop(cls, timeout: float = 10.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
            logger.info("Scheduler stopped")
        cls._thread = None
        cls._stop_event = None

    @classmethod
    def is_running(cls) -> bool:
        return bool(cls._thread and cls._thread.is_alive())

    @classmethod
    def _loop(cls, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                cls.tick()
            except Exception:
                # DB unreachable and similar; the next tick retries
                logger.exception("Scheduler tick failed")
            stop_event.wait(TICK_SECONDS)
