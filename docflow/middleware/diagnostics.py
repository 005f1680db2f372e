"""
Startup diagnostics.

Logs one summary banner when the app is created outside of tests, plus a
warning per problem found (unreachable DB, empty schema, no escalation
policy, unreachable Redis).
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect

from docflow.models import db
from docflow.services import realtime
from docflow.services.escalation import load_active_policy

logger = logging.getLogger(__name__)


def _check_database(app: Flask, issues: list[str]) -> tuple[str, str]:
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
    kind = "PostgreSQL" if uri.startswith("postgresql") else "SQLite" if uri.startswith("sqlite") else "other"
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        issues.append(f"Database unreachable: {exc}")
        return kind, "FAILED"
    try:
        tables = sa_inspect(db.engine).get_table_names()
    except Exception:
        return kind, "ok, tables unknown"
    if not tables:
        issues.append("Empty schema: run 'flask db upgrade'")
    return kind, f"ok, {len(tables)} tables"


def _check_policy(issues: list[str]) -> str:
    try:
        policy = load_active_policy()
    except Exception:
        db.session.rollback()
        return "check failed"
    if policy is None:
        issues.append("No active escalation policy: run 'flask seed-escalation-policy'")
        return "NONE"
    return f"{policy.name} ({len(policy.levels)} levels)"


def _check_realtime(issues: list[str]) -> str:
    transport = realtime.get_transport()
    if isinstance(transport, realtime.InMemoryTransport):
        return "in-memory"
    if transport.ping():
        return "redis ok"
    issues.append("Redis unreachable: real-time pushes will be dropped")
    return "redis unreachable"


def run_startup_diagnostics(app: Flask):
    if app.config.get("TESTING"):
        return

    issues: list[str] = []
    with app.app_context():
        db_kind, db_state = _check_database(app, issues)
        rows = [
            ("Python", sys.version.split()[0]),
            ("Debug", str(app.debug)),
            ("Database", f"{db_kind} ({db_state})"),
            ("Policy", _check_policy(issues)),
            ("Realtime", _check_realtime(issues)),
            ("Scheduler", "ENABLED" if app.config.get("SCHEDULER_ENABLED") else "DISABLED"),
        ]

    width = 60
    lines = ["", "╔" + "═" * width + "╗",
             "║" + " Docflow Routing & Escalation Engine: startup ".center(width) + "║",
             "╠" + "═" * width + "╣"]
    for label, value in rows:
        lines.append("║" + f"  {label:<11}: {value}"[:width].ljust(width) + "║")
    lines.append("╚" + "═" * width + "╝")
    logger.info("\n".join(lines))

    for issue in issues:
        logger.warning("Startup issue: %s", issue)
    if not issues:
        logger.info("All startup checks passed")
