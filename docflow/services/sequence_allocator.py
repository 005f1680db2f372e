"""
Docflow Routing & Escalation Engine
Sequence Allocator - gap-free reference numbers per scope.

Numbers look like ``2025/000123`` and are issued from one ``NumberSequence``
row per scope (``INCOMING_2025``, ``OUTGOING_2025``). Allocation runs inside
the transaction that inserts the numbered entity, so the increment and the
insert commit or roll back together.

The UNIQUE constraint on the entity's number column is the safety net: when
two writers both derive the same number (stale sequence row, rows imported
before the sequence table existed...) one insert fails, and
``run_with_number_retry`` reruns the whole create operation in a fresh
transaction. Any other integrity error propagates on the first attempt.

Single-writer per scope is not assumed here; the row-level UPDATE plus the
unique constraint bound duplicates to a retry.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from flask import current_app
from sqlalchemy import UniqueConstraint, func, select, update
from sqlalchemy.exc import IntegrityError

from docflow.core.exceptions import ConflictError
from docflow.models import db
from docflow.models.sequence import NumberSequence

logger = logging.getLogger(__name__)

NUMBER_WIDTH = 6
DEFAULT_MAX_ATTEMPTS = 3


def format_number(year: int, n: int) -> str:
    return f"{year}/{n:0{NUMBER_WIDTH}d}"


def scope_for(kind: str, year: int) -> str:
    """``scope_for("incoming", 2025) -> "INCOMING_2025"``."""
    return f"{kind.upper()}_{year}"


def _max_issued_suffix(issued_column, year: int) -> int:
    """Highest numeric suffix already issued for ``year`` in ``issued_column``.

    Numbers are fixed-width, so the lexical max is the numeric max.
    """
    if issued_column is None:
        return 0
    stmt = select(func.max(issued_column)).where(issued_column.like(f"{year}/%"))
    top = db.session.execute(stmt).scalar_one_or_none()
    if not top:
        return 0
    try:
        return int(str(top).split("/", 1)[1])
    except (IndexError, ValueError):
        logger.warning("Unparseable issued number %r, bootstrapping from 0", top)
        return 0


def allocate_number(scope: str, year: int, issued_column=None) -> str:
    """Issue the next number for ``scope`` inside the caller's transaction.

    A missing sequence row is bootstrapped from the highest number already
    issued under the ``"{year}/"`` prefix of ``issued_column``. The caller
    owns the commit.

    Returns:
        The formatted number, e.g. ``"2025/000042"``.
    """
    exists = db.session.execute(
        select(NumberSequence.id).where(NumberSequence.scope == scope)
    ).scalar_one_or_none()
    if exists is None:
        start = _max_issued_suffix(issued_column, year)
        db.session.add(NumberSequence(scope=scope, last_number=start))
        db.session.flush()
        logger.info("Sequence %s bootstrapped at %d", scope, start, extra={"scope": scope})

    db.session.execute(
        update(NumberSequence)
        .where(NumberSequence.scope == scope)
        .values(last_number=NumberSequence.last_number + 1)
    )
    n = db.session.execute(
        select(NumberSequence.last_number).where(NumberSequence.scope == scope)
    ).scalar_one()
    return format_number(year, n)


def resync_sequence(scope: str, year: int, issued_column) -> int:
    """Raise a stale sequence row to the highest issued suffix and commit.

    Never lowers ``last_number``. Returns the resulting value.
    """
    issued = _max_issued_suffix(issued_column, year)
    seq = db.session.execute(
        select(NumberSequence).where(NumberSequence.scope == scope)
    ).scalar_one_or_none()
    if seq is None:
        seq = NumberSequence(scope=scope, last_number=issued)
        db.session.add(seq)
    elif seq.last_number < issued:
        logger.warning(
            "Sequence %s behind issued numbers (%d < %d), resyncing",
            scope, seq.last_number, issued, extra={"scope": scope},
        )
        seq.last_number = issued
    db.session.commit()
    return seq.last_number


def _collision_markers(number_attr) -> set[str]:
    """Strings identifying a unique violation on ``number_attr`` across drivers.

    SQLite reports ``table.column``; PostgreSQL reports the constraint name.
    """
    column = number_attr.property.columns[0]
    markers = {f"{column.table.name}.{column.name}"}
    for constraint in column.table.constraints:
        if (
            isinstance(constraint, UniqueConstraint)
            and constraint.name
            and constraint.columns.contains_column(column)
        ):
            markers.add(constraint.name)
    return markers


def is_number_collision(exc: IntegrityError, number_attr) -> bool:
    message = str(getattr(exc, "orig", exc))
    return any(marker in message for marker in _collision_markers(number_attr))


def run_with_number_retry(
    operation: Callable[[], Any],
    *,
    resource: str,
    number_attr,
    scope: str,
    year: int,
    max_attempts: int | None = None,
) -> Any:
    """Run ``operation`` and commit, retrying on number collisions only.

    ``operation`` must allocate its number via ``allocate_number`` and add the
    numbered entity to the session. Each attempt is a fresh transaction;
    after a collision the sequence row is resynced so the next attempt
    derives a fresh number.

    Raises:
        ConflictError: every attempt collided on the number column.
        IntegrityError: a violation unrelated to the number column.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get("NUMBER_ALLOCATION_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    field = number_attr.property.columns[0].name

    for attempt in range(1, max_attempts + 1):
        try:
            result = operation()
            db.session.commit()
            return result
        except IntegrityError as exc:
            db.session.rollback()
            if not is_number_collision(exc, number_attr):
                raise
            logger.warning(
                "%s %s collision on attempt %d/%d",
                resource, field, attempt, max_attempts, extra={"scope": scope},
            )
            if attempt < max_attempts:
                resync_sequence(scope, year, number_attr)
        except Exception:
            db.session.rollback()
            raise

    logger.error(
        "%s %s allocation exhausted after %d attempts", resource, field, max_attempts,
        extra={"scope": scope},
    )
    raise ConflictError(resource, field)
