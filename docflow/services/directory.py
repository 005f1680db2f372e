"""
Directory lookups used by the escalation path.

Department/user management is an external collaborator; this module only
answers the three questions auto-reassignment and notification fan-out ask.
"""

from __future__ import annotations

from sqlalchemy import select

from docflow.models import db
from docflow.models.directory import ADMIN_ROLE, Role, User, UserRole


def _admin_users_stmt():
    return (
        select(User.id)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .where(Role.role_name == ADMIN_ROLE, User.is_active.is_(True))
    )


def find_active_admin_in_department(department_id: int | None) -> int | None:
    """Lowest-id active ADMIN in the department, or None."""
    if department_id is None:
        return None
    stmt = _admin_users_stmt().where(User.department_id == department_id).order_by(User.id).limit(1)
    return db.session.execute(stmt).scalar_one_or_none()


def find_any_active_user_in_department(department_id: int | None) -> int | None:
    if department_id is None:
        return None
    stmt = (
        select(User.id)
        .where(User.department_id == department_id, User.is_active.is_(True))
        .order_by(User.id)
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def list_active_admins() -> list[int]:
    """Every active ADMIN across departments, ordered by id."""
    stmt = _admin_users_stmt().order_by(User.id).distinct()
    return list(db.session.execute(stmt).scalars())
