"""
Docflow Routing & Escalation Engine
Directory models - read-only from the engine's point of view.

Department and user management lives in an external collaborator; these
tables only carry the columns the escalation path queries
(activity flag, department membership, role names).

Models:
    - Department
    - User
    - Role
    - UserRole
"""

from datetime import datetime, timezone

from docflow.models import db

ADMIN_ROLE = "ADMIN"


class Department(db.Model):
    """Organisational unit that distributions are routed to."""

    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    status = db.Column(db.String(20), default="Active")

    users = db.relationship("User", back_populates="department", lazy="dynamic")

    def to_dict(self):
        return {"id": self.id, "name": self.name, "status": self.status}

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    department = db.relationship("Department", back_populates="users")
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "department_id": self.department_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.full_name}>"


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    role_name = db.Column(db.String(50), nullable=False, unique=True)

    def __repr__(self):
        return f"<Role {self.role_name}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)

    user = db.relationship("User", back_populates="user_roles")
    role = db.relationship("Role")
