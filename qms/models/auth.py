"""
QMS Platform
Auth models — users and roles.

Models:
    - Role: named role with a numeric level used for coarse authorisation
    - User: local account with a bcrypt password hash
    - UserRole: user ↔ role assignment
"""

from datetime import datetime, timezone

from qms.models import db
from qms.models.soft_delete import ActiveFlagMixin
from qms.utils.helpers import iso

# ── Built-in roles ───────────────────────────────────────────────────────────

ROLE_LEVELS = {
    "superuser": 100,
    "admin": 90,
    "manager": 70,
    "auditor": 60,
    "user": 30,
    "viewer": 10,
}

ROLE_DESCRIPTIONS = {
    "superuser": "Full system access including process and role administration",
    "admin": "Administers users, departments, templates and backups",
    "manager": "Approves ideas, closes NCRs, manages CAPAs",
    "auditor": "Plans and performs audits, verifies CAPA effectiveness",
    "user": "Submits ideas and works on assigned tasks",
    "viewer": "Read-only access",
}


class Role(ActiveFlagMixin, db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    level = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "description": self.description,
            "active": self.active,
            "createdAt": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Role {self.name} ({self.level})>"


class User(ActiveFlagMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256))
    first_name = db.Column(db.String(100), nullable=False, default="")
    last_name = db.Column(db.String(100), nullable=False, default="")
    department = db.Column(db.String(100))
    last_login_at = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def role_names(self):
        """List of active role names for this user."""
        return [ur.role.name for ur in self.user_roles.all() if ur.role.active]

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "department": self.department,
            "active": self.active,
            "lastLoginAt": iso(self.last_login_at),
            "createdAt": iso(self.created_at),
        }
        if include_roles:
            d["roles"] = self.role_names
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class UserRole(db.Model):
    __tablename__ = "user_roles"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role")
