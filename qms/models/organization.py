"""
QMS Platform
Organisation models — departments and processes.

Both are reference entities: soft-deleted through ``active`` and unique on
name and code. Codes are stored upper-case.
"""

import re
from datetime import datetime, timezone

from qms.models import db
from qms.models.soft_delete import ActiveFlagMixin
from qms.utils.helpers import iso

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")

PROCESS_CATEGORIES = ("core", "management", "support")


class Department(ActiveFlagMixin, db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    manager = db.relationship("User", foreign_keys=[manager_id])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "managerId": self.manager_id,
            "managerName": self.manager.full_name if self.manager else None,
            "active": self.active,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Department {self.code}>"


class Process(ActiveFlagMixin, db.Model):
    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    process_owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    process_category = db.Column(db.String(50))
    objective = db.Column(db.Text)
    scope = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    department = db.relationship("Department")
    process_owner = db.relationship("User", foreign_keys=[process_owner_id])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "departmentId": self.department_id,
            "departmentName": self.department.name if self.department else None,
            "processOwnerId": self.process_owner_id,
            "processOwnerName": self.process_owner.full_name if self.process_owner else None,
            "processCategory": self.process_category,
            "objective": self.objective,
            "scope": self.scope,
            "active": self.active,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Process {self.code}>"
