"""
Active-flag soft delete mixin.

Reference entities (departments, processes, roles, users) are never removed
physically; deleting clears ``active`` so historical records keep resolving.

Usage:
    class Department(ActiveFlagMixin, db.Model):
        ...

    dept.deactivate()
    Department.query_active().all()
"""

from qms.models import db


class ActiveFlagMixin:
    """Mixin that adds an ``active`` flag and query helpers."""

    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    def deactivate(self):
        """Mark this record as deleted."""
        self.active = False

    def restore(self):
        """Restore a soft-deleted record."""
        self.active = True

    @property
    def is_deleted(self):
        return not self.active

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.active.is_(True))
