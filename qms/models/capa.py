"""
QMS Platform
Corrective and preventive action model.

Lifecycle: open → in_progress → completed → verified → closed.
"""

from datetime import date, datetime, timezone

from qms.models import db
from qms.utils.helpers import iso

CAPA_STATUSES = ("open", "in_progress", "completed", "verified", "closed")
CAPA_TYPES = ("corrective", "preventive")
CAPA_PRIORITIES = ("low", "medium", "high", "urgent")


class CAPA(db.Model):
    __tablename__ = "capas"

    id = db.Column(db.Integer, primary_key=True)
    capa_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False)
    source = db.Column(db.String(200), nullable=False)
    priority = db.Column(db.String(20), nullable=False, default="medium", index=True)
    ncr_id = db.Column(db.Integer, db.ForeignKey("ncrs.id", ondelete="SET NULL"), nullable=True, index=True)
    audit_id = db.Column(db.Integer, db.ForeignKey("audits.id", ondelete="SET NULL"), nullable=True)
    root_cause = db.Column(db.Text)
    proposed_action = db.Column(db.Text, nullable=False)
    action_owner = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    target_date = db.Column(db.Date, nullable=False)
    completed_date = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    effectiveness = db.Column(db.Text)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_date = db.Column(db.DateTime)
    closed_date = db.Column(db.DateTime)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    ncr = db.relationship("NCR")
    owner = db.relationship("User", foreign_keys=[action_owner])

    @property
    def is_overdue(self):
        return (
            self.target_date is not None
            and self.target_date < date.today()
            and self.status not in ("completed", "verified", "closed")
        )

    def to_dict(self):
        return {
            "id": self.id,
            "capaNumber": self.capa_number,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "source": self.source,
            "priority": self.priority,
            "ncrId": self.ncr_id,
            "ncrNumber": self.ncr.ncr_number if self.ncr else None,
            "auditId": self.audit_id,
            "rootCause": self.root_cause,
            "proposedAction": self.proposed_action,
            "actionOwner": self.action_owner,
            "actionOwnerName": self.owner.full_name if self.owner else None,
            "targetDate": iso(self.target_date),
            "completedDate": iso(self.completed_date),
            "status": self.status,
            "isOverdue": self.is_overdue,
            "effectiveness": self.effectiveness,
            "verifiedBy": self.verified_by,
            "verifiedDate": iso(self.verified_date),
            "closedDate": iso(self.closed_date),
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<CAPA {self.capa_number} [{self.status}]>"
