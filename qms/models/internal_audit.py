"""
QMS Platform
Internal audit models — audits and the findings raised during them.

Audit lifecycle:
    planned → in_progress → completed → pending_review → approved | rejected
    rejected → in_progress (revise), approved → closed

Finding lifecycle:
    open → under_review → action_planned → resolved → closed
"""

from datetime import date, datetime, timezone

from qms.models import db
from qms.utils.helpers import iso

AUDIT_STATUSES = (
    "planned",
    "in_progress",
    "completed",
    "pending_review",
    "approved",
    "rejected",
    "closed",
)

AUDIT_TYPES = (
    "internal",
    "external",
    "process",
    "compliance",
    "product",
    "system",
    "supplier",
    "certification",
    "management_review",
)

FINDING_STATUSES = ("open", "under_review", "action_planned", "resolved", "closed")
FINDING_SEVERITIES = ("observation", "minor", "major", "critical")


class Audit(db.Model):
    __tablename__ = "audits"

    id = db.Column(db.Integer, primary_key=True)
    audit_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    audit_type = db.Column(db.String(50), nullable=False, default="internal", index=True)
    scope = db.Column(db.Text, nullable=False, default="")
    status = db.Column(db.String(30), nullable=False, default="planned", index=True)
    scheduled_date = db.Column(db.Date, nullable=False)
    completed_date = db.Column(db.Date)
    lead_auditor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    department = db.Column(db.String(100))
    audit_criteria = db.Column(db.Text)
    related_processes = db.Column(db.String(1000))
    findings = db.Column(db.Text)
    conclusions = db.Column(db.Text)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime)
    review_comments = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    finding_items = db.relationship(
        "AuditFinding", back_populates="audit",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    lead_auditor = db.relationship("User", foreign_keys=[lead_auditor_id])
    reviewer = db.relationship("User", foreign_keys=[reviewer_id])

    def to_dict(self):
        return {
            "id": self.id,
            "auditNumber": self.audit_number,
            "title": self.title,
            "description": self.description,
            "auditType": self.audit_type,
            "scope": self.scope,
            "status": self.status,
            "scheduledDate": iso(self.scheduled_date),
            "completedDate": iso(self.completed_date),
            "leadAuditorId": self.lead_auditor_id,
            "leadAuditorName": self.lead_auditor.full_name if self.lead_auditor else None,
            "department": self.department,
            "auditCriteria": self.audit_criteria,
            "relatedProcesses": self.related_processes,
            "findings": self.findings,
            "conclusions": self.conclusions,
            "reviewerId": self.reviewer_id,
            "reviewerName": self.reviewer.full_name if self.reviewer else None,
            "reviewedAt": iso(self.reviewed_at),
            "reviewComments": self.review_comments,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Audit {self.audit_number} [{self.status}]>"


class AuditFinding(db.Model):
    __tablename__ = "audit_findings"

    id = db.Column(db.Integer, primary_key=True)
    finding_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    audit_id = db.Column(db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(200), nullable=False)
    severity = db.Column(db.String(20), nullable=False, index=True)
    evidence = db.Column(db.Text)
    root_cause = db.Column(db.Text)
    audit_criteria = db.Column(db.String(1000))
    clause_reference = db.Column(db.String(200))
    recommendations = db.Column(db.Text)
    requires_ncr = db.Column(db.Boolean, nullable=False, default=False)
    ncr_id = db.Column(db.Integer, db.ForeignKey("ncrs.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(30), nullable=False, default="open", index=True)
    identified_date = db.Column(db.Date, nullable=False, default=date.today)
    target_close_date = db.Column(db.Date)
    closed_date = db.Column(db.Date)
    identified_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_date = db.Column(db.Date)
    department = db.Column(db.String(100))
    process_id = db.Column(db.Integer, db.ForeignKey("processes.id", ondelete="SET NULL"), nullable=True)
    affected_area = db.Column(db.String(500))
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    audit = db.relationship("Audit", back_populates="finding_items")
    ncr = db.relationship("NCR")
    identifier = db.relationship("User", foreign_keys=[identified_by])
    assignee = db.relationship("User", foreign_keys=[assigned_to])

    def to_dict(self):
        return {
            "id": self.id,
            "findingNumber": self.finding_number,
            "auditId": self.audit_id,
            "auditNumber": self.audit.audit_number if self.audit else None,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "evidence": self.evidence,
            "rootCause": self.root_cause,
            "auditCriteria": self.audit_criteria,
            "clauseReference": self.clause_reference,
            "recommendations": self.recommendations,
            "requiresNCR": self.requires_ncr,
            "ncrId": self.ncr_id,
            "ncrNumber": self.ncr.ncr_number if self.ncr else None,
            "status": self.status,
            "identifiedDate": iso(self.identified_date),
            "targetCloseDate": iso(self.target_close_date),
            "closedDate": iso(self.closed_date),
            "identifiedBy": self.identified_by,
            "identifiedByName": self.identifier.full_name if self.identifier else None,
            "assignedTo": self.assigned_to,
            "assignedToName": self.assignee.full_name if self.assignee else None,
            "verifiedBy": self.verified_by,
            "verifiedDate": iso(self.verified_date),
            "department": self.department,
            "processId": self.process_id,
            "affectedArea": self.affected_area,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<AuditFinding {self.finding_number} [{self.status}]>"
