"""
QMS Platform
Non-conformance report model and classification constants.

Severity drives an impact score (minor 1, major 5, critical 10) used for
prioritisation and the NCR metrics endpoint.
"""

from datetime import datetime, timezone

from qms.models import db
from qms.utils.helpers import iso

NCR_STATUSES = ("open", "in_progress", "resolved", "closed", "rejected")

# ── Classification ───────────────────────────────────────────────────────────

SEVERITIES = ("minor", "major", "critical")

SOURCES = (
    "Internal Audit",
    "External Audit",
    "Customer Complaint",
    "Supplier Issue",
    "Process Monitoring",
    "Inspection",
    "Management Review",
    "Employee Report",
    "Other",
)

TYPES = (
    "Product Quality",
    "Process Deviation",
    "Documentation",
    "Equipment/Facility",
    "Personnel/Training",
    "Safety",
    "Environmental",
    "Regulatory Compliance",
    "Supplier Quality",
    "Other",
)

IMPACT_SCORES = {"minor": 1, "major": 5, "critical": 10}

SEVERITY_DESCRIPTIONS = {
    "minor": (
        "Low impact to quality, safety, or compliance. Minimal disruption to "
        "operations. Does not affect product conformity."
    ),
    "major": (
        "Significant impact to quality, safety, or compliance. May affect product "
        "conformity or customer satisfaction. Requires prompt attention."
    ),
    "critical": (
        "Severe impact to quality, safety, or compliance. Affects product safety, "
        "regulatory compliance, or could result in significant customer impact. "
        "Requires immediate action."
    ),
}

SOURCE_DESCRIPTIONS = {
    "Internal Audit": "Issues identified during internal quality system audits",
    "External Audit": "Issues identified during external or certification audits",
    "Customer Complaint": "Issues reported by customers regarding products or services",
    "Supplier Issue": "Issues related to supplier quality or delivery",
    "Process Monitoring": "Issues detected through ongoing process performance monitoring",
    "Inspection": "Issues found during product or process inspections",
    "Management Review": "Issues identified during management review meetings",
    "Employee Report": "Issues reported by employees through quality reporting channels",
    "Other": "Issues from other sources not listed above",
}

TYPE_DESCRIPTIONS = {
    "Product Quality": "Non-conformances related to product specifications, characteristics, or quality requirements",
    "Process Deviation": "Deviations from established processes, procedures, or work instructions",
    "Documentation": "Issues with quality documentation, records, or document control",
    "Equipment/Facility": "Non-conformances related to equipment, tooling, or facility conditions",
    "Personnel/Training": "Issues related to personnel competence, training, or qualification",
    "Safety": "Safety-related non-conformances affecting personnel or workplace safety",
    "Environmental": "Environmental compliance or environmental management system issues",
    "Regulatory Compliance": "Non-conformances related to regulatory or statutory requirements",
    "Supplier Quality": "Issues with supplier quality, materials, or components",
    "Other": "Non-conformances not falling into other defined categories",
}


def impact_score(severity):
    """Numeric impact score for a severity; 0 for unknown values."""
    return IMPACT_SCORES.get(severity, 0)


class NCR(db.Model):
    __tablename__ = "ncrs"

    id = db.Column(db.Integer, primary_key=True)
    ncr_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False)
    source = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(200), nullable=False)
    severity = db.Column(db.String(20), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    detected_date = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    closed_date = db.Column(db.DateTime)
    reported_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verified_date = db.Column(db.DateTime)
    root_cause = db.Column(db.Text)
    containment_action = db.Column(db.Text)
    corrective_action = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    reporter = db.relationship("User", foreign_keys=[reported_by])
    assignee = db.relationship("User", foreign_keys=[assigned_to])

    @property
    def impact_score(self):
        return impact_score(self.severity)

    def to_dict(self):
        return {
            "id": self.id,
            "ncrNumber": self.ncr_number,
            "title": self.title,
            "description": self.description,
            "source": self.source,
            "category": self.category,
            "severity": self.severity,
            "impactScore": self.impact_score,
            "status": self.status,
            "detectedDate": iso(self.detected_date),
            "closedDate": iso(self.closed_date),
            "reportedBy": self.reported_by,
            "reportedByName": self.reporter.full_name if self.reporter else None,
            "assignedTo": self.assigned_to,
            "assignedToName": self.assignee.full_name if self.assignee else None,
            "verifiedBy": self.verified_by,
            "verifiedDate": iso(self.verified_date),
            "rootCause": self.root_cause,
            "containmentAction": self.containment_action,
            "correctiveAction": self.corrective_action,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<NCR {self.ncr_number} [{self.status}]>"
