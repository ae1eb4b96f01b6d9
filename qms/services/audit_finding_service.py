"""
Audit Finding Service — findings raised during audits, NCR linkage, statistics.

Finding lifecycle:
    open → under_review → action_planned → resolved → closed
    resolved | closed → open (reopen)
"""

import logging
from datetime import date

from sqlalchemy import func

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.internal_audit import FINDING_SEVERITIES, FINDING_STATUSES, Audit, AuditFinding
from qms.models.ncr import NCR
from qms.models.organization import Process
from qms.services.code_generator import generate_finding_number
from qms.services.helpers.queries import get_or_404
from qms.services.workflow import action_for_status, apply_transition, lock_for_update
from qms.utils.helpers import parse_date

logger = logging.getLogger(__name__)

RESOURCE = "Audit finding"
LABEL = "finding"

FINDING_TRANSITIONS = {
    "review": {"from": ["open"], "to": "under_review"},
    "plan_action": {"from": ["open", "under_review"], "to": "action_planned"},
    "resolve": {"from": ["action_planned"], "to": "resolved"},
    "close": {"from": ["resolved"], "to": "closed"},
    "reopen": {"from": ["resolved", "closed"], "to": "open"},
}

_TEXT_FIELDS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "evidence": "evidence",
    "rootCause": "root_cause",
    "auditCriteria": "audit_criteria",
    "clauseReference": "clause_reference",
    "recommendations": "recommendations",
    "department": "department",
    "affectedArea": "affected_area",
}
_DATE_FIELDS = {
    "identifiedDate": "identified_date",
    "targetCloseDate": "target_close_date",
    "verifiedDate": "verified_date",
}
_USER_FIELDS = {
    "identifiedBy": "identified_by",
    "assignedTo": "assigned_to",
    "verifiedBy": "verified_by",
}


def _apply_fields(finding: AuditFinding, data: dict):
    if "severity" in data:
        if data["severity"] not in FINDING_SEVERITIES:
            raise ValidationError("Invalid severity", details={"allowed": list(FINDING_SEVERITIES)})
        finding.severity = data["severity"]
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(finding, attr, data[key])
    for key, attr in _DATE_FIELDS.items():
        if key in data:
            value = parse_date(data[key]) if data[key] else None
            if data[key] and value is None:
                raise ValidationError(f"{key} must be a valid date")
            setattr(finding, attr, value)
    for key, attr in _USER_FIELDS.items():
        if key in data:
            if data[key] is not None and db.session.get(User, data[key]) is None:
                raise NotFoundError(resource="User", resource_id=data[key])
            setattr(finding, attr, data[key])
    if "processId" in data:
        if data["processId"] is not None and db.session.get(Process, data["processId"]) is None:
            raise NotFoundError(resource="Process", resource_id=data["processId"])
        finding.process_id = data["processId"]
    if "requiresNCR" in data:
        finding.requires_ncr = bool(data["requiresNCR"])


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_findings(filters: dict) -> list[dict]:
    q = AuditFinding.query
    for key, column in (
        ("status", AuditFinding.status),
        ("severity", AuditFinding.severity),
        ("auditId", AuditFinding.audit_id),
        ("assignedTo", AuditFinding.assigned_to),
        ("category", AuditFinding.category),
    ):
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(column == value)
    rows = q.order_by(AuditFinding.identified_date.desc(), AuditFinding.id.desc()).all()
    return [f.to_dict() for f in rows]


def get_finding(finding_id: int) -> AuditFinding:
    return get_or_404(AuditFinding, finding_id, RESOURCE)


def list_findings_for_audit(audit_id: int) -> list[dict]:
    get_or_404(Audit, audit_id, "Audit")
    rows = (
        AuditFinding.query.filter_by(audit_id=audit_id)
        .order_by(AuditFinding.identified_date.desc(), AuditFinding.id.desc())
        .all()
    )
    return [f.to_dict() for f in rows]


def get_stats_for_audit(audit_id: int) -> dict:
    """``{total, bySeverity, byStatus}`` for one audit."""
    rows = (
        db.session.query(AuditFinding.severity, AuditFinding.status, func.count(AuditFinding.id))
        .filter(AuditFinding.audit_id == audit_id)
        .group_by(AuditFinding.severity, AuditFinding.status)
        .all()
    )
    stats = {"total": 0, "bySeverity": {}, "byStatus": {}}
    for severity, status, count in rows:
        stats["total"] += count
        stats["bySeverity"][severity] = stats["bySeverity"].get(severity, 0) + count
        stats["byStatus"][status] = stats["byStatus"].get(status, 0) + count
    return stats


def get_summary(start_date=None, end_date=None, process_id=None) -> dict:
    """Totals by severity, status and category over an identification window."""
    q = db.session.query(AuditFinding)
    if start_date:
        q = q.filter(AuditFinding.identified_date >= start_date)
    if end_date:
        q = q.filter(AuditFinding.identified_date <= end_date)
    if process_id is not None:
        q = q.filter(AuditFinding.process_id == process_id)

    def _group(column):
        rows = q.with_entities(column, func.count(AuditFinding.id)).group_by(column).all()
        return {key or "unspecified": count for key, count in rows}

    today = date.today()
    return {
        "total": q.count(),
        "bySeverity": _group(AuditFinding.severity),
        "byStatus": _group(AuditFinding.status),
        "byCategory": _group(AuditFinding.category),
        "linkedToNCR": q.filter(AuditFinding.ncr_id.isnot(None)).count(),
        "overdue": q.filter(
            AuditFinding.target_close_date < today,
            AuditFinding.status.notin_(("resolved", "closed")),
        ).count(),
    }


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_finding(data: dict, caller) -> AuditFinding:
    missing = [k for k in ("auditId", "title", "description", "category", "severity") if not data.get(k)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    get_or_404(Audit, data["auditId"], "Audit")

    finding = AuditFinding(
        finding_number=generate_finding_number(),
        audit_id=data["auditId"],
        status="open",
        identified_date=date.today(),
        identified_by=caller.user_id,
        created_by=caller.user_id,
    )
    _apply_fields(finding, data)
    db.session.add(finding)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="audit",
        entity_type="audit_finding", entity_id=finding.id, entity_identifier=finding.finding_number,
        new_values=finding.to_dict(),
    )
    return finding


def update_finding(finding_id: int, data: dict, caller) -> AuditFinding:
    """Edit a finding. A changed ``status`` goes through the transition table."""
    finding = lock_for_update(AuditFinding, finding_id, RESOURCE)
    old = finding.to_dict()
    _apply_fields(finding, {k: v for k, v in data.items() if k != "auditId"})

    target = data.get("status")
    if target and target != finding.status:
        if target not in FINDING_STATUSES:
            raise ValidationError(f"Invalid status '{target}'", details={"allowed": list(FINDING_STATUSES)})
        action = action_for_status(FINDING_TRANSITIONS, finding.status, target)
        if action is None:
            raise ValidationError(f"Cannot change finding status to '{target}'")
        changes = {}
        if action == "close":
            changes["closed_date"] = parse_date(data.get("closedDate")) or date.today()
        elif action == "reopen":
            changes["closed_date"] = None
        apply_transition(finding, FINDING_TRANSITIONS, action, caller, LABEL, changes=changes)

    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="audit",
        entity_type="audit_finding", entity_id=finding.id, entity_identifier=finding.finding_number,
        old_values=old, new_values=finding.to_dict(),
    )
    return finding


def link_to_ncr(finding_id: int, ncr_id, caller) -> AuditFinding:
    if not ncr_id:
        raise ValidationError("NCR ID is required")
    finding = lock_for_update(AuditFinding, finding_id, RESOURCE)
    get_or_404(NCR, ncr_id, "NCR")
    finding.ncr_id = ncr_id
    finding.requires_ncr = True
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="audit",
        entity_type="audit_finding", entity_id=finding.id, entity_identifier=finding.finding_number,
        description=f"Linked to NCR {ncr_id}", new_values={"ncrId": ncr_id, "requiresNCR": True},
    )
    return finding


def delete_finding(finding_id: int, caller) -> None:
    finding = get_finding(finding_id)
    snapshot = finding.to_dict()
    db.session.delete(finding)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="audit",
        entity_type="audit_finding", entity_id=finding_id, entity_identifier=snapshot["findingNumber"],
        old_values=snapshot,
    )
