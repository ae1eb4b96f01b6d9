"""
Audit Service — audit planning, execution and review workflow.

Lifecycle:
    planned → in_progress → completed → pending_review → approved → closed
                                                       ↘ rejected → in_progress (revise)
"""

import logging
from datetime import date, datetime, timezone

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.internal_audit import AUDIT_TYPES, Audit
from qms.services.code_generator import generate_audit_number
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.services.workflow import apply_transition, lock_for_update
from qms.utils.helpers import parse_date, text_value

logger = logging.getLogger(__name__)

RESOURCE = "Audit"
LABEL = "audit"

AUDIT_TRANSITIONS = {
    "start": {"from": ["planned"], "to": "in_progress"},
    "complete": {"from": ["in_progress"], "to": "completed"},
    "submit_for_review": {
        "from": ["completed"], "to": "pending_review",
        "message": "Only completed audits can be submitted for review",
    },
    "approve": {
        "from": ["pending_review"], "to": "approved",
        "message": "Only audits pending review can be approved",
    },
    "reject": {
        "from": ["pending_review"], "to": "rejected",
        "message": "Only audits pending review can be rejected",
    },
    "revise": {"from": ["rejected"], "to": "in_progress"},
    "close": {"from": ["approved"], "to": "closed"},
}

AUDIT_SORT_FIELDS = {
    "scheduledDate": Audit.scheduled_date,
    "completedDate": Audit.completed_date,
    "auditNumber": Audit.audit_number,
    "title": Audit.title,
    "createdAt": Audit.created_at,
}

_TEXT_FIELDS = {
    "description": "description",
    "scope": "scope",
    "department": "department",
    "auditCriteria": "audit_criteria",
    "relatedProcesses": "related_processes",
    "findings": "findings",
    "conclusions": "conclusions",
}


def _parse_required_date(value, field: str):
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(f"{field} must be a valid date", details={field: "invalid"})
    return parsed


def _validate_type(audit_type):
    if audit_type not in AUDIT_TYPES:
        raise ValidationError("Invalid auditType", details={"allowed": list(AUDIT_TYPES)})


def _require_user(user_id, label):
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(resource=label, resource_id=user_id)


def list_audits(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = Audit.query
    if filters.get("status"):
        q = q.filter(Audit.status == filters["status"])
    if filters.get("auditType"):
        q = q.filter(Audit.audit_type == filters["auditType"])
    if filters.get("department"):
        q = q.filter(Audit.department == filters["department"])
    if filters.get("leadAuditorId") is not None:
        q = q.filter(Audit.lead_auditor_id == filters["leadAuditorId"])
    q = apply_sort(q, AUDIT_SORT_FIELDS, sort_by, sort_order, default=("scheduledDate", "DESC"))
    return paginate(q, page, limit)


def get_audit(audit_id: int) -> Audit:
    return get_or_404(Audit, audit_id, RESOURCE)


def create_audit(data: dict, caller) -> Audit:
    title = text_value(data, "title")
    if not title:
        raise ValidationError("Title is required", details={"title": "required"})
    audit_type = data.get("auditType") or "internal"
    _validate_type(audit_type)
    scheduled = _parse_required_date(data.get("scheduledDate"), "scheduledDate")
    lead = data.get("leadAuditorId", caller.user_id)
    _require_user(lead, "Lead auditor")

    audit = Audit(
        audit_number=generate_audit_number(),
        title=title,
        audit_type=audit_type,
        scheduled_date=scheduled,
        lead_auditor_id=lead,
        status="planned",
        created_by=caller.user_id,
    )
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(audit, attr, data[key] if data[key] is not None else ("" if attr == "scope" else None))
    db.session.add(audit)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="audit",
        entity_type="audit", entity_id=audit.id, entity_identifier=audit.audit_number,
        new_values=audit.to_dict(),
    )
    return audit


def update_audit(audit_id: int, data: dict, caller) -> Audit:
    """Edit planning fields. Status changes go through the action endpoints."""
    audit = lock_for_update(Audit, audit_id, RESOURCE)
    if "status" in data and data["status"] != audit.status:
        raise ValidationError("Use the audit action endpoints to change status")
    old = audit.to_dict()

    if "title" in data:
        if not text_value(data, "title"):
            raise ValidationError("Title is required", details={"title": "required"})
        audit.title = text_value(data, "title")
    if "auditType" in data:
        _validate_type(data["auditType"])
        audit.audit_type = data["auditType"]
    if "scheduledDate" in data:
        audit.scheduled_date = _parse_required_date(data["scheduledDate"], "scheduledDate")
    if "leadAuditorId" in data:
        _require_user(data["leadAuditorId"], "Lead auditor")
        audit.lead_auditor_id = data["leadAuditorId"]
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(audit, attr, data[key] if data[key] is not None else ("" if attr == "scope" else None))

    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="audit",
        entity_type="audit", entity_id=audit.id, entity_identifier=audit.audit_number,
        old_values=old, new_values=audit.to_dict(),
    )
    return audit


def run_action(audit_id: int, action: str, caller, data: dict | None = None) -> Audit:
    """Execute a lifecycle action on an audit.

    ``complete`` stamps ``completedDate`` (today unless given); ``approve``
    and ``reject`` record the reviewer and comments, and ``reject``
    requires comments.
    """
    data = data or {}
    audit = lock_for_update(Audit, audit_id, RESOURCE)
    comments = text_value(data, "reviewComments") or text_value(data, "comments")
    changes = {}

    if action == "reject" and not comments:
        raise ValidationError("Review comments are required when rejecting an audit")
    if action == "complete":
        changes["completed_date"] = parse_date(data.get("completedDate")) or date.today()
        if data.get("conclusions"):
            changes["conclusions"] = data["conclusions"]
    if action in ("approve", "reject"):
        changes["reviewer_id"] = caller.user_id
        changes["reviewed_at"] = datetime.now(timezone.utc)
        changes["review_comments"] = comments or None

    apply_transition(audit, AUDIT_TRANSITIONS, action, caller, LABEL, changes=changes)
    return audit


def delete_audit(audit_id: int, caller) -> None:
    """Hard delete; findings cascade."""
    audit = get_audit(audit_id)
    snapshot = audit.to_dict()
    db.session.delete(audit)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="audit",
        entity_type="audit", entity_id=audit_id, entity_identifier=snapshot["auditNumber"],
        old_values=snapshot,
    )
