"""
NCR Service — non-conformance reports, classification, metrics.

Lifecycle:
    open → in_progress → resolved → closed
    open | in_progress → rejected
    resolved | rejected → in_progress (reopen)

Closing is restricted to admin / manager / superuser and records the
verifier.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.ncr import (
    IMPACT_SCORES,
    NCR,
    NCR_STATUSES,
    SEVERITIES,
    SEVERITY_DESCRIPTIONS,
    SOURCE_DESCRIPTIONS,
    SOURCES,
    TYPE_DESCRIPTIONS,
    TYPES,
)
from qms.services.code_generator import generate_ncr_number
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.services.workflow import action_for_status, apply_transition, lock_for_update
from qms.utils.helpers import parse_datetime, text_value

logger = logging.getLogger(__name__)

RESOURCE = "NCR"
LABEL = "NCR"

NCR_TRANSITIONS = {
    "start": {"from": ["open"], "to": "in_progress"},
    "resolve": {"from": ["open", "in_progress"], "to": "resolved"},
    "close": {
        "from": ["resolved"], "to": "closed",
        "roles": ["admin", "manager"],
        "forbidden_message": "Only Admin and Manager can close NCRs",
    },
    "reject": {"from": ["open", "in_progress"], "to": "rejected"},
    "reopen": {"from": ["resolved", "rejected"], "to": "in_progress"},
}

NCR_SORT_FIELDS = {
    "detectedDate": NCR.detected_date,
    "createdAt": NCR.created_at,
    "ncrNumber": NCR.ncr_number,
    "severity": NCR.severity,
    "title": NCR.title,
}

_TEXT_FIELDS = {
    "title": "title",
    "description": "description",
    "rootCause": "root_cause",
    "containmentAction": "containment_action",
    "correctiveAction": "corrective_action",
}


def classification_options() -> dict:
    return {
        "severities": list(SEVERITIES),
        "sources": list(SOURCES),
        "types": list(TYPES),
        "severityDescriptions": SEVERITY_DESCRIPTIONS,
        "sourceDescriptions": SOURCE_DESCRIPTIONS,
        "typeDescriptions": TYPE_DESCRIPTIONS,
        "impactScores": IMPACT_SCORES,
    }


def _validate_classification(data: dict):
    errors = {}
    if "severity" in data and data["severity"] not in SEVERITIES:
        errors["severity"] = f"must be one of {', '.join(SEVERITIES)}"
    if "source" in data and data["source"] not in SOURCES:
        errors["source"] = "unknown source"
    if "category" in data and data["category"] not in TYPES:
        errors["category"] = "unknown category"
    if errors:
        raise ValidationError("Invalid NCR classification", details=errors)


def _require_user(user_id, label):
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(resource=label, resource_id=user_id)


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_ncrs(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = NCR.query
    for key, column in (
        ("status", NCR.status),
        ("severity", NCR.severity),
        ("category", NCR.category),
        ("source", NCR.source),
        ("assignedTo", NCR.assigned_to),
    ):
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(column == value)
    q = apply_sort(q, NCR_SORT_FIELDS, sort_by, sort_order, default=("detectedDate", "DESC"))
    return paginate(q, page, limit)


def get_ncr(ncr_id: int) -> NCR:
    return get_or_404(NCR, ncr_id, RESOURCE)


def get_metrics() -> dict:
    """Impact score totals plus severity / status / category / source breakdowns."""
    rows = db.session.query(NCR.severity, func.count(NCR.id)).group_by(NCR.severity).all()
    by_severity = {sev: count for sev, count in rows}
    total = sum(by_severity.values())
    total_score = sum(IMPACT_SCORES.get(sev, 0) * count for sev, count in by_severity.items())

    def _group(column):
        return {
            key or "unspecified": count
            for key, count in db.session.query(column, func.count(NCR.id)).group_by(column).all()
        }

    open_rows = (
        db.session.query(NCR.severity, func.count(NCR.id))
        .filter(NCR.status.notin_(("closed", "rejected")))
        .group_by(NCR.severity)
        .all()
    )
    return {
        "totalNCRs": total,
        "totalImpactScore": total_score,
        "averageImpactScore": round(total_score / total, 2) if total else 0,
        "openImpactScore": sum(IMPACT_SCORES.get(sev, 0) * c for sev, c in open_rows),
        "bySeverity": by_severity,
        "byStatus": _group(NCR.status),
        "byCategory": _group(NCR.category),
        "bySource": _group(NCR.source),
    }


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_ncr(data: dict, caller) -> NCR:
    required = ("title", "description", "source", "category", "severity")
    missing = [k for k in required if not data.get(k)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    _validate_classification(data)
    _require_user(data.get("assignedTo"), "Assigned user")

    detected = datetime.now(timezone.utc)
    if data.get("detectedDate"):
        detected = parse_datetime(data["detectedDate"])
        if detected is None:
            raise ValidationError("detectedDate must be a valid date")

    ncr = NCR(
        ncr_number=generate_ncr_number(),
        source=data["source"],
        category=data["category"],
        severity=data["severity"],
        status="open",
        detected_date=detected,
        reported_by=caller.user_id,
        assigned_to=data.get("assignedTo"),
    )
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(ncr, attr, data[key])
    db.session.add(ncr)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="ncr",
        entity_type="ncr", entity_id=ncr.id, entity_identifier=ncr.ncr_number,
        new_values=ncr.to_dict(),
    )
    logger.info("NCR %s raised (%s) by user %s", ncr.ncr_number, ncr.severity, caller.user_id)
    return ncr


def update_ncr(ncr_id: int, data: dict, caller) -> NCR:
    """Edit NCR fields. Status changes use ``update_status``."""
    ncr = lock_for_update(NCR, ncr_id, RESOURCE)
    if "status" in data and data["status"] != ncr.status:
        raise ValidationError("Use the status endpoint to change an NCR's status")
    _validate_classification(data)
    old = ncr.to_dict()

    for key in ("source", "category", "severity"):
        if key in data:
            setattr(ncr, key, data[key])
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            if key in ("title", "description") and not text_value(data, key):
                raise ValidationError(f"{key} is required")
            setattr(ncr, attr, data[key])
    if "assignedTo" in data:
        _require_user(data["assignedTo"], "Assigned user")
        ncr.assigned_to = data["assignedTo"]
    if "detectedDate" in data:
        detected = parse_datetime(data["detectedDate"])
        if detected is None:
            raise ValidationError("detectedDate must be a valid date")
        ncr.detected_date = detected

    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="ncr",
        entity_type="ncr", entity_id=ncr.id, entity_identifier=ncr.ncr_number,
        old_values=old, new_values=ncr.to_dict(),
    )
    return ncr


def update_status(ncr_id: int, status: str, caller) -> NCR:
    if status not in NCR_STATUSES:
        raise ValidationError(f"Invalid status '{status}'", details={"allowed": list(NCR_STATUSES)})
    ncr = lock_for_update(NCR, ncr_id, RESOURCE)
    action = action_for_status(NCR_TRANSITIONS, ncr.status, status)
    if action is None:
        raise ValidationError(f"Cannot change NCR status to '{status}'")

    now = datetime.now(timezone.utc)
    changes = {}
    if action == "close":
        changes = {"closed_date": now, "verified_by": caller.user_id, "verified_date": now}
    elif action == "reopen":
        changes = {"closed_date": None}
    apply_transition(ncr, NCR_TRANSITIONS, action, caller, LABEL, changes=changes)
    return ncr


def assign_ncr(ncr_id: int, assigned_to, caller) -> NCR:
    if assigned_to is None:
        raise ValidationError("assignedTo is required")
    ncr = lock_for_update(NCR, ncr_id, RESOURCE)
    _require_user(assigned_to, "Assigned user")
    previous = ncr.assigned_to
    ncr.assigned_to = assigned_to
    db.session.flush()
    write_audit(
        caller=caller, action="assign", action_category="ncr",
        entity_type="ncr", entity_id=ncr.id, entity_identifier=ncr.ncr_number,
        old_values={"assignedTo": previous}, new_values={"assignedTo": assigned_to},
    )
    return ncr


def delete_ncr(ncr_id: int, caller) -> None:
    ncr = get_ncr(ncr_id)
    snapshot = ncr.to_dict()
    db.session.delete(ncr)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="ncr",
        entity_type="ncr", entity_id=ncr_id, entity_identifier=snapshot["ncrNumber"],
        old_values=snapshot,
    )
