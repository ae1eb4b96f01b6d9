"""
CAPA Service — corrective and preventive actions.

Lifecycle:
    open → in_progress → completed → verified → closed
    completed → in_progress (reopen)

Completion is done by the action owner (or a manager/admin). Effectiveness
verification is done by admin / manager / auditor, never by the action owner.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func

from qms.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.capa import CAPA, CAPA_PRIORITIES, CAPA_STATUSES, CAPA_TYPES
from qms.models.internal_audit import Audit
from qms.models.ncr import NCR
from qms.services.code_generator import generate_capa_number
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.services.workflow import action_for_status, apply_transition, lock_for_update
from qms.utils.helpers import parse_date

logger = logging.getLogger(__name__)

RESOURCE = "CAPA"
LABEL = "CAPA"

CAPA_TRANSITIONS = {
    "start": {"from": ["open"], "to": "in_progress"},
    "complete": {"from": ["open", "in_progress"], "to": "completed"},
    "verify": {
        "from": ["completed"], "to": "verified",
        "roles": ["admin", "manager", "auditor"],
    },
    "close": {
        "from": ["verified"], "to": "closed",
        "roles": ["admin", "manager"],
    },
    "reopen": {"from": ["completed"], "to": "in_progress"},
}

CAPA_SORT_FIELDS = {
    "targetDate": CAPA.target_date,
    "createdAt": CAPA.created_at,
    "priority": CAPA.priority,
    "capaNumber": CAPA.capa_number,
    "title": CAPA.title,
}

_OPEN_STATUSES = ("open", "in_progress")

_TEXT_FIELDS = {
    "title": "title",
    "description": "description",
    "source": "source",
    "rootCause": "root_cause",
    "proposedAction": "proposed_action",
}


def _validate(data: dict):
    if "type" in data and data["type"] not in CAPA_TYPES:
        raise ValidationError("Invalid type", details={"allowed": list(CAPA_TYPES)})
    if "priority" in data and data["priority"] not in CAPA_PRIORITIES:
        raise ValidationError("Invalid priority", details={"allowed": list(CAPA_PRIORITIES)})
    if data.get("ncrId") is not None:
        get_or_404(NCR, data["ncrId"], "NCR")
    if data.get("auditId") is not None:
        get_or_404(Audit, data["auditId"], "Audit")
    if data.get("actionOwner") is not None and db.session.get(User, data["actionOwner"]) is None:
        raise NotFoundError(resource="Action owner", resource_id=data["actionOwner"])


def _parse_target(value):
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("targetDate must be a valid date", details={"targetDate": "invalid"})
    return parsed


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_capas(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = CAPA.query
    for key, column in (
        ("status", CAPA.status),
        ("priority", CAPA.priority),
        ("type", CAPA.type),
        ("actionOwner", CAPA.action_owner),
        ("ncrId", CAPA.ncr_id),
    ):
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(column == value)
    q = apply_sort(q, CAPA_SORT_FIELDS, sort_by, sort_order, default=("targetDate", "ASC"))
    return paginate(q, page, limit)


def get_capa(capa_id: int) -> CAPA:
    return get_or_404(CAPA, capa_id, RESOURCE)


def list_assigned_to(user_id: int) -> list[dict]:
    rows = (
        CAPA.query
        .filter(CAPA.action_owner == user_id, CAPA.status != "closed")
        .order_by(CAPA.target_date.asc(), CAPA.id.asc())
        .all()
    )
    return [c.to_dict() for c in rows]


def list_overdue() -> list[dict]:
    rows = (
        CAPA.query
        .filter(CAPA.target_date < date.today(), CAPA.status.in_(_OPEN_STATUSES))
        .order_by(CAPA.target_date.asc(), CAPA.id.asc())
        .all()
    )
    return [c.to_dict() for c in rows]


def dashboard_stats() -> dict:
    by_status = dict(db.session.query(CAPA.status, func.count(CAPA.id)).group_by(CAPA.status).all())
    by_priority = dict(db.session.query(CAPA.priority, func.count(CAPA.id)).group_by(CAPA.priority).all())
    by_type = dict(db.session.query(CAPA.type, func.count(CAPA.id)).group_by(CAPA.type).all())
    overdue = CAPA.query.filter(
        CAPA.target_date < date.today(), CAPA.status.in_(_OPEN_STATUSES)
    ).count()
    return {
        "totalCAPAs": sum(by_status.values()),
        "open": by_status.get("open", 0),
        "inProgress": by_status.get("in_progress", 0),
        "completed": by_status.get("completed", 0),
        "verified": by_status.get("verified", 0),
        "closed": by_status.get("closed", 0),
        "overdue": overdue,
        "byPriority": by_priority,
        "byType": by_type,
    }


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_capa(data: dict, caller) -> CAPA:
    required = ("title", "description", "type", "source", "priority", "proposedAction", "actionOwner", "targetDate")
    missing = [k for k in required if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    _validate(data)

    capa = CAPA(
        capa_number=generate_capa_number(),
        type=data["type"],
        priority=data["priority"],
        ncr_id=data.get("ncrId"),
        audit_id=data.get("auditId"),
        action_owner=data["actionOwner"],
        target_date=_parse_target(data["targetDate"]),
        status="open",
        created_by=caller.user_id,
    )
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(capa, attr, data[key])
    db.session.add(capa)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="capa",
        entity_type="capa", entity_id=capa.id, entity_identifier=capa.capa_number,
        new_values=capa.to_dict(),
    )
    return capa


def update_capa(capa_id: int, data: dict, caller) -> CAPA:
    capa = lock_for_update(CAPA, capa_id, RESOURCE)
    if "status" in data and data["status"] != capa.status:
        raise ValidationError("Use the status endpoint to change a CAPA's status")
    _validate(data)
    old = capa.to_dict()

    for key in ("type", "priority"):
        if key in data:
            setattr(capa, key, data[key])
    for key, attr in (("ncrId", "ncr_id"), ("auditId", "audit_id"), ("actionOwner", "action_owner")):
        if key in data:
            setattr(capa, attr, data[key])
    if "targetDate" in data:
        capa.target_date = _parse_target(data["targetDate"])
    for key, attr in _TEXT_FIELDS.items():
        if key in data:
            setattr(capa, attr, data[key])

    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="capa",
        entity_type="capa", entity_id=capa.id, entity_identifier=capa.capa_number,
        old_values=old, new_values=capa.to_dict(),
    )
    return capa


def assign_capa(capa_id: int, action_owner, target_date, caller) -> CAPA:
    if action_owner is None:
        raise ValidationError("actionOwner is required")
    capa = lock_for_update(CAPA, capa_id, RESOURCE)
    if db.session.get(User, action_owner) is None:
        raise NotFoundError(resource="Action owner", resource_id=action_owner)
    old = {"actionOwner": capa.action_owner, "targetDate": capa.target_date}
    capa.action_owner = action_owner
    if target_date:
        capa.target_date = _parse_target(target_date)
    db.session.flush()
    write_audit(
        caller=caller, action="assign", action_category="capa",
        entity_type="capa", entity_id=capa.id, entity_identifier=capa.capa_number,
        old_values=old, new_values={"actionOwner": capa.action_owner, "targetDate": capa.target_date},
    )
    return capa


def _check_owner_or_manager(capa: CAPA, caller, message: str):
    if capa.action_owner != caller.user_id and not caller.has_role("admin", "manager"):
        raise PermissionDenied(message)


def _changes_for(capa: CAPA, action: str, caller, data: dict) -> dict:
    now = datetime.now(timezone.utc)
    if action == "complete":
        changes = {"completed_date": now}
        if data.get("rootCause"):
            changes["root_cause"] = data["rootCause"]
        return changes
    if action == "verify":
        return {
            "effectiveness": data.get("effectiveness"),
            "verified_by": caller.user_id,
            "verified_date": now,
        }
    if action == "close":
        return {"closed_date": now}
    if action == "reopen":
        return {"completed_date": None}
    return {}


def update_status(capa_id: int, status: str, caller, data: dict | None = None) -> CAPA:
    """Move a CAPA to ``status``; owner-level actions need the owner or a manager."""
    data = data or {}
    if status not in CAPA_STATUSES:
        raise ValidationError(f"Invalid status '{status}'", details={"allowed": list(CAPA_STATUSES)})
    capa = lock_for_update(CAPA, capa_id, RESOURCE)
    action = action_for_status(CAPA_TRANSITIONS, capa.status, status)
    if action is None:
        raise ValidationError(f"Cannot change CAPA status to '{status}'")
    if action in ("start", "complete", "reopen") and not caller.has_role("auditor"):
        _check_owner_or_manager(capa, caller, "Only the action owner or a manager can update this CAPA")
    if action == "verify":
        return verify_capa(capa_id, data.get("effectiveness"), caller)

    apply_transition(capa, CAPA_TRANSITIONS, action, caller, LABEL, changes=_changes_for(capa, action, caller, data))
    return capa


def complete_capa(capa_id: int, data: dict, caller) -> CAPA:
    capa = lock_for_update(CAPA, capa_id, RESOURCE)
    _check_owner_or_manager(capa, caller, "Only the action owner or a manager can complete this CAPA")
    apply_transition(
        capa, CAPA_TRANSITIONS, "complete", caller, LABEL,
        changes=_changes_for(capa, "complete", caller, data),
    )
    return capa


def verify_capa(capa_id: int, effectiveness, caller) -> CAPA:
    if not (effectiveness or "").strip():
        raise ValidationError("Effectiveness verification notes are required")
    if not caller.has_role("admin", "manager", "auditor"):
        raise PermissionDenied("Insufficient permissions")
    capa = lock_for_update(CAPA, capa_id, RESOURCE)
    if capa.action_owner == caller.user_id:
        raise PermissionDenied("The action owner cannot verify the effectiveness of their own CAPA")
    apply_transition(
        capa, CAPA_TRANSITIONS, "verify", caller, LABEL,
        changes=_changes_for(capa, "verify", caller, {"effectiveness": effectiveness.strip()}),
    )
    return capa


def delete_capa(capa_id: int, caller) -> None:
    capa = get_capa(capa_id)
    snapshot = capa.to_dict()
    db.session.delete(capa)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="capa",
        entity_type="capa", entity_id=capa_id, entity_identifier=snapshot["capaNumber"],
        old_values=snapshot,
    )
