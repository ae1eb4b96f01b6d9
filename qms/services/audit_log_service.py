"""
Audit Log Service — read side of the compliance trail.

Entries are written through ``qms.models.audit_log.write_audit`` by the
service that performs the change; this module filters, pages and
summarises them.
"""

from sqlalchemy import func

from qms.core.exceptions import ValidationError
from qms.models import db
from qms.models.audit_log import AuditLog
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.utils.helpers import parse_datetime

AUDIT_LOG_SORT_FIELDS = {
    "createdAt": AuditLog.created_at,
    "action": AuditLog.action,
    "entityType": AuditLog.entity_type,
    "userId": AuditLog.user_id,
}


def _filtered_query(filters: dict):
    q = AuditLog.query
    for key, column in (
        ("userId", AuditLog.user_id),
        ("action", AuditLog.action),
        ("actionCategory", AuditLog.action_category),
        ("entityType", AuditLog.entity_type),
        ("entityId", AuditLog.entity_id),
    ):
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(column == (str(value) if key == "entityId" else value))

    if filters.get("success") is not None:
        q = q.filter(AuditLog.success.is_(filters["success"]))

    for key, op in (("startDate", "ge"), ("endDate", "le")):
        raw = filters.get(key)
        if not raw:
            continue
        value = parse_datetime(raw)
        if value is None:
            raise ValidationError(f"Invalid {key}")
        q = q.filter(AuditLog.created_at >= value if op == "ge" else AuditLog.created_at <= value)
    return q


def list_audit_logs(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = apply_sort(
        _filtered_query(filters), AUDIT_LOG_SORT_FIELDS, sort_by, sort_order,
        default=("createdAt", "DESC"),
    )
    return paginate(q, page, limit)


def get_audit_log(log_id: int) -> AuditLog:
    return get_or_404(AuditLog, log_id, "Audit log entry")


def get_entity_history(entity_type: str, entity_id) -> list[dict]:
    rows = (
        AuditLog.query
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .all()
    )
    return [r.to_dict() for r in rows]


def get_statistics(filters: dict) -> dict:
    """Counts by category, action and outcome for the filtered window."""
    base = _filtered_query(filters)
    total = base.count()
    failed = base.filter(AuditLog.success.is_(False)).count()

    def _group(column):
        sub = base.with_entities(column, func.count(AuditLog.id)).group_by(column)
        return {key or "unknown": count for key, count in sub.all()}

    top_users = (
        base.filter(AuditLog.user_id.isnot(None))
        .with_entities(AuditLog.user_id, AuditLog.user_email, func.count(AuditLog.id).label("cnt"))
        .group_by(AuditLog.user_id, AuditLog.user_email)
        .order_by(db.desc("cnt"))
        .limit(10)
        .all()
    )
    return {
        "totalActions": total,
        "failedActions": failed,
        "byCategory": _group(AuditLog.action_category),
        "byAction": _group(AuditLog.action),
        "byEntityType": _group(AuditLog.entity_type),
        "topUsers": [
            {"userId": uid, "userEmail": email, "count": cnt} for uid, email, cnt in top_users
        ],
    }
