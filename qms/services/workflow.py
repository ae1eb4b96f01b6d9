"""
Status transition engine shared by every workflow entity.

Each entity declares a transition table:

    NCR_TRANSITIONS = {
        "resolve": {"from": ["open", "in_progress"], "to": "resolved"},
        "close": {
            "from": ["resolved"], "to": "closed",
            "roles": ["admin", "manager"],
            "forbidden_message": "Only Admin and Manager can close NCRs",
        },
    }

Keys per action:
    from              legal source statuses
    to                resulting status
    message           optional error text when the source status is illegal
                      (default: "Cannot <action> <label> with status '<status>'")
    roles             optional role whitelist (superuser always passes)
    forbidden_message optional 403 text for the role check

Transitions run inside the request transaction: ``lock_for_update`` re-reads
the row with SELECT ... FOR UPDATE, ``apply_transition`` validates and
mutates, the route commits. Workflow models also carry a ``version_id_col``
so a concurrent writer on a database without row locks (SQLite) gets a
StaleDataError instead of a lost update.

Usage:
    from qms.services.workflow import apply_transition, lock_for_update

    ncr = lock_for_update(NCR, ncr_id, "NCR")
    previous = apply_transition(ncr, NCR_TRANSITIONS, "resolve", caller, "NCR")
"""

import logging

from sqlalchemy import select

from qms.core.exceptions import NotFoundError, PermissionDenied, TransitionError
from qms.models import db
from qms.models.audit_log import write_audit

logger = logging.getLogger(__name__)


def lock_for_update(model, pk: int, resource: str):
    """Re-read ``model`` row ``pk`` with a row lock or raise NotFoundError."""
    stmt = (
        select(model)
        .where(model.id == pk)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    obj = db.session.execute(stmt).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(resource=resource, resource_id=pk)
    return obj


def validate_transition(table: dict, status: str, action: str) -> dict:
    """Check whether ``action`` is legal from ``status``.

    Returns:
        {"valid": bool, "from": status, "to": target | None, "reason": str | None}
    """
    rule = table.get(action)
    if rule is None:
        return {
            "valid": False,
            "from": status,
            "to": None,
            "reason": f"Unknown action '{action}'. Valid: {sorted(table)}",
        }
    if status not in rule["from"]:
        return {
            "valid": False,
            "from": status,
            "to": rule["to"],
            "reason": f"Status '{status}' not in allowed {rule['from']}",
        }
    return {"valid": True, "from": status, "to": rule["to"], "reason": None}


def available_actions(table: dict, status: str) -> list[str]:
    """Actions that are legal from ``status`` (role restrictions ignored)."""
    return [action for action, rule in table.items() if status in rule["from"]]


def action_for_status(table: dict, current: str, target: str) -> str | None:
    """Resolve a requested target status into the action that reaches it.

    Prefers an action that is legal from ``current``; falls back to any
    action targeting ``target`` so the caller gets that rule's error message.
    Returns None when no action leads to ``target``.
    """
    candidates = [action for action, rule in table.items() if rule["to"] == target]
    for action in candidates:
        if current in table[action]["from"]:
            return action
    return candidates[0] if candidates else None


def apply_transition(entity, table: dict, action: str, caller, label: str, changes: dict | None = None) -> str:
    """Validate and execute ``action`` on ``entity``.

    Sets ``entity.status`` together with any attribute ``changes`` that must
    land in the same flush (e.g. ``completed_date`` guarded by a CHECK
    constraint), then appends an audit entry with the status diff.
    Returns the previous status.

    Raises:
        TransitionError: the action is unknown or illegal from the current status.
        PermissionDenied: the action is role-restricted and the caller lacks the role.
    """
    current = entity.status
    rule = table.get(action)
    if rule is None:
        raise TransitionError(label, action, current, f"Unknown action '{action}' for {label}")

    # role restriction precedes the status check
    roles = rule.get("roles")
    if roles and (caller is None or not caller.has_role(*roles)):
        raise PermissionDenied(rule.get("forbidden_message", "Insufficient permissions"))

    if current not in rule["from"]:
        message = rule.get("message") or f"Cannot {action} {label} with status '{current}'"
        raise TransitionError(label, action, current, message)

    entity.status = rule["to"]
    for attr, value in (changes or {}).items():
        setattr(entity, attr, value)
    db.session.flush()

    write_audit(
        caller=caller,
        action="status_change",
        action_category=_category_for(entity),
        entity_type=entity.__tablename__,
        entity_id=entity.id,
        entity_identifier=_identifier_for(entity),
        description=f"{label} {action}: {current} → {entity.status}",
        old_values={"status": current},
        new_values={"status": entity.status},
    )
    logger.info(
        "%s %s: %s → %s by user %s",
        label, entity.id, current, entity.status,
        caller.user_id if caller else None,
        extra={"entity_type": entity.__tablename__, "entity_id": entity.id, "action": action},
    )
    return current


_CATEGORY_BY_TABLE = {
    "improvement_ideas": "improvement",
    "implementation_tasks": "improvement",
    "audits": "audit",
    "audit_findings": "audit",
    "ncrs": "ncr",
    "capas": "capa",
}


def _category_for(entity) -> str:
    return _CATEGORY_BY_TABLE.get(entity.__tablename__, "system")


def _identifier_for(entity) -> str | None:
    for attr in ("idea_number", "audit_number", "finding_number", "ncr_number", "capa_number"):
        value = getattr(entity, attr, None)
        if value:
            return value
    return getattr(entity, "task_name", None)
