"""
Organisation Service — departments and processes.

Both entities are soft-deleted through ``active``. Codes are upper-cased and
must match ``^[A-Z0-9_-]+$``; names and codes are unique across active and
inactive rows.
"""

import logging

from qms.core.exceptions import ConflictError, NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.organization import CODE_PATTERN, PROCESS_CATEGORIES, Department, Process
from qms.services.helpers.queries import get_or_404
from qms.utils.helpers import text_value

logger = logging.getLogger(__name__)


def _normalize_code(code) -> str:
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Code is required", details={"code": "required"})
    if not CODE_PATTERN.match(code):
        raise ValidationError(
            "Code may contain only letters, digits, hyphens and underscores",
            details={"code": "invalid"},
        )
    return code


def _ensure_unique(model, resource: str, field: str, value: str, exclude_id=None):
    column = getattr(model, field)
    q = model.query.filter(db.func.lower(column) == value.lower())
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(resource, field, value)


def _require_user(user_id, label):
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(resource=label, resource_id=user_id)


# ═══════════════════════════════════════════════════════════════
# Departments
# ═══════════════════════════════════════════════════════════════
def list_departments(include_inactive: bool = False) -> list[dict]:
    q = Department.query if include_inactive else Department.query_active()
    return [d.to_dict() for d in q.order_by(Department.name.asc()).all()]


def get_department(dept_id: int) -> Department:
    return get_or_404(Department, dept_id, "Department")


def get_department_by_code(code: str) -> Department:
    dept = Department.query.filter_by(code=(code or "").strip().upper()).first()
    if dept is None:
        raise NotFoundError(resource="Department", resource_id=code)
    return dept


def create_department(data: dict, caller) -> Department:
    name = text_value(data, "name")
    if not name:
        raise ValidationError("Name is required", details={"name": "required"})
    code = _normalize_code(text_value(data, "code"))
    _ensure_unique(Department, "Department", "code", code)
    _ensure_unique(Department, "Department", "name", name)
    _require_user(data.get("managerId"), "Manager")

    dept = Department(
        name=name,
        code=code,
        description=data.get("description"),
        manager_id=data.get("managerId"),
        created_by=caller.user_id,
    )
    db.session.add(dept)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="department",
        entity_type="department", entity_id=dept.id, entity_identifier=dept.code,
        new_values=dept.to_dict(),
    )
    return dept


def update_department(dept_id: int, data: dict, caller) -> Department:
    dept = get_department(dept_id)
    old = dept.to_dict()
    if "code" in data:
        code = _normalize_code(text_value(data, "code"))
        _ensure_unique(Department, "Department", "code", code, exclude_id=dept.id)
        dept.code = code
    if "name" in data:
        name = text_value(data, "name")
        if not name:
            raise ValidationError("Name is required", details={"name": "required"})
        _ensure_unique(Department, "Department", "name", name, exclude_id=dept.id)
        dept.name = name
    if "description" in data:
        dept.description = data["description"]
    if "managerId" in data:
        _require_user(data["managerId"], "Manager")
        dept.manager_id = data["managerId"]
    if "active" in data:
        dept.active = bool(data["active"])
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="department",
        entity_type="department", entity_id=dept.id, entity_identifier=dept.code,
        old_values=old, new_values=dept.to_dict(),
    )
    return dept


def delete_department(dept_id: int, caller) -> Department:
    dept = get_department(dept_id)
    dept.deactivate()
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="department",
        entity_type="department", entity_id=dept.id, entity_identifier=dept.code,
        description="Department deactivated",
    )
    return dept


# ═══════════════════════════════════════════════════════════════
# Processes
# ═══════════════════════════════════════════════════════════════
def _require_active_department(dept_id):
    if dept_id is None:
        return
    dept = db.session.get(Department, dept_id)
    if dept is None or not dept.active:
        raise NotFoundError(resource="Department", resource_id=dept_id)


def _validate_category(category):
    if category not in (None, "") and category not in PROCESS_CATEGORIES:
        raise ValidationError(
            "Invalid processCategory", details={"allowed": list(PROCESS_CATEGORIES)}
        )


def list_processes(include_inactive: bool = False, department_id=None) -> list[dict]:
    q = Process.query if include_inactive else Process.query_active()
    if department_id is not None:
        q = q.filter(Process.department_id == department_id)
    return [p.to_dict() for p in q.order_by(Process.name.asc()).all()]


def get_process(process_id: int) -> Process:
    return get_or_404(Process, process_id, "Process")


def get_process_by_code(code: str) -> Process:
    process = Process.query.filter_by(code=(code or "").strip().upper()).first()
    if process is None:
        raise NotFoundError(resource="Process", resource_id=code)
    return process


def create_process(data: dict, caller) -> Process:
    name = text_value(data, "name")
    if not name:
        raise ValidationError("Name is required", details={"name": "required"})
    code = _normalize_code(text_value(data, "code"))
    _ensure_unique(Process, "Process", "code", code)
    _ensure_unique(Process, "Process", "name", name)
    _require_active_department(data.get("departmentId"))
    _validate_category(data.get("processCategory"))
    _require_user(data.get("processOwnerId"), "Process owner")

    process = Process(
        name=name,
        code=code,
        description=data.get("description"),
        department_id=data.get("departmentId"),
        process_owner_id=data.get("processOwnerId"),
        process_category=data.get("processCategory") or None,
        objective=data.get("objective"),
        scope=data.get("scope"),
        created_by=caller.user_id,
    )
    db.session.add(process)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="process",
        entity_type="process", entity_id=process.id, entity_identifier=process.code,
        new_values=process.to_dict(),
    )
    return process


def update_process(process_id: int, data: dict, caller) -> Process:
    process = get_process(process_id)
    old = process.to_dict()
    if "code" in data:
        code = _normalize_code(text_value(data, "code"))
        _ensure_unique(Process, "Process", "code", code, exclude_id=process.id)
        process.code = code
    if "name" in data:
        name = text_value(data, "name")
        if not name:
            raise ValidationError("Name is required", details={"name": "required"})
        _ensure_unique(Process, "Process", "name", name, exclude_id=process.id)
        process.name = name
    if "departmentId" in data:
        _require_active_department(data["departmentId"])
        process.department_id = data["departmentId"]
    if "processCategory" in data:
        _validate_category(data["processCategory"])
        process.process_category = data["processCategory"] or None
    if "processOwnerId" in data:
        _require_user(data["processOwnerId"], "Process owner")
        process.process_owner_id = data["processOwnerId"]
    for key in ("description", "objective", "scope"):
        if key in data:
            setattr(process, key, data[key])
    if "active" in data:
        process.active = bool(data["active"])
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="process",
        entity_type="process", entity_id=process.id, entity_identifier=process.code,
        old_values=old, new_values=process.to_dict(),
    )
    return process


def delete_process(process_id: int, caller) -> Process:
    process = get_process(process_id)
    process.deactivate()
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="process",
        entity_type="process", entity_id=process.id, entity_identifier=process.code,
        description="Process deactivated",
    )
    return process
