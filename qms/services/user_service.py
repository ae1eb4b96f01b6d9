"""
User Service — account CRUD, authentication, role management.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from qms.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import ROLE_DESCRIPTIONS, ROLE_LEVELS, Role, User, UserRole
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.utils.crypto import hash_password, verify_password
from qms.utils.helpers import text_value

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

USER_SORT_FIELDS = {
    "email": User.email,
    "lastName": User.last_name,
    "createdAt": User.created_at,
    "lastLoginAt": User.last_login_at,
}


def normalize_email(email: str) -> str:
    """Validate syntax and return the normalised address."""
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}")


def _check_password(password: str | None):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(data: dict, caller=None) -> User:
    """Create a local user account with optional role names."""
    email = normalize_email(data.get("email"))
    _check_password(data.get("password"))

    if User.query.filter(db.func.lower(User.email) == email.lower()).first():
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        password_hash=hash_password(data["password"]),
        first_name=text_value(data, "firstName"),
        last_name=text_value(data, "lastName"),
        department=data.get("department"),
        created_by=caller.user_id if caller else None,
    )
    db.session.add(user)
    db.session.flush()

    if data.get("roles"):
        set_user_roles(user.id, data["roles"], caller, audit=False)

    write_audit(
        caller=caller, action="create", action_category="user_management",
        entity_type="user", entity_id=user.id, entity_identifier=user.email,
        new_values=user.to_dict(include_roles=True),
    )
    return user


def get_user(user_id: int) -> User:
    return get_or_404(User, user_id, "User")


def list_users(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = User.query
    if filters.get("active") is not None:
        q = q.filter(User.active.is_(filters["active"]))
    if filters.get("department"):
        q = q.filter(User.department == filters["department"])
    if filters.get("search"):
        term = f"%{filters['search']}%"
        q = q.filter(
            db.or_(User.email.ilike(term), User.first_name.ilike(term), User.last_name.ilike(term))
        )
    if filters.get("role"):
        q = q.join(UserRole, UserRole.user_id == User.id).join(Role).filter(Role.name == filters["role"])
    q = apply_sort(q, USER_SORT_FIELDS, sort_by, sort_order, default=("lastName", "ASC"))
    return paginate(q, page, limit)


def update_user(user_id: int, data: dict, caller) -> User:
    """Update profile fields; email changes are re-validated for uniqueness."""
    user = get_user(user_id)
    old = user.to_dict()

    if "email" in data and data["email"] != user.email:
        email = normalize_email(data["email"])
        clash = User.query.filter(db.func.lower(User.email) == email.lower(), User.id != user.id).first()
        if clash:
            raise ConflictError("User", "email", email)
        user.email = email

    if "firstName" in data:
        user.first_name = text_value(data, "firstName")
    if "lastName" in data:
        user.last_name = text_value(data, "lastName")
    if "department" in data:
        user.department = data["department"]
    if "active" in data:
        if user.id == caller.user_id and not data["active"]:
            raise ValidationError("You cannot deactivate your own account")
        user.active = bool(data["active"])
    if data.get("password"):
        _check_password(data["password"])
        user.password_hash = hash_password(data["password"])

    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="user_management",
        entity_type="user", entity_id=user.id, entity_identifier=user.email,
        old_values=old, new_values=user.to_dict(),
    )
    return user


def deactivate_user(user_id: int, caller) -> User:
    user = get_user(user_id)
    if user.id == caller.user_id:
        raise ValidationError("You cannot deactivate your own account")
    user.deactivate()
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="user_management",
        entity_type="user", entity_id=user.id, entity_identifier=user.email,
        description="User deactivated",
    )
    return user


def set_user_roles(user_id: int, role_names: list[str], caller, audit: bool = True) -> User:
    """Replace the user's role set. Only a superuser may grant superuser."""
    user = get_user(user_id)
    if not isinstance(role_names, list) or not role_names:
        raise ValidationError("At least one role is required")

    roles = Role.query_active().filter(Role.name.in_(role_names)).all()
    unknown = sorted(set(role_names) - {r.name for r in roles})
    if unknown:
        raise ValidationError(f"Unknown roles: {', '.join(unknown)}", details={"unknown": unknown})
    if "superuser" in role_names and caller is not None and "superuser" not in caller.roles:
        raise PermissionDenied("Only a superuser can grant the superuser role")

    old_roles = user.role_names
    user.user_roles.delete()
    for role in roles:
        db.session.add(UserRole(
            user_id=user.id, role_id=role.id,
            assigned_by=caller.user_id if caller else None,
        ))
    db.session.flush()

    if audit:
        write_audit(
            caller=caller, action="assign", action_category="user_management",
            entity_type="user", entity_id=user.id, entity_identifier=user.email,
            description="User roles changed",
            old_values={"roles": old_roles}, new_values={"roles": sorted(role_names)},
        )
    return user


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate_user(email: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    user = User.query.filter(db.func.lower(User.email) == (email or "").strip().lower()).first()
    if not user or not user.active or not user.password_hash:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    user.last_login_at = datetime.now(timezone.utc)
    db.session.flush()
    return user


def change_password(user_id: int, current_password: str, new_password: str, caller) -> None:
    user = get_user(user_id)
    if not verify_password(current_password or "", user.password_hash or ""):
        raise ValidationError("Current password is incorrect")
    _check_password(new_password)
    user.password_hash = hash_password(new_password)
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="authentication",
        entity_type="user", entity_id=user.id, entity_identifier=user.email,
        description="Password changed",
    )


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
def list_roles(include_inactive: bool = False) -> list[Role]:
    q = Role.query if include_inactive else Role.query_active()
    return q.order_by(Role.level.desc(), Role.name.asc()).all()


def get_role(role_id: int) -> Role:
    return get_or_404(Role, role_id, "Role")


def create_role(data: dict, caller) -> Role:
    name = text_value(data, "name").lower()
    if not name:
        raise ValidationError("Role name is required")
    level = data.get("level", 0)
    if not isinstance(level, int) or isinstance(level, bool) or not 0 <= level <= 100:
        raise ValidationError("Level must be an integer between 0 and 100")
    if Role.query.filter_by(name=name).first():
        raise ConflictError("Role", "name", name)

    role = Role(name=name, level=level, description=data.get("description"))
    db.session.add(role)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="user_management",
        entity_type="role", entity_id=role.id, entity_identifier=role.name,
        new_values=role.to_dict(),
    )
    return role


def update_role(role_id: int, data: dict, caller) -> Role:
    role = get_role(role_id)
    old = role.to_dict()
    if "level" in data:
        level = data["level"]
        if not isinstance(level, int) or isinstance(level, bool) or not 0 <= level <= 100:
            raise ValidationError("Level must be an integer between 0 and 100")
        role.level = level
    if "description" in data:
        role.description = data["description"]
    if "active" in data:
        role.active = bool(data["active"])
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="user_management",
        entity_type="role", entity_id=role.id, entity_identifier=role.name,
        old_values=old, new_values=role.to_dict(),
    )
    return role


def deactivate_role(role_id: int, caller) -> Role:
    role = get_role(role_id)
    if role.name == "superuser":
        raise ValidationError("The superuser role cannot be deleted")
    role.deactivate()
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="user_management",
        entity_type="role", entity_id=role.id, entity_identifier=role.name,
        description="Role deactivated",
    )
    return role


def seed_roles() -> int:
    """Create the built-in roles that do not exist yet. Returns how many were added."""
    created = 0
    for name, level in ROLE_LEVELS.items():
        if Role.query.filter_by(name=name).first():
            continue
        db.session.add(Role(name=name, level=level, description=ROLE_DESCRIPTIONS.get(name)))
        created += 1
    db.session.flush()
    logger.info("Seeded %d built-in roles", created)
    return created
