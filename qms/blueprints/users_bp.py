"""
Users Blueprint — user accounts and roles.

  GET    /api/v1/users                 — list (admin)
  POST   /api/v1/users                 — create (admin)
  GET    /api/v1/users/<id>            — detail (admin or self)
  PUT    /api/v1/users/<id>            — update (admin)
  DELETE /api/v1/users/<id>            — deactivate (admin)
  PUT    /api/v1/users/<id>/roles      — replace role set (admin)

  GET    /api/v1/roles                 — active roles, highest level first
  GET    /api/v1/roles/<id>
  POST   /api/v1/roles                 — create (superuser)
  PUT    /api/v1/roles/<id>            — update (superuser)
  DELETE /api/v1/roles/<id>            — deactivate (superuser)
"""

from flask import Blueprint, jsonify, request

from qms.blueprints import json_body, parse_pagination, register_error_handlers, sort_args
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import user_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, parse_bool

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")
register_error_handlers(users_bp)


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@users_bp.route("/users", methods=["GET"])
@require_roles("admin")
def list_users(caller):
    page, limit, err = parse_pagination(default_limit=20)
    if err:
        return err
    filters = {
        "department": request.args.get("department"),
        "search": request.args.get("search"),
        "role": request.args.get("role"),
        "active": parse_bool(request.args["active"]) if "active" in request.args else None,
    }
    sort_by, sort_order = sort_args()
    return jsonify(user_service.list_users(filters, page, limit, sort_by, sort_order)), 200


@users_bp.route("/users", methods=["POST"])
@require_roles("admin")
def create_user(caller):
    user = user_service.create_user(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "User created successfully",
        "data": user.to_dict(include_roles=True),
    }), 201


@users_bp.route("/users/<int:user_id>", methods=["GET"])
@require_auth
def get_user(user_id, caller):
    if user_id != caller.user_id and not caller.has_role("admin"):
        return api_error(E.FORBIDDEN, "Insufficient permissions")
    return jsonify(user_service.get_user(user_id).to_dict(include_roles=True)), 200


@users_bp.route("/users/<int:user_id>", methods=["PUT"])
@require_roles("admin")
def update_user(user_id, caller):
    user = user_service.update_user(user_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "User updated successfully",
        "data": user.to_dict(include_roles=True),
    }), 200


@users_bp.route("/users/<int:user_id>", methods=["DELETE"])
@require_roles("admin")
def delete_user(user_id, caller):
    user_service.deactivate_user(user_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "User deactivated successfully"}), 200


@users_bp.route("/users/<int:user_id>/roles", methods=["PUT"])
@require_roles("admin")
def set_roles(user_id, caller):
    user = user_service.set_user_roles(user_id, json_body().get("roles"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "User roles updated successfully",
        "data": user.to_dict(include_roles=True),
    }), 200


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
@users_bp.route("/roles", methods=["GET"])
@require_auth
def list_roles(caller):
    include_inactive = parse_bool(request.args.get("includeInactive")) and caller.has_role("superuser")
    roles = user_service.list_roles(include_inactive=include_inactive)
    return jsonify({"data": [r.to_dict() for r in roles], "total": len(roles)}), 200


@users_bp.route("/roles/<int:role_id>", methods=["GET"])
@require_auth
def get_role(role_id, caller):
    return jsonify(user_service.get_role(role_id).to_dict()), 200


@users_bp.route("/roles", methods=["POST"])
@require_roles("superuser")
def create_role(caller):
    role = user_service.create_role(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Role created successfully", "data": role.to_dict()}), 201


@users_bp.route("/roles/<int:role_id>", methods=["PUT"])
@require_roles("superuser")
def update_role(role_id, caller):
    role = user_service.update_role(role_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Role updated successfully", "data": role.to_dict()}), 200


@users_bp.route("/roles/<int:role_id>", methods=["DELETE"])
@require_roles("superuser")
def delete_role(role_id, caller):
    user_service.deactivate_role(role_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Role deleted successfully"}), 200
