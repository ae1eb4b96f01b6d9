"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login            — Email + password → JWT pair
  POST /api/v1/auth/refresh          — Refresh token → new JWT pair
  GET  /api/v1/auth/me               — Current user profile
  POST /api/v1/auth/change-password  — Change own password
"""

import logging

import jwt as pyjwt
from flask import Blueprint, jsonify, request

from qms.blueprints import json_body, register_error_handlers
from qms.core.caller import Caller
from qms.middleware.jwt_auth import client_ip
from qms.middleware.permission_required import require_auth
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.services import user_service
from qms.services.jwt_service import decode_refresh_token, generate_token_pair
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, text_value

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


def _request_caller(user_id=None, email=None, roles=()) -> Caller:
    """Caller for endpoints that run before a token exists."""
    return Caller(
        user_id=user_id,
        roles=frozenset(roles),
        email=email,
        ip_address=client_ip(),
        user_agent=(request.headers.get("User-Agent") or "")[:500] or None,
    )


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    email = text_value(data, "email").lower()
    password = data.get("password") or ""
    if not email or not password or not isinstance(password, str):
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = user_service.authenticate_user(email, password)
    if user is None:
        write_audit(
            caller=_request_caller(email=email), action="login", action_category="authentication",
            entity_type="user", entity_identifier=email,
            description="Failed login attempt", success=False,
            error_message="Invalid email or password",
        )
        err = db_commit_or_error()
        if err:
            return err
        logger.info("Failed login for %s", email)
        return api_error(E.AUTH_INVALID, "Invalid email or password")

    roles = user.role_names
    write_audit(
        caller=_request_caller(user.id, user.email, roles), action="login",
        action_category="authentication", entity_type="user", entity_id=user.id,
        entity_identifier=user.email, description="User logged in",
    )
    err = db_commit_or_error()
    if err:
        return err

    tokens = generate_token_pair(user.id, roles, user.email)
    return jsonify({**tokens, "user": user.to_dict(include_roles=True)}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """Body: { "refreshToken": "..." }"""
    token = json_body().get("refreshToken")
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "refreshToken is required")

    try:
        payload = decode_refresh_token(token)
    except pyjwt.ExpiredSignatureError:
        return api_error(E.AUTH_INVALID, "Refresh token expired")
    except pyjwt.InvalidTokenError:
        return api_error(E.AUTH_INVALID, "Invalid refresh token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return api_error(E.AUTH_INVALID, "Invalid refresh token")

    user = db.session.get(User, user_id)
    if user is None or not user.active:
        return api_error(E.AUTH_INVALID, "User not found or inactive")

    return jsonify(generate_token_pair(user.id, user.role_names, user.email)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me(caller):
    user = user_service.get_user(caller.user_id)
    return jsonify(user.to_dict(include_roles=True)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/change-password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password(caller):
    """Body: { "currentPassword": "...", "newPassword": "..." }"""
    data = json_body()
    if not data.get("currentPassword") or not data.get("newPassword"):
        return api_error(E.VALIDATION_REQUIRED, "currentPassword and newPassword are required")

    user_service.change_password(caller.user_id, data["currentPassword"], data["newPassword"], caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Password changed successfully"}), 200
