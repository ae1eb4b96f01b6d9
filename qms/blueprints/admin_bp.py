"""
Admin Blueprint — email templates and skill levels.

  Email templates (admin)
    GET    /api/v1/email-templates                      ?type=&category=&isActive=
    POST   /api/v1/email-templates
    GET    /api/v1/email-templates/meta/types
    GET    /api/v1/email-templates/meta/categories
    GET    /api/v1/email-templates/type/<type>
    GET    /api/v1/email-templates/type/<type>/default
    GET    /api/v1/email-templates/<id>
    PUT    /api/v1/email-templates/<id>
    DELETE /api/v1/email-templates/<id>
    POST   /api/v1/email-templates/<id>/preview         {values}
    POST   /api/v1/email-templates/<id>/send-test       {toEmail, values}

  Skill levels (read: any user, write: admin)
    GET    /api/v1/skill-levels
    GET    /api/v1/skill-levels/level/<n>
    GET    /api/v1/skill-levels/<id>
    POST   /api/v1/skill-levels
    PUT    /api/v1/skill-levels/<id>
    DELETE /api/v1/skill-levels/<id>
"""

import logging

from flask import Blueprint, jsonify, request

from qms.blueprints import json_body, register_error_handlers
from qms.middleware.permission_required import require_auth, require_roles
from qms.models.admin import EMAIL_TEMPLATE_CATEGORIES, EMAIL_TEMPLATE_TYPES
from qms.services import email_template_service as template_service
from qms.services import skill_level_service
from qms.utils.helpers import db_commit_or_error, parse_bool

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1")
register_error_handlers(admin_bp)


# ═══════════════════════════════════════════════════════════════
# Email templates
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/email-templates", methods=["GET"])
@require_roles("admin")
def list_templates(caller):
    filters = {
        "type": request.args.get("type"),
        "category": request.args.get("category"),
        "isActive": parse_bool(request.args["isActive"]) if "isActive" in request.args else None,
    }
    templates = template_service.list_templates(filters)
    return jsonify({"data": templates, "total": len(templates)}), 200


@admin_bp.route("/email-templates/meta/types", methods=["GET"])
@require_roles("admin")
def template_types(caller):
    return jsonify({"data": list(EMAIL_TEMPLATE_TYPES)}), 200


@admin_bp.route("/email-templates/meta/categories", methods=["GET"])
@require_roles("admin")
def template_categories(caller):
    return jsonify({"data": list(EMAIL_TEMPLATE_CATEGORIES)}), 200


@admin_bp.route("/email-templates/type/<string:template_type>", methods=["GET"])
@require_roles("admin")
def templates_by_type(template_type, caller):
    templates = template_service.list_by_type(template_type)
    return jsonify({"data": templates, "total": len(templates)}), 200


@admin_bp.route("/email-templates/type/<string:template_type>/default", methods=["GET"])
@require_roles("admin")
def default_template(template_type, caller):
    return jsonify(template_service.get_default_for_type(template_type).to_dict()), 200


@admin_bp.route("/email-templates/<int:template_id>", methods=["GET"])
@require_roles("admin")
def get_template(template_id, caller):
    return jsonify(template_service.get_template(template_id).to_dict()), 200


@admin_bp.route("/email-templates", methods=["POST"])
@require_roles("admin")
def create_template(caller):
    template = template_service.create_template(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Email template created successfully", "data": template.to_dict()}), 201


@admin_bp.route("/email-templates/<int:template_id>", methods=["PUT"])
@require_roles("admin")
def update_template(template_id, caller):
    template = template_service.update_template(template_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Email template updated successfully", "data": template.to_dict()}), 200


@admin_bp.route("/email-templates/<int:template_id>", methods=["DELETE"])
@require_roles("admin")
def delete_template(template_id, caller):
    template_service.delete_template(template_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Email template deleted successfully"}), 200


@admin_bp.route("/email-templates/<int:template_id>/preview", methods=["POST"])
@require_roles("admin")
def preview_template(template_id, caller):
    values = json_body().get("values") or {}
    return jsonify(template_service.preview(template_id, values)), 200


@admin_bp.route("/email-templates/<int:template_id>/send-test", methods=["POST"])
@require_roles("admin")
def send_test(template_id, caller):
    data = json_body()
    result = template_service.send_test(template_id, data.get("toEmail"), data.get("values") or {}, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Test email processed", "result": result}), 200


# ═══════════════════════════════════════════════════════════════
# Skill levels
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/skill-levels", methods=["GET"])
@require_auth
def list_skill_levels(caller):
    include_inactive = parse_bool(request.args.get("includeInactive"))
    levels = skill_level_service.list_skill_levels(include_inactive)
    return jsonify({"data": levels, "total": len(levels)}), 200


@admin_bp.route("/skill-levels/level/<string:level>", methods=["GET"])
@require_auth
def get_by_level(level, caller):
    return jsonify(skill_level_service.get_by_level(level).to_dict()), 200


@admin_bp.route("/skill-levels/<int:skill_level_id>", methods=["GET"])
@require_auth
def get_skill_level(skill_level_id, caller):
    return jsonify(skill_level_service.get_skill_level(skill_level_id).to_dict()), 200


@admin_bp.route("/skill-levels", methods=["POST"])
@require_roles("admin")
def create_skill_level(caller):
    level = skill_level_service.create_skill_level(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Skill level created successfully", "data": level.to_dict()}), 201


@admin_bp.route("/skill-levels/<int:skill_level_id>", methods=["PUT"])
@require_roles("admin")
def update_skill_level(skill_level_id, caller):
    level = skill_level_service.update_skill_level(skill_level_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Skill level updated successfully", "data": level.to_dict()}), 200


@admin_bp.route("/skill-levels/<int:skill_level_id>", methods=["DELETE"])
@require_roles("admin")
def delete_skill_level(skill_level_id, caller):
    skill_level_service.delete_skill_level(skill_level_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Skill level deleted successfully"}), 200
