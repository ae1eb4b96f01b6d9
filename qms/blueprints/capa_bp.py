"""
CAPA Blueprint — corrective and preventive actions.

  GET    /api/v1/capas                       list (status, priority, type, actionOwner, ncrId)
  POST   /api/v1/capas                       create (admin, manager, auditor)
  GET    /api/v1/capas/dashboard/stats
  GET    /api/v1/capas/assigned-to-me
  GET    /api/v1/capas/overdue
  GET    /api/v1/capas/<id>
  PUT    /api/v1/capas/<id>                  edit (admin, manager, auditor)
  DELETE /api/v1/capas/<id>                  (admin)
  POST   /api/v1/capas/<id>/assign           {actionOwner, targetDate?}
  PUT    /api/v1/capas/<id>/status           {status, ...}
  POST   /api/v1/capas/<id>/complete         action owner or manager
  POST   /api/v1/capas/<id>/verify           {effectiveness}; never the action owner
"""

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, json_body, parse_pagination, register_error_handlers, sort_args
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import capa_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, text_value

capa_bp = Blueprint("capa", __name__, url_prefix="/api/v1/capas")
register_error_handlers(capa_bp)

CAPA_EDITORS = ("admin", "manager", "auditor")


@capa_bp.route("", methods=["GET"])
@require_auth
def list_capas(caller):
    page, limit, err = parse_pagination(default_limit=10)
    if err:
        return err
    filters = {
        "status": request.args.get("status"),
        "priority": request.args.get("priority"),
        "type": request.args.get("type"),
        "actionOwner": int_arg("actionOwner"),
        "ncrId": int_arg("ncrId"),
    }
    sort_by, sort_order = sort_args()
    return jsonify(capa_service.list_capas(filters, page, limit, sort_by, sort_order)), 200


@capa_bp.route("/dashboard/stats", methods=["GET"])
@require_auth
def dashboard_stats(caller):
    return jsonify(capa_service.dashboard_stats()), 200


@capa_bp.route("/assigned-to-me", methods=["GET"])
@require_auth
def assigned_to_me(caller):
    capas = capa_service.list_assigned_to(caller.user_id)
    return jsonify({"data": capas, "total": len(capas)}), 200


@capa_bp.route("/overdue", methods=["GET"])
@require_auth
def overdue(caller):
    capas = capa_service.list_overdue()
    return jsonify({"data": capas, "total": len(capas)}), 200


@capa_bp.route("/<int:capa_id>", methods=["GET"])
@require_auth
def get_capa(capa_id, caller):
    return jsonify(capa_service.get_capa(capa_id).to_dict()), 200


@capa_bp.route("", methods=["POST"])
@require_roles(*CAPA_EDITORS)
def create_capa(caller):
    capa = capa_service.create_capa(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "CAPA created successfully",
        "id": capa.id,
        "capaNumber": capa.capa_number,
    }), 201


@capa_bp.route("/<int:capa_id>", methods=["PUT"])
@require_roles(*CAPA_EDITORS)
def update_capa(capa_id, caller):
    capa = capa_service.update_capa(capa_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA updated successfully", "data": capa.to_dict()}), 200


@capa_bp.route("/<int:capa_id>", methods=["DELETE"])
@require_roles("admin")
def delete_capa(capa_id, caller):
    capa_service.delete_capa(capa_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA deleted successfully"}), 200


@capa_bp.route("/<int:capa_id>/assign", methods=["POST"])
@require_roles("admin", "manager")
def assign_capa(capa_id, caller):
    data = json_body()
    capa = capa_service.assign_capa(capa_id, data.get("actionOwner"), data.get("targetDate"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA assigned successfully", "data": capa.to_dict()}), 200


@capa_bp.route("/<int:capa_id>/status", methods=["PUT"])
@require_auth
def update_status(capa_id, caller):
    data = json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Status is required")
    capa = capa_service.update_status(capa_id, data["status"], caller, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA status updated successfully", "status": capa.status}), 200


@capa_bp.route("/<int:capa_id>/complete", methods=["POST"])
@require_auth
def complete_capa(capa_id, caller):
    capa = capa_service.complete_capa(capa_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA completed successfully", "data": capa.to_dict()}), 200


@capa_bp.route("/<int:capa_id>/verify", methods=["POST"])
@require_roles(*CAPA_EDITORS)
def verify_capa(capa_id, caller):
    capa = capa_service.verify_capa(capa_id, text_value(json_body(), "effectiveness"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "CAPA verified successfully", "data": capa.to_dict()}), 200
