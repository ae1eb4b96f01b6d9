"""
Audit Log Blueprint — read-only access to the compliance trail (admin, auditor).

  GET /api/v1/audit-logs
  GET /api/v1/audit-logs/statistics
  GET /api/v1/audit-logs/<id>
  GET /api/v1/audit-logs/entity/<entityType>/<entityId>
"""

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, parse_pagination, register_error_handlers, sort_args
from qms.middleware.permission_required import require_roles
from qms.services import audit_log_service
from qms.utils.helpers import parse_bool

audit_log_bp = Blueprint("audit_log", __name__, url_prefix="/api/v1/audit-logs")
register_error_handlers(audit_log_bp)

READER_ROLES = ("admin", "auditor")


def _filters() -> dict:
    return {
        "userId": int_arg("userId"),
        "action": request.args.get("action"),
        "actionCategory": request.args.get("actionCategory"),
        "entityType": request.args.get("entityType"),
        "entityId": request.args.get("entityId"),
        "success": parse_bool(request.args["success"]) if "success" in request.args else None,
        "startDate": request.args.get("startDate"),
        "endDate": request.args.get("endDate"),
    }


@audit_log_bp.route("", methods=["GET"])
@require_roles(*READER_ROLES)
def list_logs(caller):
    page, limit, err = parse_pagination(default_limit=50)
    if err:
        return err
    sort_by, sort_order = sort_args()
    return jsonify(audit_log_service.list_audit_logs(_filters(), page, limit, sort_by, sort_order)), 200


@audit_log_bp.route("/statistics", methods=["GET"])
@require_roles(*READER_ROLES)
def statistics(caller):
    return jsonify(audit_log_service.get_statistics(_filters())), 200


@audit_log_bp.route("/<int:log_id>", methods=["GET"])
@require_roles(*READER_ROLES)
def get_log(log_id, caller):
    return jsonify(audit_log_service.get_audit_log(log_id).to_dict()), 200


@audit_log_bp.route("/entity/<string:entity_type>/<string:entity_id>", methods=["GET"])
@require_roles(*READER_ROLES)
def entity_history(entity_type, entity_id, caller):
    history = audit_log_service.get_entity_history(entity_type, entity_id)
    return jsonify({"data": history, "total": len(history)}), 200
