"""
NCR Blueprint — non-conformance reports.

  GET    /api/v1/ncrs/classification-options
  GET    /api/v1/ncrs/metrics
  GET    /api/v1/ncrs
  POST   /api/v1/ncrs                (admin, manager, auditor)
  GET    /api/v1/ncrs/<id>
  PUT    /api/v1/ncrs/<id>           (admin, manager, auditor)
  DELETE /api/v1/ncrs/<id>           (admin)
  PUT    /api/v1/ncrs/<id>/status    transition table; closing is admin/manager only
  PUT    /api/v1/ncrs/<id>/assign
"""

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, json_body, parse_pagination, register_error_handlers, sort_args
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import ncr_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error

ncr_bp = Blueprint("ncr", __name__, url_prefix="/api/v1/ncrs")
register_error_handlers(ncr_bp)

NCR_EDITORS = ("admin", "manager", "auditor")


@ncr_bp.route("/classification-options", methods=["GET"])
@require_auth
def classification_options(caller):
    return jsonify(ncr_service.classification_options()), 200


@ncr_bp.route("/metrics", methods=["GET"])
@require_auth
def metrics(caller):
    return jsonify(ncr_service.get_metrics()), 200


@ncr_bp.route("", methods=["GET"])
@require_auth
def list_ncrs(caller):
    page, limit, err = parse_pagination(default_limit=10)
    if err:
        return err
    filters = {
        "status": request.args.get("status"),
        "severity": request.args.get("severity"),
        "category": request.args.get("category"),
        "source": request.args.get("source"),
        "assignedTo": int_arg("assignedTo"),
    }
    sort_by, sort_order = sort_args()
    return jsonify(ncr_service.list_ncrs(filters, page, limit, sort_by, sort_order)), 200


@ncr_bp.route("/<int:ncr_id>", methods=["GET"])
@require_auth
def get_ncr(ncr_id, caller):
    return jsonify(ncr_service.get_ncr(ncr_id).to_dict()), 200


@ncr_bp.route("", methods=["POST"])
@require_roles(*NCR_EDITORS)
def create_ncr(caller):
    ncr = ncr_service.create_ncr(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "NCR created successfully",
        "id": ncr.id,
        "ncrNumber": ncr.ncr_number,
    }), 201


@ncr_bp.route("/<int:ncr_id>", methods=["PUT"])
@require_roles(*NCR_EDITORS)
def update_ncr(ncr_id, caller):
    ncr = ncr_service.update_ncr(ncr_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "NCR updated successfully", "data": ncr.to_dict()}), 200


@ncr_bp.route("/<int:ncr_id>", methods=["DELETE"])
@require_roles("admin")
def delete_ncr(ncr_id, caller):
    ncr_service.delete_ncr(ncr_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "NCR deleted successfully"}), 200


@ncr_bp.route("/<int:ncr_id>/status", methods=["PUT"])
@require_auth
def update_status(ncr_id, caller):
    status = json_body().get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "Status is required")
    ncr = ncr_service.update_status(ncr_id, status, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "NCR status updated successfully", "status": ncr.status}), 200


@ncr_bp.route("/<int:ncr_id>/assign", methods=["PUT"])
@require_roles("admin", "manager")
def assign(ncr_id, caller):
    ncr = ncr_service.assign_ncr(ncr_id, json_body().get("assignedTo"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "NCR assigned successfully", "assignedTo": ncr.assigned_to}), 200
