"""
Data Import Blueprint — bulk user import from spreadsheets (admin).

  POST   /api/v1/data-import/users            multipart ``file`` (.xlsx / .csv)
  GET    /api/v1/data-import/template         xlsx template download
  GET    /api/v1/data-import/logs             ?importType=&status=&page=&limit=
  GET    /api/v1/data-import/logs/<id>
  DELETE /api/v1/data-import/logs             ?olderThanDays=
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from qms.blueprints import parse_pagination, register_error_handlers
from qms.middleware.permission_required import require_roles
from qms.services import data_import_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

data_import_bp = Blueprint("data_import", __name__, url_prefix="/api/v1/data-import")
register_error_handlers(data_import_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@data_import_bp.route("/users", methods=["POST"])
@require_roles("admin")
def import_users(caller):
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return api_error(E.VALIDATION_REQUIRED, "No file uploaded")

    log = data_import_service.import_users(upload.filename, upload.read(), caller)
    err = db_commit_or_error()
    if err:
        return err

    status_code = 200 if log.status != "failed" else 400
    return jsonify({
        "message": f"Import {log.status}",
        "data": log.to_dict(),
    }), status_code


@data_import_bp.route("/template", methods=["GET"])
@require_roles("admin")
def template(caller):
    return send_file(
        data_import_service.generate_user_template(),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name="user_import_template.xlsx",
    )


@data_import_bp.route("/logs", methods=["GET"])
@require_roles("admin")
def list_logs(caller):
    page, limit, err = parse_pagination(default_limit=20)
    if err:
        return err
    filters = {
        "importType": request.args.get("importType"),
        "status": request.args.get("status"),
    }
    return jsonify(data_import_service.list_logs(filters, page, limit)), 200


@data_import_bp.route("/logs/<int:log_id>", methods=["GET"])
@require_roles("admin")
def get_log(log_id, caller):
    return jsonify(data_import_service.get_log(log_id).to_dict()), 200


@data_import_bp.route("/logs", methods=["DELETE"])
@require_roles("admin")
def delete_old_logs(caller):
    deleted = data_import_service.delete_old_logs(request.args.get("olderThanDays"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": f"Deleted {deleted} import logs", "deleted": deleted}), 200
