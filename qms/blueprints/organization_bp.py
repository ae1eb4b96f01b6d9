"""
Organization Blueprint — departments and processes.

  GET    /api/v1/departments                  ?includeInactive=true
  GET    /api/v1/departments/<id>
  GET    /api/v1/departments/code/<code>
  POST   /api/v1/departments                  (admin)
  PUT    /api/v1/departments/<id>             (admin)
  DELETE /api/v1/departments/<id>             deactivate (admin)

  GET    /api/v1/processes                    ?includeInactive=true&departmentId=
  GET    /api/v1/processes/<id>
  GET    /api/v1/processes/code/<code>
  POST   /api/v1/processes                    (superuser)
  PUT    /api/v1/processes/<id>               (superuser)
  DELETE /api/v1/processes/<id>               deactivate (superuser)
"""

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, json_body, register_error_handlers
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import organization_service as org_service
from qms.utils.helpers import db_commit_or_error, parse_bool

organization_bp = Blueprint("organization", __name__, url_prefix="/api/v1")
register_error_handlers(organization_bp)


# ── Departments ──────────────────────────────────────────────────────────
@organization_bp.route("/departments", methods=["GET"])
@require_auth
def list_departments(caller):
    departments = org_service.list_departments(parse_bool(request.args.get("includeInactive")))
    return jsonify({"data": departments, "total": len(departments)}), 200


@organization_bp.route("/departments/<int:dept_id>", methods=["GET"])
@require_auth
def get_department(dept_id, caller):
    return jsonify(org_service.get_department(dept_id).to_dict()), 200


@organization_bp.route("/departments/code/<string:code>", methods=["GET"])
@require_auth
def get_department_by_code(code, caller):
    return jsonify(org_service.get_department_by_code(code).to_dict()), 200


@organization_bp.route("/departments", methods=["POST"])
@require_roles("admin")
def create_department(caller):
    dept = org_service.create_department(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Department created successfully", "data": dept.to_dict()}), 201


@organization_bp.route("/departments/<int:dept_id>", methods=["PUT"])
@require_roles("admin")
def update_department(dept_id, caller):
    dept = org_service.update_department(dept_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Department updated successfully", "data": dept.to_dict()}), 200


@organization_bp.route("/departments/<int:dept_id>", methods=["DELETE"])
@require_roles("admin")
def delete_department(dept_id, caller):
    org_service.delete_department(dept_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Department deleted successfully"}), 200


# ── Processes ────────────────────────────────────────────────────────────
@organization_bp.route("/processes", methods=["GET"])
@require_auth
def list_processes(caller):
    processes = org_service.list_processes(
        parse_bool(request.args.get("includeInactive")), int_arg("departmentId")
    )
    return jsonify({"data": processes, "total": len(processes)}), 200


@organization_bp.route("/processes/<int:process_id>", methods=["GET"])
@require_auth
def get_process(process_id, caller):
    return jsonify(org_service.get_process(process_id).to_dict()), 200


@organization_bp.route("/processes/code/<string:code>", methods=["GET"])
@require_auth
def get_process_by_code(code, caller):
    return jsonify(org_service.get_process_by_code(code).to_dict()), 200


@organization_bp.route("/processes", methods=["POST"])
@require_roles("superuser")
def create_process(caller):
    process = org_service.create_process(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Process created successfully", "data": process.to_dict()}), 201


@organization_bp.route("/processes/<int:process_id>", methods=["PUT"])
@require_roles("superuser")
def update_process(process_id, caller):
    process = org_service.update_process(process_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Process updated successfully", "data": process.to_dict()}), 200


@organization_bp.route("/processes/<int:process_id>", methods=["DELETE"])
@require_roles("superuser")
def delete_process(process_id, caller):
    org_service.delete_process(process_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Process deleted successfully"}), 200
