"""
Audits Blueprint — internal audits and audit findings.

  /api/v1/audits                              GET, POST
  /api/v1/audits/<id>                         GET, PUT, DELETE
  /api/v1/audits/<id>/<action>                POST  start | complete | submit-for-review
                                                    | approve | reject | close

  /api/v1/audit-findings                      GET, POST
  /api/v1/audit-findings/summary              GET
  /api/v1/audit-findings/audit/<auditId>      GET
  /api/v1/audit-findings/<auditId>/stats      GET
  /api/v1/audit-findings/<id>                 GET, PUT, DELETE
  /api/v1/audit-findings/<id>/link-ncr        POST
"""

import logging

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, json_body, parse_pagination, register_error_handlers, sort_args
from qms.core.exceptions import ValidationError
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import audit_finding_service as finding_service
from qms.services import audit_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, parse_date

logger = logging.getLogger(__name__)

audits_bp = Blueprint("audits", __name__, url_prefix="/api/v1")
register_error_handlers(audits_bp)

AUDIT_EDITORS = ("admin", "manager", "auditor")
AUDIT_REVIEWERS = ("admin", "manager")

# URL segment → (transition action, allowed roles, success message)
_AUDIT_ACTIONS = {
    "start": ("start", AUDIT_EDITORS, "Audit started successfully"),
    "complete": ("complete", AUDIT_EDITORS, "Audit completed successfully"),
    "submit-for-review": ("submit_for_review", AUDIT_EDITORS, "Audit submitted for review successfully"),
    "approve": ("approve", AUDIT_REVIEWERS, "Audit approved successfully"),
    "reject": ("reject", AUDIT_REVIEWERS, "Audit rejected successfully"),
    "revise": ("revise", AUDIT_EDITORS, "Audit reopened for revision"),
    "close": ("close", AUDIT_REVIEWERS, "Audit closed successfully"),
}


# ═══════════════════════════════════════════════════════════════
# Audits
# ═══════════════════════════════════════════════════════════════
@audits_bp.route("/audits", methods=["GET"])
@require_auth
def list_audits(caller):
    page, limit, err = parse_pagination(default_limit=10)
    if err:
        return err
    filters = {
        "status": request.args.get("status"),
        "auditType": request.args.get("auditType"),
        "department": request.args.get("department"),
        "leadAuditorId": int_arg("leadAuditorId"),
    }
    sort_by, sort_order = sort_args()
    return jsonify(audit_service.list_audits(filters, page, limit, sort_by, sort_order)), 200


@audits_bp.route("/audits/<int:audit_id>", methods=["GET"])
@require_auth
def get_audit(audit_id, caller):
    return jsonify(audit_service.get_audit(audit_id).to_dict()), 200


@audits_bp.route("/audits", methods=["POST"])
@require_roles(*AUDIT_EDITORS)
def create_audit(caller):
    audit = audit_service.create_audit(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit created successfully", "data": audit.to_dict()}), 201


@audits_bp.route("/audits/<int:audit_id>", methods=["PUT"])
@require_roles(*AUDIT_EDITORS)
def update_audit(audit_id, caller):
    audit = audit_service.update_audit(audit_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit updated successfully", "data": audit.to_dict()}), 200


@audits_bp.route("/audits/<int:audit_id>", methods=["DELETE"])
@require_roles("admin")
def delete_audit(audit_id, caller):
    audit_service.delete_audit(audit_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit deleted successfully"}), 200


@audits_bp.route("/audits/<int:audit_id>/<string:action>", methods=["POST"])
@require_auth
def audit_action(audit_id, action, caller):
    """Lifecycle actions; reject requires ``reviewComments``."""
    if action not in _AUDIT_ACTIONS:
        raise ValidationError(
            f"Unknown audit action '{action}'", details={"allowed": sorted(_AUDIT_ACTIONS)}
        )
    transition, roles, message = _AUDIT_ACTIONS[action]
    if not caller.has_role(*roles):
        return api_error(E.FORBIDDEN, "Insufficient permissions")

    audit = audit_service.run_action(audit_id, transition, caller, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": message, "data": audit.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# Audit findings
# ═══════════════════════════════════════════════════════════════
@audits_bp.route("/audit-findings", methods=["GET"])
@require_auth
def list_findings(caller):
    filters = {
        "status": request.args.get("status"),
        "severity": request.args.get("severity"),
        "category": request.args.get("category"),
        "auditId": int_arg("auditId"),
        "assignedTo": int_arg("assignedTo"),
    }
    findings = finding_service.list_findings(filters)
    return jsonify({"data": findings, "total": len(findings)}), 200


@audits_bp.route("/audit-findings/summary", methods=["GET"])
@require_auth
def findings_summary(caller):
    start = parse_date(request.args.get("startDate"))
    end = parse_date(request.args.get("endDate"))
    return jsonify(finding_service.get_summary(start, end, int_arg("processId"))), 200


@audits_bp.route("/audit-findings/audit/<int:audit_id>", methods=["GET"])
@require_auth
def findings_for_audit(audit_id, caller):
    findings = finding_service.list_findings_for_audit(audit_id)
    return jsonify({"data": findings, "total": len(findings)}), 200


@audits_bp.route("/audit-findings/<int:audit_id>/stats", methods=["GET"])
@require_auth
def findings_stats(audit_id, caller):
    return jsonify(finding_service.get_stats_for_audit(audit_id)), 200


@audits_bp.route("/audit-findings/<int:finding_id>", methods=["GET"])
@require_auth
def get_finding(finding_id, caller):
    return jsonify(finding_service.get_finding(finding_id).to_dict()), 200


@audits_bp.route("/audit-findings", methods=["POST"])
@require_roles(*AUDIT_EDITORS)
def create_finding(caller):
    finding = finding_service.create_finding(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit finding created successfully", "findingId": finding.id}), 201


@audits_bp.route("/audit-findings/<int:finding_id>", methods=["PUT"])
@require_roles(*AUDIT_EDITORS)
def update_finding(finding_id, caller):
    finding = finding_service.update_finding(finding_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit finding updated successfully", "data": finding.to_dict()}), 200


@audits_bp.route("/audit-findings/<int:finding_id>/link-ncr", methods=["POST"])
@require_roles(*AUDIT_EDITORS)
def link_ncr(finding_id, caller):
    finding = finding_service.link_to_ncr(finding_id, json_body().get("ncrId"), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit finding linked to NCR successfully", "data": finding.to_dict()}), 200


@audits_bp.route("/audit-findings/<int:finding_id>", methods=["DELETE"])
@require_roles("admin", "manager")
def delete_finding(finding_id, caller):
    finding_service.delete_finding(finding_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit finding deleted successfully"}), 200
