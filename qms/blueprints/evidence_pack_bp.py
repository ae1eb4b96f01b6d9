"""
Evidence Pack Blueprint — PDF bundle of compliance records for external audits.

  GET  /api/v1/evidence-pack/options
  POST /api/v1/evidence-pack/generate    {includeNCRs?, includeCAPAs?, includeAudits?,
                                          includeImprovementIdeas?, startDate?, endDate?}
"""

import logging

from flask import Blueprint, Response, jsonify

from qms.blueprints import json_body, register_error_handlers
from qms.middleware.permission_required import require_auth, require_roles
from qms.models import db
from qms.models.audit_log import write_audit
from qms.services import evidence_pack_service
from qms.utils.helpers import db_commit_or_error, iso

logger = logging.getLogger(__name__)

evidence_pack_bp = Blueprint("evidence_pack", __name__, url_prefix="/api/v1/evidence-pack")
register_error_handlers(evidence_pack_bp)


@evidence_pack_bp.route("/options", methods=["GET"])
@require_auth
def options(caller):
    return jsonify(evidence_pack_service.get_options()), 200


@evidence_pack_bp.route("/generate", methods=["POST"])
@require_roles("admin", "manager", "auditor")
def generate(caller):
    opts = evidence_pack_service.parse_options(json_body())
    audit_values = {**opts, "startDate": iso(opts["startDate"]), "endDate": iso(opts["endDate"])}

    try:
        pdf = evidence_pack_service.generate_evidence_pack(opts)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Evidence pack generation failed")
        write_audit(
            caller=caller, action="export", action_category="evidence_pack",
            entity_type="evidence_pack", description="Evidence pack generation failed",
            new_values=audit_values, success=False, error_message=str(exc),
        )
        db_commit_or_error()
        return jsonify({"error": "Failed to generate evidence pack", "message": str(exc)}), 500

    filename = evidence_pack_service.pack_filename()
    write_audit(
        caller=caller, action="export", action_category="evidence_pack",
        entity_type="evidence_pack", entity_identifier=filename,
        description=f"Evidence pack generated ({len(pdf)} bytes)", new_values=audit_values,
    )
    err = db_commit_or_error()
    if err:
        return err

    return Response(
        pdf,
        status=200,
        mimetype="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(pdf)),
        },
    )
