"""
Export Blueprint — Excel downloads of NCRs, CAPAs and improvement ideas.

  GET /api/v1/export/ncrs.xlsx                ?status=&severity=&category=
  GET /api/v1/export/capas.xlsx               ?status=&priority=&type=
  GET /api/v1/export/improvement-ideas.xlsx   ?status=&category=
"""

from datetime import date

from flask import Blueprint, request, send_file

from qms.blueprints import register_error_handlers
from qms.middleware.permission_required import require_auth
from qms.services import export_service

export_bp = Blueprint("export", __name__, url_prefix="/api/v1/export")
register_error_handlers(export_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _send(buf, stem):
    return send_file(
        buf,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"{stem}_{date.today().isoformat()}.xlsx",
    )


def _filters(*keys):
    return {k: request.args.get(k) for k in keys}


@export_bp.route("/ncrs.xlsx", methods=["GET"])
@require_auth
def export_ncrs(caller):
    return _send(export_service.export_ncrs_xlsx(_filters("status", "severity", "category")), "ncrs")


@export_bp.route("/capas.xlsx", methods=["GET"])
@require_auth
def export_capas(caller):
    return _send(export_service.export_capas_xlsx(_filters("status", "priority", "type")), "capas")


@export_bp.route("/improvement-ideas.xlsx", methods=["GET"])
@require_auth
def export_ideas(caller):
    return _send(export_service.export_ideas_xlsx(_filters("status", "category")), "improvement_ideas")
