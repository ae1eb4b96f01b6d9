"""
System Blueprint — database backup, restore, verification and status.

All endpoints require admin (superuser passes every role check).

  POST   /api/v1/system/backup
  GET    /api/v1/system/backups
  POST   /api/v1/system/backup/restore     {backupFile, replaceExisting?}
  POST   /api/v1/system/backup/verify      {backupFile}
  DELETE /api/v1/system/backup             {fileName}
  GET    /api/v1/system/status
"""

import logging

from flask import Blueprint, jsonify

from qms.blueprints import json_body, register_error_handlers
from qms.middleware.permission_required import require_roles
from qms.models import db
from qms.models.audit_log import write_audit
from qms.services import backup_service
from qms.services.backup_service import BackupError
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, parse_bool, text_value

logger = logging.getLogger(__name__)

system_bp = Blueprint("system", __name__, url_prefix="/api/v1/system")
register_error_handlers(system_bp)


def _tool_failure(caller, action, error: BackupError, identifier=None):
    """Record a failed tool run and build the 500 response."""
    db.session.rollback()
    logger.error("%s failed: %s", action, error.message, extra=error.to_details())
    write_audit(
        caller=caller, action=action, action_category="system",
        entity_type="database_backup", entity_identifier=identifier,
        description=f"Database {action} failed", success=False,
        error_message=f"{error.message}\n{error.stderr}".strip(),
    )
    db_commit_or_error()
    return api_error(E.EXTERNAL_TOOL, error.message, status=500, details=error.to_details())


def _required_file(data, key):
    name = text_value(data, key)
    if not name:
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    return name, None


@system_bp.route("/backup", methods=["POST"])
@require_roles("admin")
def create_backup(caller):
    try:
        result = backup_service.create_backup()
    except BackupError as exc:
        return _tool_failure(caller, "backup", exc)

    write_audit(
        caller=caller, action="backup", action_category="system",
        entity_type="database_backup", entity_identifier=result["fileName"],
        description=f"Database backup created ({result['fileSizeMB']} MB)",
        new_values={k: result[k] for k in ("database", "fileName", "fileSizeMB", "pruned")},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@system_bp.route("/backups", methods=["GET"])
@require_roles("admin")
def list_backups(caller):
    backups = backup_service.list_backups()
    return jsonify({"data": backups, "total": len(backups)}), 200


@system_bp.route("/backup/restore", methods=["POST"])
@require_roles("admin")
def restore_backup(caller):
    data = json_body()
    file_name, err = _required_file(data, "backupFile")
    if err:
        return err
    replace = parse_bool(data.get("replaceExisting"))

    try:
        result = backup_service.restore_backup(file_name, replace)
    except BackupError as exc:
        return _tool_failure(caller, "restore", exc, identifier=file_name)

    write_audit(
        caller=caller, action="restore", action_category="system",
        entity_type="database_backup", entity_identifier=file_name,
        description="Database restored from backup",
        new_values={"replaceExisting": replace},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@system_bp.route("/backup/verify", methods=["POST"])
@require_roles("admin")
def verify_backup(caller):
    file_name, err = _required_file(json_body(), "backupFile")
    if err:
        return err
    try:
        result = backup_service.verify_backup(file_name)
    except BackupError as exc:
        return _tool_failure(caller, "verify", exc, identifier=file_name)

    write_audit(
        caller=caller, action="verify", action_category="system",
        entity_type="database_backup", entity_identifier=file_name,
        description=f"Backup verification: {'valid' if result['valid'] else 'invalid'}",
        success=result["valid"],
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@system_bp.route("/backup", methods=["DELETE"])
@require_roles("admin")
def delete_backup(caller):
    file_name, err = _required_file(json_body(), "fileName")
    if err:
        return err
    backup_service.delete_backup(file_name)
    write_audit(
        caller=caller, action="delete", action_category="system",
        entity_type="database_backup", entity_identifier=file_name,
        description="Backup file deleted",
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Backup deleted successfully", "fileName": file_name}), 200


@system_bp.route("/status", methods=["GET"])
@require_roles("admin")
def status(caller):
    return jsonify(backup_service.system_status()), 200
