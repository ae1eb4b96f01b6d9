"""
QMS Platform
Audit trail model.

Models:
    - AuditLog: immutable, append-only record of who did what to which entity,
      with sanitised before/after snapshots for compliance traceability.
"""

import json
from datetime import datetime, timezone

from flask import has_request_context, request

from qms.models import db
from qms.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTION_CATEGORIES = {
    "authentication",
    "user_management",
    "department",
    "process",
    "improvement",
    "audit",
    "ncr",
    "capa",
    "email_template",
    "skill_level",
    "data_import",
    "evidence_pack",
    "system",
}

AUDIT_ACTIONS = {
    "create",
    "update",
    "delete",
    "view",
    "login",
    "logout",
    "approve",
    "reject",
    "assign",
    "complete",
    "verify",
    "upload",
    "download",
    "status_change",
    "export",
    "import",
    "backup",
    "restore",
}

# Keys never written to the trail
SENSITIVE_KEYS = {"password", "passwordHash", "password_hash", "token", "secret"}
# Keys dropped from snapshots because they change on every write
VOLATILE_KEYS = {"updatedAt", "updated_at"}


def sanitize_values(values):
    """Strip sensitive and volatile keys from a snapshot dict (None-safe)."""
    if not values:
        return None
    return {
        k: v for k, v in values.items()
        if k not in SENSITIVE_KEYS and k not in VOLATILE_KEYS
    }


class AuditLog(db.Model):
    """
    Immutable audit trail for create/update/delete and lifecycle events.

    ``old_values_json`` / ``new_values_json`` carry the sanitised snapshots;
    ``success`` is False for failed operations that still need a trace
    (login failures, failed evidence packs, failed backups).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_email = db.Column(db.String(255))
    action = db.Column(db.String(50), nullable=False)
    action_category = db.Column(db.String(50), nullable=False, index=True)
    action_description = db.Column(db.String(1000))
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(36))
    entity_identifier = db.Column(db.String(255))
    old_values_json = db.Column(db.Text)
    new_values_json = db.Column(db.Text)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))
    request_method = db.Column(db.String(10))
    request_url = db.Column(db.String(1000))
    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    @staticmethod
    def _load(raw):
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def old_values(self):
        return self._load(self.old_values_json)

    @property
    def new_values(self):
        return self._load(self.new_values_json)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "userEmail": self.user_email,
            "action": self.action,
            "actionCategory": self.action_category,
            "actionDescription": self.action_description,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "entityIdentifier": self.entity_identifier,
            "oldValues": self.old_values,
            "newValues": self.new_values,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "requestMethod": self.request_method,
            "requestUrl": self.request_url,
            "success": self.success,
            "errorMessage": self.error_message,
            "createdAt": iso(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    caller=None,
    action: str,
    action_category: str,
    entity_type: str,
    entity_id=None,
    entity_identifier: str | None = None,
    description: str | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    success: bool = True,
    error_message: str | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Request metadata (method, URL) is taken from the active request when
    there is one; client address and agent come from the caller.
    """
    request_method = request_url = None
    if has_request_context():
        request_method = request.method
        request_url = request.full_path.rstrip("?")[:1000]

    log = AuditLog(
        user_id=caller.user_id if caller else None,
        user_email=caller.email if caller else None,
        action=action,
        action_category=action_category,
        action_description=description,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        entity_identifier=entity_identifier,
        old_values_json=json.dumps(sanitize_values(old_values), default=str) if old_values else None,
        new_values_json=json.dumps(sanitize_values(new_values), default=str) if new_values else None,
        ip_address=caller.ip_address if caller else None,
        user_agent=caller.user_agent if caller else None,
        request_method=request_method,
        request_url=request_url,
        success=success,
        error_message=error_message,
    )
    db.session.add(log)
    db.session.flush()
    return log
