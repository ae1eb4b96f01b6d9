"""
QMS Platform
Administration models — email templates, skill levels and data import logs.
"""

import json
from datetime import datetime, timezone

from qms.models import db
from qms.utils.helpers import iso

EMAIL_TEMPLATE_TYPES = (
    "ncr_notification",
    "ncr_assignment",
    "ncr_status_update",
    "training_reminder",
    "training_assignment",
    "training_expiry_warning",
    "audit_assignment",
    "audit_notification",
    "audit_finding",
    "capa_assignment",
    "capa_deadline_reminder",
)

EMAIL_TEMPLATE_CATEGORIES = ("ncr", "training", "audit", "capa", "general")

IMPORT_STATUSES = ("in_progress", "completed", "partial", "failed")


def _load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


class EmailTemplate(db.Model):
    __tablename__ = "email_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(100), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    subject = db.Column(db.String(500), nullable=False)
    body = db.Column(db.Text, nullable=False)
    description = db.Column(db.String(1000))
    placeholders_json = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def placeholders(self):
        return _load_json(self.placeholders_json, [])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "type": self.type,
            "category": self.category,
            "subject": self.subject,
            "body": self.body,
            "description": self.description,
            "placeholders": self.placeholders,
            "isActive": self.is_active,
            "isDefault": self.is_default,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


class SkillLevel(db.Model):
    __tablename__ = "skill_levels"
    __table_args__ = (
        db.CheckConstraint("level >= 1 AND level <= 5", name="ck_skill_level_range"),
    )

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)
    short_name = db.Column(db.String(50))
    description = db.Column(db.Text, nullable=False)
    knowledge_criteria = db.Column(db.Text)
    skills_criteria = db.Column(db.Text)
    experience_criteria = db.Column(db.Text)
    autonomy_criteria = db.Column(db.Text)
    complexity_criteria = db.Column(db.Text)
    color = db.Column(db.String(50))
    icon = db.Column(db.String(100))
    display_order = db.Column(db.Integer, default=0)
    example_behaviors = db.Column(db.Text)
    assessment_guidance = db.Column(db.Text)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "level": self.level,
            "name": self.name,
            "shortName": self.short_name,
            "description": self.description,
            "knowledgeCriteria": self.knowledge_criteria,
            "skillsCriteria": self.skills_criteria,
            "experienceCriteria": self.experience_criteria,
            "autonomyCriteria": self.autonomy_criteria,
            "complexityCriteria": self.complexity_criteria,
            "color": self.color,
            "icon": self.icon,
            "displayOrder": self.display_order,
            "exampleBehaviors": self.example_behaviors,
            "assessmentGuidance": self.assessment_guidance,
            "active": self.active,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


class DataImportLog(db.Model):
    __tablename__ = "data_import_logs"

    id = db.Column(db.Integer, primary_key=True)
    import_type = db.Column(db.String(100), nullable=False, index=True)
    file_name = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer)
    status = db.Column(db.String(20), nullable=False, default="in_progress", index=True)
    total_rows = db.Column(db.Integer, nullable=False, default=0)
    success_rows = db.Column(db.Integer, nullable=False, default=0)
    failed_rows = db.Column(db.Integer, nullable=False, default=0)
    error_details_json = db.Column(db.Text)
    imported_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    started_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    completed_at = db.Column(db.DateTime)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(500))

    importer = db.relationship("User", foreign_keys=[imported_by])

    @property
    def error_details(self):
        return _load_json(self.error_details_json, [])

    def to_dict(self):
        return {
            "id": self.id,
            "importType": self.import_type,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "status": self.status,
            "totalRows": self.total_rows,
            "successRows": self.success_rows,
            "failedRows": self.failed_rows,
            "errorDetails": self.error_details,
            "importedBy": self.imported_by,
            "importedByName": self.importer.full_name if self.importer else None,
            "startedAt": iso(self.started_at),
            "completedAt": iso(self.completed_at),
        }
