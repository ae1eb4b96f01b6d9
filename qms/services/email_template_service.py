"""
Email Template Service — CRUD, default-per-type rule, placeholder rendering.

Placeholders use ``{{name}}`` syntax; unknown placeholders are left in place
so a preview shows what is still missing.
"""

import json
import logging
import re

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.admin import EMAIL_TEMPLATE_CATEGORIES, EMAIL_TEMPLATE_TYPES, EmailTemplate
from qms.models.audit_log import write_audit
from qms.services.email_service import EmailService
from qms.services.helpers.queries import get_or_404

logger = logging.getLogger(__name__)

RESOURCE = "Email template"

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")

_FIELDS = {
    "name": "name",
    "displayName": "display_name",
    "subject": "subject",
    "body": "body",
    "description": "description",
}


def render(text: str, values: dict) -> str:
    """Substitute ``{{key}}`` occurrences with ``values[key]``."""
    def _sub(match):
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)
    return _PLACEHOLDER.sub(_sub, text or "")


def extract_placeholders(*texts: str) -> list[str]:
    found = []
    for text in texts:
        for name in _PLACEHOLDER.findall(text or ""):
            if name not in found:
                found.append(name)
    return found


def _validate(data: dict, partial: bool):
    if not partial:
        missing = [k for k in ("name", "displayName", "type", "category", "subject", "body") if not data.get(k)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={k: "required" for k in missing},
            )
    if "type" in data and data["type"] not in EMAIL_TEMPLATE_TYPES:
        raise ValidationError("Invalid template type", details={"allowed": list(EMAIL_TEMPLATE_TYPES)})
    if "category" in data and data["category"] not in EMAIL_TEMPLATE_CATEGORIES:
        raise ValidationError("Invalid template category", details={"allowed": list(EMAIL_TEMPLATE_CATEGORIES)})


def _clear_other_defaults(template: EmailTemplate):
    """Keep at most one default template per type."""
    (
        EmailTemplate.query
        .filter(EmailTemplate.type == template.type, EmailTemplate.id != template.id,
                EmailTemplate.is_default.is_(True))
        .update({"is_default": False}, synchronize_session="fetch")
    )


def _apply(template: EmailTemplate, data: dict):
    for key, attr in _FIELDS.items():
        if key in data:
            setattr(template, attr, data[key])
    for key in ("type", "category"):
        if key in data:
            setattr(template, key, data[key])
    if "isActive" in data:
        template.is_active = bool(data["isActive"])
    if "isDefault" in data:
        template.is_default = bool(data["isDefault"])
    if "placeholders" in data:
        placeholders = data["placeholders"]
        if not isinstance(placeholders, list):
            raise ValidationError("placeholders must be a list")
        template.placeholders_json = json.dumps(placeholders)
    elif template.placeholders_json is None:
        template.placeholders_json = json.dumps(extract_placeholders(template.subject, template.body))


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_templates(filters: dict) -> list[dict]:
    q = EmailTemplate.query
    if filters.get("type"):
        q = q.filter(EmailTemplate.type == filters["type"])
    if filters.get("category"):
        q = q.filter(EmailTemplate.category == filters["category"])
    if filters.get("isActive") is not None:
        q = q.filter(EmailTemplate.is_active.is_(filters["isActive"]))
    rows = q.order_by(EmailTemplate.category, EmailTemplate.type, EmailTemplate.display_name).all()
    return [t.to_dict() for t in rows]


def get_template(template_id: int) -> EmailTemplate:
    return get_or_404(EmailTemplate, template_id, RESOURCE)


def list_by_type(template_type: str) -> list[dict]:
    rows = (
        EmailTemplate.query
        .filter(EmailTemplate.type == template_type, EmailTemplate.is_active.is_(True))
        .order_by(EmailTemplate.is_default.desc(), EmailTemplate.display_name)
        .all()
    )
    return [t.to_dict() for t in rows]


def get_default_for_type(template_type: str) -> EmailTemplate:
    template = (
        EmailTemplate.query
        .filter(EmailTemplate.type == template_type, EmailTemplate.is_default.is_(True),
                EmailTemplate.is_active.is_(True))
        .first()
    )
    if template is None:
        raise NotFoundError(resource="Default template", resource_id=template_type)
    return template


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_template(data: dict, caller) -> EmailTemplate:
    _validate(data, partial=False)
    template = EmailTemplate(created_by=caller.user_id, updated_by=caller.user_id)
    _apply(template, data)
    db.session.add(template)
    db.session.flush()
    if template.is_default:
        _clear_other_defaults(template)
    write_audit(
        caller=caller, action="create", action_category="email_template",
        entity_type="email_template", entity_id=template.id, entity_identifier=template.name,
        new_values=template.to_dict(),
    )
    return template


def update_template(template_id: int, data: dict, caller) -> EmailTemplate:
    template = get_template(template_id)
    _validate(data, partial=True)
    old = template.to_dict()
    _apply(template, data)
    template.updated_by = caller.user_id
    db.session.flush()
    if template.is_default:
        _clear_other_defaults(template)
    write_audit(
        caller=caller, action="update", action_category="email_template",
        entity_type="email_template", entity_id=template.id, entity_identifier=template.name,
        old_values=old, new_values=template.to_dict(),
    )
    return template


def delete_template(template_id: int, caller) -> None:
    template = get_template(template_id)
    snapshot = template.to_dict()
    db.session.delete(template)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="email_template",
        entity_type="email_template", entity_id=template_id, entity_identifier=snapshot["name"],
        old_values=snapshot,
    )


def preview(template_id: int, values: dict) -> dict:
    template = get_template(template_id)
    return {
        "subject": render(template.subject, values),
        "body": render(template.body, values),
        "missingPlaceholders": [
            p for p in extract_placeholders(template.subject, template.body) if p not in values
        ],
    }


def send_test(template_id: int, to_email: str, values: dict, caller) -> dict:
    if not to_email:
        raise ValidationError("Recipient email is required")
    rendered = preview(template_id, values)
    result = EmailService.send(
        to_email=to_email, subject=rendered["subject"], html_body=rendered["body"],
    )
    write_audit(
        caller=caller, action="view", action_category="email_template",
        entity_type="email_template", entity_id=template_id,
        description=f"Test email to {to_email}: {result['status']}",
        success=result["status"] != "failed", error_message=result.get("error"),
    )
    return result
