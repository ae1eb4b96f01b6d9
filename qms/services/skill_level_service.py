"""Skill level catalogue (competency levels 1-5)."""

import logging

from qms.core.exceptions import ConflictError, NotFoundError, ValidationError
from qms.models import db
from qms.models.admin import SkillLevel
from qms.models.audit_log import write_audit
from qms.services.helpers.queries import get_or_404

logger = logging.getLogger(__name__)

RESOURCE = "Skill level"

_FIELDS = {
    "name": "name",
    "shortName": "short_name",
    "description": "description",
    "knowledgeCriteria": "knowledge_criteria",
    "skillsCriteria": "skills_criteria",
    "experienceCriteria": "experience_criteria",
    "autonomyCriteria": "autonomy_criteria",
    "complexityCriteria": "complexity_criteria",
    "color": "color",
    "icon": "icon",
    "displayOrder": "display_order",
    "exampleBehaviors": "example_behaviors",
    "assessmentGuidance": "assessment_guidance",
}


def _parse_level(value) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Level must be between 1 and 5") from None
    if not 1 <= level <= 5:
        raise ValidationError("Level must be between 1 and 5")
    return level


def list_skill_levels(include_inactive: bool = False) -> list[dict]:
    q = SkillLevel.query
    if not include_inactive:
        q = q.filter(SkillLevel.active.is_(True))
    return [s.to_dict() for s in q.order_by(SkillLevel.level.asc()).all()]


def get_skill_level(skill_level_id: int) -> SkillLevel:
    return get_or_404(SkillLevel, skill_level_id, RESOURCE)


def get_by_level(level) -> SkillLevel:
    level = _parse_level(level)
    skill = SkillLevel.query.filter_by(level=level).first()
    if skill is None:
        raise NotFoundError(resource=RESOURCE, resource_id=level)
    return skill


def create_skill_level(data: dict, caller) -> SkillLevel:
    missing = [k for k in ("level", "name", "description") if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={k: "required" for k in missing},
        )
    level = _parse_level(data["level"])
    if SkillLevel.query.filter_by(level=level).first() is not None:
        raise ConflictError(RESOURCE, "level", level)

    skill = SkillLevel(level=level, created_by=caller.user_id, updated_by=caller.user_id)
    for key, attr in _FIELDS.items():
        if key in data:
            setattr(skill, attr, data[key])
    db.session.add(skill)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="skill_level",
        entity_type="skill_level", entity_id=skill.id, entity_identifier=f"L{skill.level}",
        new_values=skill.to_dict(),
    )
    return skill


def update_skill_level(skill_level_id: int, data: dict, caller) -> SkillLevel:
    skill = get_skill_level(skill_level_id)
    old = skill.to_dict()
    if "level" in data:
        level = _parse_level(data["level"])
        clash = SkillLevel.query.filter(SkillLevel.level == level, SkillLevel.id != skill.id).first()
        if clash is not None:
            raise ConflictError(RESOURCE, "level", level)
        skill.level = level
    for key, attr in _FIELDS.items():
        if key in data:
            if key in ("name", "description") and not data[key]:
                raise ValidationError(f"{key} is required")
            setattr(skill, attr, data[key])
    if "active" in data:
        skill.active = bool(data["active"])
    skill.updated_by = caller.user_id
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="skill_level",
        entity_type="skill_level", entity_id=skill.id, entity_identifier=f"L{skill.level}",
        old_values=old, new_values=skill.to_dict(),
    )
    return skill


def delete_skill_level(skill_level_id: int, caller) -> None:
    skill = get_skill_level(skill_level_id)
    snapshot = skill.to_dict()
    db.session.delete(skill)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="skill_level",
        entity_type="skill_level", entity_id=skill_level_id,
        entity_identifier=f"L{snapshot['level']}", old_values=snapshot,
    )
