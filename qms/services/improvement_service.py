"""
Improvement Idea Service — submission, review workflow and statistics.

Review workflow:
    submitted → under_review → approved | rejected → in_progress → implemented → closed

``reviewedBy`` / ``reviewedDate`` are stamped only by the approve and reject
actions, whichever endpoint triggers them.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.improvement import IMPACT_LEVELS, IDEA_STATUSES, ImprovementIdea
from qms.services.code_generator import generate_idea_number
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.services.workflow import action_for_status, apply_transition, lock_for_update
from qms.utils.helpers import text_value

logger = logging.getLogger(__name__)

RESOURCE = "Improvement idea"
LABEL = "idea"

IDEA_TRANSITIONS = {
    "review": {"from": ["submitted"], "to": "under_review"},
    "approve": {"from": ["submitted", "under_review"], "to": "approved"},
    "reject": {"from": ["submitted", "under_review"], "to": "rejected"},
    "start_implementation": {"from": ["approved"], "to": "in_progress"},
    "implement": {"from": ["in_progress"], "to": "implemented"},
    "close": {"from": ["implemented", "rejected"], "to": "closed"},
}

IDEA_SORT_FIELDS = {
    "submittedDate": ImprovementIdea.submitted_date,
    "reviewedDate": ImprovementIdea.reviewed_date,
    "implementedDate": ImprovementIdea.implemented_date,
    "title": ImprovementIdea.title,
}

# camelCase payload key → column, for fields editable outside the workflow
_EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "expectedImpact": "expected_impact",
    "impactArea": "impact_area",
    "responsibleUser": "responsible_user",
    "department": "department",
    "implementationNotes": "implementation_notes",
    "estimatedCost": "estimated_cost",
    "estimatedBenefit": "estimated_benefit",
}

_TEXT_FIELDS = (
    "title", "description", "category", "impactArea", "department",
    "implementationNotes", "estimatedBenefit",
)

_FILTER_FIELDS = {
    "status": ImprovementIdea.status,
    "category": ImprovementIdea.category,
    "impactArea": ImprovementIdea.impact_area,
    "submittedBy": ImprovementIdea.submitted_by,
    "responsibleUser": ImprovementIdea.responsible_user,
    "department": ImprovementIdea.department,
}


def _validate_fields(data: dict):
    for key in _TEXT_FIELDS:
        if key in data:
            text_value(data, key)
    if "expectedImpact" in data and data["expectedImpact"] not in (None, "", *IMPACT_LEVELS):
        raise ValidationError(
            "Invalid expectedImpact", details={"allowed": list(IMPACT_LEVELS)}
        )
    if "estimatedCost" in data and data["estimatedCost"] not in (None, ""):
        try:
            if float(data["estimatedCost"]) < 0:
                raise ValidationError("estimatedCost must not be negative")
        except (TypeError, ValueError):
            raise ValidationError("estimatedCost must be a number")
    if data.get("responsibleUser") is not None:
        _require_user(data["responsibleUser"], "Responsible user")


def _require_user(user_id, label: str):
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource=label, resource_id=user_id)


def _set_fields(idea: ImprovementIdea, data: dict):
    for key, attr in _EDITABLE_FIELDS.items():
        if key in data:
            value = data[key].strip() if isinstance(data[key], str) else data[key]
            if key == "estimatedCost" and value not in (None, ""):
                value = float(value)
            elif value == "" and key != "description":
                value = None
            setattr(idea, attr, value)


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_ideas(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = ImprovementIdea.query
    for key, column in _FILTER_FIELDS.items():
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(column == value)
    q = apply_sort(q, IDEA_SORT_FIELDS, sort_by, sort_order, default=("submittedDate", "DESC"))
    return paginate(q, page, limit)


def get_idea(idea_id: int) -> ImprovementIdea:
    return get_or_404(ImprovementIdea, idea_id, RESOURCE)


def get_statistics() -> dict:
    counts = dict(
        db.session.query(ImprovementIdea.status, func.count(ImprovementIdea.id))
        .group_by(ImprovementIdea.status)
        .all()
    )

    def _group(column):
        rows = (
            db.session.query(column, func.count(ImprovementIdea.id))
            .group_by(column)
            .all()
        )
        return {key or "unspecified": count for key, count in rows}

    return {
        "totalIdeas": sum(counts.values()),
        "submitted": counts.get("submitted", 0),
        "underReview": counts.get("under_review", 0),
        "approved": counts.get("approved", 0),
        "rejected": counts.get("rejected", 0),
        "inProgress": counts.get("in_progress", 0),
        "implemented": counts.get("implemented", 0),
        "closed": counts.get("closed", 0),
        "byCategory": _group(ImprovementIdea.category),
        "byImpactArea": _group(ImprovementIdea.impact_area),
    }


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_idea(data: dict, caller) -> ImprovementIdea:
    """Submit a new idea. It always starts in ``submitted``."""
    title = text_value(data, "title")
    if not title:
        raise ValidationError("Title is required", details={"title": "required"})
    if data.get("status") not in (None, "", "submitted"):
        raise ValidationError("New ideas must start in status 'submitted'")
    _validate_fields(data)

    idea = ImprovementIdea(
        idea_number=generate_idea_number(),
        title=title,
        description=data.get("description") or "",
        category=data.get("category") or "general",
        status="submitted",
        submitted_by=caller.user_id,
        submitted_date=datetime.now(timezone.utc),
    )
    _set_fields(idea, {k: v for k, v in data.items() if k not in ("title", "description", "category")})
    db.session.add(idea)
    db.session.flush()

    write_audit(
        caller=caller, action="create", action_category="improvement",
        entity_type="improvement_idea", entity_id=idea.id, entity_identifier=idea.idea_number,
        new_values=idea.to_dict(),
    )
    logger.info("Improvement idea %s submitted by user %s", idea.idea_number, caller.user_id)
    return idea


def update_idea(idea_id: int, data: dict, caller) -> ImprovementIdea:
    """Edit non-status fields."""
    idea = lock_for_update(ImprovementIdea, idea_id, RESOURCE)
    if "status" in data and data["status"] != idea.status:
        raise ValidationError("Use the status endpoint to change an idea's status")
    if "title" in data and not text_value(data, "title"):
        raise ValidationError("Title is required", details={"title": "required"})
    _validate_fields(data)

    old = idea.to_dict()
    _set_fields(idea, data)
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="improvement",
        entity_type="improvement_idea", entity_id=idea.id, entity_identifier=idea.idea_number,
        old_values=old, new_values=idea.to_dict(),
    )
    return idea


def _run_action(idea: ImprovementIdea, action: str, caller, review_comments=None):
    now = datetime.now(timezone.utc)
    changes = {}
    if action in ("approve", "reject"):
        changes["reviewed_by"] = caller.user_id
        changes["reviewed_date"] = now
    if review_comments:
        changes["review_comments"] = review_comments
    if action == "implement":
        changes["implemented_date"] = now
    apply_transition(idea, IDEA_TRANSITIONS, action, caller, LABEL, changes=changes)


def update_status(idea_id: int, status: str, caller, review_comments=None) -> ImprovementIdea:
    """Move an idea to ``status`` through the transition table."""
    if status not in IDEA_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'", details={"allowed": list(IDEA_STATUSES)}
        )
    idea = lock_for_update(ImprovementIdea, idea_id, RESOURCE)
    action = action_for_status(IDEA_TRANSITIONS, idea.status, status)
    if action is None:
        raise ValidationError(f"Cannot change idea status to '{status}'")
    if action == "reject" and not (review_comments or "").strip():
        raise ValidationError("Review comments are required when rejecting an idea")
    _run_action(idea, action, caller, review_comments)
    return idea


def approve_idea(idea_id: int, data: dict, caller) -> ImprovementIdea:
    """Approve a submitted or under-review idea.

    Optional ``responsibleUser`` and ``implementationNotes`` are stored with
    the approval.
    """
    idea = lock_for_update(ImprovementIdea, idea_id, RESOURCE)
    if data.get("responsibleUser") is not None:
        _require_user(data["responsibleUser"], "Responsible user")

    _run_action(idea, "approve", caller, text_value(data, "reviewComments") or None)
    if data.get("responsibleUser") is not None:
        idea.responsible_user = data["responsibleUser"]
    if data.get("implementationNotes"):
        idea.implementation_notes = data["implementationNotes"]
    db.session.flush()
    return idea


def reject_idea(idea_id: int, data: dict, caller) -> ImprovementIdea:
    """Reject a submitted or under-review idea. Comments are mandatory."""
    idea = lock_for_update(ImprovementIdea, idea_id, RESOURCE)
    comments = text_value(data, "reviewComments")
    if not comments:
        raise ValidationError("Review comments are required when rejecting an idea")
    _run_action(idea, "reject", caller, comments)
    return idea


def delete_idea(idea_id: int, caller) -> None:
    """Hard delete; implementation tasks cascade."""
    idea = get_idea(idea_id)
    snapshot = idea.to_dict()
    db.session.delete(idea)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="improvement",
        entity_type="improvement_idea", entity_id=idea_id, entity_identifier=snapshot["ideaNumber"],
        old_values=snapshot,
    )
