"""
Implementation Task Service — work items that implement an improvement idea.

Task lifecycle:
    pending ⇄ in_progress ⇄ blocked → completed
    pending | in_progress | blocked → cancelled → pending (reopen)

Completion is terminal: it stamps ``completedDate``, ``completionEvidence``
and 100 % progress in one step, and a completed task cannot be completed
again.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import case, func

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db
from qms.models.audit_log import write_audit
from qms.models.auth import User
from qms.models.improvement import TASK_STATUSES, ImplementationTask, ImprovementIdea
from qms.services.helpers.queries import apply_sort, get_or_404, paginate
from qms.services.workflow import action_for_status, apply_transition, lock_for_update
from qms.utils.helpers import parse_date, text_value

logger = logging.getLogger(__name__)

RESOURCE = "Implementation task"
LABEL = "task"

TASK_TRANSITIONS = {
    "start": {"from": ["pending", "blocked"], "to": "in_progress"},
    "block": {"from": ["pending", "in_progress"], "to": "blocked"},
    "complete": {
        "from": ["pending", "in_progress", "blocked", "cancelled"],
        "to": "completed",
        "message": "Task is already completed",
    },
    "cancel": {"from": ["pending", "in_progress", "blocked"], "to": "cancelled"},
    "reopen": {"from": ["cancelled"], "to": "pending"},
}

TASK_SORT_FIELDS = {
    "deadline": ImplementationTask.deadline,
    "createdAt": ImplementationTask.created_at,
    "completedDate": ImplementationTask.completed_date,
    "taskName": ImplementationTask.task_name,
}


def _parse_progress(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("Progress percentage must be between 0 and 100")
    try:
        progress = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Progress percentage must be between 0 and 100")
    if progress != value and not isinstance(value, str):
        raise ValidationError("Progress percentage must be between 0 and 100")
    if not 0 <= progress <= 100:
        raise ValidationError("Progress percentage must be between 0 and 100")
    return progress


def _parse_deadline(value):
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("Invalid deadline date")
    return parsed


def _require_assignee(user_id):
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(resource="Assigned user", resource_id=user_id)


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════
def list_tasks(filters: dict, page: int, limit: int, sort_by=None, sort_order=None) -> dict:
    q = ImplementationTask.query
    if filters.get("improvementIdeaId") is not None:
        q = q.filter(ImplementationTask.improvement_idea_id == filters["improvementIdeaId"])
    if filters.get("status"):
        q = q.filter(ImplementationTask.status == filters["status"])
    if filters.get("assignedTo") is not None:
        q = q.filter(ImplementationTask.assigned_to == filters["assignedTo"])
    if filters.get("deadlineBefore"):
        q = q.filter(ImplementationTask.deadline <= _parse_deadline(filters["deadlineBefore"]))
    if filters.get("deadlineAfter"):
        q = q.filter(ImplementationTask.deadline >= _parse_deadline(filters["deadlineAfter"]))
    q = apply_sort(q, TASK_SORT_FIELDS, sort_by, sort_order, default=("deadline", "ASC"))
    return paginate(q, page, limit)


def get_task(task_id: int) -> ImplementationTask:
    return get_or_404(ImplementationTask, task_id, RESOURCE)


def list_tasks_for_idea(idea_id: int) -> list[dict]:
    get_or_404(ImprovementIdea, idea_id, "Improvement idea")
    tasks = (
        ImplementationTask.query
        .filter_by(improvement_idea_id=idea_id)
        .order_by(ImplementationTask.deadline.asc(), ImplementationTask.created_at.asc())
        .all()
    )
    return [t.to_dict() for t in tasks]


def get_task_statistics(idea_id: int) -> dict:
    """Counts per status, average progress and overdue tasks of one idea."""
    get_or_404(ImprovementIdea, idea_id, "Improvement idea")
    t = ImplementationTask
    today = date.today()

    def _count(condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    row = (
        db.session.query(
            func.count(t.id),
            _count(t.status == "pending"),
            _count(t.status == "in_progress"),
            _count(t.status == "completed"),
            _count(t.status == "blocked"),
            _count(t.status == "cancelled"),
            func.avg(t.progress_percentage),
            _count((t.deadline < today) & t.status.notin_(("completed", "cancelled"))),
        )
        .filter(t.improvement_idea_id == idea_id)
        .one()
    )
    total, pending, in_progress, completed, blocked, cancelled, avg_progress, overdue = row
    return {
        "totalTasks": total,
        "pending": int(pending),
        "inProgress": int(in_progress),
        "completed": int(completed),
        "blocked": int(blocked),
        "cancelled": int(cancelled),
        "avgProgress": round(float(avg_progress), 2) if avg_progress is not None else 0,
        "overdueTasks": int(overdue),
    }


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════
def create_task(data: dict, caller) -> ImplementationTask:
    idea_id = data.get("improvementIdeaId")
    if idea_id is None:
        raise ValidationError("improvementIdeaId is required")
    task_name = text_value(data, "taskName")
    if not task_name:
        raise ValidationError("Task name is required", details={"taskName": "required"})
    get_or_404(ImprovementIdea, idea_id, "Improvement idea")

    status = data.get("status") or "pending"
    if status not in ("pending", "in_progress"):
        raise ValidationError("New tasks must start as 'pending' or 'in_progress'")
    _require_assignee(data.get("assignedTo"))

    task = ImplementationTask(
        improvement_idea_id=idea_id,
        task_name=task_name,
        task_description=text_value(data, "taskDescription") or None,
        assigned_to=data.get("assignedTo"),
        deadline=_parse_deadline(data.get("deadline")),
        status=status,
        started_date=datetime.now(timezone.utc) if status == "in_progress" else None,
        progress_percentage=_parse_progress(data.get("progressPercentage", 0)),
        created_by=caller.user_id,
        updated_by=caller.user_id,
    )
    db.session.add(task)
    db.session.flush()
    write_audit(
        caller=caller, action="create", action_category="improvement",
        entity_type="implementation_task", entity_id=task.id, entity_identifier=f"Task #{task.id}",
        new_values=task.to_dict(),
    )
    return task


def _transition_changes(task: ImplementationTask, action: str, caller, evidence=None) -> dict:
    """Fields written together with the status of ``action``."""
    now = datetime.now(timezone.utc)
    changes = {"updated_by": caller.user_id}
    if action == "start" and task.started_date is None:
        changes["started_date"] = now
    elif action == "complete":
        changes["progress_percentage"] = 100
        changes["completed_date"] = now
        if evidence is not None:
            changes["completion_evidence"] = evidence
    return changes


def update_task(task_id: int, data: dict, caller) -> ImplementationTask:
    """Edit task fields. A changed ``status`` goes through the transition table."""
    task = lock_for_update(ImplementationTask, task_id, RESOURCE)
    old = task.to_dict()

    if "taskName" in data:
        task_name = text_value(data, "taskName")
        if not task_name:
            raise ValidationError("Task name is required", details={"taskName": "required"})
        task.task_name = task_name
    if "taskDescription" in data:
        task.task_description = text_value(data, "taskDescription") or None
    if "assignedTo" in data:
        _require_assignee(data["assignedTo"])
        task.assigned_to = data["assignedTo"]
    if "deadline" in data:
        task.deadline = _parse_deadline(data["deadline"])
    if "progressPercentage" in data:
        task.progress_percentage = _parse_progress(data["progressPercentage"])

    evidence = text_value(data, "completionEvidence") or None
    target = data.get("status")
    if target and target != task.status:
        if target not in TASK_STATUSES:
            raise ValidationError(f"Invalid status '{target}'", details={"allowed": list(TASK_STATUSES)})
        action = action_for_status(TASK_TRANSITIONS, task.status, target)
        if action is None:
            raise ValidationError(f"Cannot change task status to '{target}'")
        apply_transition(
            task, TASK_TRANSITIONS, action, caller, LABEL,
            changes=_transition_changes(task, action, caller, evidence),
        )
    elif "completionEvidence" in data and task.status == "completed":
        task.completion_evidence = evidence

    task.updated_by = caller.user_id
    db.session.flush()
    write_audit(
        caller=caller, action="update", action_category="improvement",
        entity_type="implementation_task", entity_id=task.id, entity_identifier=f"Task #{task.id}",
        old_values=old, new_values=task.to_dict(),
    )
    return task


def complete_task(task_id: int, completion_evidence, caller) -> ImplementationTask:
    task = lock_for_update(ImplementationTask, task_id, RESOURCE)
    apply_transition(
        task, TASK_TRANSITIONS, "complete", caller, LABEL,
        changes=_transition_changes(task, "complete", caller, completion_evidence),
    )
    logger.info("Task %s completed by user %s", task.id, caller.user_id)
    return task


def delete_task(task_id: int, caller) -> None:
    task = get_task(task_id)
    snapshot = task.to_dict()
    db.session.delete(task)
    db.session.flush()
    write_audit(
        caller=caller, action="delete", action_category="improvement",
        entity_type="implementation_task", entity_id=task_id, entity_identifier=f"Task #{task_id}",
        old_values=snapshot,
    )
