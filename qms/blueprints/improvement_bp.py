"""
Improvement Blueprint — improvement ideas and their implementation tasks.

Endpoints summary:
    IDEA   /api/v1/improvement-ideas                       GET, POST
           /api/v1/improvement-ideas/statistics            GET
           /api/v1/improvement-ideas/<id>                  GET, PUT, DELETE
           /api/v1/improvement-ideas/<id>/status           PUT
           /api/v1/improvement-ideas/<id>/approve          POST
           /api/v1/improvement-ideas/<id>/reject           POST

    TASK   /api/v1/implementation-tasks                    GET, POST
           /api/v1/implementation-tasks/idea/<ideaId>      GET
           /api/v1/implementation-tasks/idea/<ideaId>/statistics  GET
           /api/v1/implementation-tasks/<id>               GET, PUT, DELETE
           /api/v1/implementation-tasks/<id>/complete      POST
"""

import logging

from flask import Blueprint, jsonify, request

from qms.blueprints import int_arg, json_body, parse_pagination, register_error_handlers, sort_args
from qms.middleware.permission_required import require_auth, require_roles
from qms.services import implementation_task_service as task_service
from qms.services import improvement_service
from qms.utils.errors import E, api_error
from qms.utils.helpers import db_commit_or_error, text_value

logger = logging.getLogger(__name__)

improvement_bp = Blueprint("improvement", __name__, url_prefix="/api/v1")
register_error_handlers(improvement_bp)

REVIEWER_ROLES = ("admin", "manager")
TASK_EDITOR_ROLES = ("admin", "manager", "user")


# ═══════════════════════════════════════════════════════════════════════════
#  IMPROVEMENT IDEAS
# ═══════════════════════════════════════════════════════════════════════════

@improvement_bp.route("/improvement-ideas", methods=["GET"])
@require_auth
def list_ideas(caller):
    page, limit, err = parse_pagination(default_limit=10)
    if err:
        return err
    filters = {
        "status": request.args.get("status"),
        "category": request.args.get("category"),
        "impactArea": request.args.get("impactArea"),
        "department": request.args.get("department"),
        "submittedBy": int_arg("submittedBy"),
        "responsibleUser": int_arg("responsibleUser"),
    }
    sort_by, sort_order = sort_args()
    return jsonify(improvement_service.list_ideas(filters, page, limit, sort_by, sort_order)), 200


@improvement_bp.route("/improvement-ideas/statistics", methods=["GET"])
@require_auth
def idea_statistics(caller):
    return jsonify(improvement_service.get_statistics()), 200


@improvement_bp.route("/improvement-ideas/<int:idea_id>", methods=["GET"])
@require_auth
def get_idea(idea_id, caller):
    return jsonify(improvement_service.get_idea(idea_id).to_dict()), 200


@improvement_bp.route("/improvement-ideas", methods=["POST"])
@require_auth
def create_idea(caller):
    idea = improvement_service.create_idea(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "Improvement idea created successfully",
        "id": idea.id,
        "ideaNumber": idea.idea_number,
    }), 201


@improvement_bp.route("/improvement-ideas/<int:idea_id>", methods=["PUT"])
@require_auth
def update_idea(idea_id, caller):
    idea = improvement_service.update_idea(idea_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Improvement idea updated successfully", "data": idea.to_dict()}), 200


@improvement_bp.route("/improvement-ideas/<int:idea_id>/status", methods=["PUT"])
@require_roles(*REVIEWER_ROLES)
def update_idea_status(idea_id, caller):
    data = json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Status is required")
    idea = improvement_service.update_status(
        idea_id, data["status"], caller, text_value(data, "reviewComments") or None
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "Improvement idea status updated successfully",
        "data": idea.to_dict(),
    }), 200


@improvement_bp.route("/improvement-ideas/<int:idea_id>/approve", methods=["POST"])
@require_roles(*REVIEWER_ROLES)
def approve_idea(idea_id, caller):
    """Body: {reviewComments?, responsibleUser?, implementationNotes?}"""
    improvement_service.approve_idea(idea_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    idea = improvement_service.get_idea(idea_id)
    return jsonify({"message": "Improvement idea approved successfully", "data": idea.to_dict()}), 200


@improvement_bp.route("/improvement-ideas/<int:idea_id>/reject", methods=["POST"])
@require_roles(*REVIEWER_ROLES)
def reject_idea(idea_id, caller):
    """Body: {reviewComments} (required, non-blank)"""
    improvement_service.reject_idea(idea_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    idea = improvement_service.get_idea(idea_id)
    return jsonify({"message": "Improvement idea rejected successfully", "data": idea.to_dict()}), 200


@improvement_bp.route("/improvement-ideas/<int:idea_id>", methods=["DELETE"])
@require_roles(*REVIEWER_ROLES)
def delete_idea(idea_id, caller):
    improvement_service.delete_idea(idea_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Improvement idea deleted successfully"}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  IMPLEMENTATION TASKS
# ═══════════════════════════════════════════════════════════════════════════

@improvement_bp.route("/implementation-tasks", methods=["GET"])
@require_auth
def list_tasks(caller):
    page, limit, err = parse_pagination(default_limit=100)
    if err:
        return err
    filters = {
        "improvementIdeaId": int_arg("improvementIdeaId"),
        "status": request.args.get("status"),
        "assignedTo": int_arg("assignedTo"),
        "deadlineBefore": request.args.get("deadlineBefore"),
        "deadlineAfter": request.args.get("deadlineAfter"),
    }
    sort_by, sort_order = sort_args()
    return jsonify(task_service.list_tasks(filters, page, limit, sort_by, sort_order)), 200


@improvement_bp.route("/implementation-tasks/idea/<int:idea_id>", methods=["GET"])
@require_auth
def list_tasks_for_idea(idea_id, caller):
    tasks = task_service.list_tasks_for_idea(idea_id)
    return jsonify({"data": tasks, "total": len(tasks)}), 200


@improvement_bp.route("/implementation-tasks/idea/<int:idea_id>/statistics", methods=["GET"])
@require_auth
def task_statistics(idea_id, caller):
    return jsonify(task_service.get_task_statistics(idea_id)), 200


@improvement_bp.route("/implementation-tasks/<int:task_id>", methods=["GET"])
@require_auth
def get_task(task_id, caller):
    return jsonify(task_service.get_task(task_id).to_dict()), 200


@improvement_bp.route("/implementation-tasks", methods=["POST"])
@require_roles(*TASK_EDITOR_ROLES)
def create_task(caller):
    task = task_service.create_task(json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Implementation task created successfully", "id": task.id}), 201


@improvement_bp.route("/implementation-tasks/<int:task_id>", methods=["PUT"])
@require_roles(*TASK_EDITOR_ROLES)
def update_task(task_id, caller):
    task = task_service.update_task(task_id, json_body(), caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Implementation task updated successfully", "data": task.to_dict()}), 200


@improvement_bp.route("/implementation-tasks/<int:task_id>/complete", methods=["POST"])
@require_roles(*TASK_EDITOR_ROLES)
def complete_task(task_id, caller):
    """Body: {completionEvidence?}"""
    task_service.complete_task(task_id, text_value(json_body(), "completionEvidence") or None, caller)
    err = db_commit_or_error()
    if err:
        return err
    task = task_service.get_task(task_id)
    return jsonify({"message": "Implementation task completed successfully", "data": task.to_dict()}), 200


@improvement_bp.route("/implementation-tasks/<int:task_id>", methods=["DELETE"])
@require_roles(*REVIEWER_ROLES)
def delete_task(task_id, caller):
    task_service.delete_task(task_id, caller)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Implementation task deleted successfully"}), 200
