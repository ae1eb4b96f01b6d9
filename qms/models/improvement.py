"""
QMS Platform
Continuous improvement models — improvement ideas and their implementation tasks.

Models:
    - ImprovementIdea: employee-submitted idea with a review workflow
      (submitted → under_review → approved | rejected → in_progress → implemented → closed)
    - ImplementationTask: unit of work implementing an approved idea
"""

from datetime import datetime, timezone

from qms.models import db
from qms.utils.helpers import iso

IDEA_STATUSES = (
    "submitted",
    "under_review",
    "approved",
    "rejected",
    "in_progress",
    "implemented",
    "closed",
)

IMPACT_LEVELS = ("low", "medium", "high", "critical")

TASK_STATUSES = ("pending", "in_progress", "completed", "blocked", "cancelled")


class ImprovementIdea(db.Model):
    __tablename__ = "improvement_ideas"

    id = db.Column(db.Integer, primary_key=True)
    idea_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    category = db.Column(db.String(100), nullable=False, default="general")
    expected_impact = db.Column(db.String(20))
    impact_area = db.Column(db.String(100))
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    responsible_user = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    department = db.Column(db.String(100))
    status = db.Column(db.String(30), nullable=False, default="submitted", index=True)
    submitted_date = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    reviewed_date = db.Column(db.DateTime)
    implemented_date = db.Column(db.DateTime)
    review_comments = db.Column(db.Text)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    implementation_notes = db.Column(db.Text)
    estimated_cost = db.Column(db.Float)
    estimated_benefit = db.Column(db.Text)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    tasks = db.relationship(
        "ImplementationTask", back_populates="idea",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    submitter = db.relationship("User", foreign_keys=[submitted_by])
    responsible = db.relationship("User", foreign_keys=[responsible_user])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])

    def to_dict(self):
        return {
            "id": self.id,
            "ideaNumber": self.idea_number,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "expectedImpact": self.expected_impact,
            "impactArea": self.impact_area,
            "submittedBy": self.submitted_by,
            "submittedByName": self.submitter.full_name if self.submitter else None,
            "responsibleUser": self.responsible_user,
            "responsibleUserName": self.responsible.full_name if self.responsible else None,
            "department": self.department,
            "status": self.status,
            "submittedDate": iso(self.submitted_date),
            "reviewedDate": iso(self.reviewed_date),
            "implementedDate": iso(self.implemented_date),
            "reviewComments": self.review_comments,
            "reviewedBy": self.reviewed_by,
            "reviewedByName": self.reviewer.full_name if self.reviewer else None,
            "implementationNotes": self.implementation_notes,
            "estimatedCost": self.estimated_cost,
            "estimatedBenefit": self.estimated_benefit,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ImprovementIdea {self.idea_number} [{self.status}]>"


class ImplementationTask(db.Model):
    __tablename__ = "implementation_tasks"

    id = db.Column(db.Integer, primary_key=True)
    improvement_idea_id = db.Column(
        db.Integer, db.ForeignKey("improvement_ideas.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_name = db.Column(db.String(500), nullable=False)
    task_description = db.Column(db.Text)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    deadline = db.Column(db.Date)
    started_date = db.Column(db.DateTime)
    completed_date = db.Column(db.DateTime)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    progress_percentage = db.Column(db.Integer, nullable=False, default=0)
    completion_evidence = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_task_progress_range",
        ),
        db.CheckConstraint(
            "(status = 'completed' AND completed_date IS NOT NULL) "
            "OR (status <> 'completed' AND completed_date IS NULL)",
            name="ck_task_completed_date",
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    idea = db.relationship("ImprovementIdea", back_populates="tasks")
    assignee = db.relationship("User", foreign_keys=[assigned_to])

    def to_dict(self):
        return {
            "id": self.id,
            "improvementIdeaId": self.improvement_idea_id,
            "ideaNumber": self.idea.idea_number if self.idea else None,
            "ideaTitle": self.idea.title if self.idea else None,
            "taskName": self.task_name,
            "taskDescription": self.task_description,
            "assignedTo": self.assigned_to,
            "assignedToName": self.assignee.full_name if self.assignee else None,
            "deadline": iso(self.deadline),
            "startedDate": iso(self.started_date),
            "completedDate": iso(self.completed_date),
            "status": self.status,
            "progressPercentage": self.progress_percentage,
            "completionEvidence": self.completion_evidence,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ImplementationTask {self.id} [{self.status}]>"
