"""
Solar Operations Backend
Field report aggregate — Report model.

A report is submitted by one employee and carries a type-specific JSON
document (``details`` column).  Project reports additionally move through
the installation workflow tracked in ``project_workflow_status``.

Lifecycle states (Project reports only):
    Draft → PendingTeamAcceptance → InProgress → ConcreteWorksDone
    → FinishingWorks → TechnicallyCompleted → Completed → Archived

Concurrency:
    ``version_id`` is a SQLAlchemy version counter.  Every flush issues
    ``UPDATE ... WHERE id = :id AND version_id = :seen`` so two writers that
    read the same row cannot both commit.  Workflow mutations additionally
    take a row lock (``SELECT ... FOR UPDATE``) before reading.
"""

import uuid
from datetime import datetime, timezone

from solarops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REPORT_TYPE_INQUIRY = "Inquiry"
REPORT_TYPE_MAINTENANCE = "Maintenance"
REPORT_TYPE_SALES = "Sales"
REPORT_TYPE_PROJECT = "Project"

REPORT_TYPES = (
    REPORT_TYPE_INQUIRY,
    REPORT_TYPE_MAINTENANCE,
    REPORT_TYPE_SALES,
    REPORT_TYPE_PROJECT,
)

REPORT_STATUSES = {"Pending", "Approved", "Rejected", "NeedsModification"}

WF_DRAFT = "Draft"
WF_PENDING_TEAM_ACCEPTANCE = "PendingTeamAcceptance"
WF_IN_PROGRESS = "InProgress"
WF_CONCRETE_WORKS_DONE = "ConcreteWorksDone"
WF_FINISHING_WORKS = "FinishingWorks"
WF_TECHNICALLY_COMPLETED = "TechnicallyCompleted"
WF_COMPLETED = "Completed"
WF_ARCHIVED = "Archived"

# Declaration order doubles as the monotonic rank used by transition guards.
WORKFLOW_STATES = (
    WF_DRAFT,
    WF_PENDING_TEAM_ACCEPTANCE,
    WF_IN_PROGRESS,
    WF_CONCRETE_WORKS_DONE,
    WF_FINISHING_WORKS,
    WF_TECHNICALLY_COMPLETED,
    WF_COMPLETED,
    WF_ARCHIVED,
)

TERMINAL_WORKFLOW_STATES = frozenset({WF_ARCHIVED})


def _new_report_id():
    return uuid.uuid4().hex


class Report(db.Model):
    """
    Field report aggregate root.

    Business rules:
    - id, owner_user_id and report_type never change after creation.
    - details holds the serialised content document; read/write it through
      ``solarops.services.report_content`` only.
    - project_workflow_status is NULL for non-Project reports.
    - last_modified is refreshed on every content or status mutation.
    """

    __tablename__ = "reports"

    id = db.Column(db.String(32), primary_key=True, default=_new_report_id)
    owner_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    report_type = db.Column(db.String(20), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default="Pending", index=True)
    details = db.Column(db.Text, nullable=False, default="{}", comment="Serialised content document")
    evaluation = db.Column(db.Text, nullable=True, comment="Serialised admin evaluation document")
    modifications = db.Column(db.Text, nullable=True, comment="Serialised general-edit log")
    project_workflow_status = db.Column(db.String(40), nullable=True, index=True)
    assigned_team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    last_modified = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("User", foreign_keys=[owner_user_id])
    branch = db.relationship("Branch")
    assigned_team = db.relationship("Team")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_project(self):
        return self.report_type == REPORT_TYPE_PROJECT

    def touch(self):
        self.last_modified = datetime.now(timezone.utc)

    def __repr__(self):
        return f"<Report {self.id} {self.report_type} {self.status}>"
