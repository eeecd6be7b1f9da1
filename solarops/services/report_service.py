"""
Report Aggregate Repository — load, persist and serialise reports.

Every write goes through ``commit_report`` so a lost race surfaces as
ConflictError instead of a silent overwrite:

    - ``Report.version_id`` is the mapper version counter; a flush against a
      row whose version moved raises StaleDataError → ConflictError.
    - Workflow and admin-note mutations read the row with
      ``SELECT ... FOR UPDATE`` (``load_report_for_update``) so concurrent
      appends to the same JSON list are serialised per report id.
    - General edits may carry the client's last-seen ``version``; a mismatch
      is rejected up front (compare-and-swap).

Nothing here sends notifications or talks to the document store.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm.exc import StaleDataError

from solarops.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from solarops.models import db
from solarops.models.auth import Branch, User
from solarops.models.report import REPORT_STATUSES, REPORT_TYPE_PROJECT, Report
from solarops.services import access_guard
from solarops.services.directory import get_team
from solarops.services.report_content import (
    WORKFLOW_MANAGED_KEYS,
    ProjectContent,
    ReportContent,
    content_from_dict,
    dumps_content,
    loads_content,
    loads_json,
    validate_report_type,
)
from solarops.services.workflow_engine import filter_files_for_uploader, initial_state

logger = logging.getLogger(__name__)


# ── Load / persist ───────────────────────────────────────────────────────────


def load_report(report_id: str) -> Report:
    report = db.session.get(Report, report_id)
    if report is None:
        raise NotFoundError(resource="Report", resource_id=report_id)
    return report


def load_report_for_update(report_id: str) -> Report:
    """Load a report under a row-level write lock, refreshing any cached copy."""
    report = db.session.execute(
        select(Report)
        .where(Report.id == report_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if report is None:
        raise NotFoundError(resource="Report", resource_id=report_id)
    return report


def read_content(report: Report) -> ReportContent:
    return loads_content(report.report_type, report.details, report_id=report.id)


def write_content(report: Report, content: ReportContent) -> None:
    report.details = dumps_content(content)
    report.touch()


def commit_report(report: Report) -> None:
    """Commit the session; a stale version becomes ConflictError.

    The session is rolled back on any failure and the exception re-raised.
    """
    report_id = report.id
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "Concurrent modification of report %s", report_id,
            extra={"report_id": report_id, "event_type": "version_conflict"},
        )
        raise ConflictError(resource="Report", resource_id=report_id) from exc
    except Exception:
        db.session.rollback()
        raise


def _check_expected_version(report: Report, expected) -> None:
    if expected is None:
        return
    try:
        expected = int(expected)
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer", details={"version": "integer"})
    if expected != report.version_id:
        logger.info(
            "Rejected edit of report %s at version %s (current %s)",
            report.id, expected, report.version_id,
            extra={"report_id": report.id},
        )
        raise ConflictError(resource="Report", resource_id=report.id)


# ── Serialisation ────────────────────────────────────────────────────────────


def _iso(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_report(report: Report, viewer: User | None = None, content: ReportContent | None = None) -> dict:
    """Camel-cased API view of a report.

    When ``viewer`` is a team lead looking at a Project report, stage
    attachments they did not upload are removed from the response.
    """
    if content is None:
        content = read_content(report)
    else:
        content = loads_content(report.report_type, dumps_content(content), report_id=report.id)
    if (
        viewer is not None
        and isinstance(content, ProjectContent)
        and access_guard.sees_only_own_stage_files(viewer, report)
    ):
        filter_files_for_uploader(content, viewer.id)

    owner = report.owner
    return {
        "id": report.id,
        "ownerUserId": report.owner_user_id,
        "employeeId": owner.username if owner else None,
        "employeeName": owner.full_name if owner else None,
        "branchId": report.branch_id,
        "type": report.report_type,
        "status": report.status,
        "projectWorkflowStatus": report.project_workflow_status,
        "assignedTeamId": report.assigned_team_id,
        "content": content.to_dict(),
        "evaluation": loads_json(report.evaluation, None),
        "modifications": loads_json(report.modifications, []),
        "createdAt": _iso(report.created_at),
        "lastModified": _iso(report.last_modified),
        "version": report.version_id,
    }


# ── Create ───────────────────────────────────────────────────────────────────


def _check_type_allowed(owner: User, report_type: str) -> None:
    whitelist = owner.report_type_whitelist
    if whitelist is not None and report_type not in whitelist and not owner.is_admin:
        logger.warning(
            "User %s may not submit %s reports", owner.id, report_type,
            extra={"user_id": owner.id},
        )
        raise ForbiddenError(f"create{report_type}Report", owner.id)


def create_project_report(owner: User, branch_id=None, initial_content=None, team_id=None) -> Report:
    """Create a Project report in Draft, or PendingTeamAcceptance with a team."""
    if team_id is not None:
        get_team(team_id)
    return _create(owner, REPORT_TYPE_PROJECT, branch_id, initial_content, team_id)


def create_report(owner: User, report_type: str, branch_id=None, content=None, team_id=None) -> Report:
    """Create a report of any type; Project reports enter the workflow."""
    validate_report_type(report_type)
    if report_type == REPORT_TYPE_PROJECT:
        return create_project_report(owner, branch_id, content, team_id)
    if team_id is not None:
        raise ValidationError(
            "Only Project reports can be assigned to a team", details={"teamId": "Project only"}
        )
    return _create(owner, report_type, branch_id, content, None)


def _resolve_branch(owner: User, branch_id):
    """Explicit branch id, checked to exist; otherwise the owner's branch."""
    if branch_id is None or branch_id == "":
        return owner.branch_id
    try:
        branch_id = int(branch_id)
    except (TypeError, ValueError):
        raise ValidationError("branchId must be an integer", details={"branchId": "integer"})
    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError(resource="Branch", resource_id=branch_id)
    return branch_id


def _create(owner: User, report_type: str, branch_id, raw_content, team_id) -> Report:
    _check_type_allowed(owner, report_type)
    branch_id = _resolve_branch(owner, branch_id)
    if raw_content is not None and not isinstance(raw_content, dict):
        raise ValidationError("content must be an object", details={"content": "object"})

    data = dict(raw_content or {})
    if report_type == REPORT_TYPE_PROJECT:
        # A new project starts with no workflow history.
        for key in WORKFLOW_MANAGED_KEYS:
            data.pop(key, None)
    content = content_from_dict(report_type, data)

    report = Report(
        owner_user_id=owner.id,
        branch_id=branch_id,
        report_type=report_type,
        status="Pending",
        details=dumps_content(content),
        modifications=json.dumps([]),
        assigned_team_id=team_id,
        project_workflow_status=(
            initial_state(team_id is not None) if report_type == REPORT_TYPE_PROJECT else None
        ),
    )
    db.session.add(report)
    commit_report(report)
    logger.info(
        "Report %s created (%s) by user %s", report.id, report_type, owner.id,
        extra={"report_id": report.id, "user_id": owner.id},
    )
    return report


# ── Read ─────────────────────────────────────────────────────────────────────


def get_report(report_id: str, viewer: User) -> dict:
    report = load_report(report_id)
    access_guard.require_view(viewer, report)
    return serialize_report(report, viewer)


def _visible_query(viewer: User):
    q = select(Report)
    if viewer.is_admin:
        return q
    clauses = [Report.owner_user_id == viewer.id]
    if viewer.team_id is not None:
        clauses.append(Report.assigned_team_id == viewer.team_id)
    if viewer.role == "manager" and viewer.branch_id is not None:
        clauses.append(Report.branch_id == viewer.branch_id)
    return q.where(or_(*clauses))


def list_reports(viewer: User, filters: dict | None = None, limit: int = 100, offset: int = 0):
    """Reports visible to ``viewer``, newest first.

    Filters: ``type``, ``status``, ``projectWorkflowStatus``, ``ownerUserId``.

    Returns:
        (serialised reports, total count)
    """
    filters = filters or {}
    q = _visible_query(viewer)
    if filters.get("type"):
        q = q.where(Report.report_type == filters["type"])
    if filters.get("status"):
        q = q.where(Report.status == filters["status"])
    if filters.get("projectWorkflowStatus"):
        q = q.where(Report.project_workflow_status == filters["projectWorkflowStatus"])
    if filters.get("ownerUserId") is not None:
        q = q.where(Report.owner_user_id == filters["ownerUserId"])

    total = db.session.execute(
        select(func.count()).select_from(q.subquery())
    ).scalar_one()
    rows = db.session.execute(
        q.order_by(Report.created_at.desc(), Report.id).offset(offset).limit(limit)
    ).scalars().all()
    return [serialize_report(r, viewer) for r in rows], total


# ── General edit ─────────────────────────────────────────────────────────────


def update_report(report_id: str, editor: User, fields: dict) -> Report:
    """Owner/admin general edit with compare-and-swap on ``version``.

    ``content`` replaces the type-specific fields; the workflow-managed
    lists are always carried over from the stored copy.  Only administrators
    may set ``status`` and ``evaluation``.
    """
    report = load_report(report_id)
    access_guard.require_actor(
        editor, report, {access_guard.ACTOR_OWNER, access_guard.ACTOR_ADMIN}, "updateReport"
    )
    _check_expected_version(report, fields.get("version"))

    changed = []
    if "content" in fields:
        incoming = fields["content"]
        if not isinstance(incoming, dict):
            raise ValidationError("content must be an object", details={"content": "object"})
        stored = read_content(report).to_dict()
        merged = {k: v for k, v in incoming.items() if k not in WORKFLOW_MANAGED_KEYS}
        for key in WORKFLOW_MANAGED_KEYS:
            if key in stored:
                merged[key] = stored[key]
        report.details = dumps_content(content_from_dict(report.report_type, merged, report.id))
        changed.append("content")

    if "status" in fields:
        access_guard.require_admin(editor, "setReportStatus")
        if fields["status"] not in REPORT_STATUSES:
            raise ValidationError(
                f"Invalid status '{fields['status']}'",
                details={"status": f"must be one of {sorted(REPORT_STATUSES)}"},
            )
        report.status = fields["status"]
        changed.append("status")

    if "evaluation" in fields:
        access_guard.require_admin(editor, "evaluateReport")
        report.evaluation = json.dumps(fields["evaluation"], ensure_ascii=False)
        changed.append("evaluation")

    if not changed:
        raise ValidationError("Nothing to update", details={"fields": "content, status or evaluation"})

    log = loads_json(report.modifications, [])
    log.append({
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "userId": editor.id,
        "userName": editor.full_name,
        "fields": changed,
    })
    report.modifications = json.dumps(log, ensure_ascii=False)
    report.touch()
    commit_report(report)
    logger.info(
        "Report %s edited by user %s (%s)", report.id, editor.id, ", ".join(changed),
        extra={"report_id": report.id, "user_id": editor.id},
    )
    return report


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_report(report_id: str, caller: User) -> None:
    report = load_report(report_id)
    access_guard.require_actor(
        caller, report, {access_guard.ACTOR_OWNER, access_guard.ACTOR_ADMIN}, "deleteReport"
    )
    db.session.delete(report)
    commit_report(report)
    logger.info(
        "Report %s deleted by user %s", report_id, caller.id,
        extra={"report_id": report_id, "user_id": caller.id},
    )


# ── Export ───────────────────────────────────────────────────────────────────

EXPORT_COLUMNS = [
    "id", "type", "status", "projectWorkflowStatus", "employeeId", "employeeName",
    "branchId", "assignedTeamId", "createdAt", "lastModified",
]


def export_reports_csv(caller: User, filters: dict | None = None) -> str:
    """CSV summary of every report; needs the import_export permission flag."""
    access_guard.require_capability(caller, "import_export")
    filters = filters or {}
    q = select(Report)
    if filters.get("type"):
        q = q.where(Report.report_type == filters["type"])
    reports = db.session.execute(q.order_by(Report.created_at)).scalars().all()

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for r in reports:
        owner = r.owner
        writer.writerow([
            r.id,
            r.report_type,
            r.status,
            r.project_workflow_status or "",
            owner.username if owner else "",
            owner.full_name if owner else "",
            r.branch_id or "",
            r.assigned_team_id or "",
            _iso(r.created_at),
            _iso(r.last_modified),
        ])
    logger.info("Exported %d reports for user %s", len(reports), caller.id, extra={"user_id": caller.id})
    return buf.getvalue()
