"""
Project Workflow Service — the entry points that move a Project report.

Every mutating operation follows the same order:

    1. resolve the caller (UnauthorizedError) and the report (NotFoundError)
    2. check the caller's role, then the workflow state, without a lock, so a
       request that is bound to fail never uploads anything
    3. upload new evidence to the document store, in parallel, and join
    4. reload the report under a row lock, re-check state and role, mutate
       the content document, commit (ConflictError on a stale version)
    5. notify the counterpart, after the commit, fire-and-forget

If step 4 fails after step 3 stored files, those files are logged as
orphans and the error propagates; nothing is committed.
"""

from __future__ import annotations

import logging

from flask import current_app

from solarops.core.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    UnknownStageError,
    ValidationError,
)
from solarops.integrations.document_store import document_store, log_orphans
from solarops.models import db
from solarops.models.auth import User
from solarops.models.report import (
    REPORT_TYPE_PROJECT,
    WF_DRAFT,
    WF_PENDING_TEAM_ACCEPTANCE,
    WORKFLOW_STATES,
    Report,
)
from solarops.services import access_guard
from solarops.services.access_guard import resolve_caller
from solarops.services.directory import get_team, team_lead_ids
from solarops.services.notification import NotificationService
from solarops.services.report_content import (
    AdminNote,
    Attachment,
    ExceptionRecord,
    NoteReply,
)
from solarops.services.report_service import (
    commit_report,
    load_report,
    load_report_for_update,
    read_content,
    write_content,
)
from solarops.services import workflow_engine as engine

logger = logging.getLogger(__name__)

_ASSIGNABLE_STATES = (WF_DRAFT, WF_PENDING_TEAM_ACCEPTANCE)
_NON_TERMINAL_STATES = tuple(s for s in WORKFLOW_STATES if not engine.is_terminal(s))

_TRANSITION_ACTORS = {
    engine.ACTOR_OWNER: access_guard.ACTOR_OWNER,
    engine.ACTOR_TEAM_LEAD: access_guard.ACTOR_TEAM_LEAD,
}


# ── Helpers ──────────────────────────────────────────────────────────────────


def _load_project(report_id: str) -> Report:
    report = load_report(report_id)
    if report.report_type != REPORT_TYPE_PROJECT:
        raise ValidationError(
            f"Report {report_id} is a {report.report_type} report, not a Project report",
            details={"type": report.report_type},
        )
    return report


def _require_transition_actor(caller: User, report: Report, transition: engine.Transition) -> None:
    access_guard.require_actor(
        caller, report, {_TRANSITION_ACTORS[transition.actor]}, transition.name
    )


def _require_non_terminal(report: Report, operation: str) -> None:
    if engine.is_terminal(report.project_workflow_status):
        raise PreconditionFailedError(operation, _NON_TERMINAL_STATES, report.project_workflow_status)


def _validate_file_refs(file_refs) -> list[dict]:
    if not file_refs:
        return []
    if not isinstance(file_refs, list):
        raise ValidationError("files must be a list", details={"files": "list of {url, fileName}"})
    for ref in file_refs:
        if not isinstance(ref, dict) or not ref.get("url"):
            raise ValidationError("Each file reference needs a url", details={"files": "url required"})
    return file_refs


def _store_evidence(report_id: str, caller: User, uploads, file_refs, folder: str):
    """Upload new files and wrap everything as Attachments owned by ``caller``.

    Returns:
        (attachments, stored) where ``stored`` lists the objects this call
        created in the document store.
    """
    stored = document_store.upload_many(list(uploads or []), folder_hint=f"reports/{report_id}/{folder}")
    attachments = [
        Attachment(id=s.id, url=s.url, file_name=s.file_name, uploaded_by=caller.id) for s in stored
    ]
    for ref in file_refs:
        attachments.append(Attachment(
            id=engine.new_record_id(),
            url=ref["url"],
            file_name=ref.get("fileName") or ref.get("name") or "",
            uploaded_by=caller.id,
        ))
    return attachments, stored


def _locked_write(report_id: str, stored, mutate):
    """Run ``mutate(report)`` under the row lock and commit.

    ``mutate`` returns the content to persist, or None when nothing changed.
    Any failure rolls back and logs ``stored`` as orphaned uploads.
    """
    try:
        report = load_report_for_update(report_id)
        content = mutate(report)
        if content is None:
            db.session.rollback()
        else:
            write_content(report, content)
            commit_report(report)
    except Exception as exc:
        db.session.rollback()
        if stored:
            log_orphans(stored, reason=f"report not updated ({exc.__class__.__name__})", report_id=report_id)
        raise
    return report


def _notify(user_ids, exclude: User, title: str, body: str, report: Report, category="workflow", **data):
    recipients = [uid for uid in user_ids if uid and uid != exclude.id]
    payload = {"reportId": report.id, "type": category, **data}
    NotificationService.notify_many(
        recipients, title, body, payload, category=category, report_id=report.id,
    )


# ── Stage transitions ────────────────────────────────────────────────────────


def confirm_stage(report_id: str, stage_id: str, caller_id, comment=None, uploads=None, file_refs=None) -> Report:
    """Confirm a stage, driving the transition it maps to from the current state.

    Raises:
        UnauthorizedError, UnknownStageError, NotFoundError, ValidationError,
        PreconditionFailedError, ForbiddenError, StoreUnavailableError,
        ConflictError.
    """
    caller = resolve_caller(caller_id)
    if stage_id not in engine.KNOWN_STAGES:
        raise UnknownStageError(stage_id, engine.KNOWN_STAGES)
    file_refs = _validate_file_refs(file_refs)
    report = _load_project(report_id)

    transition = engine.resolve_transition(stage_id, report.project_workflow_status)
    _require_transition_actor(caller, report, transition)
    engine.check_precondition(transition, report.project_workflow_status)

    attachments, stored = _store_evidence(report_id, caller, uploads, file_refs, stage_id)
    outcome = {}

    def mutate(locked: Report):
        # State may have moved while files were uploading.
        current = locked.project_workflow_status
        locked_transition = engine.resolve_transition(stage_id, current)
        _require_transition_actor(caller, locked, locked_transition)
        content = read_content(locked)
        new_state = engine.apply_transition(
            content, locked_transition, current, comment=comment, files=attachments,
        )
        locked.project_workflow_status = new_state
        if locked_transition.approves_report:
            locked.status = "Approved"
        outcome.update(transition=locked_transition, previous=current, state=new_state)
        return content

    report = _locked_write(report_id, stored, mutate)
    transition = outcome["transition"]
    logger.info(
        "%s on report %s by user %s: %s → %s (%d file(s))",
        transition.name, report.id, caller.id, outcome["previous"], outcome["state"], len(attachments),
        extra={
            "report_id": report.id,
            "stage_id": stage_id,
            "transition": transition.name,
            "user_id": caller.id,
        },
    )

    label = engine.STAGE_LABELS.get(stage_id, stage_id)
    if transition.actor == engine.ACTOR_TEAM_LEAD:
        recipients = [report.owner_user_id]
    else:
        recipients = team_lead_ids(report.assigned_team_id)
    _notify(
        recipients, caller,
        f"{label} confirmed",
        f"{caller.full_name or caller.username} confirmed '{label}'; project is now {outcome['state']}.",
        report, stageId=stage_id, workflowStatus=outcome["state"],
    )
    return report


def accept_team(report_id: str, caller_id) -> Report:
    """The assigned team lead accepts the project: PendingTeamAcceptance → InProgress."""
    caller = resolve_caller(caller_id)
    report = _load_project(report_id)
    _require_transition_actor(caller, report, engine.ACCEPT_TEAM)
    engine.check_precondition(engine.ACCEPT_TEAM, report.project_workflow_status)

    def mutate(locked: Report):
        current = locked.project_workflow_status
        _require_transition_actor(caller, locked, engine.ACCEPT_TEAM)
        content = read_content(locked)
        locked.project_workflow_status = engine.apply_transition(content, engine.ACCEPT_TEAM, current)
        return content

    report = _locked_write(report_id, None, mutate)
    logger.info(
        "Team %s accepted report %s (lead %s)", report.assigned_team_id, report.id, caller.id,
        extra={"report_id": report.id, "transition": engine.ACCEPT_TEAM.name, "user_id": caller.id},
    )
    _notify(
        [report.owner_user_id], caller,
        "Team accepted the project",
        f"{caller.full_name or caller.username} accepted the project; work is in progress.",
        report, workflowStatus=report.project_workflow_status,
    )
    return report


def assign_team(report_id: str, team_id, caller_id) -> Report:
    """Administrator assigns (or reassigns) the technical team before acceptance."""
    caller = resolve_caller(caller_id)
    access_guard.require_admin(caller, "assignTeam")
    report = _load_project(report_id)
    try:
        team_id = int(team_id)
    except (TypeError, ValueError):
        raise ValidationError("teamId must be an integer", details={"teamId": "integer"})
    get_team(team_id)

    def mutate(locked: Report):
        current = locked.project_workflow_status
        if current not in _ASSIGNABLE_STATES:
            raise PreconditionFailedError("assignTeam", _ASSIGNABLE_STATES, current)
        locked.assigned_team_id = team_id
        locked.project_workflow_status = WF_PENDING_TEAM_ACCEPTANCE
        return read_content(locked)

    report = _locked_write(report_id, None, mutate)
    logger.info(
        "Report %s assigned to team %s by admin %s", report.id, team_id, caller.id,
        extra={"report_id": report.id, "user_id": caller.id},
    )
    _notify(
        team_lead_ids(team_id), caller,
        "New project assigned",
        "A project report has been assigned to your team and awaits acceptance.",
        report, workflowStatus=report.project_workflow_status,
    )
    return report


# ── Evidence ─────────────────────────────────────────────────────────────────


def attach_files(report_id: str, caller_id, uploads=None, file_refs=None, stage_id=None) -> Report:
    """Attach evidence to a stage without completing it."""
    caller = resolve_caller(caller_id)
    file_refs = _validate_file_refs(file_refs)
    if not uploads and not file_refs:
        raise ValidationError("No files to attach", details={"files": "required"})
    report = _load_project(report_id)
    access_guard.require_actor(
        caller, report,
        {access_guard.ACTOR_OWNER, access_guard.ACTOR_TEAM_LEAD, access_guard.ACTOR_ADMIN},
        "attachFiles",
    )
    _require_non_terminal(report, "attachFiles")
    legacy = bool(current_app.config.get("LEGACY_LAST_STAGE_ATTACHMENT"))
    if stage_id and stage_id not in engine.KNOWN_STAGES:
        raise UnknownStageError(stage_id, engine.KNOWN_STAGES)
    if not stage_id and not legacy:
        raise ValidationError("stageId is required", details={"stageId": "required"})

    attachments, stored = _store_evidence(report_id, caller, uploads, file_refs, stage_id or "unassigned")
    target = {}

    def mutate(locked: Report):
        _require_non_terminal(locked, "attachFiles")
        content = read_content(locked)
        record = engine.attach_to_stage(content, attachments, stage_id, legacy_last_stage=legacy)
        target["stage_id"] = record.id
        return content

    report = _locked_write(report_id, stored, mutate)
    logger.info(
        "%d file(s) attached to stage %s of report %s by user %s",
        len(attachments), target["stage_id"], report.id, caller.id,
        extra={"report_id": report.id, "stage_id": target["stage_id"], "user_id": caller.id},
    )
    return report


def add_exception(report_id: str, caller_id, comment=None, uploads=None, file_refs=None) -> Report:
    """Append an out-of-band incident note; the workflow state does not move."""
    caller = resolve_caller(caller_id)
    file_refs = _validate_file_refs(file_refs)
    comment = (comment or "").strip()
    if not comment and not uploads and not file_refs:
        raise ValidationError("An exception needs a comment or files", details={"comment": "required"})
    report = _load_project(report_id)
    access_guard.require_actor(
        caller, report, {access_guard.ACTOR_OWNER, access_guard.ACTOR_TEAM_LEAD}, "addException"
    )
    _require_non_terminal(report, "addException")

    attachments, stored = _store_evidence(report_id, caller, uploads, file_refs, "exceptions")

    def mutate(locked: Report):
        _require_non_terminal(locked, "addException")
        content = read_content(locked)
        content.exceptions.append(ExceptionRecord(
            id=engine.new_record_id(),
            comment=comment,
            files=attachments,
            timestamp=engine.utc_timestamp(),
            uploaded_by=caller.id,
        ))
        return content

    report = _locked_write(report_id, stored, mutate)
    logger.info(
        "Exception recorded on report %s by user %s", report.id, caller.id,
        extra={"report_id": report.id, "user_id": caller.id, "event_type": "report_exception"},
    )
    _notify(
        [report.owner_user_id, *team_lead_ids(report.assigned_team_id)], caller,
        "Project exception reported",
        comment or "New files were attached to a project exception.",
        report, category="exception",
    )
    return report


# ── Admin notes ──────────────────────────────────────────────────────────────


def _note_text(content) -> str:
    text = (content or "").strip() if isinstance(content, str) else ""
    if not text:
        raise ValidationError("content is required", details={"content": "required"})
    return text


def add_admin_note(report_id: str, author_id, content) -> Report:
    author = resolve_caller(author_id)
    access_guard.require_admin(author, "addAdminNote")
    text = _note_text(content)
    load_report(report_id)

    def mutate(locked: Report):
        doc = read_content(locked)
        doc.admin_notes.append(AdminNote(
            id=engine.new_record_id(),
            author_id=author.id,
            author_name=author.full_name or author.username,
            content=text,
            timestamp=engine.utc_timestamp(),
        ))
        return doc

    report = _locked_write(report_id, None, mutate)
    logger.info(
        "Admin note added to report %s by user %s", report.id, author.id,
        extra={"report_id": report.id, "user_id": author.id},
    )
    _notify([report.owner_user_id], author, "New admin note", text, report, category="admin_note")
    return report


def reply_to_note(report_id: str, note_id: str, author_id, content) -> Report:
    author = resolve_caller(author_id)
    access_guard.require_admin(author, "replyToNote")
    text = _note_text(content)
    load_report(report_id)

    def mutate(locked: Report):
        doc = read_content(locked)
        note = doc.find_note(note_id)
        if note is None:
            raise NotFoundError(resource="AdminNote", resource_id=note_id)
        note.replies.append(NoteReply(
            id=engine.new_record_id(),
            author_id=author.id,
            author_name=author.full_name or author.username,
            content=text,
            timestamp=engine.utc_timestamp(),
        ))
        return doc

    report = _locked_write(report_id, None, mutate)
    logger.info(
        "Reply added to note %s on report %s by user %s", note_id, report.id, author.id,
        extra={"report_id": report.id, "user_id": author.id},
    )
    _notify([report.owner_user_id], author, "New reply to admin note", text, report,
            category="admin_note", noteId=note_id)
    return report


def mark_note_read(report_id: str, note_id: str, caller_id) -> Report:
    """Record that the caller has read a note; repeated calls are no-ops."""
    caller = resolve_caller(caller_id)
    report = load_report(report_id)
    access_guard.require_actor(
        caller, report, {access_guard.ACTOR_OWNER, access_guard.ACTOR_ADMIN}, "markNoteRead"
    )

    def mutate(locked: Report):
        doc = read_content(locked)
        note = doc.find_note(note_id)
        if note is None:
            raise NotFoundError(resource="AdminNote", resource_id=note_id)
        if caller.id in note.read_by:
            return None
        note.read_by.append(caller.id)
        return doc

    return _locked_write(report_id, None, mutate)
