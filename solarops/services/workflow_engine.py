"""
Project Report Workflow Engine — stage graph and stage-record mutation.

Pure functions over ``ProjectContent``; no database or request access.
``project_workflow_service`` owns loading, locking, guards and commits.

Stage graph (Project reports):

    Transition                  From                                  Stage key             Actor      To
    acceptTeam                  PendingTeamAcceptance                 —                     team lead  InProgress
    confirmConcrete             InProgress                            concreteWorks         team lead  ConcreteWorksDone
    confirmSecondPayment        ConcreteWorksDone                     secondPayment         owner      FinishingWorks
    confirmTechnicalCompletion  FinishingWorks                        installationComplete  team lead  TechnicallyCompleted
    completeProject             FinishingWorks | TechnicallyCompleted deliveryHandover      team lead  Completed
    finalizeHandover            Completed                             deliveryHandover      owner      Archived

Stage records are located by key, never by position: stages can be
appended out of declaration order by different code paths.  Files are
always concatenated onto a record, never replaced.

Re-confirmation: invoking a transition while the report already sits at
that transition's (non-terminal) target state is accepted.  The stage is
refreshed and the new files appended; the state does not move.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from solarops.core.exceptions import PreconditionFailedError, UnknownStageError, ValidationError
from solarops.models.report import (
    TERMINAL_WORKFLOW_STATES,
    WF_COMPLETED,
    WF_CONCRETE_WORKS_DONE,
    WF_DRAFT,
    WF_FINISHING_WORKS,
    WF_IN_PROGRESS,
    WF_PENDING_TEAM_ACCEPTANCE,
    WF_TECHNICALLY_COMPLETED,
    WF_ARCHIVED,
    WORKFLOW_STATES,
)
from solarops.services.report_content import Attachment, ProjectContent, StageRecord

logger = logging.getLogger(__name__)


# ── Stage vocabulary ─────────────────────────────────────────────────────────

STAGE_CONCRETE_WORKS = "concreteWorks"
STAGE_SECOND_PAYMENT = "secondPayment"
STAGE_INSTALLATION_COMPLETE = "installationComplete"
STAGE_DELIVERY_HANDOVER = "deliveryHandover"

STAGE_LABELS = {
    STAGE_CONCRETE_WORKS: "Concrete works",
    STAGE_SECOND_PAYMENT: "Second payment",
    STAGE_INSTALLATION_COMPLETE: "Installation complete",
    STAGE_DELIVERY_HANDOVER: "Delivery & handover",
}

KNOWN_STAGES = frozenset(STAGE_LABELS)

ACTOR_OWNER = "owner"
ACTOR_TEAM_LEAD = "team_lead"


@dataclass(frozen=True)
class Transition:
    name: str
    from_states: tuple
    to_state: str
    actor: str
    stage_id: str | None = None
    approves_report: bool = False


ACCEPT_TEAM = Transition(
    "acceptTeam", (WF_PENDING_TEAM_ACCEPTANCE,), WF_IN_PROGRESS, ACTOR_TEAM_LEAD,
)
CONFIRM_CONCRETE = Transition(
    "confirmConcrete", (WF_IN_PROGRESS,), WF_CONCRETE_WORKS_DONE, ACTOR_TEAM_LEAD,
    stage_id=STAGE_CONCRETE_WORKS,
)
CONFIRM_SECOND_PAYMENT = Transition(
    "confirmSecondPayment", (WF_CONCRETE_WORKS_DONE,), WF_FINISHING_WORKS, ACTOR_OWNER,
    stage_id=STAGE_SECOND_PAYMENT,
)
CONFIRM_TECHNICAL_COMPLETION = Transition(
    "confirmTechnicalCompletion", (WF_FINISHING_WORKS,), WF_TECHNICALLY_COMPLETED, ACTOR_TEAM_LEAD,
    stage_id=STAGE_INSTALLATION_COMPLETE,
)
COMPLETE_PROJECT = Transition(
    "completeProject", (WF_FINISHING_WORKS, WF_TECHNICALLY_COMPLETED), WF_COMPLETED, ACTOR_TEAM_LEAD,
    stage_id=STAGE_DELIVERY_HANDOVER,
)
FINALIZE_HANDOVER = Transition(
    "finalizeHandover", (WF_COMPLETED,), WF_ARCHIVED, ACTOR_OWNER,
    stage_id=STAGE_DELIVERY_HANDOVER, approves_report=True,
)

_STAGE_TRANSITIONS = {
    STAGE_CONCRETE_WORKS: CONFIRM_CONCRETE,
    STAGE_SECOND_PAYMENT: CONFIRM_SECOND_PAYMENT,
    STAGE_INSTALLATION_COMPLETE: CONFIRM_TECHNICAL_COMPLETION,
}


def initial_state(has_team: bool) -> str:
    return WF_PENDING_TEAM_ACCEPTANCE if has_team else WF_DRAFT


def state_rank(state: str | None) -> int:
    try:
        return WORKFLOW_STATES.index(state)
    except ValueError:
        return -1


def is_terminal(state: str | None) -> bool:
    return state in TERMINAL_WORKFLOW_STATES


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_record_id() -> str:
    return uuid.uuid4().hex


# ── Transition resolution & guards ───────────────────────────────────────────


def resolve_transition(stage_id: str, current_state: str | None) -> Transition:
    """Map a stage key to the transition it drives from ``current_state``.

    ``deliveryHandover`` is shared: the owner's final handover once the team
    has completed the project, the team lead's completion otherwise.

    Raises:
        UnknownStageError: stage_id is outside the fixed vocabulary.
    """
    if stage_id not in KNOWN_STAGES:
        raise UnknownStageError(stage_id, KNOWN_STAGES)
    if stage_id == STAGE_DELIVERY_HANDOVER:
        return FINALIZE_HANDOVER if current_state == WF_COMPLETED else COMPLETE_PROJECT
    return _STAGE_TRANSITIONS[stage_id]


def check_precondition(transition: Transition, current_state: str | None) -> bool:
    """Validate the workflow state for ``transition``.

    Returns:
        True when this is a re-confirmation (report already at the target),
        False for a forward move.

    Raises:
        PreconditionFailedError: state is neither a declared predecessor
            nor the non-terminal target.
    """
    if current_state in transition.from_states:
        return False
    if current_state == transition.to_state and not is_terminal(current_state):
        return True
    raise PreconditionFailedError(transition.name, transition.from_states, current_state)


def next_state(transition: Transition, current_state: str, reconfirm: bool) -> str:
    if reconfirm:
        return current_state
    # Graph edges only ever move forward.
    if state_rank(transition.to_state) <= state_rank(current_state):
        raise PreconditionFailedError(transition.name, transition.from_states, current_state)
    return transition.to_state


# ── Stage-record mutation ────────────────────────────────────────────────────


def upsert_stage(
    content: ProjectContent,
    stage_id: str,
    *,
    completed: bool | None = None,
    timestamp: str | None = None,
    comment: str | None = None,
    files: list[Attachment] | None = None,
) -> StageRecord:
    """Merge fields into the record keyed ``stage_id``, appending it if absent.

    Files are concatenated onto the existing list.  ``completed=None`` leaves
    the flag as it is; a completed record always keeps a timestamp.
    """
    record = content.find_stage(stage_id)
    if record is None:
        record = StageRecord(id=stage_id, label=STAGE_LABELS.get(stage_id, stage_id))
        content.updates.append(record)
        logger.debug("Materialised stage record %s", stage_id)

    if completed is not None:
        record.completed = completed
    if timestamp is not None:
        record.timestamp = timestamp
    if comment:
        record.comment = comment
    if files:
        record.files.extend(files)
    if record.completed and not record.timestamp:
        record.timestamp = utc_timestamp()
    return record


def apply_transition(
    content: ProjectContent,
    transition: Transition,
    current_state: str,
    *,
    comment: str | None = None,
    files: list[Attachment] | None = None,
    now: str | None = None,
) -> str:
    """Check the precondition, mutate the stage record, return the new state.

    Nothing in ``content`` is touched when the precondition fails.
    """
    reconfirm = check_precondition(transition, current_state)
    if transition.stage_id is not None:
        upsert_stage(
            content,
            transition.stage_id,
            completed=True,
            timestamp=now or utc_timestamp(),
            comment=comment,
            files=files,
        )
    return next_state(transition, current_state, reconfirm)


def attach_to_stage(
    content: ProjectContent,
    files: list[Attachment],
    stage_id: str | None,
    *,
    legacy_last_stage: bool = False,
) -> StageRecord:
    """Attach evidence without completing the stage.

    Without ``stage_id`` the files go to the last ``updates`` record, but only
    when the legacy compatibility shim is enabled.  That fallback can land
    files on the wrong stage when several stages are edited concurrently.
    """
    if stage_id:
        if stage_id not in KNOWN_STAGES:
            raise UnknownStageError(stage_id, KNOWN_STAGES)
        return upsert_stage(content, stage_id, files=files)

    if not legacy_last_stage:
        raise ValidationError("stageId is required", details={"stageId": "required"})
    if not content.updates:
        raise ValidationError(
            "Report has no stage records to attach files to",
            details={"stageId": "required when no stage exists"},
        )
    record = content.updates[-1]
    record.files.extend(files)
    logger.warning(
        "Attached %d file(s) to last stage %s via legacy fallback", len(files), record.id,
        extra={"stage_id": record.id, "event_type": "legacy_stage_attachment"},
    )
    return record


def filter_files_for_uploader(content: ProjectContent, user_id: int) -> None:
    """Drop stage attachments not uploaded by ``user_id`` (in place)."""
    for record in content.updates:
        record.files = [f for f in record.files if f.uploaded_by == user_id]
