"""
Access Guard — one capability check for every report, purchase and expense operation.

Two tiers:
    1. Permission flags (purchase_management, package_management,
       import_export) grant a whole sub-API regardless of role.
    2. Workflow roles relative to one report: owner, the assigned team's
       lead, members of the assigned team, administrators.

No caller identity → UnauthorizedError.  Known caller without the
capability → ForbiddenError.

Usage:
    caller = resolve_caller(g.caller_id)
    require_actor(caller, report, {ACTOR_TEAM_LEAD}, "confirmConcrete")
"""

from __future__ import annotations

import logging

from solarops.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from solarops.models.auth import PERMISSION_FLAGS, User
from solarops.models.report import Report
from solarops.services.directory import lookup_user

logger = logging.getLogger(__name__)

ACTOR_OWNER = "owner"
ACTOR_TEAM_LEAD = "team_lead"
ACTOR_TEAM_MEMBER = "team_member"
ACTOR_ADMIN = "admin"


def resolve_caller(caller_id) -> User:
    """Turn the request's caller id into an active User.

    Raises:
        UnauthorizedError: no caller id, or it does not resolve to an active user.
    """
    if caller_id is None or caller_id == "":
        raise UnauthorizedError()
    try:
        return lookup_user(caller_id)
    except NotFoundError as exc:
        raise UnauthorizedError("Unknown or inactive caller") from exc


# ── Tier 1: permission flags ─────────────────────────────────────────────────


def has_capability(user: User, capability: str) -> bool:
    if capability not in PERMISSION_FLAGS:
        return False
    return user.is_admin or capability in user.permission_flags


def require_capability(user: User, capability: str) -> None:
    if not has_capability(user, capability):
        logger.warning(
            "User %s denied: missing permission flag '%s'", user.id, capability,
            extra={"user_id": user.id},
        )
        raise ForbiddenError(capability, user.id)


# ── Tier 2: report roles ─────────────────────────────────────────────────────


def is_owner(user: User, report: Report) -> bool:
    return report.owner_user_id == user.id


def is_assigned_team_lead(user: User, report: Report) -> bool:
    return (
        user.is_team_lead
        and report.assigned_team_id is not None
        and user.team_id == report.assigned_team_id
    )


def is_assigned_team_member(user: User, report: Report) -> bool:
    return report.assigned_team_id is not None and user.team_id == report.assigned_team_id


_ACTOR_CHECKS = {
    ACTOR_OWNER: is_owner,
    ACTOR_TEAM_LEAD: is_assigned_team_lead,
    ACTOR_TEAM_MEMBER: is_assigned_team_member,
    ACTOR_ADMIN: lambda user, report: user.is_admin,
}


def actors_for(user: User, report: Report) -> set[str]:
    """Every report-relative role the user holds."""
    return {name for name, check in _ACTOR_CHECKS.items() if check(user, report)}


def require_actor(user: User, report: Report, allowed: set[str], capability: str) -> str:
    """Allow the call if the user holds any role in ``allowed``.

    Returns:
        The first matching role, in the order owner, team_lead, team_member, admin.

    Raises:
        ForbiddenError: the user holds none of the allowed roles.
    """
    held = actors_for(user, report)
    for name in (ACTOR_OWNER, ACTOR_TEAM_LEAD, ACTOR_TEAM_MEMBER, ACTOR_ADMIN):
        if name in allowed and name in held:
            return name
    logger.warning(
        "User %s denied '%s' on report %s (holds %s, needs one of %s)",
        user.id, capability, report.id, sorted(held), sorted(allowed),
        extra={"user_id": user.id, "report_id": report.id},
    )
    raise ForbiddenError(capability, user.id)


def require_admin(user: User, capability: str) -> None:
    if not user.is_admin:
        logger.warning("User %s denied admin-only '%s'", user.id, capability, extra={"user_id": user.id})
        raise ForbiddenError(capability, user.id)


def can_view(user: User, report: Report) -> bool:
    return bool(actors_for(user, report) & {ACTOR_OWNER, ACTOR_TEAM_MEMBER, ACTOR_ADMIN}) or (
        user.role == "manager" and user.branch_id is not None and user.branch_id == report.branch_id
    )


def require_view(user: User, report: Report) -> None:
    if not can_view(user, report):
        raise ForbiddenError("viewReport", user.id)


def sees_only_own_stage_files(user: User, report: Report) -> bool:
    """Team leads see only the stage attachments they uploaded themselves."""
    return report.is_project and user.is_team_lead and not user.is_admin and not is_owner(user, report)
