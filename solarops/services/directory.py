"""
User/Role Directory — read-only lookups consumed by the workflow engine.

Accounts, branches and teams are administered elsewhere; this module only
resolves identities and team membership.
"""

from __future__ import annotations

from sqlalchemy import select

from solarops.core.exceptions import NotFoundError
from solarops.models import db
from solarops.models.auth import ROLE_TEAM_LEAD, Team, User
from solarops.models.report import Report


def lookup_user(id_or_username) -> User:
    """Resolve a user by numeric id or by username (employee id).

    An int is always a primary key.  A string is matched as a username
    first; an all-digit string that names no user falls back to the id,
    so numeric employee ids never resolve to someone else's row.

    Raises:
        NotFoundError: no active user matches.
    """
    user = None
    if isinstance(id_or_username, int):
        user = db.session.get(User, id_or_username)
    elif isinstance(id_or_username, str):
        user = db.session.execute(
            select(User).where(User.username == id_or_username)
        ).scalar_one_or_none()
        if user is None and id_or_username.isdigit():
            user = db.session.get(User, int(id_or_username))
    if user is None or not user.is_active:
        raise NotFoundError(resource="User", resource_id=id_or_username)
    return user


def lookup_team_for_report(report_id: str) -> int | None:
    """Return the id of the team currently assigned to a report."""
    team_id = db.session.execute(
        select(Report.assigned_team_id).where(Report.id == report_id)
    ).first()
    if team_id is None:
        raise NotFoundError(resource="Report", resource_id=report_id)
    return team_id[0]


def get_team(team_id: int) -> Team:
    team = db.session.get(Team, team_id)
    if team is None:
        raise NotFoundError(resource="Team", resource_id=team_id)
    return team


def team_lead_ids(team_id: int | None) -> list[int]:
    """Active team-lead user ids for a team (empty when no team)."""
    if team_id is None:
        return []
    return list(
        db.session.execute(
            select(User.id).where(
                User.team_id == team_id,
                User.role == ROLE_TEAM_LEAD,
                User.is_active.is_(True),
            )
        ).scalars()
    )
