"""
Directory Models — branches, technical teams, users, push tokens.

The workflow engine only reads these tables (role, team membership,
permission flags).  Account administration lives outside this service.
"""

import json
from datetime import datetime, timezone

from solarops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_TEAM_LEAD = "team_lead"
ROLE_EMPLOYEE = "employee"

USER_ROLES = {ROLE_ADMIN, ROLE_MANAGER, ROLE_TEAM_LEAD, ROLE_EMPLOYEE}

# Binary per-user permission flags, keyed by capability name.
PERMISSION_FLAGS = {
    "purchase_management": "has_purchase_management_permission",
    "package_management": "has_package_management_permission",
    "import_export": "has_import_export_permission",
}


# ═══════════════════════════════════════════════════════════════
# 1. BRANCHES
# ═══════════════════════════════════════════════════════════════
class Branch(db.Model):
    __tablename__ = "branches"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    location = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="branch", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
        }


# ═══════════════════════════════════════════════════════════════
# 2. TECHNICAL TEAMS
# ═══════════════════════════════════════════════════════════════
class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True
    )
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    members = db.relationship("User", back_populates="team", lazy="dynamic")

    @property
    def lead_ids(self):
        """Ids of active members holding the team_lead role."""
        return [
            u.id for u in self.members.filter_by(role=ROLE_TEAM_LEAD, is_active=True).all()
        ]

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "branchId": self.branch_id,
            "leadIds": self.lead_ids,
        }


# ═══════════════════════════════════════════════════════════════
# 3. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)  # employee id
    full_name = db.Column(db.String(200))
    email = db.Column(db.String(200))
    phone = db.Column(db.String(32))
    role = db.Column(db.String(30), nullable=False, default=ROLE_EMPLOYEE)
    department = db.Column(db.String(100))
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="SET NULL"), nullable=True
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    has_purchase_management_permission = db.Column(db.Boolean, nullable=False, default=False)
    has_package_management_permission = db.Column(db.Boolean, nullable=False, default=False)
    has_import_export_permission = db.Column(db.Boolean, nullable=False, default=False)
    allowed_report_types = db.Column(db.Text, nullable=True)  # JSON list, NULL = all
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    branch = db.relationship("Branch", back_populates="users")
    team = db.relationship("Team", back_populates="members")
    push_tokens = db.relationship(
        "PushToken", back_populates="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def is_team_lead(self):
        return self.role == ROLE_TEAM_LEAD

    @property
    def permission_flags(self):
        """Capability names whose flag is set on this user."""
        return {cap for cap, column in PERMISSION_FLAGS.items() if getattr(self, column)}

    @property
    def report_type_whitelist(self):
        """Allowed report types, or None when the user may submit any type."""
        if not self.allowed_report_types:
            return None
        try:
            value = json.loads(self.allowed_report_types)
        except (TypeError, ValueError):
            return None
        return set(value) if isinstance(value, list) else None

    def to_dict(self):
        return {
            "id": self.id,
            "employeeId": self.username,
            "name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "department": self.department,
            "branchId": self.branch_id,
            "teamId": self.team_id,
            "permissionFlags": sorted(self.permission_flags),
            "isActive": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════
# 4. PUSH TOKENS (device registrations)
# ═══════════════════════════════════════════════════════════════
class PushToken(db.Model):
    __tablename__ = "push_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token = db.Column(db.String(512), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "token", name="uq_push_token_user_token"),
    )

    user = db.relationship("User", back_populates="push_tokens")
