"""
Solar Operations Backend
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

import json
from datetime import datetime, timezone

from solarops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"workflow", "exception", "admin_note", "system"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Push delivery is attempted
    separately and never affects this row.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    data = db.Column(db.Text, nullable=True, comment="Serialised navigation payload")

    # Link to source report
    report_id = db.Column(db.String(32), nullable=True, index=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        try:
            data = json.loads(self.data) if self.data else {}
        except ValueError:
            data = {}
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "body": self.body,
            "category": self.category,
            "data": data,
            "reportId": self.report_id,
            "isRead": self.is_read,
            "readAt": self.read_at.isoformat() if self.read_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
