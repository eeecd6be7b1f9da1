"""
Solar Operations Backend
Notification Service.

Central service for in-app notifications, device push tokens and the
fire-and-forget ``notify`` dispatcher used by workflow operations.
``notify`` is always called after the workflow commit and never raises.
"""

import json
import logging
from datetime import datetime, timezone

from solarops.core.exceptions import NotFoundError, ValidationError
from solarops.integrations.push_gateway import push_gateway
from solarops.models import db
from solarops.models.auth import PushToken
from solarops.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, title, body="", data=None, *, category="workflow", report_id=None):
        """
        Record an in-app notification and push it to the user's devices.

        Failures are logged and swallowed so a transition is never blocked
        by notification delivery.

        Returns:
            The created Notification, or None if recording failed.
        """
        if not user_id:
            return None
        data = data or {}
        try:
            notif = Notification(
                user_id=user_id,
                title=title,
                body=body,
                category=category,
                data=json.dumps(data, ensure_ascii=False),
                report_id=report_id,
            )
            db.session.add(notif)
            db.session.commit()
        except Exception:
            logger.exception(
                "Failed to record notification for user %s", user_id,
                extra={"report_id": report_id, "user_id": user_id},
            )
            db.session.rollback()
            return None

        try:
            tokens = [t.token for t in PushToken.query.filter_by(user_id=user_id).all()]
            if tokens:
                push_gateway.send(tokens, title, body, data)
            else:
                logger.debug("No push tokens for user %s; skipping push", user_id)
        except Exception:
            logger.exception("Push dispatch failed for user %s", user_id, extra={"user_id": user_id})
        return notif

    @staticmethod
    def notify_many(user_ids, title, body="", data=None, *, category="workflow", report_id=None):
        """Notify each distinct user id once."""
        sent = []
        for uid in dict.fromkeys(u for u in user_ids if u):
            notif = NotificationService.notify(
                uid, title, body, data, category=category, report_id=report_id,
            )
            if notif is not None:
                sent.append(notif)
        return sent

    # ── Push tokens ───────────────────────────────────────────────────────

    @staticmethod
    def register_push_token(user_id, token):
        """Save a device token, or refresh its timestamp if already known."""
        token = (token or "").strip()
        if not token:
            raise ValidationError("token is required", details={"token": "required"})
        existing = PushToken.query.filter_by(user_id=user_id, token=token).first()
        if existing:
            existing.updated_at = datetime.now(timezone.utc)
            db.session.commit()
            logger.info("Push token refreshed for user %s", user_id)
            return existing, False
        record = PushToken(user_id=user_id, token=token)
        db.session.add(record)
        db.session.commit()
        logger.info("New push token saved for user %s", user_id)
        return record, True

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read."""
        notif = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.commit()
        return notif
