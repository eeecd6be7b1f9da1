"""
Solar Operations Backend
Notification Blueprint.

Provides:
    - The caller's in-app notification feed and read tracking
    - Device push-token registration
"""

import logging

from flask import Blueprint, g, jsonify, request

from solarops.blueprints import pagination_args, register_error_handlers
from solarops.services.access_guard import resolve_caller
from solarops.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = register_error_handlers(
    Blueprint("notification_bp", __name__, url_prefix="/api/v1")
)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List the caller's notifications, newest first.

    Query params: unread_only (bool), limit, offset.
    """
    user = resolve_caller(g.caller_id)
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit, offset = pagination_args(default_limit=50, max_limit=200)
    items, total = NotificationService.list_for_user(
        user.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread": NotificationService.unread_count(user.id),
    })


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    user = resolve_caller(g.caller_id)
    notif = NotificationService.mark_read(nid, user.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/push-tokens", methods=["POST"])
def register_push_token():
    """Register or refresh a device token for the caller."""
    user = resolve_caller(g.caller_id)
    data = request.get_json(silent=True) or {}
    record, created = NotificationService.register_push_token(user.id, data.get("token"))
    return jsonify({"id": record.id, "token": record.token, "created": created}), 201 if created else 200
