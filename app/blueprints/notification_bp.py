"""
Notification blueprint - the caller's in-app inbox.

Endpoints:
    GET  /api/v1/notifications                - list (``unread=1``, limit, offset)
    GET  /api/v1/notifications/unread-count   - badge counter
    POST /api/v1/notifications/<id>/read      - mark one read
    POST /api/v1/notifications/read-all       - mark all read
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_identity
from app.blueprints import page_args
from app.core.exceptions import NotFoundError
from app.services.notification import NotificationService
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


def _require_identity():
    identity = current_identity()
    if identity is None:
        return None, api_error(E.UNAUTHORIZED, "Unauthorized")
    return identity, None


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    identity, error = _require_identity()
    if error:
        return error
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit, offset = page_args()
    items, total = NotificationService.list_for_recipient(
        identity.user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(identity.user_id),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    identity, error = _require_identity()
    if error:
        return error
    return jsonify({"unread_count": NotificationService.unread_count(identity.user_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    identity, error = _require_identity()
    if error:
        return error
    try:
        notif = NotificationService.mark_read(notification_id, identity.user_id)
    except NotFoundError as exc:
        return api_error(E.NOT_FOUND, str(exc))
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    identity, error = _require_identity()
    if error:
        return error
    count = NotificationService.mark_all_read(identity.user_id)
    logger.debug("Marked %d notifications read", count, extra={"user_id": identity.user_id})
    return jsonify({"marked_read": count}), 200
