"""
Notification blueprint — in-app alerts for the caller's area.

    GET  /api/v1/notifications                 — list (unread_only, limit, offset)
    GET  /api/v1/notifications/unread-count    — badge counter
    POST /api/v1/notifications/<id>/read       — mark one as read
    POST /api/v1/notifications/read-all        — mark every visible one as read
"""

from flask import Blueprint, jsonify, request

from sigedoc.middleware.permission_required import current_identity, require_auth
from sigedoc.services.notification import NotificationService

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@require_auth
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit = min(200, max(1, request.args.get("limit", 50, type=int)))
    offset = max(0, request.args.get("offset", 0, type=int))
    items, total = NotificationService.list_for_identity(
        current_identity(), unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "notifications": [n.to_dict() for n in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_auth
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_identity())})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
@require_auth
def mark_read(nid):
    notif = NotificationService.mark_read(current_identity(), nid)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
@require_auth
def mark_all_read():
    count = NotificationService.mark_all_read(current_identity())
    return jsonify({"marked": count})
