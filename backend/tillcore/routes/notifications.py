# Overview: Flask API routes for in-app notifications.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import notification_service
from ..validation import ValidationError, parse_bool, require_int


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
@require_permission("VIEW_NOTIFICATIONS")
def list_route():
    """Query params: unread=true, limit"""
    try:
        unread_only = parse_bool(request.args.get("unread"), "unread")
        limit = require_int(request.args.get("limit", "50"), "limit", minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "ValidationError"}), 400

    items = notification_service.list_notifications(g.store_id, unread_only=unread_only, limit=min(limit, 200))
    return jsonify({"notifications": [n.to_dict() for n in items]}), 200


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
@require_permission("VIEW_NOTIFICATIONS")
def mark_read_route(notification_id: int):
    notification = notification_service.mark_read(g.store_id, notification_id)
    if not notification:
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"notification": notification.to_dict()}), 200
