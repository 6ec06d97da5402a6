# Overview: Flask API routes for reading and acknowledging in-app notifications.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import notification_service
from ..validation import DomainError


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")

_TRUTHY = {"1", "true", "yes"}


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """
    Most recent notifications for the current user.

    Query params: unread=true to return only unread ones.
    """
    try:
        unread_only = request.args.get("unread", "").strip().lower() in _TRUTHY
        notifications = notification_service.list_for_user(g.current_user.id, unread_only=unread_only)
        return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_notification_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify({"notification": notification.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark notification %s as read", notification_id)
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/read-all")
@require_auth
def mark_all_notifications_read_route():
    try:
        updated = notification_service.mark_all_read(g.current_user.id)
        return jsonify({"updated_count": updated}), 200
    except Exception:
        current_app.logger.exception("Failed to mark notifications as read")
        return jsonify({"error": "Internal server error"}), 500
