# Overview: Flask API routes for the current user's in-app notifications.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import notification_service
from ..services.tenant_service import AuthorizationError
from ..validation import NotFoundError


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes"}


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    notifications = notification_service.list_notifications(
        g.current_user.id,
        unread_only=_truthy(request.args.get("unread")),
    )
    return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200


@notifications_bp.patch("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(g.current_user.id, notification_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403

    return jsonify({"notification": notification.to_dict()}), 200


@notifications_bp.patch("/read-all")
@require_auth
def mark_all_read_route():
    notification_service.mark_all_read(g.current_user.id)
    return "", 204


@notifications_bp.delete("")
@require_auth
def clear_notifications_route():
    notification_service.clear_notifications(g.current_user.id)
    return "", 204
