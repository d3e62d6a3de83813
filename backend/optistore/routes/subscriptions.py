# Overview: Flask API routes for subscription status and platform-admin owner management.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_super_admin
from ..services import subscription_service
from ..services.tenant_service import AuthorizationError, resolve_owner_id
from ..validation import NotFoundError, ValidationError, parse_subscription_update


subscriptions_bp = Blueprint("subscriptions", __name__, url_prefix="/api/subscriptions")
admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@subscriptions_bp.get("/me")
@require_auth
def my_subscription_route():
    """Subscription of the caller's owner account (staff see their owner's)."""
    try:
        owner_id = resolve_owner_id(g.current_user)
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403

    return jsonify(subscription_service.subscription_status(owner_id)), 200


# =============================================================================
# PLATFORM ADMIN
# =============================================================================

@admin_bp.patch("/owners/<int:owner_id>/approve")
@require_auth
@require_super_admin
def approve_owner_route(owner_id: int):
    try:
        owner = subscription_service.approve_owner(owner_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve owner %s", owner_id)
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"user": owner.to_dict()}), 200


@admin_bp.patch("/owners/<int:owner_id>/subscription")
@require_auth
@require_super_admin
def update_owner_subscription_route(owner_id: int):
    try:
        update = parse_subscription_update(request.get_json(silent=True))
        subscription = subscription_service.admin_update_subscription(
            owner_id, action=update.action, days=update.days
        )
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update subscription for owner %s", owner_id)
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"subscription": subscription.to_dict()}), 200
