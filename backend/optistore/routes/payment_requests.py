# Overview: Flask API routes for subscription payment requests (submit, list, review).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_super_admin
from ..models.subscriptions import REQUEST_APPROVED, REQUEST_PENDING, REQUEST_REJECTED
from ..services import subscription_service
from ..services.tenant_service import AuthorizationError
from ..validation import (
    NotFoundError,
    ValidationError,
    normalize_keys,
    optional_str,
    parse_payment_request_payload,
)


payment_requests_bp = Blueprint("payment_requests", __name__, url_prefix="/api/payment-requests")

REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED)


@payment_requests_bp.post("")
@require_auth
def create_payment_request_route():
    try:
        data = parse_payment_request_payload(request.get_json(silent=True))
        payment_request = subscription_service.create_payment_request(
            g.current_user,
            months_requested=data.months_requested,
            amount=data.amount,
            proof=data.proof,
            plan_key=data.plan_key,
        )
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to create payment request")
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"payment_request": payment_request.to_dict()}), 201


@payment_requests_bp.get("")
@require_auth
def list_payment_requests_route():
    """Own requests; super admins see every request."""
    status = request.args.get("status")
    if status and status not in REQUEST_STATUSES:
        return jsonify({"message": "Invalid status", "errors": {"status": "is invalid"}}), 422

    requests_ = subscription_service.list_payment_requests(g.current_user, status=status)
    return jsonify({"payment_requests": [r.to_dict() for r in requests_]}), 200


@payment_requests_bp.patch("/<int:request_id>/approve")
@require_auth
@require_super_admin
def approve_payment_request_route(request_id: int):
    try:
        payment_request = subscription_service.approve_payment_request(request_id, g.current_user)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to approve payment request %s", request_id)
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"payment_request": payment_request.to_dict()}), 200


@payment_requests_bp.patch("/<int:request_id>/reject")
@require_auth
@require_super_admin
def reject_payment_request_route(request_id: int):
    payload = normalize_keys(request.get_json(silent=True) or {})
    if not isinstance(payload, dict):
        payload = {}
    try:
        reason = optional_str("rejection_reason", payload.get("rejection_reason"), 1000)
        payment_request = subscription_service.reject_payment_request(request_id, g.current_user, reason=reason)
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to reject payment request %s", request_id)
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"payment_request": payment_request.to_dict()}), 200
