# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

"""
Stock movement routes.

POST accepts camelCase or snake_case keys. `referenceId` is accepted as an
alias of `reference`.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_store_context
from ..models import StockMovement
from ..models.inventory import VALID_MOVEMENT_TYPES
from ..services import stock_service
from ..services.stock_service import InsufficientStockError
from ..services.tenant_service import AuthorizationError
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_stock_movement,
    normalize_keys,
    validate_payload,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

STOCK_MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "type", "quantity", "reason", "reference", "to_store_id"},
    required_on_create={"product_id", "type", "quantity", "reason"},
)


@stock_bp.post("/movements")
@require_auth
@require_store_context
def create_movement_route():
    payload = normalize_keys(request.get_json(silent=True) or {})
    if isinstance(payload, dict) and "reference_id" in payload:
        payload["reference"] = payload.pop("reference_id")
        if payload["reference"] is not None:
            payload["reference"] = str(payload["reference"])

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=STOCK_MOVEMENT_POLICY,
            partial=False,
        )
        enforce_rules_stock_movement(patch, VALID_MOVEMENT_TYPES)
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422

    try:
        movement = stock_service.record_movement(
            g.tenant,
            product_id=patch["product_id"],
            movement_type=patch["type"],
            quantity=patch["quantity"],
            reason=patch["reason"],
            reference=patch.get("reference"),
            to_store_id=patch.get("to_store_id"),
        )
    except InsufficientStockError as e:
        return jsonify({"message": str(e), "available": e.available, "requested": e.requested}), 422
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"movement": movement.to_dict()}), 201


@stock_bp.get("/movements")
@require_auth
@require_store_context
def list_movements_route():
    product_id = request.args.get("product_id", type=int)
    limit = min(request.args.get("limit", 200, type=int), 1000)

    movements = stock_service.list_movements(g.tenant.store_id, product_id=product_id, limit=limit)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200
