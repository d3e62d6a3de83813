# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice routes.

All routes require authentication and an active store (X-Store-Id).
Money amounts are returned as decimal strings ("216.00").
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_store_context
from ..models.invoicing import INVOICE_STATUSES
from ..services import invoice_service, payment_service
from ..services.stock_service import InsufficientStockError
from ..services.tenant_service import AuthorizationError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    normalize_keys,
    parse_invoice_payload,
    parse_payment_payload,
)


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
@require_store_context
def list_invoices_route():
    status = request.args.get("status")
    if status and status not in INVOICE_STATUSES:
        return jsonify({"message": "Invalid status", "errors": {"status": "is invalid"}}), 422

    invoices = invoice_service.list_invoices(g.tenant.store_id, status=status)
    return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200


@invoices_bp.post("")
@require_auth
@require_store_context
def create_invoice_route():
    """
    Create an invoice from a cart.

    Deducts stock for lines linked to products of the active store and
    records the optional initial payment, all in one transaction.
    """
    try:
        draft = parse_invoice_payload(request.get_json(silent=True))
        invoice = invoice_service.create_invoice(g.tenant, draft)
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except InsufficientStockError as e:
        return jsonify({
            "message": str(e),
            "product_id": e.product_id,
            "requested": e.requested,
            "available": e.available,
        }), 422
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except ConflictError as e:
        return jsonify({"message": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({
        "invoice": invoice.to_dict(include_lines=False),
        "items": [item.to_dict() for item in invoice.items],
        "payments": [payment.to_dict() for payment in invoice.payments],
    }), 201


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_store_context
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.tenant, invoice_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403

    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
@require_store_context
def add_payment_route(invoice_id: int):
    try:
        data = parse_payment_payload(normalize_keys(request.get_json(silent=True)))
        invoice = payment_service.add_payment(g.tenant, invoice_id, data)
    except ValidationError as e:
        return jsonify({"message": str(e), "errors": e.errors}), 422
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.get("/<int:invoice_id>/payments")
@require_auth
@require_store_context
def list_payments_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.tenant, invoice_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403

    return jsonify({
        "payments": [payment.to_dict() for payment in invoice.payments],
        "summary": payment_service.payment_summary(invoice),
    }), 200


@invoices_bp.patch("/<int:invoice_id>/cancel")
@require_auth
@require_store_context
def cancel_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.cancel_invoice(g.tenant, invoice_id)
    except NotFoundError as e:
        return jsonify({"message": str(e)}), 404
    except AuthorizationError as e:
        return jsonify({"message": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"message": "Internal server error"}), 500

    return jsonify({"invoice": invoice.to_dict()}), 200
