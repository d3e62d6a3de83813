from __future__ import annotations
from datetime import datetime
from decimal import Decimal

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .money import D
from .time_utils import parse_iso_datetime


# Upper bound on any single money input (99,999,999.99)
MAX_AMOUNT = Decimal("99999999.99")


class ValidationError(ValueError):
    """422-level input problem, optionally with per-field messages."""

    def __init__(self, message: str, errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(ValueError):
    """409-level business rule conflict."""


class NotFoundError(LookupError):
    """404-level missing entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_keys(payload: Any) -> Any:
    """
    Accept camelCase JSON keys (clientId, unitPrice) alongside snake_case.

    Applied recursively to nested dicts and lists.
    """
    if isinstance(payload, dict):
        return {
            _CAMEL_RE.sub("_", k).lower() if isinstance(k, str) else k: normalize_keys(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [normalize_keys(v) for v in payload]
    return payload


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer", {key: "must be an integer"})
        if 'e' in stripped.lower() or '.' in stripped:
            raise ValidationError(f"{key} must be a plain integer", {key: "must be a plain integer"})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer", {key: "must be an integer"})
    raise ValidationError(f"{key} must be an integer", {key: "must be an integer"})


def _coerce_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", {key: "must be a number"})
    if isinstance(value, (int, float, Decimal)) or (isinstance(value, str) and value.strip()):
        try:
            dec = D(value.strip() if isinstance(value, str) else value)
        except ValueError:
            raise ValidationError(f"{key} must be a number", {key: "must be a number"})
        if not dec.is_finite():
            raise ValidationError(f"{key} must be a number", {key: "must be a number"})
        return dec
    raise ValidationError(f"{key} must be a number", {key: "must be a number"})


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Numeric):
        return _coerce_decimal(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is not None:
                return dt
        raise ValidationError(f"{col.key} must be an ISO-8601 datetime", {col.key: "must be an ISO-8601 datetime"})

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", {k: "is not allowed"})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", {k: "is unknown"})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {k: "cannot be null"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", {k: "cannot be blank"})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(
                    f"{k} exceeds max length {col.type.length}",
                    {k: f"exceeds max length {col.type.length}"},
                )

        patch[k] = val

    return patch


def _require_amount(key: str, value: Decimal, *, minimum: Decimal = Decimal("0")) -> Decimal:
    if value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}", {key: f"must be >= {minimum}"})
    if value > MAX_AMOUNT:
        raise ValidationError(f"{key} exceeds {MAX_AMOUNT}", {key: f"exceeds {MAX_AMOUNT}"})
    return value


def optional_str(key: str, value: Any, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}", {key: f"exceeds max length {max_length}"})
    return text or None


# =============================================================================
# INVOICE CART (typed boundary records)
# =============================================================================

@dataclass(frozen=True)
class CartLine:
    product_name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal = Decimal("0")
    product_id: int | None = None
    product_reference: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    amount: Decimal
    method: str
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceDraft:
    client_id: int
    lines: tuple[CartLine, ...]
    tax_rate: Decimal = Decimal("0")
    notes: str | None = None
    payment: PaymentInput | None = None
    validate_only: bool = False


def parse_payment_payload(payload: Any, *, prefix: str = "") -> PaymentInput:
    if not isinstance(payload, dict):
        raise ValidationError("payment must be an object", {prefix.rstrip(".") or "payment": "must be an object"})

    errors: dict[str, str] = {}
    amount = None
    method = None

    if payload.get("amount") is None:
        errors[f"{prefix}amount"] = "is required"
    else:
        try:
            amount = _require_amount(f"{prefix}amount", _coerce_decimal(f"{prefix}amount", payload["amount"]))
        except ValidationError as e:
            errors.update(e.errors)

    raw_method = payload.get("method")
    if raw_method is None or not str(raw_method).strip():
        errors[f"{prefix}method"] = "is required"
    else:
        method = str(raw_method).strip()
        if len(method) > 50:
            errors[f"{prefix}method"] = "exceeds max length 50"

    try:
        reference = optional_str(f"{prefix}reference", payload.get("reference"), 255)
    except ValidationError as e:
        errors.update(e.errors)
        reference = None

    if errors:
        raise ValidationError("Invalid payment", errors)

    return PaymentInput(
        amount=amount,
        method=method,
        reference=reference,
        notes=optional_str(f"{prefix}notes", payload.get("notes")),
    )


def _parse_cart_line(index: int, raw: Any, errors: dict[str, str]) -> CartLine | None:
    prefix = f"items.{index}."
    if not isinstance(raw, dict):
        errors[f"items.{index}"] = "must be an object"
        return None

    before = len(errors)

    product_id = None
    if raw.get("product_id") is not None:
        try:
            product_id = _coerce_int(f"{prefix}product_id", raw["product_id"])
        except ValidationError as e:
            errors.update(e.errors)

    name = raw.get("product_name")
    if name is None or not str(name).strip():
        errors[f"{prefix}product_name"] = "is required"
    elif len(str(name).strip()) > 255:
        errors[f"{prefix}product_name"] = "exceeds max length 255"

    reference = None
    try:
        reference = optional_str(f"{prefix}product_reference", raw.get("product_reference"), 100)
    except ValidationError as e:
        errors.update(e.errors)

    quantity = None
    if raw.get("quantity") is None:
        errors[f"{prefix}quantity"] = "is required"
    else:
        try:
            quantity = _coerce_int(f"{prefix}quantity", raw["quantity"])
            if quantity < 1:
                errors[f"{prefix}quantity"] = "must be >= 1"
        except ValidationError as e:
            errors.update(e.errors)

    unit_price = None
    if raw.get("unit_price") is None:
        errors[f"{prefix}unit_price"] = "is required"
    else:
        try:
            unit_price = _require_amount(f"{prefix}unit_price", _coerce_decimal(f"{prefix}unit_price", raw["unit_price"]))
        except ValidationError as e:
            errors.update(e.errors)

    discount = Decimal("0")
    if raw.get("discount") is not None:
        try:
            discount = _coerce_decimal(f"{prefix}discount", raw["discount"])
            if discount < 0 or discount > 100:
                errors[f"{prefix}discount"] = "must be between 0 and 100"
        except ValidationError as e:
            errors.update(e.errors)

    if len(errors) > before:
        return None

    return CartLine(
        product_id=product_id,
        product_name=str(name).strip(),
        product_reference=reference,
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
    )


def parse_invoice_payload(payload: Any) -> InvoiceDraft:
    """
    Validate a POST /invoices body into an InvoiceDraft.

    Collects every field error before raising so the client can show them
    all at once.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = normalize_keys(payload)
    errors: dict[str, str] = {}

    client_id = None
    if payload.get("client_id") is None:
        errors["client_id"] = "is required"
    else:
        try:
            client_id = _coerce_int("client_id", payload["client_id"])
        except ValidationError as e:
            errors.update(e.errors)

    raw_items = payload.get("items")
    lines: list[CartLine] = []
    if not isinstance(raw_items, list) or not raw_items:
        errors["items"] = "must be a non-empty list"
    else:
        for index, raw in enumerate(raw_items):
            line = _parse_cart_line(index, raw, errors)
            if line is not None:
                lines.append(line)

    tax_rate = Decimal("0")
    if payload.get("tax_rate") is not None:
        try:
            tax_rate = _coerce_decimal("tax_rate", payload["tax_rate"])
            if tax_rate < 0 or tax_rate > 100:
                errors["tax_rate"] = "must be between 0 and 100"
        except ValidationError as e:
            errors.update(e.errors)

    payment = None
    if payload.get("payment") is not None:
        try:
            payment = parse_payment_payload(payload["payment"], prefix="payment.")
        except ValidationError as e:
            errors.update(e.errors or {"payment": str(e)})

    validate_only = payload.get("validate_only")
    if validate_only is None:
        validate_only = False
    elif not isinstance(validate_only, bool):
        errors["validate_only"] = "must be a boolean"

    if errors:
        raise ValidationError("The given data was invalid.", errors)

    return InvoiceDraft(
        client_id=client_id,
        lines=tuple(lines),
        tax_rate=tax_rate,
        notes=optional_str("notes", payload.get("notes")),
        payment=payment,
        validate_only=validate_only,
    )


def enforce_rules_stock_movement(patch: dict, valid_types) -> None:
    """Type and quantity rules that column metadata cannot express."""
    movement_type = patch.get("type")
    if movement_type not in valid_types:
        raise ValidationError(
            f"type must be one of {', '.join(valid_types)}",
            {"type": f"must be one of {', '.join(valid_types)}"},
        )

    quantity = patch.get("quantity")
    # adjustment is an absolute count and may legitimately be zero
    minimum = 0 if movement_type == "adjustment" else 1
    if quantity is None or quantity < minimum:
        raise ValidationError(f"quantity must be >= {minimum}", {"quantity": f"must be >= {minimum}"})

    if patch.get("to_store_id") is not None and movement_type != "transfer":
        raise ValidationError("to_store_id is only allowed for transfer", {"to_store_id": "only allowed for transfer"})


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

@dataclass(frozen=True)
class SubscriptionUpdate:
    action: str
    days: int


@dataclass(frozen=True)
class PaymentRequestInput:
    months_requested: int
    amount: Decimal
    proof: str
    plan_key: str | None = None


def parse_subscription_update(payload: Any) -> SubscriptionUpdate:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errors: dict[str, str] = {}
    action = payload.get("action")
    if action not in ("add", "set"):
        errors["action"] = "must be one of add, set"

    days = None
    if payload.get("days") is None:
        errors["days"] = "is required"
    else:
        try:
            days = _coerce_int("days", payload["days"])
            if days < 0:
                errors["days"] = "must be >= 0"
        except ValidationError as e:
            errors.update(e.errors)

    if errors:
        raise ValidationError("The given data was invalid.", errors)
    return SubscriptionUpdate(action=action, days=days)


def parse_payment_request_payload(payload: Any) -> PaymentRequestInput:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    payload = normalize_keys(payload)
    errors: dict[str, str] = {}

    months = None
    if payload.get("months_requested") is None:
        errors["months_requested"] = "is required"
    else:
        try:
            months = _coerce_int("months_requested", payload["months_requested"])
            if months < 1:
                errors["months_requested"] = "must be >= 1"
        except ValidationError as e:
            errors.update(e.errors)

    amount = None
    if payload.get("amount") is None:
        errors["amount"] = "is required"
    else:
        try:
            amount = _require_amount("amount", _coerce_decimal("amount", payload["amount"]))
        except ValidationError as e:
            errors.update(e.errors)

    proof = payload.get("proof")
    if proof is None or not str(proof).strip():
        errors["proof"] = "is required"

    plan_key = None
    try:
        plan_key = optional_str("plan_key", payload.get("plan_key"), 50)
    except ValidationError as e:
        errors.update(e.errors)

    if errors:
        raise ValidationError("The given data was invalid.", errors)

    return PaymentRequestInput(
        months_requested=months,
        amount=amount,
        proof=str(proof).strip(),
        plan_key=plan_key,
    )
