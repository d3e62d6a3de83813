# Overview: Invoice engine; prices carts, creates invoices atomically with stock and payment effects.

"""
Invoice Engine Invariants (authoritative)

Pricing (per line, Decimal, half-up to cents):
- line_subtotal = unit_price * quantity
- line_discount = line_subtotal * discount / 100
- line_total    = line_subtotal - line_discount
Invoice:
- subtotal, discount_total = sums of the line values
- tax_amount = (subtotal - discount_total) * tax_rate / 100
- total      = subtotal - discount_total + tax_amount
- amount_due = max(0, total - amount_paid)

Status at creation:
- initial payment with amount > 0 -> paid if amount_due <= 0 else partial
- else validate_only              -> pending
- else                            -> draft
State machine: draft -> pending -> {partial -> paid, paid}; any non-terminal -> cancelled.

Unit of work (one transaction):
- invoice + items are persisted
- every line whose product exists in the active store posts an `out`
  movement through the stock ledger; lines pointing at unknown or foreign
  products are kept as free-text lines and move no stock
- InsufficientStockError anywhere rolls back the whole invoice
- the optional initial payment goes through the payment ledger
Notifications (invoice created, low-stock crossings) are dispatched only
after commit and can never undo the invoice.

Numbering:
- {prefix}-{YYMMDD}-{NNNN}, random suffix, unique per store (not globally).
  Candidates are checked before insert; the (store_id, invoice_number)
  unique constraint catches the race and the unit of work is retried.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Client, Invoice, InvoiceItem, Store
from ..models.inventory import MOVEMENT_OUT
from ..models.invoicing import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_PENDING,
)
from ..money import HUNDRED, ZERO, money2
from ..time_utils import utcnow
from ..validation import CartLine, ConflictError, InvoiceDraft, NotFoundError, ValidationError
from .concurrency import RETRYABLE_ERRORS, lock_for_update, run_with_retry
from .notification_service import dispatch_store_events, invoice_created_event, low_stock_event
from .payment_service import apply_payment_locked
from .stock_service import apply_movement_locked, load_product_for_update
from .tenant_service import AuthorizationError, TenantContext


SALE_REASON = "Sale"
NUMBER_ATTEMPTS = 20


class InvoiceError(ConflictError):
    """Raised for invoice operation errors."""


# =============================================================================
# PRICING (pure)
# =============================================================================

@dataclass(frozen=True)
class PricedLine:
    line: CartLine
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    discount_total: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


def price_line(line: CartLine) -> PricedLine:
    subtotal = money2(line.unit_price * line.quantity)
    discount_amount = money2(subtotal * line.discount / HUNDRED)
    return PricedLine(
        line=line,
        subtotal=subtotal,
        discount_amount=discount_amount,
        total=subtotal - discount_amount,
    )


def price_cart(lines, tax_rate: Decimal = ZERO) -> PricedCart:
    priced = tuple(price_line(line) for line in lines)
    subtotal = sum((p.subtotal for p in priced), ZERO)
    discount_total = sum((p.discount_amount for p in priced), ZERO)
    tax_amount = money2((subtotal - discount_total) * tax_rate / HUNDRED)
    return PricedCart(
        lines=priced,
        subtotal=subtotal,
        discount_total=discount_total,
        tax_rate=money2(tax_rate),
        tax_amount=tax_amount,
        total=subtotal - discount_total + tax_amount,
    )


def initial_status(draft: InvoiceDraft) -> str:
    """Status before any payment is applied; the ledger moves it to partial/paid."""
    return INVOICE_PENDING if draft.validate_only else INVOICE_DRAFT


# =============================================================================
# NUMBERING
# =============================================================================

def format_invoice_number(prefix: str, day: date, suffix: int) -> str:
    return f"{prefix}-{day.strftime('%y%m%d')}-{suffix:04d}"


def generate_invoice_number(store: Store, day: date | None = None) -> str:
    prefix = store.invoice_prefix or current_app.config.get("DEFAULT_INVOICE_PREFIX", "FAC")
    day = day or utcnow().date()

    for _ in range(NUMBER_ATTEMPTS):
        candidate = format_invoice_number(prefix, day, secrets.randbelow(10000))
        exists = db.session.query(Invoice.id).filter_by(
            store_id=store.id, invoice_number=candidate
        ).first()
        if exists is None:
            return candidate

    raise InvoiceError(f"Could not allocate an invoice number for store {store.id}")


# =============================================================================
# CREATION
# =============================================================================

def _load_client(ctx: TenantContext, client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise ValidationError("The given data was invalid.", {"client_id": "does not exist"})
    if int(client.owner_id) != int(ctx.owner_id):
        raise AuthorizationError("Forbidden")
    return client


def _lock_store_products(store_id: int, lines) -> dict:
    """
    Lock every product the cart references, in id order.

    Returns {product_id: Product} for products that exist in the store.
    Fixed ordering keeps two invoices on overlapping products from
    deadlocking each other.
    """
    product_ids = sorted({line.product_id for line in lines if line.product_id is not None})
    products = {}
    for product_id in product_ids:
        product = load_product_for_update(product_id)
        if product is not None and int(product.store_id) == int(store_id):
            products[product_id] = product
    return products


def _create_invoice_locked(ctx: TenantContext, draft: InvoiceDraft, priced: PricedCart):
    store = db.session.get(Store, ctx.store_id)
    if store is None:
        raise NotFoundError("Store not found")
    _load_client(ctx, draft.client_id)

    now = utcnow()
    invoice = Invoice(
        invoice_number=generate_invoice_number(store, now.date()),
        client_id=draft.client_id,
        store_id=ctx.store_id,
        subtotal=priced.subtotal,
        discount_total=priced.discount_total,
        tax_rate=priced.tax_rate,
        tax_amount=priced.tax_amount,
        total=priced.total,
        amount_paid=ZERO,
        amount_due=priced.total,
        status=initial_status(draft),
        notes=draft.notes,
        created_by=ctx.user_id,
    )
    db.session.add(invoice)
    db.session.flush()

    products = _lock_store_products(ctx.store_id, draft.lines)

    # unresolvable product ids are dropped so the line stays a free-text snapshot
    for p in priced.lines:
        db.session.add(InvoiceItem(
            invoice_id=invoice.id,
            product_id=p.line.product_id if p.line.product_id in products else None,
            product_name=p.line.product_name,
            product_reference=p.line.product_reference,
            quantity=p.line.quantity,
            unit_price=money2(p.line.unit_price),
            discount=money2(p.line.discount),
            total=p.total,
        ))

    events = []
    for line in draft.lines:
        product = products.get(line.product_id)
        if product is None:
            continue
        result = apply_movement_locked(
            product=product,
            movement_type=MOVEMENT_OUT,
            quantity=line.quantity,
            reason=SALE_REASON,
            actor_id=ctx.user_id,
            from_store_id=ctx.store_id,
            reference=invoice.invoice_number,
        )
        if result.low_stock_crossed:
            events.append(low_stock_event(product))

    payment = draft.payment
    if payment is not None and payment.amount > ZERO:
        apply_payment_locked(invoice, payment.amount, payment.method, payment.reference, payment.notes)

    if invoice.status != INVOICE_DRAFT:
        invoice.validated_at = now

    db.session.flush()
    return invoice, events


def create_invoice(ctx: TenantContext, draft: InvoiceDraft) -> Invoice:
    """
    Create an invoice with its items, stock movements and initial payment.

    Raises:
        ValidationError: unknown client or invalid payment
        AuthorizationError: client of another owner
        InsufficientStockError: a line sells more than the product has
    """
    priced = price_cart(draft.lines, draft.tax_rate)

    def _op():
        invoice, events = _create_invoice_locked(ctx, draft, priced)
        db.session.commit()
        return invoice, events

    invoice, events = run_with_retry(_op, retry_on=RETRYABLE_ERRORS + (IntegrityError,))

    current_app.logger.info(
        "Invoice %s created (store_id=%s, status=%s, total=%s)",
        invoice.invoice_number, ctx.store_id, invoice.status, invoice.total,
    )
    dispatch_store_events(ctx.store_id, [invoice_created_event(invoice)] + events)
    return invoice


# =============================================================================
# LIFECYCLE & READS
# =============================================================================

def _get_store_invoice(ctx: TenantContext, invoice_id: int, *, lock: bool = False) -> Invoice:
    q = db.session.query(Invoice).filter_by(id=invoice_id)
    if lock:
        q = lock_for_update(q)
    invoice = q.first()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if int(invoice.store_id) != int(ctx.store_id):
        raise AuthorizationError("Forbidden")
    return invoice


def cancel_invoice(ctx: TenantContext, invoice_id: int) -> Invoice:
    """
    Mark an invoice cancelled.

    Unconditional and idempotent. Stock sold by the invoice stays sold; no
    reversing movement is written.
    """
    def _op():
        invoice = _get_store_invoice(ctx, invoice_id, lock=True)
        if invoice.status != INVOICE_CANCELLED:
            invoice.status = INVOICE_CANCELLED
            db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_invoice(ctx: TenantContext, invoice_id: int) -> Invoice:
    return _get_store_invoice(ctx, invoice_id)


def list_invoices(store_id: int, *, status: str | None = None, limit: int = 200) -> list[Invoice]:
    q = db.session.query(Invoice).filter_by(store_id=store_id)
    if status:
        q = q.filter(Invoice.status == status)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()

