# Overview: Payment ledger; applies payments to invoices and keeps paid/due/status in sync.

"""
Payment Ledger

DESIGN PRINCIPLES:
- Payments are separate from invoices (many-to-one relationship)
- Partial payments: a payment can be less than the amount due (deposits)
- Overpayment is accepted and simply leaves amount_due at 0
- Invoice.amount_paid is the running sum written here, under the invoice
  row lock, and is never re-derived from the payments table

STATUS AFTER A PAYMENT:
- amount_due <= 0          -> paid (paid_at set once)
- amount_paid > 0          -> partial
- otherwise                -> unchanged (a 0.00 payment on a draft stays draft)
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Invoice, Payment
from ..models.invoicing import INVOICE_CANCELLED, INVOICE_PAID, INVOICE_PARTIAL
from ..money import ZERO, money2
from ..time_utils import utcnow
from ..validation import NotFoundError, PaymentInput, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import AuthorizationError, TenantContext


class PaymentError(ValidationError):
    """Raised when a payment cannot be applied to an invoice."""


def apply_payment_locked(
    invoice: Invoice,
    amount: Decimal,
    method: str,
    reference: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Append a payment and update the invoice running totals.

    The caller holds the invoice row lock and owns the transaction;
    nothing is committed here.
    """
    amount = money2(amount)
    if amount < ZERO:
        raise PaymentError("Payment amount must be >= 0", {"amount": "must be >= 0"})
    if invoice.status == INVOICE_CANCELLED:
        raise PaymentError("Cannot add payment to a cancelled invoice", {"invoice": "is cancelled"})

    now = utcnow()
    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        method=method,
        date=now.date(),
        reference=reference,
        notes=notes,
    )
    db.session.add(payment)

    amount_paid = money2(invoice.amount_paid) + amount
    amount_due = max(ZERO, money2(invoice.total) - amount_paid)

    invoice.amount_paid = amount_paid
    invoice.amount_due = amount_due
    if amount_due <= ZERO:
        invoice.status = INVOICE_PAID
        if invoice.paid_at is None:
            invoice.paid_at = now
    elif amount_paid > ZERO:
        invoice.status = INVOICE_PARTIAL

    db.session.flush()
    return payment


def add_payment(ctx: TenantContext, invoice_id: int, data: PaymentInput) -> Invoice:
    """
    Record a payment on an invoice of the active store.

    Returns:
        The refreshed invoice

    Raises:
        NotFoundError: invoice does not exist
        AuthorizationError: invoice belongs to another store
        PaymentError: negative amount or cancelled invoice
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if int(invoice.store_id) != int(ctx.store_id):
            raise AuthorizationError("Forbidden")

        apply_payment_locked(invoice, data.amount, data.method, data.reference, data.notes)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def payment_summary(invoice: Invoice) -> dict:
    """Ledger totals next to the stored running sum, for reconciliation."""
    ledger_total = db.session.query(
        db.func.coalesce(db.func.sum(Payment.amount), 0)
    ).filter(Payment.invoice_id == invoice.id).scalar()

    return {
        "invoice_id": invoice.id,
        "payment_count": len(invoice.payments),
        "ledger_total": str(money2(ledger_total)),
        "amount_paid": str(money2(invoice.amount_paid)),
        "amount_due": str(money2(invoice.amount_due)),
        "in_sync": money2(ledger_total) == money2(invoice.amount_paid),
    }
