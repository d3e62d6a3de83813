# Overview: Pytest coverage for the payment ledger.

from decimal import Decimal

import pytest

from optistore.models import Payment
from optistore.services import invoice_service, payment_service
from optistore.services.payment_service import PaymentError
from optistore.services.tenant_service import AuthorizationError, TenantContext
from optistore.validation import CartLine, InvoiceDraft, NotFoundError, PaymentInput


@pytest.fixture
def invoice(db_session, ctx, customer, outbox):
    """Scenario invoice: 2 x 100 at 10% off, 20% tax -> total 216.00."""
    line = CartLine(product_name="Frame", quantity=2, unit_price=Decimal("100"), discount=Decimal("10"))
    return invoice_service.create_invoice(
        ctx, InvoiceDraft(client_id=customer.id, lines=(line,), tax_rate=Decimal("20")),
    )


def pay(ctx, invoice, amount, method="cash"):
    return payment_service.add_payment(ctx, invoice.id, PaymentInput(amount=Decimal(amount), method=method))


def test_partial_payment(db_session, ctx, invoice):
    updated = pay(ctx, invoice, "100")

    assert updated.status == "partial"
    assert updated.amount_paid == Decimal("100.00")
    assert updated.amount_due == Decimal("116.00")
    assert updated.paid_at is None


def test_payments_accumulate_to_paid(db_session, ctx, invoice):
    pay(ctx, invoice, "100")
    updated = pay(ctx, invoice, "116", method="card")

    assert updated.status == "paid"
    assert updated.amount_due == Decimal("0.00")
    assert updated.paid_at is not None
    assert db_session.query(Payment).filter_by(invoice_id=invoice.id).count() == 2


def test_overpayment_clamps_due_to_zero(db_session, ctx, invoice):
    updated = pay(ctx, invoice, "300")

    assert updated.status == "paid"
    assert updated.amount_paid == Decimal("300.00")
    assert updated.amount_due == Decimal("0.00")


def test_paid_at_set_once(db_session, ctx, invoice):
    first = pay(ctx, invoice, "216").paid_at
    again = pay(ctx, invoice, "5").paid_at
    assert again == first


def test_zero_payment_keeps_draft(db_session, ctx, invoice):
    updated = pay(ctx, invoice, "0")
    assert updated.status == "draft"
    assert updated.amount_due == Decimal("216.00")


def test_negative_amount_rejected(db_session, ctx, invoice):
    with pytest.raises(PaymentError) as exc:
        pay(ctx, invoice, "-1")
    assert exc.value.errors == {"amount": "must be >= 0"}
    assert db_session.query(Payment).count() == 0


def test_cancelled_invoice_rejected(db_session, ctx, invoice):
    invoice_service.cancel_invoice(ctx, invoice.id)
    with pytest.raises(PaymentError):
        pay(ctx, invoice, "10")


def test_unknown_invoice(db_session, ctx):
    with pytest.raises(NotFoundError):
        payment_service.add_payment(ctx, 4040, PaymentInput(amount=Decimal("1"), method="cash"))


def test_invoice_of_other_store_forbidden(db_session, owner, second_store, invoice):
    sibling_ctx = TenantContext(store_id=second_store.id, owner_id=owner.id, user_id=owner.id)
    with pytest.raises(AuthorizationError):
        pay(sibling_ctx, invoice, "10")

    db_session.refresh(invoice)
    assert invoice.amount_paid == Decimal("0.00")


def test_summary_in_sync_with_ledger(db_session, ctx, invoice):
    pay(ctx, invoice, "50")
    updated = pay(ctx, invoice, "25.50")

    summary = payment_service.payment_summary(updated)
    assert summary["payment_count"] == 2
    assert summary["ledger_total"] == "75.50"
    assert summary["amount_paid"] == "75.50"
    assert summary["amount_due"] == "140.50"
    assert summary["in_sync"] is True
