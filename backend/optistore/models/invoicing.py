from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


INVOICE_DRAFT = "draft"
INVOICE_PENDING = "pending"
INVOICE_PARTIAL = "partial"
INVOICE_PAID = "paid"
INVOICE_CANCELLED = "cancelled"
INVOICE_STATUSES = (INVOICE_DRAFT, INVOICE_PENDING, INVOICE_PARTIAL, INVOICE_PAID, INVOICE_CANCELLED)


class Client(db.Model):
    """Customer record, shared across all stores of one owner."""
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    first_name = db.Column(db.String(120), nullable=False)
    last_name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
        }


class Invoice(db.Model):
    """
    Priced sale document.

    INVARIANTS:
    - total = (subtotal - discount_total) * (1 + tax_rate / 100)
    - amount_due = max(0, total - amount_paid)
    - amount_paid is the running sum maintained by the payment ledger,
      never recomputed from the payments table
    - invoice_number is unique within a store
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("store_id", "invoice_number", name="uq_invoices_store_number"),
        db.Index("ix_invoices_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount_due = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    client = db.relationship("Client")
    items = db.relationship(
        "InvoiceItem", backref="invoice", lazy=True, order_by="InvoiceItem.id",
    )
    payments = db.relationship(
        "Payment", backref="invoice", lazy=True, order_by="Payment.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "client_id": self.client_id,
            "store_id": self.store_id,
            "subtotal": money_str(self.subtotal),
            "discount_total": money_str(self.discount_total),
            "tax_rate": money_str(self.tax_rate),
            "tax_amount": money_str(self.tax_amount),
            "total": money_str(self.total),
            "amount_paid": money_str(self.amount_paid),
            "amount_due": money_str(self.amount_due),
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "validated_at": to_utc_z(self.validated_at),
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class InvoiceItem(db.Model):
    """
    Line snapshot, immutable after creation.

    product_id is optional (free-text lines such as services or fitting).
    """
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_reference = db.Column(db.String(100), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(5, 2), nullable=False, default=0)  # percent
    total = db.Column(db.Numeric(12, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_reference": self.product_reference,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "discount": money_str(self.discount),
            "total": money_str(self.total),
        }


class Payment(db.Model):
    """Append-only payment received against an invoice."""
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(50), nullable=False)
    date = db.Column(db.Date, nullable=False)
    reference = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": money_str(self.amount),
            "method": self.method,
            "date": self.date.isoformat() if self.date else None,
            "reference": self.reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
