from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_PENDING = "pending"

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"


class Subscription(db.Model):
    """
    Paid access window for an owner account.

    An owner may accumulate several rows over time; the current one is the
    row with the latest expiry_date. Windows are extended, never shortened
    by renewals.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.Index("ix_subscriptions_owner_expiry", "owner_id", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=SUBSCRIPTION_PENDING, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "start_date": to_utc_z(self.start_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SubscriptionOffer(db.Model):
    """Commercial plan; store_limit raises the owner's store quota on approval."""
    __tablename__ = "subscription_offers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(50), nullable=False, unique=True, index=True)
    label = db.Column(db.String(255), nullable=False)
    store_limit = db.Column(db.Integer, nullable=True)
    monthly_price = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(10), nullable=False, default="DH")
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "label": self.label,
            "store_limit": self.store_limit,
            "monthly_price": money_str(self.monthly_price),
            "currency": self.currency,
            "sort_order": self.sort_order,
        }


class PaymentRequest(db.Model):
    """Owner-submitted proof of a subscription payment awaiting review."""
    __tablename__ = "payment_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_email = db.Column(db.String(255), nullable=False)
    user_name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    months_requested = db.Column(db.Integer, nullable=False)
    plan_key = db.Column(db.String(50), nullable=True)
    proof = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REQUEST_PENDING, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "amount": money_str(self.amount),
            "months_requested": self.months_requested,
            "plan_key": self.plan_key,
            "status": self.status,
            "submitted_at": to_utc_z(self.submitted_at),
            "processed_at": to_utc_z(self.processed_at),
            "processed_by": self.processed_by,
            "rejection_reason": self.rejection_reason,
        }
