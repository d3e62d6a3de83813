from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Store(db.Model):
    """
    A physical shop belonging to one owner account.

    TENANCY: Store is the scoping unit for products, invoices, stock
    movements, and notification settings. Invoice numbers are unique per
    store, not globally.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    invoice_prefix = db.Column(db.String(16), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("User", foreign_keys=[owner_id], backref=db.backref("owned_stores", lazy=True))
    members = db.relationship("User", secondary="store_members", lazy="select", viewonly=True)

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r} owner_id={self.owner_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "email": self.email,
            "invoice_prefix": self.invoice_prefix,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StoreMember(db.Model):
    """Staff assignment to a store (owners are implicit members of their stores)."""
    __tablename__ = "store_members"
    __table_args__ = (
        db.UniqueConstraint("store_id", "user_id", name="uq_store_members_store_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)


# (event type) -> (in-app toggle column, email toggle column)
NOTIFICATION_CHANNEL_FIELDS = {
    "low_stock": ("notify_low_stock_in_app", "notify_low_stock_email"),
    "invoice_created": ("notify_invoice_created_in_app", "notify_invoice_created_email"),
}


class StoreSetting(db.Model):
    """Per-store contact details and notification channel toggles."""
    __tablename__ = "store_settings"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_store_settings_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)

    notify_low_stock_in_app = db.Column(db.Boolean, nullable=False, default=True)
    notify_low_stock_email = db.Column(db.Boolean, nullable=False, default=True)
    notify_invoice_created_in_app = db.Column(db.Boolean, nullable=False, default=True)
    notify_invoice_created_email = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("settings", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        data = {"id": self.id, "store_id": self.store_id, "email": self.email}
        for in_app_field, email_field in NOTIFICATION_CHANNEL_FIELDS.values():
            data[in_app_field] = getattr(self, in_app_field)
            data[email_field] = getattr(self, email_field)
        return data
