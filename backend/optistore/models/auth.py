from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"
VALID_ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_STAFF}


class User(db.Model):
    """
    Platform accounts.

    TENANCY:
    - role='admin' is a store owner account (the billing tenant). Its own id
      is the owner id for everything it owns.
    - role='staff' works in one or more stores of its owner (owner_id).
    - role='super_admin' operates the platform (subscriptions, approvals).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)

    role = db.Column(db.String(32), nullable=False, default=ROLE_STAFF, index=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_pending_approval = db.Column(db.Boolean, nullable=False, default=False)

    # Store quota for owner accounts, raised by subscription offers
    max_stores = db.Column(db.Integer, nullable=False, default=1)
    last_store_id = db.Column(db.Integer, db.ForeignKey("stores.id", use_alter=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("User", remote_side=[id], foreign_keys=[owner_id])

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "owner_id": self.owner_id,
            "is_active": self.is_active,
            "is_pending_approval": self.is_pending_approval,
            "max_stores": self.max_stores,
            "last_store_id": self.last_store_id,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session tokens.

    Tokens stored hashed (SHA-256); plaintext is shown once at issue time.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
