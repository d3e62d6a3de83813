"""
Tenant Service: Store Context and Ownership Checks

Every store-scoped operation receives an explicit TenantContext; no service
reads the active store from request globals.

SECURITY INVARIANTS:
1. An owner account (role=admin) may act on its own stores only
2. Staff may act on stores they are a member of
3. Store ids from client input are checked against the resolved owner
4. Cross-tenant access raises AuthorizationError (403)

USAGE:
    ctx = TenantContext(store_id=store.id, owner_id=resolve_owner_id(user), user_id=user.id)
    invoice = invoice_service.create_invoice(ctx, draft)
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Store, StoreMember, User
from ..models.auth import ROLE_ADMIN, ROLE_STAFF, ROLE_SUPER_ADMIN
from ..validation import NotFoundError


class AuthorizationError(Exception):
    """Raised when an actor reaches outside its tenant or role."""


class StoreContextMissing(Exception):
    """Raised when a store-scoped request carries no usable store id."""


@dataclass(frozen=True)
class TenantContext:
    store_id: int
    owner_id: int
    user_id: int


def resolve_owner_id(user: User) -> int:
    """Owner accounts own themselves; staff resolve to their owner."""
    if user.role == ROLE_ADMIN:
        return int(user.id)
    if user.role == ROLE_STAFF and user.owner_id:
        return int(user.owner_id)
    raise AuthorizationError("Forbidden")


def is_store_member(store: Store, user: User) -> bool:
    return db.session.query(StoreMember.id).filter_by(store_id=store.id, user_id=user.id).first() is not None


def resolve_store_context(user: User, requested_store_id) -> TenantContext:
    """
    Resolve the active store for a request.

    requested_store_id comes from the X-Store-Id header; when absent the
    user's last_store_id is used. A header choice is remembered as the new
    last_store_id.
    """
    store_id = requested_store_id or user.last_store_id
    if not store_id:
        raise StoreContextMissing("Store context missing.")

    try:
        store_id = int(store_id)
    except (TypeError, ValueError):
        raise StoreContextMissing("Store context missing.")

    store = db.session.get(Store, store_id)
    if not store:
        raise NotFoundError("Store not found.")
    if not store.is_active:
        raise AuthorizationError("Store inactive.")

    if user.role == ROLE_SUPER_ADMIN:
        owner_id = int(store.owner_id)
    else:
        owner_id = resolve_owner_id(user)
        if user.role == ROLE_ADMIN:
            if int(store.owner_id) != int(user.id):
                raise AuthorizationError("Forbidden.")
        elif not is_store_member(store, user):
            raise AuthorizationError("Forbidden.")

    if requested_store_id and user.last_store_id != store.id:
        user.last_store_id = store.id
        db.session.commit()

    return TenantContext(store_id=store.id, owner_id=owner_id, user_id=user.id)


def require_store_of_owner(store_id: int, owner_id: int) -> Store:
    """
    Validate that a store belongs to the given owner.

    Unknown and foreign stores are reported the same way so a tenant cannot
    probe for other tenants' store ids.
    """
    store = db.session.get(Store, store_id)
    if not store or int(store.owner_id) != int(owner_id):
        raise AuthorizationError("Store not found")
    return store


def store_user_ids(store: Store) -> list[int]:
    """All users who should see a store's notifications: members plus owner."""
    rows = db.session.query(StoreMember.user_id).filter_by(store_id=store.id).all()
    ids = [int(r[0]) for r in rows]
    if store.owner_id:
        ids.append(int(store.owner_id))
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(ids))
