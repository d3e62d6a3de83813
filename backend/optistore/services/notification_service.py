# Overview: Fan-out of domain events to in-app notifications and store email.

"""
Notification Dispatcher

DESIGN:
- Events are plain NotificationEvent records built by the invoice and stock
  services while their transaction is open, and dispatched only after it
  commits. A failed dispatch never rolls back the business write.
- Channel toggles come from StoreSetting per event type. Unknown types go
  to in-app only. A store without settings gets every channel.
- Dedup: when an event carries a DedupeKey, a user who already has an
  unread notification of the same type for the same entity is skipped.
  This keeps one open low-stock alert per product per user.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Notification, Store, StoreSetting, User
from ..models.auth import ROLE_SUPER_ADMIN
from ..models.tenancy import NOTIFICATION_CHANNEL_FIELDS
from ..time_utils import utcnow
from ..validation import NotFoundError
from .mail_service import DependencyFailure, send_store_notification
from .tenant_service import AuthorizationError, store_user_ids


EVENT_LOW_STOCK = "low_stock"
EVENT_INVOICE_CREATED = "invoice_created"
EVENT_PAYMENT_REQUEST = "payment_request"
EVENT_PAYMENT_APPROVED = "payment_approved"
EVENT_PAYMENT_REJECTED = "payment_rejected"


@dataclass(frozen=True)
class DedupeKey:
    entity_type: str
    entity_id: int


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    title: str
    message: str
    link: str | None = None
    data: dict = field(default_factory=dict)
    dedupe: DedupeKey | None = None


@dataclass(frozen=True)
class Channels:
    in_app: bool
    email: bool


def low_stock_event(product) -> NotificationEvent:
    return NotificationEvent(
        type=EVENT_LOW_STOCK,
        title="Low stock",
        message=f"{product.name} is running low ({product.current_stock} left).",
        link="/stock",
        data={"product_id": product.id},
        dedupe=DedupeKey("product", product.id),
    )


def invoice_created_event(invoice) -> NotificationEvent:
    return NotificationEvent(
        type=EVENT_INVOICE_CREATED,
        title="New invoice",
        message=f"Invoice {invoice.invoice_number} created.",
        link="/invoices",
        data={"invoice_id": invoice.id},
    )


def resolve_channels(settings: StoreSetting | None, event_type: str) -> Channels:
    fields = NOTIFICATION_CHANNEL_FIELDS.get(event_type)
    if fields is None:
        return Channels(in_app=True, email=False)
    if settings is None:
        return Channels(in_app=True, email=True)
    in_app_field, email_field = fields
    return Channels(in_app=bool(getattr(settings, in_app_field)), email=bool(getattr(settings, email_field)))


def _has_unread_duplicate(user_id: int, event: NotificationEvent) -> bool:
    return db.session.query(Notification.id).filter(
        Notification.user_id == user_id,
        Notification.type == event.type,
        Notification.read_at.is_(None),
        Notification.dedupe_entity_type == event.dedupe.entity_type,
        Notification.dedupe_entity_id == event.dedupe.entity_id,
    ).first() is not None


def _add_notification(user_id: int, event: NotificationEvent) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=event.type,
        title=event.title,
        message=event.message,
        link=event.link,
        data=dict(event.data) if event.data else None,
        dedupe_entity_type=event.dedupe.entity_type if event.dedupe else None,
        dedupe_entity_id=event.dedupe.entity_id if event.dedupe else None,
    )
    db.session.add(notification)
    return notification


def notify_store_users(store: Store, event: NotificationEvent) -> list[Notification]:
    """
    Deliver one event for a store: email once, then one in-app row per user.

    Email failures are logged and do not prevent in-app delivery.
    Returns the in-app notifications created.
    """
    settings = db.session.query(StoreSetting).filter_by(store_id=store.id).first()
    channels = resolve_channels(settings, event.type)

    if channels.email:
        recipient = (settings.email if settings else None) or store.email
        if recipient:
            try:
                send_store_notification(store, recipient, event.title, event.message, event.link)
            except DependencyFailure:
                current_app.logger.exception(
                    "Email for %s event failed (store_id=%s)", event.type, store.id
                )

    if not channels.in_app:
        return []

    created = []
    for user_id in store_user_ids(store):
        if event.dedupe is not None and _has_unread_duplicate(user_id, event):
            continue
        created.append(_add_notification(user_id, event))

    db.session.commit()
    return created


def dispatch_store_events(store_id: int, events) -> None:
    """
    Best-effort delivery of events after the business transaction committed.

    Each event is isolated: a failure is rolled back, logged and skipped.
    Nothing is raised to the caller and nothing is retried.
    """
    if not events:
        return
    store = db.session.get(Store, store_id)
    if store is None:
        return
    for event in events:
        try:
            notify_store_users(store, event)
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Dispatch of %s notification failed (store_id=%s)", event.type, store_id
            )


def notify_user(user_id: int, event: NotificationEvent, *, commit: bool = True) -> Notification:
    """Direct in-app notification for one user (no store fan-out, no email)."""
    notification = _add_notification(user_id, event)
    if commit:
        db.session.commit()
    return notification


def notify_super_admins(event: NotificationEvent, *, commit: bool = True) -> list[Notification]:
    admins = db.session.query(User.id).filter_by(role=ROLE_SUPER_ADMIN).all()
    created = [_add_notification(int(row[0]), event) for row in admins]
    if commit:
        db.session.commit()
    return created


# =============================================================================
# INBOX
# =============================================================================

def list_notifications(user_id: int, *, unread_only: bool = False, limit: int = 200) -> list[Notification]:
    q = db.session.query(Notification).filter_by(user_id=user_id)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(user_id: int, notification_id: int) -> Notification:
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found")
    if int(notification.user_id) != int(user_id):
        raise AuthorizationError("Forbidden")
    if notification.read_at is None:
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    count = db.session.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.read_at.is_(None),
    ).update({Notification.read_at: utcnow()}, synchronize_session=False)
    db.session.commit()
    return count


def clear_notifications(user_id: int) -> int:
    count = db.session.query(Notification).filter_by(user_id=user_id).delete(synchronize_session=False)
    db.session.commit()
    return count
