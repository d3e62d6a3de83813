# Overview: Subscription windows per owner account and the payment-request review flow.

"""
Subscription Manager

Anchoring rule (extend):
- mode=add and current expiry in the future -> new expiry = current expiry + amount
- otherwise (set, expired, or no expiry)    -> new expiry = now + amount
- no subscription yet                       -> a new row starting now

Renewing early therefore never loses paid time, and renewing late never
backdates. Months clamp to the end of the target month (Jan 31 + 1 = Feb 28/29).

Payment requests:
- submitted by an owner as pending, reviewed by a super admin
- approve/reject only act on pending requests; any other state is returned
  unchanged so a double click cannot extend twice
- approval extends by months_requested with the add rule, reactivates the
  owner and applies the matching offer's store_limit to max_stores
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import PaymentRequest, Subscription, SubscriptionOffer, User
from ..models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN
from ..models.subscriptions import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_EXPIRED,
)
from ..money import money2
from ..time_utils import add_months, utcnow
from ..validation import NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .notification_service import (
    EVENT_PAYMENT_APPROVED,
    EVENT_PAYMENT_REJECTED,
    EVENT_PAYMENT_REQUEST,
    NotificationEvent,
    notify_super_admins,
    notify_user,
)
from .tenant_service import AuthorizationError


UNIT_DAYS = "days"
UNIT_MONTHS = "months"
VALID_UNITS = (UNIT_DAYS, UNIT_MONTHS)

MODE_ADD = "add"
MODE_SET = "set"
VALID_MODES = (MODE_ADD, MODE_SET)

SUBSCRIPTION_LINK = "/subscription"


def _shift(base: datetime, unit: str, amount: int) -> datetime:
    if unit == UNIT_MONTHS:
        return add_months(base, amount)
    return base + timedelta(days=amount)


def get_current_subscription(owner_id: int, *, lock: bool = False) -> Subscription | None:
    q = (
        db.session.query(Subscription)
        .filter_by(owner_id=owner_id)
        .order_by(Subscription.expiry_date.desc(), Subscription.id.desc())
    )
    if lock:
        q = lock_for_update(q)
    return q.first()


def is_subscription_active(subscription: Subscription | None, now: datetime | None = None) -> bool:
    if subscription is None or subscription.expiry_date is None:
        return False
    now = now or utcnow()
    return subscription.status == SUBSCRIPTION_ACTIVE and subscription.expiry_date > now


def subscription_status(owner_id: int) -> dict:
    subscription = get_current_subscription(owner_id)
    return {
        "subscription": subscription.to_dict() if subscription else None,
        "is_active": is_subscription_active(subscription),
    }


def _extend_locked(owner_id: int, unit: str, amount: int, mode: str, now: datetime) -> Subscription:
    if unit not in VALID_UNITS:
        raise ValidationError(f"unit must be one of {', '.join(VALID_UNITS)}", {"unit": "is invalid"})
    if mode not in VALID_MODES:
        raise ValidationError(f"action must be one of {', '.join(VALID_MODES)}", {"action": "is invalid"})
    if amount < 0:
        raise ValidationError(f"{unit} must be >= 0", {unit: "must be >= 0"})

    subscription = get_current_subscription(owner_id, lock=True)
    if subscription is None:
        subscription = Subscription(
            owner_id=owner_id,
            start_date=now,
            expiry_date=_shift(now, unit, amount),
            status=SUBSCRIPTION_ACTIVE,
        )
        db.session.add(subscription)
        db.session.flush()
        return subscription

    current_expiry = subscription.expiry_date
    if mode == MODE_ADD and current_expiry is not None and current_expiry > now:
        base = current_expiry
    else:
        base = now

    subscription.expiry_date = _shift(base, unit, amount)
    subscription.status = SUBSCRIPTION_ACTIVE
    if subscription.start_date is None:
        subscription.start_date = now
    db.session.flush()
    return subscription


def _activate_owner(owner: User) -> None:
    owner.is_pending_approval = False
    owner.is_active = True


def extend_subscription(owner_id: int, *, unit: str, amount: int, mode: str = MODE_ADD) -> Subscription:
    """Extend (add) or reset (set) an owner's subscription window."""
    def _op():
        subscription = _extend_locked(owner_id, unit, amount, mode, utcnow())
        db.session.commit()
        return subscription

    return run_with_retry(_op)


# =============================================================================
# PLATFORM ADMIN
# =============================================================================

def get_owner_account(owner_id: int) -> User:
    """Owner accounts are top-level admins; anything else is reported as missing."""
    owner = db.session.get(User, owner_id)
    if owner is None or owner.role != ROLE_ADMIN or owner.owner_id is not None:
        raise NotFoundError("Owner not found")
    return owner


def admin_update_subscription(owner_id: int, *, action: str, days: int) -> Subscription:
    def _op():
        owner = get_owner_account(owner_id)
        subscription = _extend_locked(owner.id, UNIT_DAYS, days, action, utcnow())
        _activate_owner(owner)
        db.session.commit()
        return subscription

    subscription = run_with_retry(_op)
    current_app.logger.info(
        "Subscription for owner %s updated (%s %s days, expires %s)",
        owner_id, action, days, subscription.expiry_date,
    )
    return subscription


def approve_owner(owner_id: int) -> User:
    """Activate a pending owner; first approval grants a trial window."""
    def _op():
        owner = get_owner_account(owner_id)
        _activate_owner(owner)
        if get_current_subscription(owner.id) is None:
            trial_days = int(current_app.config.get("TRIAL_DAYS", 14))
            _extend_locked(owner.id, UNIT_DAYS, trial_days, MODE_SET, utcnow())
        db.session.commit()
        return owner

    return run_with_retry(_op)


def expire_lapsed_subscriptions(now: datetime | None = None) -> int:
    now = now or utcnow()
    count = db.session.query(Subscription).filter(
        Subscription.status == SUBSCRIPTION_ACTIVE,
        Subscription.expiry_date.isnot(None),
        Subscription.expiry_date <= now,
    ).update(
        {Subscription.status: SUBSCRIPTION_EXPIRED, Subscription.version_id: Subscription.version_id + 1},
        synchronize_session=False,
    )
    db.session.commit()
    return count


# =============================================================================
# PAYMENT REQUESTS
# =============================================================================

def _payment_request_event(event_type: str, title: str, message: str, request: PaymentRequest) -> NotificationEvent:
    return NotificationEvent(
        type=event_type,
        title=title,
        message=message,
        link=SUBSCRIPTION_LINK,
        data={"payment_request_id": request.id},
    )


def _notify_safely(fn, *args) -> None:
    """Platform notifications are best-effort after the review commits."""
    try:
        fn(*args)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment request notification failed")


def create_payment_request(
    user: User,
    *,
    months_requested: int,
    amount,
    proof: str,
    plan_key: str | None = None,
) -> PaymentRequest:
    if user.role != ROLE_ADMIN:
        raise AuthorizationError("Only owner accounts can submit payment requests")

    request = PaymentRequest(
        user_id=user.id,
        user_email=user.email,
        user_name=user.full_name,
        amount=money2(amount),
        months_requested=months_requested,
        plan_key=plan_key,
        proof=proof,
        status=REQUEST_PENDING,
        submitted_at=utcnow(),
    )
    db.session.add(request)
    db.session.commit()

    event = _payment_request_event(
        EVENT_PAYMENT_REQUEST,
        "New payment request",
        f"{request.user_name} submitted a payment request.",
        request,
    )
    _notify_safely(notify_super_admins, event)
    return request


def list_payment_requests(user: User, *, status: str | None = None) -> list[PaymentRequest]:
    q = db.session.query(PaymentRequest)
    if user.role != ROLE_SUPER_ADMIN:
        q = q.filter(PaymentRequest.user_id == user.id)
    if status:
        q = q.filter(PaymentRequest.status == status)
    return q.order_by(PaymentRequest.submitted_at.desc(), PaymentRequest.id.desc()).all()


def _load_request_for_update(request_id: int) -> PaymentRequest:
    request = lock_for_update(db.session.query(PaymentRequest).filter_by(id=request_id)).first()
    if request is None:
        raise NotFoundError("Payment request not found")
    return request


def _apply_offer(owner: User, plan_key: str | None) -> None:
    if not plan_key:
        return
    offer = db.session.query(SubscriptionOffer).filter_by(key=plan_key).first()
    if offer is not None and offer.store_limit is not None:
        owner.max_stores = offer.store_limit


def approve_payment_request(request_id: int, reviewer: User) -> PaymentRequest:
    def _op():
        request = _load_request_for_update(request_id)
        if request.status != REQUEST_PENDING:
            return request, False

        now = utcnow()
        request.status = REQUEST_APPROVED
        request.processed_at = now
        request.processed_by = reviewer.id

        _extend_locked(request.user_id, UNIT_MONTHS, int(request.months_requested), MODE_ADD, now)

        owner = db.session.get(User, request.user_id)
        if owner is not None:
            _activate_owner(owner)
            _apply_offer(owner, request.plan_key)

        db.session.commit()
        return request, True

    request, changed = run_with_retry(_op)
    if changed:
        current_app.logger.info(
            "Payment request %s approved by user %s (+%s months)",
            request.id, reviewer.id, request.months_requested,
        )
        event = _payment_request_event(
            EVENT_PAYMENT_APPROVED,
            "Payment approved",
            "Your payment request has been approved.",
            request,
        )
        _notify_safely(notify_user, request.user_id, event)
    return request


def reject_payment_request(request_id: int, reviewer: User, *, reason: str | None = None) -> PaymentRequest:
    def _op():
        request = _load_request_for_update(request_id)
        if request.status != REQUEST_PENDING:
            return request, False

        request.status = REQUEST_REJECTED
        request.processed_at = utcnow()
        request.processed_by = reviewer.id
        request.rejection_reason = reason
        db.session.commit()
        return request, True

    request, changed = run_with_retry(_op)
    if changed:
        message = "Your payment request has been rejected."
        if request.rejection_reason:
            message = f"Your payment request has been rejected: {request.rejection_reason}"
        event = _payment_request_event(EVENT_PAYMENT_REJECTED, "Payment rejected", message, request)
        _notify_safely(notify_user, request.user_id, event)
    return request
