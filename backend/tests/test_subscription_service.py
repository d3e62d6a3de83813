# Overview: Pytest coverage for subscription windows and payment-request review.

"""
Subscription Tests

Covers:
- Anchoring: early renewal extends from the current expiry, late renewal from now
- set mode resets from now
- Month arithmetic clamps to the end of the month
- Owner approval with trial window
- Payment requests: submit, approve (extend + offer quota), reject, double review
- Lapsed subscriptions are marked expired
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from optistore.models import Notification, Subscription, SubscriptionOffer
from optistore.services import subscription_service
from optistore.services.subscription_service import MODE_ADD, MODE_SET, UNIT_DAYS, UNIT_MONTHS
from optistore.services.tenant_service import AuthorizationError
from optistore.time_utils import utcnow
from optistore.validation import NotFoundError, ValidationError


def give_subscription(db_session, owner, *, expires_in_days, status="active"):
    now = utcnow()
    subscription = Subscription(
        owner_id=owner.id,
        start_date=now - timedelta(days=30),
        expiry_date=now + timedelta(days=expires_in_days),
        status=status,
    )
    db_session.add(subscription)
    db_session.commit()
    return subscription


def close_to(actual, expected, seconds=5):
    return abs((actual - expected).total_seconds()) <= seconds


class TestExtend:
    def test_early_renewal_keeps_remaining_time(self, db_session, owner):
        subscription = give_subscription(db_session, owner, expires_in_days=10)
        previous_expiry = subscription.expiry_date

        updated = subscription_service.extend_subscription(owner.id, unit=UNIT_DAYS, amount=30, mode=MODE_ADD)

        assert updated.id == subscription.id
        assert updated.expiry_date == previous_expiry + timedelta(days=30)
        assert updated.status == "active"

    def test_late_renewal_anchors_to_now(self, db_session, owner):
        give_subscription(db_session, owner, expires_in_days=-5, status="expired")

        updated = subscription_service.extend_subscription(owner.id, unit=UNIT_DAYS, amount=30, mode=MODE_ADD)

        assert close_to(updated.expiry_date, utcnow() + timedelta(days=30))
        assert updated.status == "active"

    def test_set_mode_ignores_remaining_time(self, db_session, owner):
        give_subscription(db_session, owner, expires_in_days=100)

        updated = subscription_service.extend_subscription(owner.id, unit=UNIT_DAYS, amount=7, mode=MODE_SET)

        assert close_to(updated.expiry_date, utcnow() + timedelta(days=7))

    def test_creates_subscription_when_none(self, db_session, owner):
        created = subscription_service.extend_subscription(owner.id, unit=UNIT_MONTHS, amount=1)

        assert created.start_date is not None
        assert created.expiry_date > created.start_date
        assert db_session.query(Subscription).filter_by(owner_id=owner.id).count() == 1

    def test_month_clamp(self, db_session, owner):
        subscription = give_subscription(db_session, owner, expires_in_days=1)
        subscription.expiry_date = datetime(2099, 1, 31, 12, 0, 0)
        db_session.commit()

        updated = subscription_service.extend_subscription(owner.id, unit=UNIT_MONTHS, amount=1)

        assert updated.expiry_date == datetime(2099, 2, 28, 12, 0, 0)

    def test_latest_expiry_row_is_current(self, db_session, owner):
        give_subscription(db_session, owner, expires_in_days=-40, status="expired")
        newer = give_subscription(db_session, owner, expires_in_days=20)

        assert subscription_service.get_current_subscription(owner.id).id == newer.id
        assert subscription_service.subscription_status(owner.id)["is_active"] is True

    def test_invalid_inputs(self, db_session, owner):
        with pytest.raises(ValidationError):
            subscription_service.extend_subscription(owner.id, unit="weeks", amount=1)
        with pytest.raises(ValidationError):
            subscription_service.extend_subscription(owner.id, unit=UNIT_DAYS, amount=1, mode="replace")
        with pytest.raises(ValidationError):
            subscription_service.extend_subscription(owner.id, unit=UNIT_DAYS, amount=-1)


class TestAdmin:
    def test_admin_update_reactivates_owner(self, db_session, owner):
        owner.is_active = False
        owner.is_pending_approval = True
        db_session.commit()

        subscription = subscription_service.admin_update_subscription(owner.id, action="add", days=30)

        db_session.refresh(owner)
        assert owner.is_active is True
        assert owner.is_pending_approval is False
        assert close_to(subscription.expiry_date, utcnow() + timedelta(days=30))

    def test_admin_update_rejects_staff_account(self, db_session, staff):
        with pytest.raises(NotFoundError):
            subscription_service.admin_update_subscription(staff.id, action="add", days=30)

    def test_approve_owner_grants_trial_once(self, db_session, owner):
        owner.is_pending_approval = True
        db_session.commit()

        subscription_service.approve_owner(owner.id)
        first = subscription_service.get_current_subscription(owner.id)
        assert close_to(first.expiry_date, utcnow() + timedelta(days=14))

        subscription_service.approve_owner(owner.id)
        assert db_session.query(Subscription).filter_by(owner_id=owner.id).count() == 1
        assert owner.is_pending_approval is False

    def test_expire_lapsed(self, db_session, owner, other_owner):
        lapsed = give_subscription(db_session, owner, expires_in_days=-1)
        running = give_subscription(db_session, other_owner, expires_in_days=3)

        assert subscription_service.expire_lapsed_subscriptions() == 1

        db_session.refresh(lapsed)
        db_session.refresh(running)
        assert lapsed.status == "expired"
        assert running.status == "active"
        assert subscription_service.is_subscription_active(lapsed) is False


class TestPaymentRequests:
    def _submit(self, owner, months=3, plan_key=None):
        return subscription_service.create_payment_request(
            owner, months_requested=months, amount=Decimal("600"), proof="virement-2026-10.pdf", plan_key=plan_key,
        )

    def test_submit_notifies_super_admins(self, db_session, owner, super_admin):
        request = self._submit(owner)

        assert request.status == "pending"
        assert request.user_email == "owner_a@optic.ma"
        assert request.user_name == "Sara Alaoui"
        notes = db_session.query(Notification).filter_by(user_id=super_admin.id, type="payment_request").all()
        assert len(notes) == 1
        assert notes[0].data == {"payment_request_id": request.id}

    def test_only_owner_accounts_submit(self, db_session, staff):
        with pytest.raises(AuthorizationError):
            self._submit(staff)

    def test_approve_extends_and_applies_offer(self, db_session, owner, super_admin):
        db_session.add(SubscriptionOffer(key="multi", label="Multi-store", store_limit=5))
        db_session.commit()
        subscription = give_subscription(db_session, owner, expires_in_days=10)
        previous_expiry = subscription.expiry_date
        request = self._submit(owner, months=2, plan_key="multi")

        approved = subscription_service.approve_payment_request(request.id, super_admin)

        assert approved.status == "approved"
        assert approved.processed_by == super_admin.id
        assert approved.processed_at is not None
        db_session.refresh(subscription)
        db_session.refresh(owner)
        assert subscription.expiry_date > previous_expiry + timedelta(days=58)
        assert owner.max_stores == 5
        assert db_session.query(Notification).filter_by(user_id=owner.id, type="payment_approved").count() == 1

    def test_unknown_plan_keeps_quota(self, db_session, owner, super_admin):
        request = self._submit(owner, plan_key="does-not-exist")
        subscription_service.approve_payment_request(request.id, super_admin)
        db_session.refresh(owner)
        assert owner.max_stores == 2

    def test_double_approve_extends_once(self, db_session, owner, super_admin):
        request = self._submit(owner, months=1)

        subscription_service.approve_payment_request(request.id, super_admin)
        expiry = subscription_service.get_current_subscription(owner.id).expiry_date
        again = subscription_service.approve_payment_request(request.id, super_admin)

        assert again.status == "approved"
        assert subscription_service.get_current_subscription(owner.id).expiry_date == expiry
        assert db_session.query(Notification).filter_by(user_id=owner.id, type="payment_approved").count() == 1

    def test_reject(self, db_session, owner, super_admin):
        request = self._submit(owner)

        rejected = subscription_service.reject_payment_request(request.id, super_admin, reason="Unreadable proof")

        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Unreadable proof"
        assert subscription_service.get_current_subscription(owner.id) is None
        note = db_session.query(Notification).filter_by(user_id=owner.id, type="payment_rejected").one()
        assert "Unreadable proof" in note.message

    def test_rejected_request_cannot_be_approved(self, db_session, owner, super_admin):
        request = self._submit(owner)
        subscription_service.reject_payment_request(request.id, super_admin)

        result = subscription_service.approve_payment_request(request.id, super_admin)

        assert result.status == "rejected"
        assert subscription_service.get_current_subscription(owner.id) is None

    def test_unknown_request(self, db_session, super_admin):
        with pytest.raises(NotFoundError):
            subscription_service.approve_payment_request(999, super_admin)

    def test_listing_scoped_to_submitter(self, db_session, owner, other_owner, super_admin):
        mine = self._submit(owner)
        self._submit(other_owner)

        assert [r.id for r in subscription_service.list_payment_requests(owner)] == [mine.id]
        assert len(subscription_service.list_payment_requests(super_admin)) == 2
        assert subscription_service.list_payment_requests(super_admin, status="approved") == []
