# Overview: Pytest coverage for the stock ledger service.

"""
Stock Ledger Tests

Covers:
- Movement arithmetic per type (in, out, transfer, adjustment)
- InsufficientStockError leaves no trace (no movement, stock unchanged)
- Low-stock crossing fires once per crossing, deduplicated while unread
- Projection equals ledger replay after a sequence of movements
- Tenant checks on product and transfer destination
"""

import pytest

from optistore.models import Notification, StockMovement
from optistore.services import stock_service
from optistore.services.stock_service import (
    InsufficientStockError,
    compute_new_stock,
    crossed_low_stock,
)
from optistore.services.tenant_service import AuthorizationError, TenantContext
from optistore.validation import NotFoundError, ValidationError

from conftest import make_product


class TestComputeNewStock:
    def test_in_adds(self):
        assert compute_new_stock("in", 3, 4) == 7

    def test_out_subtracts(self):
        assert compute_new_stock("out", 10, 4) == 6

    def test_transfer_subtracts(self):
        assert compute_new_stock("transfer", 10, 10) == 0

    def test_adjustment_is_absolute(self):
        assert compute_new_stock("adjustment", 10, 3) == 3
        assert compute_new_stock("adjustment", 2, 0) == 0

    def test_out_beyond_stock_raises(self):
        with pytest.raises(InsufficientStockError) as exc:
            compute_new_stock("out", 2, 3, product_id=7)
        assert exc.value.product_id == 7
        assert exc.value.available == 2
        assert exc.value.requested == 3
        assert str(exc.value) == "Insufficient stock"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            compute_new_stock("loss", 2, 1)


class TestCrossing:
    def test_strict_crossing(self):
        assert crossed_low_stock(6, 5, 5) is True
        assert crossed_low_stock(10, 0, 5) is True

    def test_no_crossing_when_already_low(self):
        assert crossed_low_stock(5, 4, 5) is False
        assert crossed_low_stock(3, 2, 5) is False

    def test_no_crossing_when_staying_above(self):
        assert crossed_low_stock(10, 6, 5) is False


class TestRecordMovement:
    def test_out_records_fact_and_projection(self, db_session, ctx, product):
        movement = stock_service.record_movement(
            ctx, product_id=product.id, movement_type="out", quantity=3, reason="Breakage",
        )

        db_session.refresh(product)
        assert product.current_stock == 7
        assert movement.previous_stock == 10
        assert movement.new_stock == 7
        assert movement.from_store_id == ctx.store_id
        assert movement.created_by == ctx.user_id

    def test_insufficient_stock_has_no_side_effects(self, db_session, ctx, product):
        with pytest.raises(InsufficientStockError):
            stock_service.record_movement(
                ctx, product_id=product.id, movement_type="out", quantity=11, reason="Sale",
            )

        db_session.refresh(product)
        assert product.current_stock == 10
        assert db_session.query(StockMovement).count() == 0

    def test_adjustment_to_zero(self, db_session, ctx, product):
        movement = stock_service.record_movement(
            ctx, product_id=product.id, movement_type="adjustment", quantity=0, reason="Inventory count",
        )
        db_session.refresh(product)
        assert product.current_stock == 0
        assert movement.previous_stock == 10
        assert movement.new_stock == 0

    def test_unknown_product(self, db_session, ctx):
        with pytest.raises(NotFoundError):
            stock_service.record_movement(ctx, product_id=999, movement_type="in", quantity=1, reason="x")

    def test_foreign_product_forbidden(self, db_session, ctx, other_product):
        with pytest.raises(AuthorizationError):
            stock_service.record_movement(
                ctx, product_id=other_product.id, movement_type="in", quantity=1, reason="x",
            )
        db_session.refresh(other_product)
        assert other_product.current_stock == 3

    def test_transfer_to_sibling_store(self, db_session, ctx, product, second_store):
        movement = stock_service.record_movement(
            ctx,
            product_id=product.id,
            movement_type="transfer",
            quantity=4,
            reason="Rebalance",
            to_store_id=second_store.id,
        )
        db_session.refresh(product)
        assert product.current_stock == 6
        assert movement.to_store_id == second_store.id

    def test_transfer_to_foreign_store_forbidden(self, db_session, ctx, product, other_store):
        with pytest.raises(AuthorizationError):
            stock_service.record_movement(
                ctx,
                product_id=product.id,
                movement_type="transfer",
                quantity=1,
                reason="Rebalance",
                to_store_id=other_store.id,
            )
        db_session.refresh(product)
        assert product.current_stock == 10

    def test_transfer_to_same_store_rejected(self, db_session, ctx, product, store):
        with pytest.raises(ValidationError):
            stock_service.record_movement(
                ctx,
                product_id=product.id,
                movement_type="transfer",
                quantity=1,
                reason="Rebalance",
                to_store_id=store.id,
            )


class TestLowStockNotifications:
    def _low_stock_count(self, db_session, user_id):
        return db_session.query(Notification).filter_by(
            user_id=user_id, type="low_stock", read_at=None,
        ).count()

    def test_fires_once_per_crossing(self, db_session, ctx, owner, store, outbox):
        product = make_product(db_session, store, reference="LENS-1", stock=6, minimum=5)

        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=1, reason="Sale")
        assert self._low_stock_count(db_session, owner.id) == 1

        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=1, reason="Sale")
        assert self._low_stock_count(db_session, owner.id) == 1

        db_session.refresh(product)
        assert product.current_stock == 4

    def test_already_at_minimum_does_not_fire(self, db_session, ctx, owner, store, outbox):
        product = make_product(db_session, store, reference="LENS-2", stock=5, minimum=5)

        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=1, reason="Sale")

        assert self._low_stock_count(db_session, owner.id) == 0

    def test_new_crossing_after_restock_is_deduplicated_while_unread(self, db_session, ctx, owner, store, outbox):
        product = make_product(db_session, store, reference="LENS-3", stock=6, minimum=5)

        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=2, reason="Sale")
        stock_service.record_movement(ctx, product_id=product.id, movement_type="in", quantity=5, reason="Delivery")
        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=5, reason="Sale")

        assert self._low_stock_count(db_session, owner.id) == 1

    def test_members_and_owner_notified(self, db_session, ctx, owner, staff, store, outbox):
        product = make_product(db_session, store, reference="LENS-4", stock=6, minimum=5)

        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=1, reason="Sale")

        assert self._low_stock_count(db_session, owner.id) == 1
        assert self._low_stock_count(db_session, staff.id) == 1
        # one email per event, to the store address
        assert [m[0] for m in outbox] == ["centre@optic.ma"]


class TestLedgerReplay:
    def test_projection_matches_replay(self, db_session, ctx, product, second_store):
        stock_service.record_movement(ctx, product_id=product.id, movement_type="in", quantity=5, reason="Delivery")
        stock_service.record_movement(ctx, product_id=product.id, movement_type="out", quantity=3, reason="Sale")
        stock_service.record_movement(
            ctx, product_id=product.id, movement_type="transfer", quantity=2, reason="Rebalance",
            to_store_id=second_store.id,
        )
        stock_service.record_movement(ctx, product_id=product.id, movement_type="in", quantity=1, reason="Delivery")

        db_session.refresh(product)
        assert product.current_stock == 10 + 5 + 1 - 3 - 2
        assert stock_service.replay_stock(product.id) == product.current_stock
        assert stock_service.find_projection_drift(ctx.store_id) == []

    def test_drift_detected(self, db_session, ctx, product):
        stock_service.record_movement(ctx, product_id=product.id, movement_type="in", quantity=2, reason="t")
        product.current_stock = 99
        db_session.commit()

        drift = stock_service.find_projection_drift(ctx.store_id)
        assert drift == [{
            "product_id": product.id,
            "store_id": ctx.store_id,
            "current_stock": 99,
            "ledger_stock": 12,
        }]

    def test_list_movements_scoped_to_store(self, db_session, ctx, product, other_owner, other_product, other_store):
        stock_service.record_movement(ctx, product_id=product.id, movement_type="in", quantity=1, reason="t")
        other_ctx = TenantContext(store_id=other_store.id, owner_id=other_owner.id, user_id=other_owner.id)
        stock_service.record_movement(other_ctx, product_id=other_product.id, movement_type="in", quantity=1, reason="t")

        movements = stock_service.list_movements(ctx.store_id)
        assert [m.product_id for m in movements] == [product.id]
