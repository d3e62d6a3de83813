# Overview: Stock ledger; records movements and maintains the current-stock projection.

"""
Stock Ledger Invariants (authoritative)

Ledger model:
- StockMovement rows are append-only facts; never updated or deleted.
- Product.current_stock is a projection of the ledger, written in the same
  transaction as the movement that changes it.

Movement semantics:
- in:          new = previous + quantity
- out:         new = previous - quantity   (quantity <= previous, else InsufficientStockError)
- transfer:    new = previous - quantity   (same rule as out; records to_store_id)
- adjustment:  new = quantity              (absolute correction, not a delta)

Low-stock crossing:
- Fires only when previous > minimum AND new <= minimum.
- Stock that stays at or below the minimum across several movements does
  not fire again.

Concurrency:
- The product row is read with SELECT ... FOR UPDATE and carries an
  optimistic version_id; a concurrent writer gets StaleDataError and the
  whole unit of work is retried from a fresh read.
- InsufficientStockError is raised before anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TRANSFER,
    VALID_MOVEMENT_TYPES,
)
from ..validation import NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .notification_service import dispatch_store_events, low_stock_event
from .tenant_service import AuthorizationError, TenantContext, require_store_of_owner


class StockError(Exception):
    """Raised for stock ledger rule violations."""


class InsufficientStockError(StockError):
    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__("Insufficient stock")
        self.product_id = product_id
        self.requested = requested
        self.available = available


@dataclass(frozen=True)
class MovementResult:
    movement: StockMovement
    low_stock_crossed: bool


def crossed_low_stock(previous_stock: int, new_stock: int, minimum_stock: int) -> bool:
    return previous_stock > minimum_stock and new_stock <= minimum_stock


def compute_new_stock(movement_type: str, previous_stock: int, quantity: int, *, product_id: int | None = None) -> int:
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}", {"type": "is invalid"})
    if quantity < 0:
        raise ValidationError("quantity must be >= 0", {"quantity": "must be >= 0"})

    if movement_type == MOVEMENT_IN:
        return previous_stock + quantity
    if movement_type in (MOVEMENT_OUT, MOVEMENT_TRANSFER):
        if quantity > previous_stock:
            raise InsufficientStockError(product_id, quantity, previous_stock)
        return previous_stock - quantity
    # MOVEMENT_ADJUSTMENT
    return quantity


def load_product_for_update(product_id: int) -> Product | None:
    return lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()


def apply_movement_locked(
    *,
    product: Product,
    movement_type: str,
    quantity: int,
    reason: str,
    actor_id: int,
    from_store_id: int | None = None,
    to_store_id: int | None = None,
    reference: str | None = None,
) -> MovementResult:
    """Core movement logic without locking, retry, or commit.

    The caller owns the transaction and must have loaded `product` through
    load_product_for_update(). Used by record_movement() and by invoice
    creation.
    """
    previous_stock = int(product.current_stock)
    new_stock = compute_new_stock(movement_type, previous_stock, quantity, product_id=product.id)

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reason=reason,
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        reference=reference,
        created_by=actor_id,
    )
    product.current_stock = new_stock
    db.session.add(movement)
    # flush emits the versioned UPDATE; a concurrent writer surfaces here
    db.session.flush()

    return MovementResult(
        movement=movement,
        low_stock_crossed=crossed_low_stock(previous_stock, new_stock, int(product.minimum_stock)),
    )


def record_movement(
    ctx: TenantContext,
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str,
    reference: str | None = None,
    to_store_id: int | None = None,
) -> StockMovement:
    """
    Record a manual stock movement for a product of the active store.

    Raises:
        NotFoundError: product does not exist
        AuthorizationError: product or destination store outside the tenant
        InsufficientStockError: out/transfer larger than current stock
    """
    def _op():
        product = load_product_for_update(product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if int(product.store_id) != int(ctx.store_id):
            raise AuthorizationError("Forbidden")

        if to_store_id is not None:
            if movement_type != MOVEMENT_TRANSFER:
                raise ValidationError("to_store_id is only allowed for transfer", {"to_store_id": "only allowed for transfer"})
            if int(to_store_id) == int(ctx.store_id):
                raise ValidationError("Cannot transfer to the same store", {"to_store_id": "must differ from the active store"})
            require_store_of_owner(to_store_id, ctx.owner_id)

        result = apply_movement_locked(
            product=product,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            actor_id=ctx.user_id,
            from_store_id=ctx.store_id,
            to_store_id=to_store_id,
            reference=reference,
        )
        events = [low_stock_event(product)] if result.low_stock_crossed else []
        db.session.commit()
        return result.movement, events

    movement, events = run_with_retry(_op)
    dispatch_store_events(ctx.store_id, events)
    return movement


def list_movements(store_id: int, *, product_id: int | None = None, limit: int = 200) -> list[StockMovement]:
    """Movements touching a store: as source, as destination, or on its products."""
    q = (
        db.session.query(StockMovement)
        .outerjoin(Product, Product.id == StockMovement.product_id)
        .filter(or_(
            StockMovement.from_store_id == store_id,
            StockMovement.to_store_id == store_id,
            Product.store_id == store_id,
        ))
    )
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def replay_stock(product_id: int) -> int | None:
    """
    Rebuild a product's stock from its ledger.

    Starts from the first movement's previous_stock and applies every
    movement in insertion order. Returns None when the product has no
    movements.
    """
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    if not movements:
        return None

    stock = int(movements[0].previous_stock)
    for movement in movements:
        if movement.type == MOVEMENT_IN:
            stock += movement.quantity
        elif movement.type in (MOVEMENT_OUT, MOVEMENT_TRANSFER):
            stock -= movement.quantity
        elif movement.type == MOVEMENT_ADJUSTMENT:
            stock = movement.quantity
    return stock


def find_projection_drift(store_id: int | None = None) -> list[dict]:
    """Products whose current_stock disagrees with their ledger replay."""
    q = db.session.query(Product)
    if store_id is not None:
        q = q.filter(Product.store_id == store_id)

    drift = []
    for product in q.order_by(Product.id).all():
        replayed = replay_stock(product.id)
        if replayed is not None and replayed != int(product.current_stock):
            drift.append({
                "product_id": product.id,
                "store_id": product.store_id,
                "current_stock": int(product.current_stock),
                "ledger_stock": replayed,
            })
    return drift

