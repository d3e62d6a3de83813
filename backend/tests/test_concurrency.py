# Overview: Concurrency tests for per-product stock serialization and unit-of-work retries.

"""
Concurrency Tests

Covers:
- Parallel sales and manual movements on one product against a file-backed
  SQLite database: no lost decrement, one distinct previous_stock per movement
- A write on a stale product version is rolled back and retried
- run_with_retry backoff, exhaustion and non-retryable errors
"""

import logging
import threading
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from optistore import create_app
from optistore.extensions import db
from optistore.models import Client, Invoice, Product, StockMovement, Store, User
from optistore.models.auth import ROLE_ADMIN
from optistore.models.inventory import MOVEMENT_OUT
from optistore.services import concurrency, invoice_service, stock_service
from optistore.services.concurrency import run_with_retry
from optistore.services.tenant_service import TenantContext
from optistore.validation import CartLine, InvoiceDraft

from conftest import TestConfig as BaseConfig

THREADS = 8
INITIAL_STOCK = 40


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file database so each thread gets its own connection."""
    class FileConfig(BaseConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(concurrency.time, "sleep", sleeps.append)
    return sleeps


def seed_store(app):
    with app.app_context():
        owner = User(email="owner@concurrency.ma", first_name="Sara", role=ROLE_ADMIN)
        db.session.add(owner)
        db.session.flush()
        store = Store(owner_id=owner.id, name="Optique Concurrency", invoice_prefix="CC")
        db.session.add(store)
        db.session.flush()
        client = Client(owner_id=owner.id, first_name="Nadia")
        product = Product(
            store_id=store.id,
            reference="CC-1",
            name="Concurrent Frame",
            selling_price=Decimal("100.00"),
            current_stock=INITIAL_STOCK,
            minimum_stock=0,
        )
        db.session.add_all([client, product])
        db.session.commit()
        ctx = TenantContext(store_id=store.id, owner_id=owner.id, user_id=owner.id)
        return ctx, client.id, product.id


def test_parallel_sales_and_movements_on_one_product(file_app):
    ctx, client_id, product_id = seed_store(file_app)
    errors = []
    lock = threading.Lock()

    def worker(index):
        with file_app.app_context():
            try:
                if index % 2:
                    stock_service.record_movement(
                        ctx, product_id=product_id, movement_type=MOVEMENT_OUT, quantity=1, reason="Breakage",
                    )
                else:
                    line = CartLine(product_id=product_id, product_name="Concurrent Frame", quantity=1, unit_price=Decimal("100"))
                    invoice_service.create_invoice(ctx, InvoiceDraft(client_id=client_id, lines=(line,)))
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(THREADS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with file_app.app_context():
        product = db.session.get(Product, product_id)
        movements = db.session.query(StockMovement).filter_by(product_id=product_id).all()

        assert product.current_stock == INITIAL_STOCK - THREADS
        assert len(movements) == THREADS
        assert sorted(m.previous_stock for m in movements) == list(range(INITIAL_STOCK - THREADS + 1, INITIAL_STOCK + 1))
        assert all(m.new_stock == m.previous_stock - 1 for m in movements)
        assert db.session.query(Invoice).count() == THREADS // 2


def test_stale_product_version_is_retried(db_session, ctx, product, monkeypatch, no_sleep, caplog):
    real_load = stock_service.load_product_for_update
    loads = []

    def load_then_concurrent_write(product_id):
        loaded = real_load(product_id)
        loads.append(loaded.version_id)
        if len(loads) == 1:
            # a concurrent writer bumps the row version after our read
            db.session.execute(
                text("UPDATE products SET version_id = version_id + 1 WHERE id = :id"),
                {"id": product_id},
            )
        return loaded

    monkeypatch.setattr(stock_service, "load_product_for_update", load_then_concurrent_write)
    with caplog.at_level(logging.WARNING):
        movement = stock_service.record_movement(
            ctx, product_id=product.id, movement_type=MOVEMENT_OUT, quantity=3, reason="Breakage",
        )

    assert len(loads) == 2
    assert no_sleep == [0.1]
    assert "Retrying unit of work after StaleDataError" in caplog.text
    assert (movement.previous_stock, movement.new_stock) == (10, 7)
    assert db_session.get(Product, product.id).current_stock == 7
    assert db_session.query(StockMovement).count() == 1


class TestRunWithRetry:
    def test_gives_up_after_attempts(self, db_session, no_sleep):
        calls = []

        def always_stale():
            calls.append(1)
            raise StaleDataError("row changed")

        with pytest.raises(StaleDataError):
            run_with_retry(always_stale, attempts=3)

        assert len(calls) == 3
        assert no_sleep == [0.1, 0.2]

    def test_other_errors_are_not_retried(self, db_session, no_sleep):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken)

        assert len(calls) == 1
        assert no_sleep == []

    def test_returns_after_transient_failure(self, db_session, no_sleep):
        outcomes = iter([StaleDataError("row changed"), "done"])

        def flaky():
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert run_with_retry(flaky) == "done"
        assert no_sleep == [0.1]
