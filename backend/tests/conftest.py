"""
Pytest fixtures for optistore backend tests.

Provides an in-memory database, tenant fixtures (two owners with one store
each), bearer-token helpers and a captured mail outbox.
"""

from decimal import Decimal

import pytest

from optistore import create_app
from optistore.config import Config
from optistore.extensions import db
from optistore.models import Client, Product, Store, StoreMember, User
from optistore.models.auth import ROLE_ADMIN, ROLE_STAFF, ROLE_SUPER_ADMIN
from optistore.services import session_service
from optistore.services.tenant_service import TenantContext


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    FRONTEND_URL = "https://app.optistore.test,http://localhost:8080"
    SMTP_HOST = None
    TRIAL_DAYS = 14


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app):
    """Capture outgoing mail as (to, subject, body) tuples."""
    sent = []

    def sender(to_email, subject, body):
        sent.append((to_email, subject, body))

    app.config["MAIL_SENDER"] = sender
    yield sent
    app.config["MAIL_SENDER"] = None


@pytest.fixture(scope='function')
def owner(db_session):
    """Owner account A (first tenant)."""
    user = User(email="owner_a@optic.ma", first_name="Sara", last_name="Alaoui", role=ROLE_ADMIN, max_stores=2)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_owner(db_session):
    """Owner account B (second tenant)."""
    user = User(email="owner_b@vision.ma", first_name="Karim", role=ROLE_ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def super_admin(db_session):
    user = User(email="root@platform.ma", first_name="Platform", role=ROLE_SUPER_ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def store(db_session, owner):
    """Store A1 owned by owner A."""
    store = Store(owner_id=owner.id, name="Optique Centre", email="centre@optic.ma", invoice_prefix="OC")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def second_store(db_session, owner):
    """Store A2, same owner as store A1."""
    store = Store(owner_id=owner.id, name="Optique Marina", email="marina@optic.ma")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session, other_owner):
    """Store B1 owned by owner B."""
    store = Store(owner_id=other_owner.id, name="Vision Plus", email="contact@vision.ma")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def staff(db_session, owner, store):
    user = User(email="staff@optic.ma", first_name="Yassine", role=ROLE_STAFF, owner_id=owner.id)
    db_session.add(user)
    db_session.flush()
    db_session.add(StoreMember(store_id=store.id, user_id=user.id))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session, owner):
    client = Client(owner_id=owner.id, first_name="Nadia", last_name="Bennani", phone="0600000000")
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture(scope='function')
def other_customer(db_session, other_owner):
    client = Client(owner_id=other_owner.id, first_name="Omar")
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture(scope='function')
def product(db_session, store):
    """Frames in store A1: 10 in stock, alert at 5."""
    product = Product(
        store_id=store.id,
        reference="RB-3025",
        name="Ray-Ban Aviator",
        selling_price=Decimal("100.00"),
        current_stock=10,
        minimum_stock=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session, other_store):
    product = Product(store_id=other_store.id, reference="OK-001", name="Oakley Frogskins", current_stock=3)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def ctx(owner, store):
    """Tenant context of owner A acting in store A1."""
    return TenantContext(store_id=store.id, owner_id=owner.id, user_id=owner.id)


def make_product(db_session, store, *, reference, stock, minimum=0, name=None):
    product = Product(
        store_id=store.id,
        reference=reference,
        name=name or reference,
        current_stock=stock,
        minimum_stock=minimum,
    )
    db_session.add(product)
    db_session.commit()
    return product


def issue_token(user) -> str:
    """Helper to get a bearer token for a user."""
    _, token = session_service.create_session(user.id)
    return token


def auth_headers(token: str, store_id: int | None = None) -> dict:
    """Helper to create Authorization (and active store) headers."""
    headers = {'Authorization': f'Bearer {token}'}
    if store_id is not None:
        headers['X-Store-Id'] = str(store_id)
    return headers
