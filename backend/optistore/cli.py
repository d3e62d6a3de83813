# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/optistore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Accounts:
# - python -m flask users create --email owner@shop.ma --role admin --first-name Sara
# - python -m flask users create --email staff@shop.ma --role staff --owner-id 2
# - python -m flask stores create --owner-id 2 --name "Main Street" --prefix MS
# - python -m flask stores add-member --store-id 1 --user-id 3
# - python -m flask sessions issue --user-id 2 [--ttl-hours 24]
#   Print a bearer token for the API (password login lives outside this service).
# - python -m flask sessions revoke --token <token>
#
# Billing:
# - python -m flask offers create --key pro --label "Pro" --store-limit 3 --monthly-price 299
# - python -m flask subscriptions expire
#   Flip lapsed active subscriptions to expired.
#
# Stock:
# - python -m flask stock verify [--store-id 1]
#   Compare every product's current stock with a replay of its movements.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, StoreMember, StoreSetting, SubscriptionOffer, User
from .models.auth import ROLE_ADMIN, ROLE_STAFF, VALID_ROLES
from .money import D
from .services import session_service, stock_service, subscription_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# ACCOUNTS
# =============================================================================

@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--first-name', default=None)
@click.option('--last-name', default=None)
@click.option('--owner-id', type=int, default=None, help='Owner account (required for staff)')
@click.option('--max-stores', type=int, default=1, show_default=True)
@with_appcontext
def create_user_cli(email, role, first_name, last_name, owner_id, max_stores):
    """Create a user. Staff must name their owner account."""
    if role == ROLE_STAFF:
        owner = db.session.get(User, owner_id) if owner_id else None
        if owner is None or owner.role != ROLE_ADMIN:
            click.echo("FAIL Staff users need --owner-id pointing at an admin account")
            return
    elif owner_id:
        click.echo("FAIL --owner-id is only valid for staff users")
        return

    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL A user with email {email} already exists")
        return

    user = User(
        email=email,
        role=role,
        first_name=first_name,
        last_name=last_name,
        owner_id=owner_id,
        max_stores=max_stores,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.id}: {email} ({role})")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--owner-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--email', default=None, help='Store notification address')
@click.option('--prefix', default=None, help='Invoice number prefix')
@with_appcontext
def create_store_cli(owner_id, name, email, prefix):
    """Create a store for an owner, within the owner's store quota."""
    owner = db.session.get(User, owner_id)
    if owner is None or owner.role != ROLE_ADMIN:
        click.echo(f"FAIL Owner account {owner_id} not found")
        return

    existing = db.session.query(Store).filter_by(owner_id=owner.id).count()
    if existing >= owner.max_stores:
        click.echo(f"FAIL Store limit reached ({existing}/{owner.max_stores})")
        return

    store = Store(owner_id=owner.id, name=name, email=email, invoice_prefix=prefix, is_active=True)
    db.session.add(store)
    db.session.flush()
    db.session.add(StoreSetting(store_id=store.id, email=email))
    db.session.commit()
    click.echo(f"PASS Created store {store.id}: {name} (owner {owner.id})")


@stores_group.command('add-member')
@click.option('--store-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@with_appcontext
def add_store_member_cli(store_id, user_id):
    store = db.session.get(Store, store_id)
    user = db.session.get(User, user_id)
    if store is None or user is None:
        click.echo("FAIL Store or user not found")
        return
    if user.role == ROLE_STAFF and user.owner_id != store.owner_id:
        click.echo("FAIL Staff can only join stores of their own owner")
        return

    if not db.session.query(StoreMember).filter_by(store_id=store.id, user_id=user.id).first():
        db.session.add(StoreMember(store_id=store.id, user_id=user.id))
        db.session.commit()
    click.echo(f"PASS User {user.id} is a member of store {store.id}")


@click.group('sessions')
def sessions_group():
    """Session token commands."""


@sessions_group.command('issue')
@click.option('--user-id', type=int, required=True)
@click.option('--ttl-hours', type=int, default=None)
@with_appcontext
def issue_session_cli(user_id, ttl_hours):
    """Print a new bearer token for a user."""
    try:
        session, token = session_service.create_session(user_id, ttl_hours=ttl_hours)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(token)
    click.echo(f"expires_at={session.expires_at.isoformat()}Z", err=True)


@sessions_group.command('revoke')
@click.option('--token', required=True)
@with_appcontext
def revoke_session_cli(token):
    """Revoke a bearer token so it no longer authenticates."""
    if not session_service.revoke_session(token):
        click.echo("FAIL Unknown session token")
        return
    click.echo("PASS Session revoked")


# =============================================================================
# BILLING
# =============================================================================

@click.group('offers')
def offers_group():
    """Subscription offer commands."""


@offers_group.command('create')
@click.option('--key', required=True)
@click.option('--label', required=True)
@click.option('--store-limit', type=int, default=None)
@click.option('--monthly-price', default=None)
@click.option('--currency', default="DH", show_default=True)
@with_appcontext
def create_offer_cli(key, label, store_limit, monthly_price, currency):
    if db.session.query(SubscriptionOffer).filter_by(key=key).first():
        click.echo(f"FAIL Offer {key} already exists")
        return
    offer = SubscriptionOffer(
        key=key,
        label=label,
        store_limit=store_limit,
        monthly_price=D(monthly_price) if monthly_price is not None else None,
        currency=currency,
    )
    db.session.add(offer)
    db.session.commit()
    click.echo(f"PASS Created offer {key}")


@click.group('subscriptions')
def subscriptions_group():
    """Subscription maintenance commands."""


@subscriptions_group.command('expire')
@with_appcontext
def expire_subscriptions_cli():
    count = subscription_service.expire_lapsed_subscriptions()
    click.echo(f"Expired {count} subscription(s).")


# =============================================================================
# STOCK
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('verify')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def verify_stock_cli(store_id):
    """Report products whose current stock disagrees with the movement ledger."""
    drift = stock_service.find_projection_drift(store_id)
    if not drift:
        click.echo("PASS Stock projection matches the ledger.")
        return

    click.echo(f"FAIL {len(drift)} product(s) drifted:")
    for row in drift:
        click.echo(
            f"  product {row['product_id']} (store {row['store_id']}): "
            f"current={row['current_stock']} ledger={row['ledger_stock']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(offers_group)
    app.cli.add_command(subscriptions_group)
    app.cli.add_command(stock_group)
