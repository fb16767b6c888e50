"""
Pytest fixtures for tillcore backend tests.

Provides an in-memory database, a test client with bearer tokens, a
recording notification sender and store/product/customer factories.
"""

from decimal import Decimal

import pytest

from tillcore import create_app
from tillcore.decorators import StaticTokenAuthProvider
from tillcore.extensions import db
from tillcore.models import Customer, LoyaltyLedgerEntry, LoyaltyProgramConfig, Product, Store
from tillcore.models.customers import LEDGER_EARNED
from tillcore.services.notification_service import RecordingNotificationSender


OWNER_TOKEN = "owner-token"
CASHIER_TOKEN = "cashier-token"
OTHER_STORE_TOKEN = "other-store-token"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATION_GATEWAY_URL': '',
        'PAYMENT_GATEWAY_SECRET': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; config flags restored afterwards."""
    saved = {key: app.config.get(key) for key in ("ALLOW_NEGATIVE_STOCK", "SETTLEMENT_STRICT")}

    # Clear all data but keep schema
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    app.config.update(saved)


@pytest.fixture(scope='function')
def sender(app):
    """Recording notification sender installed for the test."""
    recording = RecordingNotificationSender()
    previous = app.extensions["tillcore.notification_sender"]
    app.extensions["tillcore.notification_sender"] = recording
    yield recording
    app.extensions["tillcore.notification_sender"] = previous


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(
        name="Main Store",
        code="MAIN",
        owner_phone="0200000001",
        last_transaction_number=0,
        tax_enabled=False,
        tax_kind="percentage",
        tax_value=Decimal("0"),
    )
    db_session.add(store)
    db_session.flush()
    db_session.add(LoyaltyProgramConfig(
        store_id=store.id,
        enabled=True,
        earn_rate=Decimal("1"),
        redemption_rate=Decimal("0.05"),
        min_redemption_points=100,
    ))
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Other Store", code="OTHER", last_transaction_number=0)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_product(db_session, store):
    def _make(sku="SKU-1", name="Bread", price="10.00", stock=50, cost_price=None, store_id=None, is_active=True):
        product = Product(
            store_id=store_id or store.id,
            sku=sku,
            name=name,
            price=Decimal(price),
            cost_price=Decimal(cost_price) if cost_price is not None else None,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def make_customer(db_session, store):
    """Customer whose cached points are backed by a matching ledger entry."""
    def _make(phone="0241234567", name="Ama", points=0, store_id=None):
        customer = Customer(
            store_id=store_id or store.id,
            phone=phone,
            name=name,
            points=points,
            total_spent=Decimal("0"),
            total_visits=0,
        )
        db_session.add(customer)
        db_session.flush()
        if points:
            db_session.add(LoyaltyLedgerEntry(
                store_id=customer.store_id,
                customer_id=customer.id,
                points=points,
                type=LEDGER_EARNED,
                description="Opening balance",
            ))
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def tokens(app, store, other_store):
    """Bearer tokens bound to the test stores."""
    provider = StaticTokenAuthProvider()
    provider.add_token(OWNER_TOKEN, {
        "employee_id": "emp-owner", "store_id": store.id, "is_owner": True, "name": "Kofi",
    })
    provider.add_token(CASHIER_TOKEN, {
        "employee_id": "emp-cashier", "store_id": store.id, "role": "cashier", "name": "Esi",
    })
    provider.add_token(OTHER_STORE_TOKEN, {
        "employee_id": "emp-other", "store_id": other_store.id, "is_owner": True,
    })
    previous = app.extensions["tillcore.auth_provider"]
    app.extensions["tillcore.auth_provider"] = provider
    yield provider
    app.extensions["tillcore.auth_provider"] = previous


@pytest.fixture(scope='function')
def client(app, tokens):
    """Create test client."""
    return app.test_client()


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
