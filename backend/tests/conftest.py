"""
Pytest fixtures for POS ledger backend tests.

Provides test database setup, seller/product fixtures, and test client.
"""

import pytest
from posledger import create_app
from posledger.extensions import db
from posledger.models import Product
from posledger.models.inventory import PRODUCT_STATUS_ACTIVE


SELLER_A = 101
SELLER_B = 202


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_RATE': 0.20,
        'RETURNS_REQUIRE_SALE': False,
    })

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
def seller_a():
    return SELLER_A


@pytest.fixture(scope='function')
def seller_b():
    return SELLER_B


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for catalog items owned by a seller."""
    counter = {"n": 0}

    def _make(seller_id=SELLER_A, *, quantity=5, price_cents=1000, track_inventory=True,
              status=PRODUCT_STATUS_ACTIVE, name=None, sku=None):
        counter["n"] += 1
        product = Product(
            seller_id=seller_id,
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name or f"Item {counter['n']}",
            price_cents=price_cents,
            quantity=quantity,
            track_inventory=track_inventory,
            status=status,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def item_a(make_product):
    """Item A: 5 units at 10.00, tracked."""
    return make_product(SELLER_A, quantity=5, price_cents=1000, name="Item A", sku="ITEM-A")


@pytest.fixture(scope='function')
def headers_a():
    return {"X-Seller-Id": str(SELLER_A)}


@pytest.fixture(scope='function')
def headers_b():
    return {"X-Seller-Id": str(SELLER_B)}


def cash(received_cents=None):
    payment = {"method": "cash"}
    if received_cents is not None:
        payment["cash_received_cents"] = received_cents
    return payment


def card():
    return {"method": "card", "card_reference": "AUTH-0001"}
