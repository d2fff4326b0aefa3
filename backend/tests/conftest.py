"""
Pytest fixtures for erpcore backend tests.

Provides an in-memory database, seed rows (products, supplier, register) and a test client.
"""

import pytest
from erpcore import create_app
from erpcore.extensions import db
from erpcore.models import CashRegister, Product, Supplier
from erpcore.services import stock_ledger


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OVER_RECEIPT_POLICY': 'allow',
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
def product(db_session):
    """Product with catalog prices and no stock."""
    product = Product(
        sku="SKU-001",
        name="Widget",
        purchase_price_cents=400,
        sale_price_cents=1000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session):
    product = Product(
        sku="SKU-002",
        name="Gadget",
        purchase_price_cents=250,
        sale_price_cents=700,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Acme Supplies", tax_id="30-12345678-9", account_balance_cents=0)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def register(db_session):
    """Closed cash register ready to open a shift."""
    register = CashRegister(name="Front desk", status="closed")
    db_session.add(register)
    db_session.commit()
    return register


def stock(session, product_id: int, lots: dict) -> None:
    """Helper to seed stock through the ledger: {location: quantity}."""
    for location, quantity in lots.items():
        stock_ledger.increase(session, product_id, location, quantity, reason="Seed")
    session.commit()


def lot_quantities(session, product_id: int) -> dict:
    """Helper to read {location: quantity} for a product."""
    return {
        lot["location"]: lot["quantity"]
        for lot in stock_ledger.get_stock(session, product_id)["lots"]
    }
