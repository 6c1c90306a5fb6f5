"""
Pytest fixtures for shopledger backend tests.

Provides the application against in-memory SQLite, a per-test clean
database, and small factories for products and stock.
"""

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.services import inventory_service, products_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def make_product(db_session):
    """Factory: committed ACTIVE product with sensible defaults."""
    counter = {"n": 0}

    def _make(title=None, price=1000, cost_price=None, packaging_cost=None, status="ACTIVE"):
        counter["n"] += 1
        return products_service.create_product(
            title or f"Product {counter['n']}",
            price,
            cost_price=cost_price,
            packaging_cost=packaging_cost,
            status=status,
        )

    return _make


@pytest.fixture(scope='function')
def receive(db_session):
    """Factory: receive a lot (qty @ unit_cost) for a product, committed."""
    def _receive(product_id, qty, unit_cost, received_at=None):
        return inventory_service.receive_stock(
            product_id, qty, unit_cost=unit_cost, received_at=received_at
        )

    return _receive


@pytest.fixture
def customer():
    return {"name": "Anna Petrova", "phone": "+79001234567", "address": "Moscow"}
