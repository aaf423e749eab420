"""
Pytest fixtures for stockrecon backend tests.

Provides the in-memory database, a per-test table wipe, the record store
and small factories for products, inventory units and customers.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from stockrecon import create_app
from stockrecon.extensions import db
from stockrecon.models import Customer, InventoryItem, Product, ProductModel
from stockrecon.store import RecordStore


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def store(db_session):
    return RecordStore()


def run(coro):
    return asyncio.run(coro)


def imei_for(n: int) -> str:
    """Deterministic valid 15-digit IMEI."""
    return f"35{n:013d}"


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name="Charger", *, price="10.00", cost="5.00", stock=0, tracked=False):
        if tracked and db_session.query(ProductModel).filter_by(id="MODEL-1").first() is None:
            db_session.add(ProductModel(id="MODEL-1", name="Galaxy A14", brand="Samsung"))
            db_session.commit()
        product = Product(
            name=name,
            price=Decimal(price),
            cost=Decimal(cost),
            stock=stock,
            product_model_id="MODEL-1" if tracked else None,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_units(db_session):
    """Add `count` in_stock units to a tracked product, oldest first."""
    counter = {"next": 1}

    def _make(product, count, *, start=None):
        start = start or datetime(2024, 1, 1)
        units = []
        for i in range(count):
            unit = InventoryItem(
                product_id=product.id,
                imei=imei_for(counter["next"]),
                status="in_stock",
                condition="new",
                created_at=start + timedelta(hours=i),
                updated_at=start + timedelta(hours=i),
            )
            counter["next"] += 1
            db_session.add(unit)
            units.append(unit)
        db_session.commit()
        product.stock = product.stock + count
        db_session.commit()
        return units
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Ama", *, store_credit="0.00"):
        customer = Customer(name=name, store_credit=Decimal(store_credit))
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def phone(make_product, make_units):
    """Tracked product with five in_stock units."""
    product = make_product("Galaxy A14", price="1500.00", cost="1100.00", tracked=True)
    units = make_units(product, 5)
    return product, units
