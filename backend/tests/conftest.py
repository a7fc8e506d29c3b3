"""
Pytest fixtures for manufacturing backend tests.

Provides test database setup, a small bakery catalog (flour, yeast, bread),
a bread BOM, and test client.
"""

from decimal import Decimal

import pytest
from manufacturing import create_app
from manufacturing.extensions import db
from manufacturing.models import Product, ProductUnitQuantity, Unit
from manufacturing.services import bom_service
from manufacturing.services.stock_ledger_service import get_balance


AUTHOR_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MANUFACTURING_LOCK_RETRY_BACKOFF': 0,
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
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


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
def kg(db_session):
    unit = Unit(name="Kilogram", identifier="kg")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def pc(db_session):
    unit = Unit(name="Piece", identifier="pc")
    db_session.add(unit)
    db_session.commit()
    return unit


def _product(db_session, sku, name):
    product = Product(sku=sku, name=name)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def flour(db_session):
    return _product(db_session, "FLOUR", "Flour")


@pytest.fixture(scope='function')
def yeast(db_session):
    return _product(db_session, "YEAST", "Yeast")


@pytest.fixture(scope='function')
def bread(db_session):
    return _product(db_session, "BREAD", "Bread")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for extra products used by graph tests."""
    def _make(name):
        return _product(db_session, name.upper(), name)
    return _make


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Set on-hand quantity and COGS for a product/unit pair."""
    def _set(product, unit, quantity, cogs="0"):
        unit_id = unit.id if unit is not None else None
        balance = get_balance(product.id, unit_id)
        if balance is None:
            balance = ProductUnitQuantity(product_id=product.id, unit_id=unit_id)
            db_session.add(balance)
        balance.quantity = Decimal(str(quantity))
        balance.cogs = Decimal(str(cogs))
        db_session.commit()
        return balance
    return _set


def on_hand(product, unit) -> Decimal:
    """Current on-hand quantity (zero when no balance row exists)."""
    balance = get_balance(product.id, unit.id if unit is not None else None)
    return Decimal(balance.quantity) if balance is not None else Decimal("0")


@pytest.fixture(scope='function')
def bread_bom(db_session, kg, pc, flour, yeast, bread):
    """10 pieces of bread from 2 kg flour + 0.5 kg yeast."""
    bom = bom_service.create_bom(
        name="Bread",
        output_product_id=bread.id,
        output_unit_id=pc.id,
        output_quantity="10",
        author_id=AUTHOR_ID,
    )
    bom_service.add_bom_item(
        bom.id, component_product_id=flour.id, component_unit_id=kg.id, quantity="2", author_id=AUTHOR_ID,
    )
    bom_service.add_bom_item(
        bom.id, component_product_id=yeast.id, component_unit_id=kg.id, quantity="0.5", author_id=AUTHOR_ID,
    )
    db_session.commit()
    return bom


@pytest.fixture(scope='function')
def stocked_bakery(bread_bom, set_stock, kg, flour, yeast):
    """Bread BOM with 20 kg flour at 1.50/kg and 5 kg yeast at 4.00/kg."""
    set_stock(flour, kg, "20", "1.50")
    set_stock(yeast, kg, "5", "4.00")
    return bread_bom


def actor_headers(actor_id: int = AUTHOR_ID) -> dict:
    """Helper to create actor headers for API calls."""
    return {'X-Actor-Id': str(actor_id)}
