"""
Pytest fixtures for rental backend tests.

Provides test database setup, catalog/order factories, and test client.
"""

from datetime import datetime

import pytest
from rental import create_app
from rental.config import TestConfig
from rental.extensions import db
from rental.models import Customer, Item, ItemComponent, Order, OrderLine
from rental.services import notifications


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
        notifications._listeners.clear()


def jan(day: int, hour: int = 0) -> datetime:
    return datetime(2026, 1, day, hour)


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: make_item("Chair", qty=10) / make_item("Tent kit", kind="COMPOSITE")."""
    counter = {"n": 0}

    def _make(name="Item", *, kind="ATOMIC", qty=None, price_per_day_cents=1000, sku=None):
        counter["n"] += 1
        if kind == "ATOMIC" and qty is None:
            qty = 10
        item = Item(
            sku=sku or f"SKU-{counter['n']:04d}",
            name=name,
            kind=kind,
            quantity_on_hand=qty if kind == "ATOMIC" else None,
            price_per_day_cents=price_per_day_cents,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    """Create a default customer."""
    cust = Customer(display_name="Acme Events", email="events@acme.test")
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def make_order(db_session, customer):
    """
    Factory for orders written straight to the database (no ledger rows).

    make_order([(item, 3)], start=jan(10), end=jan(15), status="RESERVED")
    """

    def _make(lines=(), *, start=None, end=None, status="DRAFT", **window):
        order = Order(customer_id=customer.id, status=status, **window)
        if start is not None or end is not None:
            order.start_date = start
            order.return_due_date = end
        for item, qty in lines:
            order.lines.append(OrderLine(item_id=item.id, quantity=qty, price_per_day_cents=item.price_per_day_cents))
        db_session.add(order)
        db_session.commit()
        return order

    return _make


def add_edge(parent, child, quantity):
    """Insert a BOM edge directly, bypassing service checks."""
    edge = ItemComponent(parent_id=parent.id, child_id=child.id, quantity=quantity)
    db.session.add(edge)
    db.session.commit()
    return edge
