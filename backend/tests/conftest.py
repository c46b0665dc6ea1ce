"""
Pytest fixtures for the settlement engine tests.

Provides the in-memory database, a per-test wipe, a small menu with
option groups, a customer, dining tables and an open shift.
"""

from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.models import (
    Category,
    Customer,
    DiningTable,
    MenuItem,
    MenuItemOption,
    MenuItemOptionGroup,
)
from app.services import shift_service


CASHIER_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_CURRENCY': 'ILS',
        'CASHIER_EXPENSES_ENABLED': True,
        'CASHIER_EXPENSES_CAP_AMOUNT': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test (schema is kept)."""
    with app.app_context():
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def cashier_id():
    return CASHIER_ID


@pytest.fixture(scope='function')
def menu(db_session):
    """
    Two categories (kitchen printer 1 / bar printer 2) and three items:
    burger 5.00, soda 3.30, pizza 10.00.
    """
    kitchen = Category(name="Kitchen", printer_id=1, sort_order=1, is_active=True)
    bar = Category(name="Bar", printer_id=2, sort_order=2, is_active=True)
    db_session.add_all([kitchen, bar])
    db_session.flush()

    burger = MenuItem(category_id=kitchen.id, name="Burger", price=Decimal("5.00"), is_active=True)
    soda = MenuItem(category_id=bar.id, name="Soda", price=Decimal("3.30"), is_active=True)
    pizza = MenuItem(category_id=kitchen.id, name="Pizza", price=Decimal("10.00"), is_active=True)
    db_session.add_all([burger, soda, pizza])
    db_session.commit()
    return {"burger": burger.id, "soda": soda.id, "pizza": pizza.id}


@pytest.fixture(scope='function')
def burger_options(db_session, menu):
    """
    Burger option groups:
    - Doneness (required, pick exactly one): rare / well done
    - Extras (quantity, max 3 each): cheese +2.00, bacon +3.00
    """
    doneness = MenuItemOptionGroup(
        menu_item_id=menu["burger"], name="Doneness", is_required=True,
        min_select=1, max_select=1, allow_quantity=False, sort_order=1, is_active=True,
    )
    extras = MenuItemOptionGroup(
        menu_item_id=menu["burger"], name="Extras", is_required=False,
        min_select=0, max_select=None, allow_quantity=True, sort_order=2, is_active=True,
    )
    db_session.add_all([doneness, extras])
    db_session.flush()

    rare = MenuItemOption(group_id=doneness.id, name="Rare", price_delta=Decimal("0"), sort_order=1, is_active=True)
    well = MenuItemOption(group_id=doneness.id, name="Well done", price_delta=Decimal("0"), sort_order=2, is_active=True)
    cheese = MenuItemOption(group_id=extras.id, name="Cheese", price_delta=Decimal("2.00"), max_qty=3, sort_order=1, is_active=True)
    bacon = MenuItemOption(group_id=extras.id, name="Bacon", price_delta=Decimal("3.00"), max_qty=3, sort_order=2, is_active=True)
    retired = MenuItemOption(group_id=extras.id, name="Truffle", price_delta=Decimal("9.00"), sort_order=3, is_active=False)
    db_session.add_all([rare, well, cheese, bacon, retired])
    db_session.commit()
    return {
        "doneness_group": doneness.id,
        "extras_group": extras.id,
        "rare": rare.id,
        "well": well.id,
        "cheese": cheese.id,
        "bacon": bacon.id,
        "truffle": retired.id,
    }


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Regular", phone="050-0000000", discount_percent=Decimal("10"), is_active=True)
    db_session.add(c)
    db_session.commit()
    return c.id


@pytest.fixture(scope='function')
def tables(db_session):
    t1 = DiningTable(name="T1", is_active=True)
    t2 = DiningTable(name="T2", is_active=True)
    db_session.add_all([t1, t2])
    db_session.commit()
    return {"t1": t1.id, "t2": t2.id}


@pytest.fixture(scope='function')
def open_shift(db_session):
    """Open shift with 100.00 opening cash."""
    summary = shift_service.open_shift(CASHIER_ID, "100.00")
    return summary["shift"]["id"]
