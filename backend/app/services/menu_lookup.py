# Overview: Read-only lookups into menu, customer and table reference data used by order operations.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import Category, Customer, DiningTable, MenuItem
from ..money import to_decimal


@dataclass(frozen=True)
class ActiveMenuItem:
    id: int
    name: str
    price: Decimal
    printer_id: int | None


def get_active_menu_item(menu_item_id: int) -> ActiveMenuItem | None:
    """Active menu item joined with its category's kitchen printer, or None."""
    row = (
        db.session.query(MenuItem.id, MenuItem.name, MenuItem.price, Category.printer_id)
        .join(Category, Category.id == MenuItem.category_id)
        .filter(MenuItem.id == menu_item_id, MenuItem.is_active.is_(True))
        .first()
    )
    if row is None:
        return None
    return ActiveMenuItem(id=row.id, name=row.name, price=to_decimal(row.price), printer_id=row.printer_id)


def get_menu_item_price(menu_item_id: int) -> Decimal | None:
    """Current price regardless of active flag (used when re-pricing an existing line)."""
    item = db.session.get(MenuItem, menu_item_id)
    if item is None:
        return None
    return to_decimal(item.price)


def get_active_customer(customer_id: int) -> Customer | None:
    return (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.is_active.is_(True))
        .first()
    )


def get_customer_discount_percent(customer_id: int | None) -> Decimal:
    """Discount snapshot for an order: the active customer's percent, else 0."""
    if customer_id is None:
        return Decimal("0")
    customer = get_active_customer(customer_id)
    if customer is None:
        return Decimal("0")
    return to_decimal(customer.discount_percent)


def table_exists(table_id: int) -> bool:
    return db.session.get(DiningTable, table_id) is not None
