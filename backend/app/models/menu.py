# Overview: Read-only menu reference tables consumed by order pricing (menu CRUD lives elsewhere).

from __future__ import annotations

from ..extensions import db
from ..money import as_float


class Category(db.Model):
    """Menu category. Items inherit the kitchen printer assigned here."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    printer_id = db.Column(db.Integer, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class MenuItem(db.Model):
    __tablename__ = "menu_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    category = db.relationship("Category")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "price": as_float(self.price),
            "is_active": self.is_active,
        }


class MenuItemOptionGroup(db.Model):
    """
    Customization group attached to a menu item (e.g. "Sauce", "Extras").

    min_select / max_select bound how many distinct options may be picked.
    allow_quantity lets a single option be picked more than once (qty > 1).
    """
    __tablename__ = "menu_item_option_groups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    min_select = db.Column(db.Integer, nullable=False, default=0)
    max_select = db.Column(db.Integer, nullable=True)
    allow_quantity = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class MenuItemOption(db.Model):
    __tablename__ = "menu_item_options"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("menu_item_option_groups.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    price_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_qty = db.Column(db.Integer, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    group = db.relationship("MenuItemOptionGroup")


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    discount_percent = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class DiningTable(db.Model):
    __tablename__ = "dining_tables"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
