# Overview: Order-side persistence: orders, lines, customization snapshots, payments, numbering counters, kitchen print queue.

from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from ..money import as_float
from app.time_utils import to_utc_z


class Order(db.Model):
    """
    Restaurant order (ticket).

    LIFECYCLE: draft -> open -> paid (paid -> open only via explicit reopen).
    Only drafts may be hard-deleted.

    DESTINATION: at most one of table_id / is_takeaway. At most one OPEN order
    per table, enforced by the partial unique index below as well as by the
    write-time check in order_service.

    Discount and service-fee fields feed the pricing waterfall; totals are
    never stored, always recomputed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("business_date", "order_no", name="uq_orders_business_date_order_no"),
        db.Index(
            "uq_orders_open_table",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'open' AND table_id IS NOT NULL"),
            postgresql_where=text("status = 'open' AND table_id IS NOT NULL"),
        ),
        db.Index("ix_orders_shift_status", "shift_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    business_date = db.Column(db.Date, nullable=False, index=True)
    order_no = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    nickname = db.Column(db.String(128), nullable=True)

    # Destination
    table_id = db.Column(db.Integer, db.ForeignKey("dining_tables.id"), nullable=True)
    is_takeaway = db.Column(db.Boolean, nullable=False, default=False)
    people_count = db.Column(db.Integer, nullable=True)

    # Customer discount is a snapshot taken when the customer is assigned
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_discount_percent = db.Column(db.Numeric(7, 3), nullable=False, default=0)

    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    service_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    service_fee_percent = db.Column(db.Numeric(7, 3), nullable=False, default=0)

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_no_display(self) -> str:
        return f"{self.order_no:02d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "order_no": self.order_no_display,
            "status": self.status,
            "nickname": self.nickname,
            "table_id": self.table_id,
            "is_takeaway": self.is_takeaway,
            "people_count": self.people_count,
            "customer_id": self.customer_id,
            "customer_discount_percent": as_float(self.customer_discount_percent),
            "discount_amount": as_float(self.discount_amount),
            "discount_percent": as_float(self.discount_percent),
            "service_fee": as_float(self.service_fee),
            "service_fee_percent": as_float(self.service_fee_percent),
            "shift_id": self.shift_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderItem(db.Model):
    """
    One line on an order.

    name and unit_price are frozen at add-time (menu price + customization
    delta) so later menu edits never change an existing ticket. Voiding is
    terminal; lines of non-draft orders are never hard-deleted.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True)

    name = db.Column(db.String(200), nullable=False)
    qty = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(7, 3), nullable=False, default=0)

    # Void audit trail
    voided = db.Column(db.Boolean, nullable=False, default=False)
    void_reason = db.Column(db.String(255), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Kitchen routing (copied from the category at add-time)
    printer_id = db.Column(db.Integer, nullable=True)
    kitchen_printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    note = db.Column(db.String(500), nullable=True)
    customization_signature = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "qty": as_float(self.qty),
            "unit_price": as_float(self.unit_price),
            "discount_amount": as_float(self.discount_amount),
            "discount_percent": as_float(self.discount_percent),
            "voided": self.voided,
            "void_reason": self.void_reason,
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "printer_id": self.printer_id,
            "kitchen_printed_at": to_utc_z(self.kitchen_printed_at) if self.kitchen_printed_at else None,
            "note": self.note,
            "customization_signature": self.customization_signature,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderItemCustomization(db.Model):
    """Denormalized snapshot of a selected option so historical tickets stay stable."""
    __tablename__ = "order_item_customizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    group_id = db.Column(db.Integer, nullable=False)
    group_name = db.Column(db.String(128), nullable=False)
    option_id = db.Column(db.Integer, nullable=False)
    option_name = db.Column(db.String(128), nullable=False)
    qty = db.Column(db.Numeric(12, 3), nullable=False)
    price_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "option_id": self.option_id,
            "option_name": self.option_name,
            "qty": as_float(self.qty),
            "price_delta": as_float(self.price_delta),
        }


class Payment(db.Model):
    """
    Payment against an order.

    Append-only from the cashier's point of view. The only removal path is an
    explicit reopen-with-clear, which also removes the matching pos_payment
    ledger postings in the same transaction.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Lower-case method token: cash, card, cheque, bank, debt, ...
    method = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "method": self.method,
            "amount": as_float(self.amount),
            "reference": self.reference,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderCounter(db.Model):
    """Next order number to try for a business date (wraps 99 -> 1)."""
    __tablename__ = "order_counters"

    business_date = db.Column(db.Date, primary_key=True)
    next_no = db.Column(db.Integer, nullable=False, default=1)


class PrintQueueItem(db.Model):
    """
    Kitchen print job row.

    Rendering and delivery belong to the print worker; this core only moves
    rows between orders on merge and deletes them on draft discard.
    """
    __tablename__ = "print_queue"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    printer_id = db.Column(db.Integer, nullable=True)
    kind = db.Column(db.String(32), nullable=False, default="kitchen")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "printer_id": self.printer_id,
            "kind": self.kind,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
        }
