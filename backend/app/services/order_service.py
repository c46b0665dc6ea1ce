# Overview: Order lifecycle operations: create, items, destination, merge, discard, reopen and kitchen hooks.

"""
Order Lifecycle Service

WHY: Orders are documents with a lifecycle, not just a bag of lines.
Every mutation here runs inside one transaction (run_atomic) and emits an
audit entry after commit.

STATE MACHINE:
- draft: created from the order screen without a destination yet
- open: has a destination or has taken a payment
- paid: balance reached zero (settlement_service)
- paid -> open only through reopen_order
- only drafts may be discarded (hard delete)

DESTINATION: exactly one of table / takeaway once open. At most one open
order per table (write-time check + partial unique index).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import (
    DiningTable,
    Order,
    OrderItem,
    OrderItemCustomization,
    Payment,
    PrintQueueItem,
    Shift,
)
from ..money import ZERO, MAX_AMOUNT, quantize_money, quantize_qty, to_decimal
from app.time_utils import business_date_today, utcnow
from .audit_service import write_audit
from .concurrency import check_cancelled, lock_for_update, run_atomic
from .customization_service import CustomizationResult, compute_customizations
from .errors import NotFoundError, RuleViolation
from .ledger_service import SOURCE_POS_PAYMENT, delete_source_postings
from .menu_lookup import get_active_menu_item, get_customer_discount_percent, get_menu_item_price, table_exists
from .order_number_service import next_order_no_locked
from .pricing_service import OrderTotals, compute_totals_for_rows
from .shift_service import get_open_shift, require_open_shift


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_OPEN = "open"
ORDER_STATUS_PAID = "paid"

EDITABLE_STATUSES = (ORDER_STATUS_DRAFT, ORDER_STATUS_OPEN)

MAX_OPEN_ORDERS_LIST = 200
MAX_PERCENT = Decimal("100")


# =============================================================================
# HELPERS
# =============================================================================

def _audit(action: str, order_id: int | None, actor_user_id: int | None, payload: dict) -> None:
    write_audit(
        action=action,
        entity_type="order",
        entity_id=order_id,
        actor_user_id=actor_user_id,
        payload=payload,
    )


def get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND", f"Order {order_id} not found")
    return order


def _get_item_locked(item_id: int) -> OrderItem:
    item = lock_for_update(db.session.query(OrderItem).filter(OrderItem.id == item_id)).first()
    if item is None:
        raise NotFoundError("ORDER_ITEM_NOT_FOUND", f"Order item {item_id} not found")
    return item


def _find_open_order_for_table(table_id: int, exclude_order_id: int | None = None) -> Order | None:
    query = db.session.query(Order).filter(
        Order.status == ORDER_STATUS_OPEN,
        Order.table_id == table_id,
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).first()


def _require_table(table_id: int) -> None:
    if not table_exists(table_id):
        raise NotFoundError("TABLE_NOT_FOUND", f"Table {table_id} not found", {"table_id": table_id})


def _ensure_table_free(table_id: int, order_id: int | None) -> None:
    _require_table(table_id)
    if _find_open_order_for_table(table_id, exclude_order_id=order_id) is not None:
        raise RuleViolation(
            "TABLE_ALREADY_HAS_OPEN_ORDER",
            f"Table {table_id} already has an open order",
            {"table_id": table_id},
        )


def _ensure_editable(order: Order) -> None:
    if order.status not in EDITABLE_STATUSES:
        raise RuleViolation("ORDER_LOCKED", f"Order {order.id} is {order.status}")


def promote_to_open(order: Order) -> None:
    """Draft -> open. A table draft only opens while its table has no other open order."""
    if order.status != ORDER_STATUS_DRAFT:
        return
    if order.table_id is not None:
        _ensure_table_free(order.table_id, order.id)
    order.status = ORDER_STATUS_OPEN


def _decimal_input(value, code: str, *, minimum: Decimal = ZERO, maximum: Decimal = MAX_AMOUNT) -> Decimal:
    try:
        result = to_decimal(value)
    except ValueError as exc:
        raise RuleViolation(code, f"Not a number: {value!r}") from exc
    if result < minimum or result > maximum:
        raise RuleViolation(code, f"Value {result} out of range [{minimum}, {maximum}]")
    return result


def _people_count(value) -> int | None:
    if value is None:
        return None
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise RuleViolation("PEOPLE_COUNT_INVALID", "People count must be a whole number") from exc
    if count < 0:
        raise RuleViolation("PEOPLE_COUNT_INVALID", "People count cannot be negative")
    return count


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _order_summary(order: Order, *, existing: bool) -> dict:
    return {
        "id": order.id,
        "business_date": order.business_date.isoformat(),
        "order_no": order.order_no_display,
        "status": order.status,
        "existing": existing,
    }


def _add_customization_rows(item_id: int, computed: CustomizationResult) -> None:
    now = utcnow()
    for row in computed.rows:
        db.session.add(OrderItemCustomization(
            order_item_id=item_id,
            group_id=row.group_id,
            group_name=row.group_name,
            option_id=row.option_id,
            option_name=row.option_name,
            qty=quantize_qty(row.qty),
            price_delta=quantize_money(row.price_delta),
            created_at=now,
        ))


def _customizations_by_item(item_ids: list[int]) -> dict[int, list[dict]]:
    result: dict[int, list[dict]] = {item_id: [] for item_id in item_ids}
    if not item_ids:
        return result
    rows = (
        db.session.query(OrderItemCustomization)
        .filter(OrderItemCustomization.order_item_id.in_(item_ids))
        .order_by(OrderItemCustomization.id)
        .all()
    )
    for row in rows:
        result[row.order_item_id].append(row.to_dict())
    return result


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals_for_order(order_id: int) -> OrderTotals:
    """
    Load an order's rows and run the pricing waterfall.

    Raises:
        NotFoundError: ORDER_NOT_FOUND
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND", f"Order {order_id} not found")
    items = db.session.query(OrderItem).filter(OrderItem.order_id == order_id).all()
    payments = db.session.query(Payment).filter(Payment.order_id == order_id).all()
    return compute_totals_for_rows(order, items, payments)


# =============================================================================
# ORDER CREATION
# =============================================================================

def _new_order(
    *,
    actor_user_id: int,
    shift: Shift,
    business_date: date,
    status: str,
    table_id: int | None,
    people_count: int | None,
    customer_id: int | None,
    is_takeaway: bool,
) -> Order:
    order = Order(
        business_date=business_date,
        order_no=next_order_no_locked(business_date),
        status=status,
        table_id=table_id,
        is_takeaway=is_takeaway,
        people_count=people_count,
        customer_id=customer_id,
        customer_discount_percent=get_customer_discount_percent(customer_id),
        discount_amount=ZERO,
        discount_percent=ZERO,
        service_fee=ZERO,
        service_fee_percent=ZERO,
        shift_id=shift.id,
        created_by_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(order)
    db.session.flush()
    return order


def create_order(
    actor_user_id: int,
    *,
    table_id: int | None = None,
    people_count: int | None = None,
    customer_id: int | None = None,
    is_takeaway: bool = False,
    business_date: date | None = None,
    cancel=None,
) -> dict:
    """
    Create a draft order on the open shift.

    When the table already has an open order, that order is returned with
    existing=True instead of creating a second one.

    Raises:
        RuleViolation: SHIFT_REQUIRED, DESTINATION_CONFLICT, PEOPLE_COUNT_INVALID
        ExhaustedError: ORDER_NO_EXHAUSTED
    """
    if table_id is not None and is_takeaway:
        raise RuleViolation("DESTINATION_CONFLICT", "An order cannot be both takeaway and at a table")
    people = _people_count(people_count)

    def _op() -> dict:
        shift = require_open_shift()

        if table_id is not None:
            _require_table(table_id)
            existing = _find_open_order_for_table(table_id)
            if existing is not None:
                return _order_summary(existing, existing=True)

        order = _new_order(
            actor_user_id=actor_user_id,
            shift=shift,
            business_date=business_date or business_date_today(),
            status=ORDER_STATUS_DRAFT,
            table_id=table_id,
            people_count=people,
            customer_id=customer_id,
            is_takeaway=bool(is_takeaway),
        )
        return _order_summary(order, existing=False)

    result = run_atomic(_op, cancel=cancel)
    if not result["existing"]:
        _audit("order_created", result["id"], actor_user_id, {
            "order_no": result["order_no"],
            "business_date": result["business_date"],
            "table_id": table_id,
            "customer_id": customer_id,
            "is_takeaway": bool(is_takeaway),
        })
    return result


def create_or_get_open_order_for_table(
    actor_user_id: int,
    table_id: int,
    people_count: int | None = None,
    *,
    business_date: date | None = None,
    cancel=None,
) -> dict:
    """Return the table's open order (updating people count) or open a new one."""
    people = _people_count(people_count)

    def _op() -> dict:
        shift = require_open_shift()

        _require_table(table_id)
        existing = _find_open_order_for_table(table_id)
        if existing is not None:
            if people is not None:
                existing.people_count = people
                db.session.flush()
            return _order_summary(existing, existing=True)

        order = _new_order(
            actor_user_id=actor_user_id,
            shift=shift,
            business_date=business_date or business_date_today(),
            status=ORDER_STATUS_OPEN,
            table_id=table_id,
            people_count=people,
            customer_id=None,
            is_takeaway=False,
        )
        return _order_summary(order, existing=False)

    result = run_atomic(_op, cancel=cancel)
    if not result["existing"]:
        _audit("order_created", result["id"], actor_user_id, {
            "order_no": result["order_no"],
            "business_date": result["business_date"],
            "table_id": table_id,
            "people_count": people,
        })
    return result


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int) -> dict:
    """Order with its items (and customization snapshots), payments and totals."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("ORDER_NOT_FOUND", f"Order {order_id} not found")

    items = (
        db.session.query(OrderItem)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.created_at, OrderItem.id)
        .all()
    )
    payments = (
        db.session.query(Payment)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.created_at, Payment.id)
        .all()
    )
    customizations = _customizations_by_item([i.id for i in items])

    order_dict = order.to_dict()
    table = db.session.get(DiningTable, order.table_id) if order.table_id else None
    order_dict["table_name"] = table.name if table else None

    item_dicts = []
    for item in items:
        entry = item.to_dict()
        entry["customizations"] = customizations.get(item.id, [])
        item_dicts.append(entry)

    return {
        "order": order_dict,
        "items": item_dicts,
        "payments": [p.to_dict() for p in payments],
        "totals": compute_totals_for_rows(order, items, payments).to_dict(),
    }


def list_open_orders(limit: int = MAX_OPEN_ORDERS_LIST) -> list[dict]:
    rows = (
        db.session.query(Order, DiningTable.name)
        .outerjoin(DiningTable, DiningTable.id == Order.table_id)
        .filter(Order.status == ORDER_STATUS_OPEN)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(max(1, min(int(limit), MAX_OPEN_ORDERS_LIST)))
        .all()
    )
    result = []
    for order, table_name in rows:
        entry = order.to_dict()
        entry["table_name"] = table_name
        result.append(entry)
    return result


def list_current_shift_orders() -> dict | None:
    """
    Order history of the open shift with per-order total / paid / balance.

    Returns None when no shift is open.
    """
    shift = get_open_shift()
    if shift is None:
        return None

    limit = int(current_app.config.get("ORDER_HISTORY_LIMIT", 500))
    rows = (
        db.session.query(Order, DiningTable.name)
        .outerjoin(DiningTable, DiningTable.id == Order.table_id)
        .filter(Order.shift_id == shift.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )
    order_ids = [order.id for order, _ in rows]

    items_by_order: dict[int, list[OrderItem]] = {oid: [] for oid in order_ids}
    payments_by_order: dict[int, list[Payment]] = {oid: [] for oid in order_ids}
    if order_ids:
        for item in db.session.query(OrderItem).filter(OrderItem.order_id.in_(order_ids)).all():
            items_by_order[item.order_id].append(item)
        for payment in db.session.query(Payment).filter(Payment.order_id.in_(order_ids)).all():
            payments_by_order[payment.order_id].append(payment)

    history = []
    for order, table_name in rows:
        items = items_by_order[order.id]
        totals = compute_totals_for_rows(order, items, payments_by_order[order.id])
        history.append({
            "id": order.id,
            "order_no": order.order_no_display,
            "status": order.status,
            "nickname": order.nickname,
            "table_name": table_name,
            "is_takeaway": order.is_takeaway,
            "created_at": order.to_dict()["created_at"],
            "items_count": sum(1 for i in items if not i.voided),
            "total": float(totals.total),
            "paid": float(totals.paid),
            "balance": float(totals.balance),
        })

    return {
        "shift_id": shift.id,
        "opened_at": shift.to_dict()["opened_at"],
        "orders": history,
    }


# =============================================================================
# ITEMS
# =============================================================================

def add_item(
    order_id: int,
    actor_user_id: int,
    menu_item_id: int,
    qty,
    note: str | None = None,
    customizations=None,
    *,
    cancel=None,
) -> dict:
    """
    Add a menu item to an order, merging into an identical pending line.

    WHY: Tapping "Burger" three times should yield one line of qty 3, but
    only while that line has not been sent to the kitchen, is not voided,
    and has the same price, note and customization signature.

    Returns:
        {"item_id", "qty", "merged"}

    Raises:
        NotFoundError: ORDER_NOT_FOUND, MENU_ITEM_NOT_FOUND
        RuleViolation: ORDER_LOCKED, ORDER_ITEM_QTY_INVALID,
            CUSTOMIZATION_REQUIRED, CUSTOMIZATION_INVALID
    """
    quantity = _decimal_input(qty, "ORDER_ITEM_QTY_INVALID")
    if quantity <= 0:
        raise RuleViolation("ORDER_ITEM_QTY_INVALID", "Quantity must be greater than zero")
    clean_note = _clean_text(note)

    def _op() -> dict:
        order = get_order_locked(order_id)
        _ensure_editable(order)

        menu_item = get_active_menu_item(menu_item_id)
        if menu_item is None:
            raise NotFoundError("MENU_ITEM_NOT_FOUND", f"Menu item {menu_item_id} not found")

        computed = compute_customizations(menu_item_id, customizations or [])
        unit_price = quantize_money(menu_item.price + computed.price_delta)
        check_cancelled(cancel)

        candidates = (
            db.session.query(OrderItem)
            .filter(
                OrderItem.order_id == order_id,
                OrderItem.menu_item_id == menu_item_id,
                OrderItem.voided.is_(False),
                OrderItem.kitchen_printed_at.is_(None),
            )
            .order_by(OrderItem.id)
            .all()
        )
        for line in candidates:
            if (
                quantize_money(to_decimal(line.unit_price)) == unit_price
                and (line.note or "") == (clean_note or "")
                and (line.customization_signature or "") == (computed.signature or "")
            ):
                previous_qty = to_decimal(line.qty)
                line.qty = quantize_qty(previous_qty + quantity)
                db.session.flush()
                return {
                    "item_id": line.id,
                    "name": line.name,
                    "qty": line.qty,
                    "previous_qty": previous_qty,
                    "merged": True,
                }

        item = OrderItem(
            order_id=order_id,
            menu_item_id=menu_item_id,
            name=menu_item.name,
            qty=quantize_qty(quantity),
            unit_price=unit_price,
            discount_amount=ZERO,
            discount_percent=ZERO,
            voided=False,
            printer_id=menu_item.printer_id,
            note=clean_note,
            customization_signature=computed.signature,
            created_by_user_id=actor_user_id,
            created_at=utcnow(),
        )
        db.session.add(item)
        db.session.flush()
        _add_customization_rows(item.id, computed)
        db.session.flush()
        return {
            "item_id": item.id,
            "name": item.name,
            "qty": item.qty,
            "previous_qty": None,
            "merged": False,
        }

    result = run_atomic(_op, cancel=cancel)
    _audit("item_added_existing" if result["merged"] else "item_added", order_id, actor_user_id, {
        "item_id": result["item_id"],
        "menu_item_id": menu_item_id,
        "name": result["name"],
        "added_qty": quantity,
        "previous_qty": result["previous_qty"],
        "new_qty": result["qty"],
        "note": clean_note,
    })
    return {"item_id": result["item_id"], "qty": result["qty"], "merged": result["merged"]}


def update_item(item_id: int, actor_user_id: int, patch: dict, *, cancel=None) -> dict:
    """
    Patch an order line.

    Supported keys: qty, discount_amount, discount_percent, note, customizations.
    Replacing customizations re-derives unit_price from the current menu
    price plus the new delta and replaces the snapshot rows and signature.

    Raises:
        NotFoundError: ORDER_ITEM_NOT_FOUND, MENU_ITEM_NOT_FOUND
        RuleViolation: ORDER_ITEM_VOIDED, ORDER_LOCKED, ORDER_ITEM_QTY_INVALID,
            DISCOUNT_INVALID, CUSTOMIZATION_REQUIRED, CUSTOMIZATION_INVALID
    """
    def _op() -> dict:
        item = _get_item_locked(item_id)
        if item.voided:
            raise RuleViolation("ORDER_ITEM_VOIDED", f"Order item {item_id} is voided")
        order = get_order_locked(item.order_id)
        _ensure_editable(order)

        previous_qty = to_decimal(item.qty)

        if "customizations" in patch:
            if item.menu_item_id is None:
                raise NotFoundError("MENU_ITEM_NOT_FOUND", "Line is no longer linked to a menu item")
            menu_price = get_menu_item_price(item.menu_item_id)
            if menu_price is None:
                raise NotFoundError("MENU_ITEM_NOT_FOUND", f"Menu item {item.menu_item_id} not found")
            computed = compute_customizations(item.menu_item_id, patch["customizations"] or [])

            (
                db.session.query(OrderItemCustomization)
                .filter(OrderItemCustomization.order_item_id == item.id)
                .delete(synchronize_session=False)
            )
            _add_customization_rows(item.id, computed)
            item.unit_price = quantize_money(menu_price + computed.price_delta)
            item.customization_signature = computed.signature

        if patch.get("qty") is not None:
            item.qty = quantize_qty(_decimal_input(patch["qty"], "ORDER_ITEM_QTY_INVALID"))
        if patch.get("discount_amount") is not None:
            item.discount_amount = quantize_money(_decimal_input(patch["discount_amount"], "DISCOUNT_INVALID"))
        if patch.get("discount_percent") is not None:
            item.discount_percent = _decimal_input(patch["discount_percent"], "DISCOUNT_INVALID", maximum=MAX_PERCENT)
        if "note" in patch:
            item.note = _clean_text(patch["note"])

        db.session.flush()
        return {
            "item_id": item.id,
            "order_id": item.order_id,
            "name": item.name,
            "previous_qty": previous_qty,
            "qty": to_decimal(item.qty),
        }

    result = run_atomic(_op, cancel=cancel)
    qty_delta = result["qty"] - result["previous_qty"]
    if qty_delta != 0:
        _audit("item_qty_added" if qty_delta > 0 else "item_qty_removed", result["order_id"], actor_user_id, {
            "item_id": result["item_id"],
            "name": result["name"],
            "previous_qty": result["previous_qty"],
            "new_qty": result["qty"],
        })
    else:
        _audit("item_updated", result["order_id"], actor_user_id, {
            "item_id": result["item_id"],
            "fields": sorted(patch.keys()),
        })
    return {"item_id": result["item_id"], "qty": result["qty"]}


def void_item(item_id: int, actor_user_id: int, reason: str, *, cancel=None) -> dict:
    """
    Void a line. Terminal; the line stays on the ticket but leaves the totals.

    A paid order stays paid: only an explicit reopen changes its status.

    Raises:
        NotFoundError: ORDER_ITEM_NOT_FOUND_OR_ALREADY_VOIDED
        RuleViolation: VOID_REASON_REQUIRED
    """
    clean_reason = _clean_text(reason)
    if not clean_reason:
        raise RuleViolation("VOID_REASON_REQUIRED", "A void reason is required")

    def _op() -> dict:
        item = lock_for_update(db.session.query(OrderItem).filter(OrderItem.id == item_id)).first()
        if item is None or item.voided:
            raise NotFoundError(
                "ORDER_ITEM_NOT_FOUND_OR_ALREADY_VOIDED",
                f"Order item {item_id} not found or already voided",
            )
        item.voided = True
        item.void_reason = clean_reason
        item.voided_by_user_id = actor_user_id
        item.voided_at = utcnow()
        db.session.flush()
        return {"item_id": item.id, "order_id": item.order_id, "name": item.name}

    result = run_atomic(_op, cancel=cancel)
    _audit("item_voided", result["order_id"], actor_user_id, {
        "item_id": result["item_id"],
        "name": result["name"],
        "reason": clean_reason,
    })
    return result


# =============================================================================
# ORDER MUTATION
# =============================================================================

def update_order(order_id: int, patch: dict, actor_user_id: int | None = None, *, cancel=None) -> dict:
    """
    Patch order-level fields.

    Supported keys: table_id, is_takeaway, people_count, customer_id,
    discount_amount, discount_percent, service_fee, service_fee_percent,
    nickname. Setting a table clears takeaway and setting takeaway clears the
    table; a patch may not ask for both. Setting a customer re-snapshots
    their discount percent (0 when cleared or inactive).

    Raises:
        NotFoundError: ORDER_NOT_FOUND, TABLE_NOT_FOUND
        RuleViolation: ORDER_LOCKED, DESTINATION_CONFLICT, TABLE_ALREADY_HAS_OPEN_ORDER,
            DISCOUNT_INVALID, SERVICE_FEE_INVALID, PEOPLE_COUNT_INVALID
    """
    table_id = patch.get("table_id")
    takeaway = patch.get("is_takeaway")
    if table_id is not None and takeaway:
        raise RuleViolation("DESTINATION_CONFLICT", "An order cannot be both takeaway and at a table")

    def _op() -> dict:
        order = get_order_locked(order_id)
        _ensure_editable(order)

        if "table_id" in patch:
            if table_id is not None:
                _ensure_table_free(table_id, order.id)
                order.is_takeaway = False
            order.table_id = table_id
        if takeaway is not None:
            order.is_takeaway = bool(takeaway)
            if order.is_takeaway:
                order.table_id = None

        if patch.get("people_count") is not None:
            order.people_count = _people_count(patch["people_count"])

        if "customer_id" in patch:
            order.customer_id = patch["customer_id"]
            order.customer_discount_percent = get_customer_discount_percent(patch["customer_id"])

        if patch.get("discount_amount") is not None:
            order.discount_amount = quantize_money(_decimal_input(patch["discount_amount"], "DISCOUNT_INVALID"))
        if patch.get("discount_percent") is not None:
            order.discount_percent = _decimal_input(patch["discount_percent"], "DISCOUNT_INVALID", maximum=MAX_PERCENT)
        if patch.get("service_fee") is not None:
            order.service_fee = quantize_money(_decimal_input(patch["service_fee"], "SERVICE_FEE_INVALID"))
        if patch.get("service_fee_percent") is not None:
            order.service_fee_percent = _decimal_input(patch["service_fee_percent"], "SERVICE_FEE_INVALID", maximum=MAX_PERCENT)

        if "nickname" in patch:
            order.nickname = _clean_text(patch["nickname"])

        db.session.flush()
        return order.to_dict()

    result = run_atomic(_op, cancel=cancel)
    _audit("order_updated", order_id, actor_user_id, {"fields": sorted(patch.keys())})
    return result


def assign_order_destination(
    order_id: int,
    table_id: int | None,
    is_takeaway: bool,
    actor_user_id: int | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Give an order exactly one destination and promote draft -> open.

    Raises:
        NotFoundError: ORDER_NOT_FOUND, TABLE_NOT_FOUND
        RuleViolation: ORDER_NOT_OPEN, DESTINATION_CONFLICT, DESTINATION_REQUIRED,
            TABLE_ALREADY_HAS_OPEN_ORDER
    """
    if is_takeaway and table_id is not None:
        raise RuleViolation("DESTINATION_CONFLICT", "An order cannot be both takeaway and at a table")
    if not is_takeaway and table_id is None:
        raise RuleViolation("DESTINATION_REQUIRED", "Pick a table or mark the order as takeaway")

    def _op() -> dict:
        order = get_order_locked(order_id)
        if order.status not in EDITABLE_STATUSES:
            raise RuleViolation("ORDER_NOT_OPEN", f"Order {order_id} is {order.status}")

        if not is_takeaway:
            _ensure_table_free(table_id, order.id)

        order.table_id = None if is_takeaway else table_id
        order.is_takeaway = bool(is_takeaway)
        promote_to_open(order)
        db.session.flush()
        return order.to_dict()

    result = run_atomic(_op, cancel=cancel)
    _audit("order_destination_assigned", order_id, actor_user_id, {
        "table_id": table_id,
        "is_takeaway": bool(is_takeaway),
    })
    return result


def change_table(order_id: int, table_id: int | None, actor_user_id: int | None = None, *, cancel=None) -> dict:
    """
    Move an open order to another table (or off any table).

    Raises:
        NotFoundError: ORDER_NOT_FOUND, TABLE_NOT_FOUND
        RuleViolation: ORDER_LOCKED, TABLE_ALREADY_HAS_OPEN_ORDER
    """
    def _op() -> dict:
        order = get_order_locked(order_id)
        if order.status != ORDER_STATUS_OPEN:
            raise RuleViolation("ORDER_LOCKED", f"Order {order_id} is {order.status}")
        if table_id is not None:
            _ensure_table_free(table_id, order.id)
        previous_table_id = order.table_id
        order.table_id = table_id
        order.is_takeaway = False
        db.session.flush()
        return {"order": order.to_dict(), "previous_table_id": previous_table_id}

    result = run_atomic(_op, cancel=cancel)
    _audit("order_table_changed", order_id, actor_user_id, {
        "from_table_id": result["previous_table_id"],
        "to_table_id": table_id,
    })
    return result["order"]


def merge_orders(
    order_ids: list[int],
    actor_user_id: int,
    target_order_id: int | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Merge several open orders into one target, deleting the sources.

    WHY: Two tables pushed together become one bill. Items, payments and
    queued print jobs move to the target; the ledger postings of moved
    payments are untouched because they reference the payment, not the order.
    All-or-nothing.

    Raises:
        NotFoundError: ORDER_NOT_FOUND
        RuleViolation: MERGE_MIN_2, MERGE_TARGET_INVALID, ORDER_LOCKED
    """
    unique_ids: list[int] = []
    for oid in order_ids or []:
        if oid and oid not in unique_ids:
            unique_ids.append(oid)

    if len(unique_ids) < 2:
        raise RuleViolation("MERGE_MIN_2", "Select at least two orders to merge")

    target_id = target_order_id if target_order_id is not None else unique_ids[0]
    if target_id not in unique_ids:
        raise RuleViolation("MERGE_TARGET_INVALID", "The target must be one of the merged orders")

    source_ids = [oid for oid in unique_ids if oid != target_id]

    def _op() -> dict:
        orders = (
            lock_for_update(db.session.query(Order).filter(Order.id.in_(unique_ids)))
            .all()
        )
        if len(orders) != len(unique_ids):
            raise NotFoundError("ORDER_NOT_FOUND", "One or more orders were not found")
        if any(o.status != ORDER_STATUS_OPEN for o in orders):
            raise RuleViolation("ORDER_LOCKED", "Only open orders can be merged")

        target = next(o for o in orders if o.id == target_id)

        items = db.session.query(OrderItem).filter(OrderItem.order_id.in_(source_ids)).all()
        for item in items:
            item.order_id = target_id

        payments = db.session.query(Payment).filter(Payment.order_id.in_(source_ids)).all()
        for payment in payments:
            payment.order_id = target_id

        queue_items = db.session.query(PrintQueueItem).filter(PrintQueueItem.order_id.in_(source_ids)).all()
        for queue_item in queue_items:
            queue_item.order_id = target_id

        # Children must point at the target before their old parents go
        db.session.flush()
        check_cancelled(cancel)

        for order in orders:
            if order.id != target_id:
                db.session.delete(order)
        db.session.flush()

        return {
            "target_order_id": target_id,
            "target_order_no": target.order_no_display,
            "merged_order_ids": source_ids,
            "merged_order_count": len(source_ids),
            "moved_items_count": len(items),
            "moved_payments_count": len(payments),
            "moved_print_queue_count": len(queue_items),
        }

    result = run_atomic(_op, cancel=cancel)
    _audit("orders_merged", target_id, actor_user_id, result)
    return result


def discard_draft_order(order_id: int, actor_user_id: int, *, cancel=None) -> dict:
    """
    Hard-delete a draft with everything hanging off it.

    Raises:
        NotFoundError: ORDER_NOT_FOUND
        RuleViolation: ORDER_NOT_DRAFT
    """
    def _op() -> dict:
        order = get_order_locked(order_id)
        if order.status != ORDER_STATUS_DRAFT:
            raise RuleViolation("ORDER_NOT_DRAFT", f"Order {order_id} is {order.status}")

        item_ids = [row.id for row in db.session.query(OrderItem.id).filter(OrderItem.order_id == order_id)]
        if item_ids:
            (
                db.session.query(OrderItemCustomization)
                .filter(OrderItemCustomization.order_item_id.in_(item_ids))
                .delete(synchronize_session=False)
            )
        deleted_items = (
            db.session.query(OrderItem)
            .filter(OrderItem.order_id == order_id)
            .delete(synchronize_session=False)
        )

        payment_ids = [row.id for row in db.session.query(Payment.id).filter(Payment.order_id == order_id)]
        delete_source_postings(SOURCE_POS_PAYMENT, payment_ids)
        deleted_payments = (
            db.session.query(Payment)
            .filter(Payment.order_id == order_id)
            .delete(synchronize_session=False)
        )

        deleted_queue = (
            db.session.query(PrintQueueItem)
            .filter(PrintQueueItem.order_id == order_id)
            .delete(synchronize_session=False)
        )

        db.session.delete(order)
        db.session.flush()
        return {
            "order_id": order_id,
            "deleted_items": deleted_items,
            "deleted_payments": deleted_payments,
            "deleted_print_queue_items": deleted_queue,
        }

    result = run_atomic(_op, cancel=cancel)
    _audit("draft_order_discarded", order_id, actor_user_id, result)
    return result


def reopen_order(
    order_id: int,
    clear_payments: bool = False,
    actor_user_id: int | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Move a paid order back to open.

    With clear_payments, the order's payments are deleted together with
    their pos_payment ledger postings (the compensating void), so the
    ledger stays consistent with the order.

    Raises:
        NotFoundError: ORDER_NOT_FOUND
        RuleViolation: ORDER_NOT_PAID, TABLE_ALREADY_HAS_OPEN_ORDER
    """
    def _op() -> dict:
        order = get_order_locked(order_id)
        if order.status != ORDER_STATUS_PAID:
            raise RuleViolation("ORDER_NOT_PAID", f"Order {order_id} is {order.status}")
        if order.table_id is not None:
            _ensure_table_free(order.table_id, order.id)

        cleared = 0
        if clear_payments:
            payment_ids = [row.id for row in db.session.query(Payment.id).filter(Payment.order_id == order_id)]
            delete_source_postings(SOURCE_POS_PAYMENT, payment_ids)
            cleared = (
                db.session.query(Payment)
                .filter(Payment.order_id == order_id)
                .delete(synchronize_session=False)
            )

        order.status = ORDER_STATUS_OPEN
        db.session.flush()
        return {"order": order.to_dict(), "cleared_payments": cleared}

    result = run_atomic(_op, cancel=cancel)
    _audit("order_reopened", order_id, actor_user_id, {
        "clear_payments": bool(clear_payments),
        "cleared_payments": result["cleared_payments"],
    })
    return result


# =============================================================================
# KITCHEN HOOKS
# =============================================================================

def kitchen_pending_by_printer(order_id: int) -> list[dict]:
    """Unprinted, unvoided lines grouped by kitchen printer."""
    rows = (
        db.session.query(OrderItem)
        .filter(
            OrderItem.order_id == order_id,
            OrderItem.voided.is_(False),
            OrderItem.printer_id.isnot(None),
            OrderItem.kitchen_printed_at.is_(None),
        )
        .order_by(OrderItem.created_at, OrderItem.id)
        .all()
    )
    customizations = _customizations_by_item([r.id for r in rows])

    grouped: dict[int, list[dict]] = {}
    for row in rows:
        grouped.setdefault(row.printer_id, []).append({
            "item_id": row.id,
            "name": row.name,
            "qty": float(row.qty),
            "note": row.note,
            "customizations": [
                {"name": c["option_name"], "qty": c["qty"]} for c in customizations.get(row.id, [])
            ],
        })
    return [{"printer_id": printer_id, "items": items} for printer_id, items in grouped.items()]


def queue_kitchen_tickets(order_id: int, *, cancel=None) -> list[dict]:
    """Create one pending print job per printer that has unprinted lines."""
    def _op() -> list[dict]:
        order = get_order_locked(order_id)
        jobs = []
        for group in kitchen_pending_by_printer(order.id):
            job = PrintQueueItem(
                order_id=order.id,
                printer_id=group["printer_id"],
                kind="kitchen",
                status="pending",
                created_at=utcnow(),
            )
            db.session.add(job)
            jobs.append(job)
        db.session.flush()
        return [j.to_dict() for j in jobs]

    return run_atomic(_op, cancel=cancel)


def mark_kitchen_printed(item_ids: list[int], *, cancel=None) -> int:
    """Stamp lines as sent to the kitchen; printed lines no longer merge."""
    if not item_ids:
        return 0

    def _op() -> int:
        rows = db.session.query(OrderItem).filter(OrderItem.id.in_(list(item_ids))).all()
        now = utcnow()
        for row in rows:
            row.kitchen_printed_at = now
        db.session.flush()
        return len(rows)

    return run_atomic(_op, cancel=cancel)
