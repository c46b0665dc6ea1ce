# Overview: Pure pricing waterfall for an order: items -> customer discount -> order discount -> service fee -> payments.

"""
Order Pricing Service

WHY: Every consumer of an order's money (payment posting, receipts, the
open-orders screen) must see the same numbers. Totals are never stored;
they are recomputed from rows through one fixed waterfall.

WATERFALL (order matters):
1. Items: gross = qty x unit_price, minus item discount, floored at 0.
   Voided items are excluded entirely.
2. Customer discount: subtotal x customer_discount_percent / 100.
3. Order discount: percent of the post-customer amount, else flat amount.
4. Service fee: percent of the post-discount amount, else flat amount.
5. Payments: paid = sum, balance = total - paid (negative means overpaid).

PERCENT WINS: whenever a percent field is > 0 it overrides its amount
counterpart, even if the amount is also set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from ..money import ZERO, as_float, to_decimal


HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PricingOrder:
    customer_discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    service_fee: Decimal = ZERO
    service_fee_percent: Decimal = ZERO


@dataclass(frozen=True)
class PricingItem:
    qty: Decimal
    unit_price: Decimal
    discount_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    voided: bool = False


@dataclass(frozen=True)
class PricingPayment:
    method: str
    amount: Decimal


@dataclass
class OrderTotals:
    subtotal: Decimal = ZERO
    item_discount_total: Decimal = ZERO
    customer_discount: Decimal = ZERO
    order_discount: Decimal = ZERO
    service_fee: Decimal = ZERO
    total: Decimal = ZERO
    paid: Decimal = ZERO
    balance: Decimal = ZERO
    paid_by_method: dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "subtotal": as_float(self.subtotal),
            "item_discount_total": as_float(self.item_discount_total),
            "customer_discount": as_float(self.customer_discount),
            "order_discount": as_float(self.order_discount),
            "service_fee": as_float(self.service_fee),
            "total": as_float(self.total),
            "paid": as_float(self.paid),
            "balance": as_float(self.balance),
            "paid_by_method": {k: as_float(v) for k, v in self.paid_by_method.items()},
        }


def _percent_or_amount(base: Decimal, percent: Decimal, amount: Decimal) -> Decimal:
    if percent > 0:
        return base * percent / HUNDRED
    return amount


def compute_totals(
    order: PricingOrder,
    items: Iterable[PricingItem],
    payments: Iterable[PricingPayment],
) -> OrderTotals:
    """Run the pricing waterfall. No I/O; inputs are plain values."""
    subtotal = ZERO
    item_discount_total = ZERO

    for item in items:
        if item.voided:
            continue
        gross = to_decimal(item.qty) * to_decimal(item.unit_price)
        item_discount = _percent_or_amount(
            gross, to_decimal(item.discount_percent), to_decimal(item.discount_amount)
        )
        subtotal += max(ZERO, gross - item_discount)
        item_discount_total += item_discount

    customer_discount = max(ZERO, subtotal * to_decimal(order.customer_discount_percent) / HUNDRED)
    after_customer = max(ZERO, subtotal - customer_discount)

    order_discount = _percent_or_amount(
        after_customer, to_decimal(order.discount_percent), to_decimal(order.discount_amount)
    )
    order_discount = max(ZERO, order_discount)
    after_order = max(ZERO, after_customer - order_discount)

    service_fee = _percent_or_amount(
        after_order, to_decimal(order.service_fee_percent), to_decimal(order.service_fee)
    )
    service_fee = max(ZERO, service_fee)
    total = max(ZERO, after_order + service_fee)

    paid = ZERO
    paid_by_method: dict[str, Decimal] = {}
    for payment in payments:
        amount = to_decimal(payment.amount)
        paid += amount
        key = (payment.method or "").strip().lower()
        paid_by_method[key] = paid_by_method.get(key, ZERO) + amount

    return OrderTotals(
        subtotal=subtotal,
        item_discount_total=item_discount_total,
        customer_discount=customer_discount,
        order_discount=order_discount,
        service_fee=service_fee,
        total=total,
        paid=paid,
        balance=total - paid,
        paid_by_method=paid_by_method,
    )


# =============================================================================
# ROW ADAPTERS
# =============================================================================

def pricing_order_from_row(order) -> PricingOrder:
    return PricingOrder(
        customer_discount_percent=to_decimal(order.customer_discount_percent),
        discount_amount=to_decimal(order.discount_amount),
        discount_percent=to_decimal(order.discount_percent),
        service_fee=to_decimal(order.service_fee),
        service_fee_percent=to_decimal(order.service_fee_percent),
    )


def pricing_item_from_row(item) -> PricingItem:
    return PricingItem(
        qty=to_decimal(item.qty),
        unit_price=to_decimal(item.unit_price),
        discount_amount=to_decimal(item.discount_amount),
        discount_percent=to_decimal(item.discount_percent),
        voided=bool(item.voided),
    )


def pricing_payment_from_row(payment) -> PricingPayment:
    return PricingPayment(method=payment.method, amount=to_decimal(payment.amount))


def compute_totals_for_rows(order, items, payments) -> OrderTotals:
    return compute_totals(
        pricing_order_from_row(order),
        [pricing_item_from_row(i) for i in items],
        [pricing_payment_from_row(p) for p in payments],
    )
