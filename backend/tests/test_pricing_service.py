import unittest
from decimal import Decimal

from app.services.pricing_service import (
    PricingItem,
    PricingOrder,
    PricingPayment,
    compute_totals,
)


def D(value):
    return Decimal(str(value))


class PricingWaterfallTests(unittest.TestCase):
    def test_empty_order_is_zero(self):
        totals = compute_totals(PricingOrder(), [], [])
        self.assertEqual(totals.subtotal, 0)
        self.assertEqual(totals.total, 0)
        self.assertEqual(totals.balance, 0)
        self.assertEqual(totals.paid_by_method, {})

    def test_customer_then_order_discount_then_percent_service_fee(self):
        order = PricingOrder(
            customer_discount_percent=D(10),
            discount_amount=D(5),
            service_fee_percent=D(10),
        )
        items = [PricingItem(qty=D(2), unit_price=D(25))]
        totals = compute_totals(order, items, [])

        self.assertEqual(totals.subtotal, D(50))
        self.assertEqual(totals.customer_discount, D(5))
        self.assertEqual(totals.order_discount, D(5))
        self.assertEqual(totals.service_fee, D(4))
        self.assertEqual(totals.total, D(44))

    def test_percent_discount_overrides_amount(self):
        order = PricingOrder(discount_amount=D(999), discount_percent=D(10))
        totals = compute_totals(order, [PricingItem(qty=D(1), unit_price=D(100))], [])
        self.assertEqual(totals.order_discount, D(10))
        self.assertEqual(totals.total, D(90))

    def test_item_percent_discount_overrides_amount(self):
        item = PricingItem(qty=D(1), unit_price=D(40), discount_amount=D(30), discount_percent=D(25))
        totals = compute_totals(PricingOrder(), [item], [])
        self.assertEqual(totals.item_discount_total, D(10))
        self.assertEqual(totals.subtotal, D(30))

    def test_item_discount_larger_than_line_floors_at_zero(self):
        items = [
            PricingItem(qty=D(1), unit_price=D(5), discount_amount=D(8)),
            PricingItem(qty=D(1), unit_price=D(7)),
        ]
        totals = compute_totals(PricingOrder(), items, [])
        self.assertEqual(totals.subtotal, D(7))

    def test_voided_items_are_excluded(self):
        items = [
            PricingItem(qty=D(3), unit_price=D(10), voided=True),
            PricingItem(qty=D(1), unit_price=D(4)),
        ]
        totals = compute_totals(PricingOrder(), items, [])
        self.assertEqual(totals.subtotal, D(4))
        self.assertEqual(totals.item_discount_total, 0)

    def test_order_discount_cannot_push_total_below_zero(self):
        order = PricingOrder(discount_amount=D(500), service_fee=D(3))
        totals = compute_totals(order, [PricingItem(qty=D(1), unit_price=D(20))], [])
        self.assertEqual(totals.total, D(3))

    def test_overpayment_gives_negative_balance(self):
        payments = [PricingPayment("cash", D(50)), PricingPayment("Card", D(10)), PricingPayment("card", D(5))]
        totals = compute_totals(PricingOrder(), [PricingItem(qty=D(1), unit_price=D(60))], payments)
        self.assertEqual(totals.paid, D(65))
        self.assertEqual(totals.balance, D(-5))
        self.assertEqual(totals.paid_by_method, {"cash": D(50), "card": D(15)})

    def test_exact_decimal_math(self):
        totals = compute_totals(
            PricingOrder(),
            [PricingItem(qty=D(3), unit_price=D("3.30"))],
            [PricingPayment("cash", D("9.9"))],
        )
        self.assertEqual(totals.total, D("9.9"))
        self.assertEqual(totals.balance, 0)

    def test_to_dict_is_json_friendly(self):
        totals = compute_totals(PricingOrder(), [PricingItem(qty=D(2), unit_price=D("1.25"))], [])
        data = totals.to_dict()
        self.assertEqual(data["subtotal"], 2.5)
        self.assertIsInstance(data["total"], float)


if __name__ == "__main__":
    unittest.main()
