"""
Payment posting tests: order state + ledger posting in one transaction.
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from app.extensions import db
from app.models import Account, AccountTransaction, Order, Payment
from app.services import accounting_service, order_service, settlement_service
from app.services.errors import NotFoundError, OperationCancelled, RuleViolation
from app.services.ledger_service import account_balance
from app.services.system_accounts_service import SCOPE_SHIFT_SESSION, SCOPE_VAULT_BASE


def _session_account(shift_id, key):
    return db.session.query(Account).filter_by(
        account_scope=SCOPE_SHIFT_SESSION, shift_id=shift_id, account_key=key,
    ).one()


def test_exact_payment_marks_order_paid(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["soda"], 3)

    result = settlement_service.add_payment(order_id, cashier_id, "cash", 9.9)

    assert result["status"] == "paid"
    assert result["total"] == 9.9
    assert result["balance"] == 0
    assert db.session.get(Order, order_id).status == "paid"


def test_partial_payment_promotes_draft_to_open(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["pizza"], 1)

    result = settlement_service.add_payment(order_id, cashier_id, "card", "4", reference="slip-1")
    assert result["status"] == "open"
    assert result["balance"] == 6.0
    assert result["paid_by_method"] == {"card": 4.0}

    payment = db.session.get(Payment, result["payment_id"])
    assert payment.reference == "slip-1"


def test_payment_posts_to_shift_session_account(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["pizza"], 1)

    result = settlement_service.add_payment(order_id, cashier_id, "Bank", 10)

    card = _session_account(open_shift, "card")
    assert result["account_id"] == card.id
    posting = db.session.query(AccountTransaction).filter_by(
        source_type="pos_payment", source_id=result["payment_id"],
    ).one()
    assert posting.direction == "in"
    assert posting.amount == Decimal("10")
    assert account_balance(card.id) == Decimal("10")


def test_payment_falls_back_to_method_mapping(db_session, open_shift, menu, cashier_id):
    wallet = accounting_service.create_account("Voucher float", type="voucher")
    accounting_service.set_payment_method_account("voucher", wallet["id"])

    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["pizza"], 1)
    result = settlement_service.add_payment(order_id, cashier_id, "voucher", 10)

    assert result["account_id"] == wallet["id"]
    assert account_balance(wallet["id"]) == Decimal("10")


def test_unmapped_method_records_payment_without_posting(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["pizza"], 1)

    result = settlement_service.add_payment(order_id, cashier_id, "gift", 2)
    assert result["account_id"] is None
    assert db.session.query(Payment).count() == 1
    assert db.session.query(AccountTransaction).filter_by(source_type="pos_payment").count() == 0


def test_payment_without_shift_posts_to_vault(db_session, menu, cashier_id):
    # Orders can outlive their shift; route to the vault slot instead
    order = Order(business_date=date.today(), order_no=1, status="open")
    db.session.add(order)
    db.session.commit()

    result = settlement_service.add_payment(order.id, cashier_id, "cash", 5)
    vault_cash = db.session.query(Account).filter_by(account_scope=SCOPE_VAULT_BASE, account_key="cash").one()
    assert result["account_id"] == vault_cash.id


@pytest.mark.parametrize("amount", [0, -5, "abc", None])
def test_invalid_amount_is_rejected(db_session, open_shift, cashier_id, amount):
    order_id = order_service.create_order(cashier_id)["id"]
    with pytest.raises(RuleViolation) as exc:
        settlement_service.add_payment(order_id, cashier_id, "cash", amount)
    assert exc.value.code == "PAYMENT_AMOUNT_INVALID"


def test_method_is_required(db_session, open_shift, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    with pytest.raises(RuleViolation) as exc:
        settlement_service.add_payment(order_id, cashier_id, "  ", 5)
    assert exc.value.code == "PAYMENT_METHOD_REQUIRED"


def test_paid_order_refuses_more_payments(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["soda"], 1)
    settlement_service.add_payment(order_id, cashier_id, "cash", "3.30")

    with pytest.raises(RuleViolation) as exc:
        settlement_service.add_payment(order_id, cashier_id, "cash", 1)
    assert exc.value.code == "ORDER_NOT_OPEN"


def test_unknown_order(db_session, open_shift, cashier_id):
    with pytest.raises(NotFoundError) as exc:
        settlement_service.add_payment(4242, cashier_id, "cash", 1)
    assert exc.value.code == "ORDER_NOT_FOUND"


def test_cancelled_payment_persists_nothing(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["soda"], 1)

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        settlement_service.add_payment(order_id, cashier_id, "cash", "3.30", cancel=cancel)

    assert db.session.query(Payment).count() == 0
    assert db.session.query(AccountTransaction).filter_by(source_type="pos_payment").count() == 0
    assert db.session.get(Order, order_id).status == "draft"


def test_table_draft_cannot_open_on_a_taken_table(db_session, open_shift, menu, tables, cashier_id):
    draft_id = order_service.create_order(cashier_id, table_id=tables["t1"])["id"]
    order_service.add_item(draft_id, cashier_id, menu["soda"], 1)
    # Someone else opened the table while the draft was still pending
    order_service.create_or_get_open_order_for_table(cashier_id, tables["t1"])

    with pytest.raises(RuleViolation) as exc:
        settlement_service.add_payment(draft_id, cashier_id, "cash", "3.30")
    assert exc.value.code == "TABLE_ALREADY_HAS_OPEN_ORDER"

    assert db.session.get(Order, draft_id).status == "draft"
    assert db.session.query(Payment).count() == 0
