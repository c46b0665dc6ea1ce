"""
Shift open/close tests: session accounts, cash reconciliation, vault merge.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models import Account, AccountTransaction, Shift
from app.services import accounting_service, order_service, settlement_service, shift_service
from app.services.errors import ConflictError, NotFoundError, RuleViolation
from app.services.ledger_service import account_balance
from app.services.system_accounts_service import SCOPE_SHIFT_SESSION, SCOPE_VAULT_BASE


def _vault(key):
    return db.session.query(Account).filter_by(account_scope=SCOPE_VAULT_BASE, account_key=key).one()


def _sessions(shift_id):
    return db.session.query(Account).filter_by(account_scope=SCOPE_SHIFT_SESSION, shift_id=shift_id).all()


def _paid_order(cashier_id, menu_item_id, qty, method, amount):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu_item_id, qty)
    settlement_service.add_payment(order_id, cashier_id, method, amount)
    return order_id


def test_open_shift_provisions_session_accounts(db_session, cashier_id):
    summary = shift_service.open_shift(cashier_id, "150")
    shift_id = summary["shift"]["id"]

    accounts = {a.account_key: a for a in _sessions(shift_id)}
    assert set(accounts) == {"session_main", "cash", "card", "cheque", "debt", "expenses"}
    assert all(a.is_system and a.is_locked for a in accounts.values())
    assert accounts["cash"].parent_account_id == accounts["session_main"].id
    assert accounts["cash"].base_account_id == _vault("cash").id
    assert account_balance(accounts["cash"].id) == Decimal("150")
    assert summary["expected_cash"] == 150.0


def test_second_open_shift_is_rejected(db_session, open_shift, cashier_id):
    with pytest.raises(RuleViolation) as exc:
        shift_service.open_shift(cashier_id, 0)
    assert exc.value.code == "SHIFT_ALREADY_OPEN"


def test_open_marker_blocks_a_racing_open(db_session, open_shift):
    # Bypass the service check: the unique column still refuses a second open row
    db.session.add(Shift(opened_by_user_id=1, opening_cash=0, open_marker=True))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_negative_opening_cash_is_rejected(db_session, cashier_id):
    with pytest.raises(RuleViolation) as exc:
        shift_service.open_shift(cashier_id, -1)
    assert exc.value.code == "SHIFT_CASH_INVALID"


def test_close_unknown_shift(db_session, cashier_id):
    with pytest.raises(NotFoundError) as exc:
        shift_service.close_shift(cashier_id, 999, 0)
    assert exc.value.code == "SHIFT_NOT_FOUND"


def test_close_merges_everything_into_the_vault(db_session, open_shift, menu, cashier_id):
    _paid_order(cashier_id, menu["pizza"], 1, "cash", 10)
    _paid_order(cashier_id, menu["pizza"], 2, "card", 20)
    accounting_service.create_cashier_expense(cashier_id, 15, supplier="Market", note="lemons")

    current = shift_service.get_current_shift_summary()
    assert current["expected_cash"] == 95.0
    assert current["totals"]["cash"] == 10.0
    assert current["totals"]["card"] == 20.0

    # Drawer count is 2.00 short of the expected 95.00
    summary = shift_service.close_shift(cashier_id, open_shift, "93")
    assert summary["expected_cash"] == 95.0
    assert summary["difference"] == -2.0
    assert summary["shift"]["is_open"] is False

    for account in _sessions(open_shift):
        assert account.is_active is False
        assert account_balance(account.id) == 0

    assert account_balance(_vault("cash").id) == Decimal("93")
    assert account_balance(_vault("card").id) == Decimal("20")
    assert account_balance(_vault("expenses").id) == Decimal("15")

    merges = {m["method"]: m for m in summary["merges"]}
    assert set(merges) == {"cash", "card", "expenses"}

    adjustment = db.session.query(AccountTransaction).filter_by(source_type="shift_cash_adjustment").one()
    assert adjustment.direction == "out"
    assert adjustment.amount == Decimal("2")

    assert shift_service.get_open_shift() is None
    assert shift_service.get_current_shift_summary() is None


def test_cash_over_posts_an_in_adjustment(db_session, open_shift, cashier_id):
    summary = shift_service.close_shift(cashier_id, open_shift, "104.50")
    assert summary["difference"] == 4.5

    adjustment = db.session.query(AccountTransaction).filter_by(source_type="shift_cash_adjustment").one()
    assert adjustment.direction == "in"
    assert account_balance(_vault("cash").id) == Decimal("104.50")


def test_exact_count_posts_no_adjustment(db_session, open_shift, cashier_id):
    shift_service.close_shift(cashier_id, open_shift, 100)
    assert db.session.query(AccountTransaction).filter_by(source_type="shift_cash_adjustment").count() == 0


def test_closed_shift_cannot_be_closed_again(db_session, open_shift, cashier_id):
    shift_service.close_shift(cashier_id, open_shift, 100)
    with pytest.raises(NotFoundError):
        shift_service.close_shift(cashier_id, open_shift, 100)


def test_new_shift_after_close(db_session, open_shift, cashier_id):
    shift_service.close_shift(cashier_id, open_shift, 100)
    summary = shift_service.open_shift(cashier_id, 50)
    assert summary["shift"]["id"] != open_shift

    shifts = shift_service.list_shifts(limit=10)
    assert [s["id"] for s in shifts][:2] == [summary["shift"]["id"], open_shift]


def test_concurrent_open_surfaces_as_conflict(db_session, open_shift, cashier_id, monkeypatch):
    # Simulate the check-then-insert race: the service believes no shift is open
    monkeypatch.setattr(shift_service, "get_open_shift", lambda: None)
    with pytest.raises(ConflictError) as exc:
        shift_service.open_shift(cashier_id, 0)
    assert exc.value.code == "CONFLICT"
