"""
Accounting tests: account CRUD, relations, manual postings, expenses,
cashier expenses and the ledger view.
"""

from decimal import Decimal

import pytest

from app.extensions import db
from app.models import Account, AccountTransaction, Expense
from app.services import accounting_service, order_service, settlement_service
from app.services.concurrency import run_atomic
from app.services.errors import NotFoundError, RuleViolation
from app.services.ledger_service import account_balance
from app.services.system_accounts_service import SCOPE_SHIFT_SESSION, ensure_vault_base_accounts


def _vault_ids():
    return run_atomic(lambda: {k: a.id for k, a in ensure_vault_base_accounts().items()})


def _session_account_id(shift_id, key):
    return db.session.query(Account.id).filter_by(
        account_scope=SCOPE_SHIFT_SESSION, shift_id=shift_id, account_key=key,
    ).scalar()


# =============================================================================
# ACCOUNTS
# =============================================================================

def test_create_account_defaults(db_session):
    account = accounting_service.create_account("  Safe  ")
    assert account["name"] == "Safe"
    assert account["type"] == "cash"
    assert account["currency"] == "ILS"
    assert account["account_scope"] == "custom"
    assert account["balance"] == 0.0
    assert account["relations"] == []


def test_create_account_requires_name(db_session):
    with pytest.raises(RuleViolation) as exc:
        accounting_service.create_account("   ")
    assert exc.value.code == "ACCOUNT_NAME_REQUIRED"


def test_parent_rules(db_session, open_shift):
    parent = accounting_service.create_account("Parent")
    child = accounting_service.create_account("Child", parent_account_id=parent["id"])
    assert child["parent_account_name"] == "Parent"
    assert accounting_service.get_account(parent["id"])["sub_accounts_count"] == 1

    with pytest.raises(RuleViolation) as exc:
        accounting_service.update_account(parent["id"], {"parent_account_id": parent["id"]})
    assert exc.value.code == "ACCOUNT_PARENT_SELF"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.update_account(parent["id"], {"parent_account_id": child["id"]})
    assert exc.value.code == "ACCOUNT_PARENT_CYCLE"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.create_account("Orphan", parent_account_id=98765)
    assert exc.value.code == "PARENT_ACCOUNT_NOT_FOUND"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.create_account("Under shift", parent_account_id=_session_account_id(open_shift, "cash"))
    assert exc.value.code == "ACCOUNT_MANAGED_BY_SHIFT"


def test_system_accounts_are_locked(db_session):
    vault = _vault_ids()
    with pytest.raises(RuleViolation) as exc:
        accounting_service.update_account(vault["cash"], {"name": "Mine now"})
    assert exc.value.code == "ACCOUNT_LOCKED"


def test_update_account_fields(db_session):
    account = accounting_service.create_account("Bank A", type="bank", currency="usd")
    assert account["currency"] == "USD"

    updated = accounting_service.update_account(account["id"], {"name": "Bank B", "is_active": False})
    assert updated["name"] == "Bank B"
    assert updated["is_active"] is False

    with pytest.raises(NotFoundError) as exc:
        accounting_service.update_account(424242, {"name": "x"})
    assert exc.value.code == "ACCOUNT_NOT_FOUND"


def test_relations_are_replaced_and_validated(db_session):
    source = accounting_service.create_account("Revenue")
    a = accounting_service.create_account("Owner A")
    b = accounting_service.create_account("Owner B")

    result = accounting_service.update_account(source["id"], {"relations": [
        {"target_account_id": a["id"], "percentage": 60},
        {"target_account_id": b["id"], "percentage": "40", "kind": "ALLOCATION"},
    ]})
    assert [(r["target_account_name"], r["percentage"], r["kind"]) for r in result["relations"]] == [
        ("Owner A", 60.0, "allocation"),
        ("Owner B", 40.0, "allocation"),
    ]

    result = accounting_service.update_account(source["id"], {"relations": [
        {"target_account_id": b["id"], "percentage": 25},
    ]})
    assert len(result["relations"]) == 1

    cases = [
        ([{"target_account_id": a["id"], "percentage": 70}, {"target_account_id": b["id"], "percentage": 40}],
         "ACCOUNT_RELATION_PERCENTAGE_OVER_100"),
        ([{"target_account_id": a["id"], "percentage": 10}, {"target_account_id": a["id"], "percentage": 10}],
         "ACCOUNT_RELATION_DUPLICATE"),
        ([{"target_account_id": source["id"], "percentage": 10}], "ACCOUNT_RELATION_SELF"),
        ([{"target_account_id": a["id"], "percentage": 0}], "BAD_ACCOUNT_RELATION_PERCENTAGE"),
        ([{"target_account_id": a["id"], "percentage": 101}], "BAD_ACCOUNT_RELATION_PERCENTAGE"),
        ([{"percentage": 10}], "BAD_ACCOUNT_RELATION"),
        ([{"target_account_id": 777777, "percentage": 10}], "RELATION_ACCOUNT_NOT_FOUND"),
    ]
    for relations, code in cases:
        with pytest.raises(RuleViolation) as exc:
            accounting_service.update_account(source["id"], {"relations": relations})
        assert exc.value.code == code

    # Failed updates left the previous relation in place
    assert len(accounting_service.get_account(source["id"])["relations"]) == 1


def test_relation_cycles_are_rejected(db_session):
    a = accounting_service.create_account("A")
    b = accounting_service.create_account("B")
    c = accounting_service.create_account("C")

    accounting_service.update_account(a["id"], {"relations": [{"target_account_id": b["id"], "percentage": 50}]})
    accounting_service.update_account(b["id"], {"relations": [{"target_account_id": c["id"], "percentage": 50}]})

    with pytest.raises(RuleViolation) as exc:
        accounting_service.update_account(b["id"], {"relations": [{"target_account_id": a["id"], "percentage": 50}]})
    assert exc.value.code == "ACCOUNT_RELATION_CYCLE"

    # Longer loop: c -> a closes a -> b -> c
    with pytest.raises(RuleViolation) as exc:
        accounting_service.update_account(c["id"], {"relations": [{"target_account_id": a["id"], "percentage": 10}]})
    assert exc.value.code == "ACCOUNT_RELATION_CYCLE"

    # Rolled back: b still points at c only
    assert [r["target_account_id"] for r in accounting_service.get_account(b["id"])["relations"]] == [c["id"]]

    # Other kinds form a separate graph
    back = accounting_service.update_account(c["id"], {"relations": [
        {"target_account_id": a["id"], "percentage": 10, "kind": "tax"},
    ]})
    assert len(back["relations"]) == 1


def test_relations_of_different_kinds_have_separate_budgets(db_session):
    source = accounting_service.create_account("Revenue")
    a = accounting_service.create_account("Owner A")
    result = accounting_service.update_account(source["id"], {"relations": [
        {"target_account_id": a["id"], "percentage": 80, "kind": "allocation"},
        {"target_account_id": a["id"], "percentage": 80, "kind": "tax"},
    ]})
    assert len(result["relations"]) == 2


# =============================================================================
# MANUAL POSTINGS
# =============================================================================

def test_deposit_withdraw_transfer(db_session, cashier_id):
    safe = accounting_service.create_account("Safe")
    bank = accounting_service.create_account("Bank", type="bank")

    accounting_service.deposit(cashier_id, safe["id"], "250.00", note="float")
    accounting_service.withdraw(cashier_id, safe["id"], 50)
    transfer = accounting_service.transfer(cashier_id, safe["id"], bank["id"], 120, note="deposit run")

    assert transfer["amount"] == 120.0
    assert account_balance(safe["id"]) == Decimal("80")
    assert account_balance(bank["id"]) == Decimal("120")

    with pytest.raises(RuleViolation) as exc:
        accounting_service.deposit(cashier_id, safe["id"], 0)
    assert exc.value.code == "AMOUNT_INVALID"


def test_transfer_rules(db_session, open_shift, cashier_id):
    ils = accounting_service.create_account("ILS box")
    usd = accounting_service.create_account("USD box", currency="USD")

    with pytest.raises(RuleViolation) as exc:
        accounting_service.transfer(cashier_id, ils["id"], ils["id"], 5)
    assert exc.value.code == "TRANSFER_SAME_ACCOUNT"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.transfer(cashier_id, ils["id"], usd["id"], 5)
    assert exc.value.code == "TRANSFER_CURRENCY_MISMATCH"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.transfer(cashier_id, _session_account_id(open_shift, "cash"), ils["id"], 5)
    assert exc.value.code == "ACCOUNT_MANAGED_BY_SHIFT"


def test_inactive_account_refuses_postings(db_session, cashier_id):
    account = accounting_service.create_account("Old")
    accounting_service.update_account(account["id"], {"is_active": False})
    with pytest.raises(RuleViolation) as exc:
        accounting_service.deposit(cashier_id, account["id"], 5)
    assert exc.value.code == "ACCOUNT_INACTIVE"


def test_payment_method_mapping(db_session, open_shift):
    account = accounting_service.create_account("Wallet")
    mapping = accounting_service.set_payment_method_account(" Voucher ", account["id"])
    assert mapping["method"] == "voucher"

    other = accounting_service.create_account("Wallet 2")
    accounting_service.set_payment_method_account("voucher", other["id"])
    mappings = accounting_service.list_payment_method_accounts()
    assert [(m["method"], m["account_id"]) for m in mappings] == [("voucher", other["id"])]

    with pytest.raises(RuleViolation) as exc:
        accounting_service.set_payment_method_account("  ", account["id"])
    assert exc.value.code == "BAD_METHOD"

    with pytest.raises(RuleViolation) as exc:
        accounting_service.set_payment_method_account("voucher", _session_account_id(open_shift, "cash"))
    assert exc.value.code == "ACCOUNT_MANAGED_BY_SHIFT"


# =============================================================================
# RECEIPTS / EXPENSES
# =============================================================================

def test_receipt_posts_manual_receipt(db_session, cashier_id):
    account = accounting_service.create_account("Catering")
    receipt = accounting_service.create_receipt(cashier_id, 300, "bank", account["id"], source="Event")

    assert receipt["method"] == "card"
    posting = db.session.query(AccountTransaction).filter_by(source_type="manual_receipt").one()
    assert posting.source_id == receipt["id"]
    assert account_balance(account["id"]) == Decimal("300")


def test_expense_moves_money_to_vault_expenses(db_session, cashier_id):
    vault = _vault_ids()
    accounting_service.deposit(cashier_id, vault["cash"], 500)

    expense = accounting_service.create_expense(cashier_id, "Produce", 120, "cash", vault["cash"], supplier="Farm")

    assert expense["account_id"] == vault["expenses"]
    assert account_balance(vault["cash"]) == Decimal("380")
    assert account_balance(vault["expenses"]) == Decimal("120")
    legs = db.session.query(AccountTransaction).filter_by(source_type="expense", source_id=expense["id"]).all()
    assert sorted(leg.direction for leg in legs) == ["in", "out"]


def test_expense_cannot_be_paid_from_expenses_account(db_session, cashier_id):
    vault = _vault_ids()
    with pytest.raises(RuleViolation) as exc:
        accounting_service.create_expense(cashier_id, "Produce", 10, "cash", vault["expenses"])
    assert exc.value.code == "BAD_ACCOUNT_SELECTION"


# =============================================================================
# CASHIER EXPENSES
# =============================================================================

def test_cashier_expense_requires_open_shift(db_session, cashier_id):
    with pytest.raises(RuleViolation) as exc:
        accounting_service.create_cashier_expense(cashier_id, 10)
    assert exc.value.code == "SHIFT_REQUIRED"


def test_cashier_expense_leaves_the_drawer(db_session, open_shift, cashier_id):
    result = accounting_service.create_cashier_expense(cashier_id, "12.345", supplier="Kiosk")
    assert result["amount"] == 12.35
    assert result["cap_amount"] is None
    assert result["spent_amount"] == 12.35

    cash_id = _session_account_id(open_shift, "cash")
    expenses_id = _session_account_id(open_shift, "expenses")
    assert account_balance(cash_id) == Decimal("87.65")
    assert account_balance(expenses_id) == Decimal("12.35")


def test_cashier_expense_cap(app, db_session, open_shift, cashier_id):
    app.config["CASHIER_EXPENSES_CAP_AMOUNT"] = "50"
    try:
        first = accounting_service.create_cashier_expense(cashier_id, 30)
        assert first["remaining_amount"] == 20.0

        with pytest.raises(RuleViolation) as exc:
            accounting_service.create_cashier_expense(cashier_id, "20.01")
        assert exc.value.code == "CASHIER_EXPENSE_CAP_EXCEEDED"

        # Editing may reuse the expense's own share of the cap
        updated = accounting_service.update_cashier_expense(first["id"], cashier_id, 50)
        assert updated["remaining_amount"] == 0.0

        overview = accounting_service.cashier_expense_overview()
        assert overview["spent_amount"] == 50.0
        assert overview["drawer_balance"] == 50.0
    finally:
        app.config["CASHIER_EXPENSES_CAP_AMOUNT"] = ""


def test_cashier_expenses_can_be_disabled(app, db_session, open_shift, cashier_id):
    app.config["CASHIER_EXPENSES_ENABLED"] = False
    try:
        with pytest.raises(RuleViolation) as exc:
            accounting_service.create_cashier_expense(cashier_id, 5)
        assert exc.value.code == "CASHIER_EXPENSES_DISABLED"
    finally:
        app.config["CASHIER_EXPENSES_ENABLED"] = True


def test_update_and_delete_cashier_expense(db_session, open_shift, cashier_id):
    created = accounting_service.create_cashier_expense(cashier_id, 10, note="ice")
    cash_id = _session_account_id(open_shift, "cash")

    accounting_service.update_cashier_expense(created["id"], cashier_id, 25, note="more ice")
    assert account_balance(cash_id) == Decimal("75")
    legs = db.session.query(AccountTransaction).filter_by(source_type="cashier_expense").all()
    assert len(legs) == 2
    assert all(leg.amount == Decimal("25") for leg in legs)

    result = accounting_service.delete_cashier_expense(created["id"])
    assert result["spent_amount"] == 0.0
    assert account_balance(cash_id) == Decimal("100")
    assert db.session.query(Expense).count() == 0
    assert db.session.query(AccountTransaction).filter_by(source_type="cashier_expense").count() == 0

    with pytest.raises(NotFoundError) as exc:
        accounting_service.delete_cashier_expense(created["id"])
    assert exc.value.code == "CASHIER_EXPENSE_NOT_FOUND"


# =============================================================================
# LEDGER VIEW
# =============================================================================

def test_ledger_is_newest_first_with_order_numbers(db_session, open_shift, menu, cashier_id):
    order_id = order_service.create_order(cashier_id)["id"]
    order_service.add_item(order_id, cashier_id, menu["soda"], 1)
    settlement_service.add_payment(order_id, cashier_id, "cash", "3.30")

    ledger = accounting_service.list_ledger()
    assert ledger[0]["source_type"] == "pos_payment"
    assert ledger[0]["order_id"] == order_id
    assert ledger[0]["order_no"] == "01"
    assert ledger[-1]["source_type"] == "shift_opening_cash"
    assert ledger[-1]["order_no"] is None
    assert all(entry["account_name"] for entry in ledger)


def test_list_accounts_reports_balances(db_session, open_shift):
    accounts = {(a["account_scope"], a["account_key"]): a for a in accounting_service.list_accounts()}
    assert accounts[("shift_session", "cash")]["balance"] == 100.0
    assert accounts[("shift_session", "session_main")]["sub_accounts_count"] == 5
    assert accounts[("vault_base", "cash")]["balance"] == 0.0
