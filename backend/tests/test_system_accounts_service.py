"""
System account provisioning and payment routing tests.
"""

from decimal import Decimal

from app.extensions import db
from app.models import Account, AccountTransaction, Shift
from app.services.concurrency import run_atomic
from app.services.ledger_service import account_balance, post_transaction
from app.services.system_accounts_service import (
    SCOPE_VAULT_BASE,
    ensure_shift_session_accounts,
    ensure_vault_base_accounts,
    merge_shift_accounts_to_vault,
    normalize_method,
    resolve_account_for_payment,
)


def test_normalize_method_folds_bank_into_card():
    assert normalize_method("  BANK ") == "card"
    assert normalize_method("Cash") == "cash"
    assert normalize_method(None) == ""


def test_vault_accounts_are_idempotent(db_session):
    first = run_atomic(lambda: {k: a.id for k, a in ensure_vault_base_accounts().items()})
    second = run_atomic(lambda: {k: a.id for k, a in ensure_vault_base_accounts().items()})

    assert first == second
    assert set(first) == {"cash", "card", "cheque", "debt", "expenses"}
    assert db.session.query(Account).filter_by(account_scope=SCOPE_VAULT_BASE).count() == 5


def test_vault_accounts_are_renormalised(db_session):
    ids = run_atomic(lambda: {k: a.id for k, a in ensure_vault_base_accounts().items()})
    cash = db.session.get(Account, ids["cash"])
    cash.name = "Renamed"
    cash.is_active = False
    cash.is_locked = False
    db.session.commit()

    run_atomic(ensure_vault_base_accounts)
    cash = db.session.get(Account, ids["cash"])
    assert cash.name == "Vault Cash"
    assert cash.is_active is True
    assert cash.is_locked is True


def test_resolution_prefers_session_then_vault(db_session, open_shift):
    shift = db.session.get(Shift, open_shift)

    def _resolve():
        session = resolve_account_for_payment(shift.id, "cash")
        vault = resolve_account_for_payment(None, "cash")
        unknown = resolve_account_for_payment(shift.id, "crypto")
        return session.account_scope, vault.account_scope, unknown

    assert run_atomic(_resolve) == ("shift_session", "vault_base", None)


def test_merge_transfers_negative_balance_from_vault(db_session, open_shift, cashier_id):
    shift = db.session.get(Shift, open_shift)

    def _op():
        accounts = ensure_shift_session_accounts(shift)
        # Debt slot went negative during the shift
        post_transaction(
            account_id=accounts["debt"].id, direction="out", amount=Decimal("12"),
            source_type="withdrawal", actor_user_id=cashier_id,
        )
        entries = merge_shift_accounts_to_vault(shift.id, cashier_id)
        return {e.method: e for e in entries}, accounts["debt"].id, accounts["debt"].base_account_id

    entries, debt_id, vault_debt_id = run_atomic(_op)

    debt = entries["debt"]
    assert debt.from_account_id == vault_debt_id
    assert debt.to_account_id == debt_id
    assert debt.amount == Decimal("12")
    assert account_balance(debt_id) == 0
    assert account_balance(vault_debt_id) == Decimal("-12")

    merge_postings = db.session.query(AccountTransaction).filter_by(source_type="shift_close_merge").count()
    # cash (opening 100) and debt, two postings each
    assert merge_postings == 4
