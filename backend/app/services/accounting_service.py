# Overview: Accounting operations on top of the ledger: account CRUD, relations, manual postings, expenses, receipts and the ledger view.

"""
Accounting Service

WHY: Managers need to see balances, move money between accounts and book
expenses without ever editing a balance directly. Every operation here
appends postings; balances are derived on read.

MANUAL vs SYSTEM ACCOUNTS:
- custom accounts are created and edited here
- vault_base and shift_session accounts are system + locked; they refuse
  edits (ACCOUNT_LOCKED)
- shift_session accounts additionally refuse manual postings, relation
  targets and parent assignment (ACCOUNT_MANAGED_BY_SHIFT); they are only
  touched by payments, cashier expenses and the shift close
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Account,
    AccountRelation,
    AccountTransaction,
    Expense,
    Order,
    Payment,
    PaymentMethodAccount,
    Receipt,
)
from ..money import EPSILON, MAX_AMOUNT, ZERO, as_float, quantize_money, to_decimal
from app.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_atomic
from .errors import NotFoundError, RuleViolation
from .ledger_service import (
    DIRECTION_IN,
    DIRECTION_OUT,
    SOURCE_CASHIER_EXPENSE,
    SOURCE_DEPOSIT,
    SOURCE_EXPENSE,
    SOURCE_MANUAL_RECEIPT,
    SOURCE_POS_PAYMENT,
    SOURCE_TRANSFER,
    SOURCE_WITHDRAWAL,
    account_balance,
    account_balances,
    delete_source_postings,
    post_transaction,
    post_transfer,
)
from .shift_service import require_open_shift
from .system_accounts_service import (
    SCOPE_CUSTOM,
    SCOPE_SHIFT_SESSION,
    SLOT_CASH,
    SLOT_EXPENSES,
    default_currency,
    ensure_shift_session_accounts,
    ensure_vault_base_accounts,
    normalize_method,
)


# Upper bound when walking parent links looking for a cycle
MAX_PARENT_HOPS = 200

DEFAULT_RELATION_KIND = "allocation"
CASHIER_EXPENSE_CATEGORY = "cashier_expense"


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _positive_amount(value, code: str = "AMOUNT_INVALID") -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise RuleViolation(code, "Amount must be a number") from exc
    if amount is None or amount <= 0 or amount > MAX_AMOUNT:
        raise RuleViolation(code, "Amount must be greater than zero")
    amount = quantize_money(amount)
    if amount <= 0:
        raise RuleViolation(code, "Amount must be greater than zero")
    return amount


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def get_active_manual_account(account_id: int) -> Account:
    """
    Account usable for manual postings.

    Raises:
        NotFoundError: ACCOUNT_NOT_FOUND
        RuleViolation: ACCOUNT_INACTIVE, ACCOUNT_MANAGED_BY_SHIFT
    """
    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFoundError("ACCOUNT_NOT_FOUND", f"Account {account_id} not found")
    if not account.is_active:
        raise RuleViolation("ACCOUNT_INACTIVE", f"Account {account_id} is inactive")
    if account.account_scope == SCOPE_SHIFT_SESSION:
        raise RuleViolation("ACCOUNT_MANAGED_BY_SHIFT", f"Account {account_id} is managed by a shift")
    return account


def validate_parent_assignment(account_id: int | None, parent_account_id: int | None) -> None:
    """
    Reject parent links that point at self, a missing account, a shift
    account, or that would close a cycle.

    The walk up the parent chain is bounded so a corrupted graph cannot
    spin forever.
    """
    if parent_account_id is None:
        return
    if account_id is not None and parent_account_id == account_id:
        raise RuleViolation("ACCOUNT_PARENT_SELF", "An account cannot be its own parent")

    parent = db.session.get(Account, parent_account_id)
    if parent is None:
        raise RuleViolation("PARENT_ACCOUNT_NOT_FOUND", f"Parent account {parent_account_id} not found")
    if parent.account_scope == SCOPE_SHIFT_SESSION:
        raise RuleViolation("ACCOUNT_MANAGED_BY_SHIFT", "Shift accounts cannot be parents")

    if account_id is None:
        return

    cursor = parent.parent_account_id
    hops = 0
    while cursor is not None and hops < MAX_PARENT_HOPS:
        if cursor == account_id:
            raise RuleViolation("ACCOUNT_PARENT_CYCLE", "Parent assignment would create a cycle")
        cursor = (
            db.session.query(Account.parent_account_id)
            .filter(Account.id == cursor)
            .scalar()
        )
        hops += 1
    if cursor is not None:
        raise RuleViolation("ACCOUNT_PARENT_CYCLE", "Parent chain is too deep")


def _ensure_relation_acyclic(from_account_id: int, target_id: int, kind: str) -> None:
    """
    Allocation graphs of one kind stay acyclic: follow the target's outgoing
    relations of that kind and refuse if they lead back to the source.
    """
    frontier = {target_id}
    seen = {target_id}
    hops = 0
    while frontier and hops < MAX_PARENT_HOPS:
        if from_account_id in frontier:
            raise RuleViolation("ACCOUNT_RELATION_CYCLE", "Relation would create a cycle")
        rows = (
            db.session.query(AccountRelation.to_account_id)
            .filter(AccountRelation.from_account_id.in_(frontier), AccountRelation.kind == kind)
            .all()
        )
        frontier = {to_id for (to_id,) in rows} - seen
        seen |= frontier
        hops += 1
    if frontier:
        raise RuleViolation("ACCOUNT_RELATION_CYCLE", "Relation chain is too deep")


def _replace_relations(from_account_id: int, relations: list[dict]) -> None:
    (
        db.session.query(AccountRelation)
        .filter(AccountRelation.from_account_id == from_account_id)
        .delete(synchronize_session=False)
    )
    if not relations:
        return

    normalized: list[tuple[int, Decimal, str]] = []
    for rel in relations:
        target_id = rel.get("target_account_id")
        if not target_id:
            raise RuleViolation("BAD_ACCOUNT_RELATION", "Relation target is required")
        if target_id == from_account_id:
            raise RuleViolation("ACCOUNT_RELATION_SELF", "An account cannot relate to itself")
        try:
            percentage = quantize_money(to_decimal(rel.get("percentage")))
        except ValueError as exc:
            raise RuleViolation("BAD_ACCOUNT_RELATION_PERCENTAGE", "Percentage must be a number") from exc
        if percentage <= 0 or percentage > 100:
            raise RuleViolation("BAD_ACCOUNT_RELATION_PERCENTAGE", "Percentage must be in (0, 100]")
        kind = (rel.get("kind") or "").strip().lower() or DEFAULT_RELATION_KIND
        normalized.append((target_id, percentage, kind))

    seen = set()
    for target_id, _, kind in normalized:
        if (target_id, kind) in seen:
            raise RuleViolation("ACCOUNT_RELATION_DUPLICATE", "Duplicate relation target")
        seen.add((target_id, kind))

    totals: dict[str, Decimal] = {}
    for _, percentage, kind in normalized:
        totals[kind] = totals.get(kind, ZERO) + percentage
    if any(total > 100 for total in totals.values()):
        raise RuleViolation("ACCOUNT_RELATION_PERCENTAGE_OVER_100", "Relations of one kind exceed 100%")

    target_ids = {target_id for target_id, _, _ in normalized}
    targets = db.session.query(Account).filter(Account.id.in_(target_ids)).all()
    if len(targets) != len(target_ids):
        raise RuleViolation("RELATION_ACCOUNT_NOT_FOUND", "Relation target account not found")
    if any(t.account_scope == SCOPE_SHIFT_SESSION for t in targets):
        raise RuleViolation("ACCOUNT_MANAGED_BY_SHIFT", "Shift accounts cannot be relation targets")

    for target_id, _, kind in normalized:
        _ensure_relation_acyclic(from_account_id, target_id, kind)

    now = utcnow()
    for target_id, percentage, kind in normalized:
        db.session.add(AccountRelation(
            from_account_id=from_account_id,
            to_account_id=target_id,
            percentage=percentage,
            kind=kind,
            created_at=now,
        ))
    db.session.flush()


# =============================================================================
# ACCOUNT READS
# =============================================================================

def _account_views(accounts: list[Account]) -> list[dict]:
    ids = [a.id for a in accounts]
    balances = account_balances(ids)

    parent_ids = {a.parent_account_id for a in accounts if a.parent_account_id}
    parent_names = {}
    if parent_ids:
        parent_names = dict(
            db.session.query(Account.id, Account.name).filter(Account.id.in_(parent_ids)).all()
        )

    sub_counts = {}
    relations_by_account: dict[int, list[dict]] = {account_id: [] for account_id in ids}
    if ids:
        sub_counts = dict(
            db.session.query(Account.parent_account_id, func.count(Account.id))
            .filter(Account.parent_account_id.in_(ids))
            .group_by(Account.parent_account_id)
            .all()
        )
        rows = (
            db.session.query(AccountRelation, Account.name)
            .outerjoin(Account, Account.id == AccountRelation.to_account_id)
            .filter(AccountRelation.from_account_id.in_(ids))
            .order_by(AccountRelation.id)
            .all()
        )
        for rel, target_name in rows:
            relations_by_account[rel.from_account_id].append({
                "target_account_id": rel.to_account_id,
                "target_account_name": target_name,
                "percentage": as_float(rel.percentage),
                "kind": rel.kind,
            })

    views = []
    for account in accounts:
        view = account.to_dict()
        view["balance"] = float(balances[account.id])
        view["parent_account_name"] = parent_names.get(account.parent_account_id)
        view["sub_accounts_count"] = sub_counts.get(account.id, 0)
        view["relations"] = relations_by_account[account.id]
        views.append(view)
    return views


def list_accounts() -> list[dict]:
    accounts = db.session.query(Account).order_by(Account.created_at, Account.id).all()
    return _account_views(accounts)


def get_account(account_id: int) -> dict:
    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFoundError("ACCOUNT_NOT_FOUND", f"Account {account_id} not found")
    return _account_views([account])[0]


# =============================================================================
# ACCOUNT WRITES
# =============================================================================

def create_account(
    name: str,
    type: str | None = None,
    currency: str | None = None,
    parent_account_id: int | None = None,
    relations: list[dict] | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Create a custom account.

    Raises:
        RuleViolation: ACCOUNT_NAME_REQUIRED, parent and relation violations
    """
    clean_name = _clean(name)
    if not clean_name:
        raise RuleViolation("ACCOUNT_NAME_REQUIRED", "Account name is required")

    def _op() -> int:
        validate_parent_assignment(None, parent_account_id)
        account = Account(
            name=clean_name,
            type=_clean(type) or "cash",
            currency=(_clean(currency) or default_currency()).upper(),
            is_active=True,
            account_scope=SCOPE_CUSTOM,
            account_key=None,
            is_system=False,
            is_locked=False,
            parent_account_id=parent_account_id,
            created_at=utcnow(),
        )
        db.session.add(account)
        db.session.flush()
        _replace_relations(account.id, relations or [])
        return account.id

    account_id = run_atomic(_op, cancel=cancel)
    return get_account(account_id)


def update_account(account_id: int, patch: dict, *, cancel=None) -> dict:
    """
    Patch a custom account.

    Supported keys: name, type, currency, is_active, parent_account_id, relations.

    Raises:
        NotFoundError: ACCOUNT_NOT_FOUND
        RuleViolation: ACCOUNT_LOCKED, parent and relation violations
    """
    def _op() -> None:
        account = lock_for_update(db.session.query(Account).filter(Account.id == account_id)).first()
        if account is None:
            raise NotFoundError("ACCOUNT_NOT_FOUND", f"Account {account_id} not found")
        if account.is_system and account.is_locked:
            raise RuleViolation("ACCOUNT_LOCKED", f"Account {account_id} is system-managed")

        if _clean(patch.get("name")):
            account.name = _clean(patch["name"])
        if _clean(patch.get("type")):
            account.type = _clean(patch["type"])
        if _clean(patch.get("currency")):
            account.currency = _clean(patch["currency"]).upper()
        if patch.get("is_active") is not None:
            account.is_active = bool(patch["is_active"])
        if "parent_account_id" in patch:
            validate_parent_assignment(account.id, patch["parent_account_id"])
            account.parent_account_id = patch["parent_account_id"]
        db.session.flush()

        if "relations" in patch:
            _replace_relations(account.id, patch["relations"] or [])

    run_atomic(_op, cancel=cancel)
    return get_account(account_id)


# =============================================================================
# PAYMENT METHOD MAPPING
# =============================================================================

def list_payment_method_accounts() -> list[dict]:
    rows = (
        db.session.query(PaymentMethodAccount, Account)
        .join(Account, Account.id == PaymentMethodAccount.account_id)
        .order_by(PaymentMethodAccount.method)
        .all()
    )
    return [
        {
            "method": mapping.method,
            "account_id": account.id,
            "account_name": account.name,
            "account_type": account.type,
            "currency": account.currency,
        }
        for mapping, account in rows
    ]


def set_payment_method_account(method: str, account_id: int, *, cancel=None) -> dict:
    """
    Point a payment method at an account (fallback when no system slot matches).

    Raises:
        RuleViolation: BAD_METHOD, ACCOUNT_INACTIVE, ACCOUNT_MANAGED_BY_SHIFT
        NotFoundError: ACCOUNT_NOT_FOUND
        ConflictError: the method was mapped concurrently
    """
    key = normalize_method(method)
    if not key:
        raise RuleViolation("BAD_METHOD", "Payment method is required")

    def _op() -> dict:
        account = get_active_manual_account(account_id)
        mapping = (
            db.session.query(PaymentMethodAccount)
            .filter(PaymentMethodAccount.method == key)
            .first()
        )
        if mapping is None:
            mapping = PaymentMethodAccount(method=key, account_id=account.id, updated_at=utcnow())
            db.session.add(mapping)
        else:
            mapping.account_id = account.id
            mapping.updated_at = utcnow()
        db.session.flush()
        return {
            "method": key,
            "account_id": account.id,
            "account_name": account.name,
            "account_type": account.type,
            "currency": account.currency,
        }

    return run_atomic(_op, cancel=cancel)


# =============================================================================
# MANUAL POSTINGS
# =============================================================================

def deposit(actor_user_id: int, account_id: int, amount, note: str | None = None, *, cancel=None) -> dict:
    value = _positive_amount(amount)

    def _op() -> dict:
        get_active_manual_account(account_id)
        txn = post_transaction(
            account_id=account_id,
            direction=DIRECTION_IN,
            amount=value,
            source_type=SOURCE_DEPOSIT,
            note=_clean(note),
            actor_user_id=actor_user_id,
        )
        return txn.to_dict()

    return run_atomic(_op, cancel=cancel)


def withdraw(actor_user_id: int, account_id: int, amount, note: str | None = None, *, cancel=None) -> dict:
    value = _positive_amount(amount)

    def _op() -> dict:
        get_active_manual_account(account_id)
        txn = post_transaction(
            account_id=account_id,
            direction=DIRECTION_OUT,
            amount=value,
            source_type=SOURCE_WITHDRAWAL,
            note=_clean(note),
            actor_user_id=actor_user_id,
        )
        return txn.to_dict()

    return run_atomic(_op, cancel=cancel)


def transfer(
    actor_user_id: int,
    from_account_id: int,
    to_account_id: int,
    amount,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Move money between two manual accounts of the same currency.

    Raises:
        RuleViolation: TRANSFER_SAME_ACCOUNT, TRANSFER_CURRENCY_MISMATCH,
            AMOUNT_INVALID, ACCOUNT_INACTIVE, ACCOUNT_MANAGED_BY_SHIFT
        NotFoundError: ACCOUNT_NOT_FOUND
    """
    if from_account_id == to_account_id:
        raise RuleViolation("TRANSFER_SAME_ACCOUNT", "Pick two different accounts")
    value = _positive_amount(amount)

    def _op() -> dict:
        source = get_active_manual_account(from_account_id)
        target = get_active_manual_account(to_account_id)
        if (source.currency or "").upper() != (target.currency or "").upper():
            raise RuleViolation("TRANSFER_CURRENCY_MISMATCH", "Accounts use different currencies")
        record = post_transfer(
            from_account_id=source.id,
            to_account_id=target.id,
            amount=value,
            source_type=SOURCE_TRANSFER,
            note=_clean(note),
            actor_user_id=actor_user_id,
        )
        return record.to_dict()

    return run_atomic(_op, cancel=cancel)


# =============================================================================
# RECEIPTS AND EXPENSES
# =============================================================================

def create_receipt(
    actor_user_id: int,
    amount,
    method: str,
    account_id: int,
    source: str | None = None,
    receipt_date: date | None = None,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """Manual income booked as one manual_receipt "in" posting."""
    value = _positive_amount(amount)

    def _op() -> dict:
        get_active_manual_account(account_id)
        now = utcnow()
        receipt = Receipt(
            receipt_date=receipt_date or now.date(),
            source=_clean(source) or "manual",
            amount=value,
            method=normalize_method(method) or "cash",
            account_id=account_id,
            note=_clean(note),
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(receipt)
        db.session.flush()
        post_transaction(
            account_id=account_id,
            direction=DIRECTION_IN,
            amount=value,
            source_type=SOURCE_MANUAL_RECEIPT,
            source_id=receipt.id,
            note=receipt.note,
            actor_user_id=actor_user_id,
            created_at=now,
        )
        return receipt.to_dict()

    return run_atomic(_op, cancel=cancel)


def create_expense(
    actor_user_id: int,
    category: str,
    amount,
    method: str,
    account_id: int,
    supplier: str | None = None,
    expense_date: date | None = None,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Book an expense paid from ``account_id``.

    Posts "out" on the paying account and "in" on the vault expenses
    account, both tagged expense with source_id = expense.id.
    """
    value = _positive_amount(amount)
    clean_category = _clean(category)
    if not clean_category:
        raise RuleViolation("EXPENSE_CATEGORY_REQUIRED", "Expense category is required")

    def _op() -> dict:
        get_active_manual_account(account_id)
        expenses_account = ensure_vault_base_accounts()[SLOT_EXPENSES]
        if expenses_account.id == account_id:
            raise RuleViolation("BAD_ACCOUNT_SELECTION", "Pay expenses from a funding account")

        now = utcnow()
        expense = Expense(
            expense_date=expense_date or now.date(),
            category=clean_category,
            supplier=_clean(supplier),
            amount=value,
            method=normalize_method(method) or "cash",
            account_id=expenses_account.id,
            note=_clean(note),
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(expense)
        db.session.flush()

        post_transaction(
            account_id=account_id,
            direction=DIRECTION_OUT,
            amount=value,
            source_type=SOURCE_EXPENSE,
            source_id=expense.id,
            note=expense.note,
            actor_user_id=actor_user_id,
            created_at=now,
        )
        post_transaction(
            account_id=expenses_account.id,
            direction=DIRECTION_IN,
            amount=value,
            source_type=SOURCE_EXPENSE,
            source_id=expense.id,
            note=expense.note,
            actor_user_id=actor_user_id,
            created_at=now,
        )
        return expense.to_dict()

    return run_atomic(_op, cancel=cancel)


# =============================================================================
# CASHIER EXPENSES (open shift, paid from the drawer)
# =============================================================================

def cashier_expense_settings() -> dict:
    """Enabled flag and optional cap (None = no cap) from app config."""
    enabled = bool(current_app.config.get("CASHIER_EXPENSES_ENABLED", True))
    raw_cap = current_app.config.get("CASHIER_EXPENSES_CAP_AMOUNT")
    try:
        cap = to_decimal(raw_cap, None)
    except ValueError:
        current_app.logger.warning("Ignoring invalid CASHIER_EXPENSES_CAP_AMOUNT %r", raw_cap)
        cap = None
    if cap is not None and cap <= 0:
        cap = None
    return {"enabled": enabled, "cap_amount": cap}


def _cashier_spent(cash_account_id: int, exclude_expense_id: int | None = None) -> Decimal:
    query = (
        db.session.query(func.coalesce(func.sum(AccountTransaction.amount), 0))
        .filter(
            AccountTransaction.account_id == cash_account_id,
            AccountTransaction.source_type == SOURCE_CASHIER_EXPENSE,
            AccountTransaction.direction == DIRECTION_OUT,
        )
    )
    if exclude_expense_id is not None:
        query = query.filter(AccountTransaction.source_id != exclude_expense_id)
    return quantize_money(to_decimal(query.scalar(), ZERO))


def _check_cap(settings: dict, spent: Decimal, requested: Decimal) -> None:
    cap = settings["cap_amount"]
    if cap is not None and spent + requested > cap + EPSILON:
        raise RuleViolation(
            "CASHIER_EXPENSE_CAP_EXCEEDED",
            "Cashier expense cap exceeded",
            {"cap_amount": float(cap), "spent_amount": float(spent)},
        )


def _cap_view(settings: dict, spent: Decimal) -> dict:
    cap = settings["cap_amount"]
    return {
        "cap_amount": float(cap) if cap is not None else None,
        "spent_amount": float(spent),
        "remaining_amount": float(max(ZERO, cap - spent)) if cap is not None else None,
    }


def _shift_drawer_accounts() -> tuple[Account, Account]:
    shift = require_open_shift()
    accounts = ensure_shift_session_accounts(shift)
    return accounts[SLOT_CASH], accounts[SLOT_EXPENSES]


def _post_cashier_expense(expense: Expense, cash_account: Account, expense_account: Account, actor_user_id: int | None) -> None:
    note = expense.note or "Cashier expense"
    post_transaction(
        account_id=cash_account.id,
        direction=DIRECTION_OUT,
        amount=expense.amount,
        source_type=SOURCE_CASHIER_EXPENSE,
        source_id=expense.id,
        note=note,
        actor_user_id=actor_user_id,
    )
    post_transaction(
        account_id=expense_account.id,
        direction=DIRECTION_IN,
        amount=expense.amount,
        source_type=SOURCE_CASHIER_EXPENSE,
        source_id=expense.id,
        note=note,
        actor_user_id=actor_user_id,
    )


def _get_shift_expense(expense_id: int, shift_id: int) -> Expense:
    expense = (
        lock_for_update(db.session.query(Expense).filter(
            Expense.id == expense_id,
            Expense.shift_id == shift_id,
            Expense.category == CASHIER_EXPENSE_CATEGORY,
        ))
        .first()
    )
    if expense is None:
        raise NotFoundError("CASHIER_EXPENSE_NOT_FOUND", f"Cashier expense {expense_id} not found on the open shift")
    return expense


def create_cashier_expense(
    actor_user_id: int,
    amount,
    supplier: str | None = None,
    expense_date: date | None = None,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Pay an expense out of the drawer during the open shift.

    Posts "out" on the session cash account and "in" on the session
    expenses account (cashier_expense), subject to the configured cap.

    Raises:
        RuleViolation: CASHIER_EXPENSES_DISABLED, CASHIER_EXPENSE_AMOUNT_INVALID,
            CASHIER_EXPENSE_CAP_EXCEEDED, SHIFT_REQUIRED
    """
    settings = cashier_expense_settings()
    if not settings["enabled"]:
        raise RuleViolation("CASHIER_EXPENSES_DISABLED", "Cashier expenses are disabled")
    value = _positive_amount(amount, "CASHIER_EXPENSE_AMOUNT_INVALID")

    def _op() -> dict:
        cash_account, expense_account = _shift_drawer_accounts()
        spent = _cashier_spent(cash_account.id)
        _check_cap(settings, spent, value)

        now = utcnow()
        expense = Expense(
            expense_date=expense_date or now.date(),
            category=CASHIER_EXPENSE_CATEGORY,
            supplier=_clean(supplier),
            amount=value,
            method=SLOT_CASH,
            account_id=expense_account.id,
            shift_id=cash_account.shift_id,
            note=_clean(note),
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(expense)
        db.session.flush()
        _post_cashier_expense(expense, cash_account, expense_account, actor_user_id)

        result = expense.to_dict()
        result.update(_cap_view(settings, spent + value))
        return result

    return run_atomic(_op, cancel=cancel)


def update_cashier_expense(
    expense_id: int,
    actor_user_id: int,
    amount,
    supplier: str | None = None,
    expense_date: date | None = None,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Change a cashier expense of the open shift.

    The old postings are voided (deleted) and re-posted with the new
    amount; postings themselves are never edited in place.
    """
    settings = cashier_expense_settings()
    value = _positive_amount(amount, "CASHIER_EXPENSE_AMOUNT_INVALID")

    def _op() -> dict:
        cash_account, expense_account = _shift_drawer_accounts()
        expense = _get_shift_expense(expense_id, cash_account.shift_id)
        spent_excluding = _cashier_spent(cash_account.id, exclude_expense_id=expense.id)
        _check_cap(settings, spent_excluding, value)

        delete_source_postings(SOURCE_CASHIER_EXPENSE, [expense.id])
        expense.amount = value
        expense.supplier = _clean(supplier)
        expense.note = _clean(note)
        if expense_date is not None:
            expense.expense_date = expense_date
        db.session.flush()
        _post_cashier_expense(expense, cash_account, expense_account, expense.created_by_user_id)

        result = expense.to_dict()
        result.update(_cap_view(settings, spent_excluding + value))
        return result

    return run_atomic(_op, cancel=cancel)


def delete_cashier_expense(expense_id: int, *, cancel=None) -> dict:
    """Remove a cashier expense and its paired postings atomically."""
    settings = cashier_expense_settings()

    def _op() -> dict:
        cash_account, _ = _shift_drawer_accounts()
        expense = _get_shift_expense(expense_id, cash_account.shift_id)
        delete_source_postings(SOURCE_CASHIER_EXPENSE, [expense.id])
        db.session.delete(expense)
        db.session.flush()

        result = {"id": expense_id}
        result.update(_cap_view(settings, _cashier_spent(cash_account.id)))
        return result

    return run_atomic(_op, cancel=cancel)


def cashier_expense_overview() -> dict:
    """Cap status and expenses of the open shift."""
    settings = cashier_expense_settings()
    cash_account, _ = _shift_drawer_accounts()
    expenses = (
        db.session.query(Expense)
        .filter(Expense.shift_id == cash_account.shift_id, Expense.category == CASHIER_EXPENSE_CATEGORY)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )
    overview = {
        "enabled": settings["enabled"],
        "shift_id": cash_account.shift_id,
        "drawer_balance": float(account_balance(cash_account.id)),
        "items": [e.to_dict() for e in expenses],
    }
    overview.update(_cap_view(settings, _cashier_spent(cash_account.id)))
    return overview


# =============================================================================
# LEDGER VIEW
# =============================================================================

def list_ledger(start: datetime | None = None, end: datetime | None = None) -> list[dict]:
    """
    Postings newest-first, with account name and, for pos_payment rows,
    the order they paid.
    """
    query = db.session.query(AccountTransaction, Account.name).join(
        Account, Account.id == AccountTransaction.account_id
    )
    if start is not None:
        query = query.filter(AccountTransaction.created_at >= start)
    if end is not None:
        query = query.filter(AccountTransaction.created_at <= end)
    rows = query.order_by(AccountTransaction.created_at.desc(), AccountTransaction.id.desc()).all()

    payment_ids = {
        txn.source_id for txn, _ in rows
        if txn.source_type == SOURCE_POS_PAYMENT and txn.source_id is not None
    }
    order_by_payment: dict[int, Order] = {}
    if payment_ids:
        for payment_id, order in (
            db.session.query(Payment.id, Order)
            .join(Order, Order.id == Payment.order_id)
            .filter(Payment.id.in_(payment_ids))
            .all()
        ):
            order_by_payment[payment_id] = order

    ledger = []
    for txn, account_name in rows:
        entry = txn.to_dict()
        entry["account_name"] = account_name
        entry["created_at"] = to_utc_z(txn.created_at)
        order = order_by_payment.get(txn.source_id) if txn.source_type == SOURCE_POS_PAYMENT else None
        entry["order_id"] = order.id if order else None
        entry["order_no"] = order.order_no_display if order else None
        ledger.append(entry)
    return ledger
