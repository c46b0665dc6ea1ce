# Overview: Ledger posting primitives: append transactions, paired transfers and derived balances.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func

from ..extensions import db
from ..models import AccountTransaction, AccountTransfer
from ..money import ZERO, quantize_money, to_decimal
from app.time_utils import utcnow
"""
Account Ledger Invariants (authoritative)

- account_transactions is append-only. Rows are removed only by a
  compensating void that deletes the source document in the same transaction.
- amount is always > 0; direction carries the sign.
- Balance is derived: sum(in) - sum(out). No balance column exists anywhere
  and nothing caches it.
- Every transfer is one AccountTransfer plus exactly one "out" and one "in"
  posting sharing source_id = transfer.id.
- Nothing here commits; callers own the transaction.
"""


DIRECTION_IN = "in"
DIRECTION_OUT = "out"


# =============================================================================
# SOURCE TYPES (CONSTANTS)
# =============================================================================

SOURCE_POS_PAYMENT = "pos_payment"
SOURCE_EXPENSE = "expense"
SOURCE_MANUAL_RECEIPT = "manual_receipt"
SOURCE_DEPOSIT = "deposit"
SOURCE_WITHDRAWAL = "withdrawal"
SOURCE_TRANSFER = "transfer"
SOURCE_SHIFT_OPENING_CASH = "shift_opening_cash"
SOURCE_SHIFT_CASH_ADJUSTMENT = "shift_cash_adjustment"
SOURCE_SHIFT_CLOSE_MERGE = "shift_close_merge"
SOURCE_CASHIER_EXPENSE = "cashier_expense"

VALID_SOURCE_TYPES = [
    SOURCE_POS_PAYMENT,
    SOURCE_EXPENSE,
    SOURCE_MANUAL_RECEIPT,
    SOURCE_DEPOSIT,
    SOURCE_WITHDRAWAL,
    SOURCE_TRANSFER,
    SOURCE_SHIFT_OPENING_CASH,
    SOURCE_SHIFT_CASH_ADJUSTMENT,
    SOURCE_SHIFT_CLOSE_MERGE,
    SOURCE_CASHIER_EXPENSE,
]


def post_transaction(
    *,
    account_id: int,
    direction: str,
    amount: Decimal,
    source_type: str,
    source_id: int | None = None,
    note: Optional[str] = None,
    actor_user_id: int | None = None,
    created_at: Optional[datetime] = None,
) -> AccountTransaction:
    """Append one posting. amount must be positive; direction is "in" or "out"."""
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValueError(f"Invalid direction: {direction}")
    if source_type not in VALID_SOURCE_TYPES:
        raise ValueError(f"Invalid source type: {source_type}")
    amount = quantize_money(to_decimal(amount))
    if amount <= 0:
        raise ValueError("Ledger amount must be positive")

    txn = AccountTransaction(
        account_id=account_id,
        direction=direction,
        amount=amount,
        source_type=source_type,
        source_id=source_id,
        note=note,
        created_by_user_id=actor_user_id,
        created_at=created_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def post_transfer(
    *,
    from_account_id: int,
    to_account_id: int,
    amount: Decimal,
    source_type: str = SOURCE_TRANSFER,
    note: Optional[str] = None,
    actor_user_id: int | None = None,
) -> AccountTransfer:
    """AccountTransfer record plus its paired out/in postings."""
    amount = quantize_money(to_decimal(amount))
    now = utcnow()
    transfer = AccountTransfer(
        from_account_id=from_account_id,
        to_account_id=to_account_id,
        amount=amount,
        note=note,
        created_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(transfer)
    db.session.flush()

    post_transaction(
        account_id=from_account_id,
        direction=DIRECTION_OUT,
        amount=amount,
        source_type=source_type,
        source_id=transfer.id,
        note=note,
        actor_user_id=actor_user_id,
        created_at=now,
    )
    post_transaction(
        account_id=to_account_id,
        direction=DIRECTION_IN,
        amount=amount,
        source_type=source_type,
        source_id=transfer.id,
        note=note,
        actor_user_id=actor_user_id,
        created_at=now,
    )
    return transfer


def delete_source_postings(source_type: str, source_ids: list[int]) -> int:
    """Compensating void: drop every posting of the given source rows."""
    if not source_ids:
        return 0
    return (
        db.session.query(AccountTransaction)
        .filter(AccountTransaction.source_type == source_type, AccountTransaction.source_id.in_(source_ids))
        .delete(synchronize_session=False)
    )


def _signed_amount():
    return case(
        (AccountTransaction.direction == DIRECTION_IN, AccountTransaction.amount),
        else_=-AccountTransaction.amount,
    )


def account_balance(account_id: int) -> Decimal:
    """Derived balance: sum(in) - sum(out) over the account's postings."""
    total = (
        db.session.query(func.coalesce(func.sum(_signed_amount()), 0))
        .filter(AccountTransaction.account_id == account_id)
        .scalar()
    )
    return quantize_money(to_decimal(total, ZERO))


def account_balances(account_ids: list[int]) -> dict[int, Decimal]:
    """Derived balances for many accounts in one query (missing -> 0)."""
    balances = {account_id: ZERO for account_id in account_ids}
    if not account_ids:
        return balances
    rows = (
        db.session.query(AccountTransaction.account_id, func.sum(_signed_amount()))
        .filter(AccountTransaction.account_id.in_(account_ids))
        .group_by(AccountTransaction.account_id)
        .all()
    )
    for account_id, total in rows:
        balances[account_id] = quantize_money(to_decimal(total, ZERO))
    return balances
