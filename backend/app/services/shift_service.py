# Overview: Shift open/close with session account provisioning, drawer reconciliation and merge-to-vault.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Order, Payment, Shift
from ..money import ZERO, MAX_AMOUNT, is_zero, quantize_money, to_decimal
from app.time_utils import utcnow
from .concurrency import lock_for_update, run_atomic
from .errors import NotFoundError, RuleViolation
from .ledger_service import (
    DIRECTION_IN,
    DIRECTION_OUT,
    SOURCE_SHIFT_CASH_ADJUSTMENT,
    SOURCE_SHIFT_OPENING_CASH,
    account_balance,
    post_transaction,
)
from .system_accounts_service import (
    SLOT_CARD,
    SLOT_CASH,
    SLOT_CHEQUE,
    SLOT_DEBT,
    ensure_shift_session_accounts,
    get_session_account,
    merge_shift_accounts_to_vault,
    normalize_method,
)


MAX_SHIFT_LIST = 200


def get_open_shift() -> Shift | None:
    """The single open shift, if any."""
    return (
        db.session.query(Shift)
        .filter(Shift.closed_at.is_(None))
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .first()
    )


def require_open_shift() -> Shift:
    shift = get_open_shift()
    if shift is None:
        raise RuleViolation("SHIFT_REQUIRED", "An open shift is required")
    return shift


def _cash_amount(value, code: str) -> Decimal:
    try:
        amount = quantize_money(to_decimal(value))
    except ValueError as exc:
        raise RuleViolation(code, "Cash amount must be a number") from exc
    if amount < 0 or amount > MAX_AMOUNT:
        raise RuleViolation(code, "Cash amount must be between 0 and the maximum amount")
    return amount


def _payment_totals(shift_id: int) -> dict[str, Decimal]:
    """Payments taken on the shift's orders, per normalised method."""
    rows = (
        db.session.query(Payment.method, func.sum(Payment.amount))
        .join(Order, Order.id == Payment.order_id)
        .filter(Order.shift_id == shift_id)
        .group_by(Payment.method)
        .all()
    )
    totals = {SLOT_CASH: ZERO, SLOT_CARD: ZERO, SLOT_CHEQUE: ZERO, SLOT_DEBT: ZERO}
    for method, total in rows:
        key = normalize_method(method)
        totals[key] = totals.get(key, ZERO) + quantize_money(to_decimal(total, ZERO))
    return totals


def _expected_cash(shift: Shift) -> Decimal:
    cash_account = get_session_account(shift.id, SLOT_CASH)
    if cash_account is None:
        return quantize_money(to_decimal(shift.opening_cash))
    return account_balance(cash_account.id)


def _summary(shift: Shift, *, expected_cash: Decimal, difference: Decimal | None, merges=None) -> dict:
    totals = _payment_totals(shift.id)
    summary = {
        "shift": shift.to_dict(),
        "totals": {k: float(v) for k, v in totals.items()},
        "expected_cash": float(expected_cash),
        "difference": float(difference) if difference is not None else None,
    }
    if merges is not None:
        summary["merges"] = [m.to_dict() for m in merges]
    return summary


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_shift(
    actor_user_id: int,
    opening_cash,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Open the shift and provision its session accounts.

    WHY: Session accounts isolate this shift's money until close. Opening
    cash is posted into the session cash account so the drawer count at
    close can be compared against a ledger-derived expectation.

    Raises:
        RuleViolation: SHIFT_ALREADY_OPEN, SHIFT_CASH_INVALID
        ConflictError: another shift was opened concurrently
    """
    amount = _cash_amount(opening_cash, "SHIFT_CASH_INVALID")

    def _op() -> dict:
        if get_open_shift() is not None:
            raise RuleViolation("SHIFT_ALREADY_OPEN", "A shift is already open")

        shift = Shift(
            opened_by_user_id=actor_user_id,
            opened_at=utcnow(),
            opening_cash=amount,
            note=(note or "").strip() or None,
            open_marker=True,
        )
        db.session.add(shift)
        db.session.flush()

        accounts = ensure_shift_session_accounts(shift)
        if amount > 0:
            post_transaction(
                account_id=accounts[SLOT_CASH].id,
                direction=DIRECTION_IN,
                amount=amount,
                source_type=SOURCE_SHIFT_OPENING_CASH,
                source_id=shift.id,
                note="Shift opening cash",
                actor_user_id=actor_user_id,
            )

        return _summary(shift, expected_cash=amount, difference=None)

    return run_atomic(_op, cancel=cancel)


def close_shift(
    actor_user_id: int,
    shift_id: int,
    closing_cash,
    note: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Close the shift: reconcile the drawer, merge session accounts, stamp closed.

    Steps (one transaction):
    1. expected cash = derived balance of the session cash account
    2. difference = counted - expected, posted as shift_cash_adjustment
       (in when over, out when short) so the session cash matches the count
    3. every session account is merged into its vault counterpart and deactivated
    4. closed_at / closed_by / closing_cash are set and the open marker cleared

    Raises:
        NotFoundError: SHIFT_NOT_FOUND (missing or already closed)
        RuleViolation: SHIFT_CASH_INVALID
        OperationCancelled: nothing is persisted
    """
    counted = _cash_amount(closing_cash, "SHIFT_CASH_INVALID")

    def _op() -> dict:
        query = db.session.query(Shift).filter(Shift.id == shift_id, Shift.closed_at.is_(None))
        shift = lock_for_update(query).first()
        if shift is None:
            raise NotFoundError("SHIFT_NOT_FOUND", f"Open shift {shift_id} not found")

        accounts = ensure_shift_session_accounts(shift)
        expected = account_balance(accounts[SLOT_CASH].id)
        difference = counted - expected

        if not is_zero(difference):
            post_transaction(
                account_id=accounts[SLOT_CASH].id,
                direction=DIRECTION_IN if difference > 0 else DIRECTION_OUT,
                amount=abs(difference),
                source_type=SOURCE_SHIFT_CASH_ADJUSTMENT,
                source_id=shift.id,
                note="Cash over" if difference > 0 else "Cash short",
                actor_user_id=actor_user_id,
            )

        merges = merge_shift_accounts_to_vault(shift.id, actor_user_id)

        shift.closed_by_user_id = actor_user_id
        shift.closed_at = utcnow()
        shift.closing_cash = counted
        shift.open_marker = None
        if note and note.strip():
            shift.note = note.strip()
        db.session.flush()

        return _summary(shift, expected_cash=expected, difference=difference, merges=merges)

    return run_atomic(_op, cancel=cancel)


# =============================================================================
# READS
# =============================================================================

def get_current_shift_summary() -> dict | None:
    shift = get_open_shift()
    if shift is None:
        return None
    return _summary(shift, expected_cash=_expected_cash(shift), difference=None)


def list_shifts(limit: int = 50) -> list[dict]:
    limit = max(1, min(int(limit), MAX_SHIFT_LIST))
    shifts = (
        db.session.query(Shift)
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .limit(limit)
        .all()
    )
    return [s.to_dict() for s in shifts]
