# Overview: Payment posting path that ties order state and the account ledger together in one transaction.

"""
Settlement Service

WHY: A payment is two facts at once: the order got paid and money landed
in an account. Recording one without the other is a correctness bug, so
both are staged in the same transaction and committed together.

FLOW (one transaction):
1. validate amount > 0 and order not already paid
2. promote draft -> open
3. insert Payment
4. ensure vault accounts, resolve the target account for the method
   (shift session -> vault -> operator mapping) and post a pos_payment
   "in" transaction with source_id = payment.id
5. recompute totals; balance <= epsilon moves the order to paid
"""

from __future__ import annotations

from ..extensions import db
from ..models import Payment
from ..money import EPSILON, MAX_AMOUNT, quantize_money, to_decimal
from app.time_utils import utcnow
from .audit_service import write_audit
from .concurrency import check_cancelled, run_atomic
from .errors import RuleViolation
from .ledger_service import DIRECTION_IN, SOURCE_POS_PAYMENT, post_transaction
from .order_service import (
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_OPEN,
    ORDER_STATUS_PAID,
    get_order_locked,
    compute_totals_for_order,
    promote_to_open,
)
from .system_accounts_service import (
    ensure_vault_base_accounts,
    normalize_method,
    resolve_account_for_payment,
)


def add_payment(
    order_id: int,
    actor_user_id: int,
    method: str,
    amount,
    reference: str | None = None,
    *,
    cancel=None,
) -> dict:
    """
    Take a payment against an order and post it to the ledger.

    Args:
        order_id: Order being paid
        actor_user_id: Cashier taking the payment
        method: cash / card / cheque / bank / debt / ... (stored lower-cased)
        amount: Positive amount
        reference: Card slip / cheque number

    Returns:
        Totals dict after the payment plus "status", "payment_id" and
        "account_id" (None when no account matched the method)

    Raises:
        RuleViolation: PAYMENT_AMOUNT_INVALID, PAYMENT_METHOD_REQUIRED, ORDER_NOT_OPEN,
            TABLE_ALREADY_HAS_OPEN_ORDER (a table draft whose table was taken meanwhile)
        NotFoundError: ORDER_NOT_FOUND
    """
    try:
        value = to_decimal(amount)
    except ValueError as exc:
        raise RuleViolation("PAYMENT_AMOUNT_INVALID", "Payment amount must be a number") from exc
    if value is None or value <= 0 or value > MAX_AMOUNT:
        raise RuleViolation("PAYMENT_AMOUNT_INVALID", "Payment amount must be greater than zero")
    value = quantize_money(value)
    if value <= 0:
        raise RuleViolation("PAYMENT_AMOUNT_INVALID", "Payment amount must be greater than zero")

    clean_method = (method or "").strip().lower()
    if not clean_method:
        raise RuleViolation("PAYMENT_METHOD_REQUIRED", "Payment method is required")
    clean_reference = (reference or "").strip() or None

    def _op() -> dict:
        order = get_order_locked(order_id)
        if order.status not in (ORDER_STATUS_DRAFT, ORDER_STATUS_OPEN):
            raise RuleViolation("ORDER_NOT_OPEN", f"Order {order_id} is {order.status}")
        promote_to_open(order)

        now = utcnow()
        payment = Payment(
            order_id=order.id,
            method=clean_method,
            amount=value,
            reference=clean_reference,
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(payment)
        db.session.flush()

        ensure_vault_base_accounts()
        account = resolve_account_for_payment(order.shift_id, clean_method)
        if account is not None:
            post_transaction(
                account_id=account.id,
                direction=DIRECTION_IN,
                amount=value,
                source_type=SOURCE_POS_PAYMENT,
                source_id=payment.id,
                note=f"POS payment ({normalize_method(clean_method)})",
                actor_user_id=actor_user_id,
                created_at=now,
            )
        check_cancelled(cancel)

        totals = compute_totals_for_order(order.id)
        if totals.balance <= EPSILON:
            order.status = ORDER_STATUS_PAID
        db.session.flush()

        result = totals.to_dict()
        result.update({
            "status": order.status,
            "payment_id": payment.id,
            "account_id": account.id if account is not None else None,
        })
        return result

    result = run_atomic(_op, cancel=cancel)
    write_audit(
        action="payment_added",
        entity_type="order",
        entity_id=order_id,
        actor_user_id=actor_user_id,
        payload={
            "method": clean_method,
            "amount": value,
            "reference": clean_reference,
            "status_after": result["status"],
            "balance_after": result["balance"],
        },
    )
    return result
