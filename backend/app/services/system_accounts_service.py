# Overview: System-managed accounts: permanent vault slots, per-shift session mirrors, payment routing and merge-on-close.

"""
System Accounts Service

WHY: A shift's money must be isolated while the shift runs (so the drawer
can be counted against it) yet the restaurant's all-time balances must
live somewhere permanent. Vault accounts are that permanent home; session
accounts mirror each vault slot for one shift and are folded back into the
vault when the shift closes.

SLOTS: cash, card, cheque, debt (payment methods) and expenses (sink for
paid-out expenses). Each shift also gets a non-transactional session_main
parent used only for display grouping.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Account, PaymentMethodAccount, Shift
from ..money import ZERO, is_zero
from app.time_utils import utcnow
from .ledger_service import SOURCE_SHIFT_CLOSE_MERGE, account_balance, post_transfer


# =============================================================================
# SCOPES AND SLOTS (CONSTANTS)
# =============================================================================

SCOPE_CUSTOM = "custom"
SCOPE_VAULT_BASE = "vault_base"
SCOPE_SHIFT_SESSION = "shift_session"

SESSION_MAIN_KEY = "session_main"

SLOT_CASH = "cash"
SLOT_CARD = "card"
SLOT_CHEQUE = "cheque"
SLOT_DEBT = "debt"
SLOT_EXPENSES = "expenses"


@dataclass(frozen=True)
class AccountBlueprint:
    key: str
    display_name: str
    type: str


BLUEPRINTS = [
    AccountBlueprint(SLOT_CASH, "Cash", "cash"),
    AccountBlueprint(SLOT_CARD, "Card", "bank"),
    AccountBlueprint(SLOT_CHEQUE, "Cheque", "bank"),
    AccountBlueprint(SLOT_DEBT, "Debt", "debt"),
    AccountBlueprint(SLOT_EXPENSES, "Expenses", "expense"),
]

METHOD_ALIASES = {"bank": SLOT_CARD}


@dataclass(frozen=True)
class ShiftMergeEntry:
    method: str
    from_account_id: int
    to_account_id: int
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "amount": float(self.amount),
        }


def normalize_method(method: str | None) -> str:
    """Trim + lower-case; "bank" folds into "card"."""
    normalized = (method or "").strip().lower()
    return METHOD_ALIASES.get(normalized, normalized)


def default_currency() -> str:
    return (current_app.config.get("DEFAULT_CURRENCY") or "ILS").strip().upper()


# =============================================================================
# PROVISIONING
# =============================================================================

def ensure_vault_base_accounts() -> dict[str, Account]:
    """
    Ensure one vault_base account per slot exists and is normalised.

    Safe to call repeatedly (idempotent). Does not commit.
    """
    currency = default_currency()
    existing = (
        db.session.query(Account)
        .filter(Account.account_scope == SCOPE_VAULT_BASE)
        .all()
    )
    by_key = {(a.account_key or "").lower(): a for a in existing}

    result: dict[str, Account] = {}
    for blueprint in BLUEPRINTS:
        account = by_key.get(blueprint.key)
        if account is None:
            account = Account(created_at=utcnow())
            db.session.add(account)
        account.name = f"Vault {blueprint.display_name}"
        account.type = blueprint.type
        account.currency = currency
        account.is_active = True
        account.account_scope = SCOPE_VAULT_BASE
        account.account_key = blueprint.key
        account.is_system = True
        account.is_locked = True
        account.shift_id = None
        account.base_account_id = None
        result[blueprint.key] = account

    db.session.flush()
    return result


def _session_label(shift: Shift) -> str:
    opened_at = shift.opened_at or utcnow()
    return f"Shift {opened_at:%Y%m%d-%H%M}"


def ensure_shift_session_accounts(shift: Shift) -> dict[str, Account]:
    """
    Ensure the shift has its session_main parent plus one session account per slot.

    Each slot account is a child of session_main and points at its vault
    counterpart through base_account_id. Does not commit.
    """
    currency = default_currency()
    vault_by_key = ensure_vault_base_accounts()
    label = _session_label(shift)

    existing = (
        db.session.query(Account)
        .filter(Account.account_scope == SCOPE_SHIFT_SESSION, Account.shift_id == shift.id)
        .all()
    )
    by_key = {(a.account_key or "").lower(): a for a in existing}

    main = by_key.get(SESSION_MAIN_KEY)
    if main is None:
        main = Account(created_at=utcnow())
        db.session.add(main)
    main.name = f"{label} Session"
    main.type = "cash"
    main.currency = currency
    main.is_active = True
    main.account_scope = SCOPE_SHIFT_SESSION
    main.account_key = SESSION_MAIN_KEY
    main.is_system = True
    main.is_locked = True
    main.shift_id = shift.id
    main.base_account_id = None
    main.parent_account_id = None
    db.session.flush()

    result: dict[str, Account] = {}
    for blueprint in BLUEPRINTS:
        account = by_key.get(blueprint.key)
        if account is None:
            account = Account(created_at=utcnow())
            db.session.add(account)
        account.name = f"{label} {blueprint.display_name}"
        account.type = blueprint.type
        account.currency = currency
        account.is_active = True
        account.account_scope = SCOPE_SHIFT_SESSION
        account.account_key = blueprint.key
        account.is_system = True
        account.is_locked = True
        account.shift_id = shift.id
        account.base_account_id = vault_by_key[blueprint.key].id
        account.parent_account_id = main.id
        result[blueprint.key] = account

    db.session.flush()
    return result


# =============================================================================
# PAYMENT ROUTING
# =============================================================================

def resolve_account_for_payment(shift_id: int | None, method: str) -> Account | None:
    """
    Pick the account a payment of ``method`` posts into.

    Order: the shift's active session account for the slot, then the active
    vault account, then the operator's payment-method mapping. None when
    nothing matches (the payment is still recorded, just not posted).
    """
    key = normalize_method(method)
    if not key:
        return None

    if shift_id is not None:
        session_account = (
            db.session.query(Account)
            .filter(
                Account.account_scope == SCOPE_SHIFT_SESSION,
                Account.shift_id == shift_id,
                Account.is_active.is_(True),
                Account.account_key == key,
            )
            .first()
        )
        if session_account is not None:
            return session_account

    vault_account = (
        db.session.query(Account)
        .filter(
            Account.account_scope == SCOPE_VAULT_BASE,
            Account.is_active.is_(True),
            Account.account_key == key,
        )
        .first()
    )
    if vault_account is not None:
        return vault_account

    mapping = (
        db.session.query(PaymentMethodAccount)
        .filter(db.func.lower(PaymentMethodAccount.method) == key)
        .first()
    )
    if mapping is None:
        return None
    return (
        db.session.query(Account)
        .filter(Account.id == mapping.account_id, Account.is_active.is_(True))
        .first()
    )


def get_session_account(shift_id: int, key: str) -> Account | None:
    return (
        db.session.query(Account)
        .filter(
            Account.account_scope == SCOPE_SHIFT_SESSION,
            Account.shift_id == shift_id,
            Account.account_key == key,
        )
        .first()
    )


# =============================================================================
# MERGE ON CLOSE
# =============================================================================

def merge_shift_accounts_to_vault(shift_id: int, actor_user_id: int | None) -> list[ShiftMergeEntry]:
    """
    Fold every session account of the shift into its vault counterpart.

    For each session account (oldest first):
    - no vault counterpart (session_main, unknown keys): deactivate only
    - |balance| < epsilon: deactivate only
    - otherwise transfer |balance| session -> vault (balance >= 0) or
      vault -> session (balance < 0), then deactivate

    Afterwards every session account of the shift has a zero derived balance
    and is inactive. Does not commit; the shift close owns the transaction.
    """
    sessions = (
        db.session.query(Account)
        .filter(Account.account_scope == SCOPE_SHIFT_SESSION, Account.shift_id == shift_id)
        .order_by(Account.created_at, Account.id)
        .all()
    )
    if not sessions:
        return []

    vault_by_key = ensure_vault_base_accounts()
    entries: list[ShiftMergeEntry] = []

    for session_account in sessions:
        key = normalize_method(session_account.account_key)
        vault = vault_by_key.get(key) if key else None
        if vault is None:
            session_account.is_active = False
            continue

        balance = account_balance(session_account.id)
        if is_zero(balance):
            session_account.is_active = False
            continue

        amount = abs(balance)
        source, target = (session_account, vault) if balance >= ZERO else (vault, session_account)
        post_transfer(
            from_account_id=source.id,
            to_account_id=target.id,
            amount=amount,
            source_type=SOURCE_SHIFT_CLOSE_MERGE,
            note=f"Shift close merge ({key})",
            actor_user_id=actor_user_id,
        )
        session_account.is_active = False
        entries.append(ShiftMergeEntry(key, source.id, target.id, amount))

    db.session.flush()
    current_app.logger.info(
        "Merged shift %s session accounts into vault: %s transfer(s)", shift_id, len(entries)
    )
    return entries
