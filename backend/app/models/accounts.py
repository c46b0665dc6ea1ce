# Overview: Double-entry account ledger: accounts, immutable transactions, transfers, relations and the expense/receipt documents that post into it.

from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from ..money import as_float
from app.time_utils import to_utc_z


class Account(db.Model):
    """
    Ledger account.

    SCOPES:
    - custom: operator-created, freely editable
    - vault_base: permanent per-slot system account (cash/card/cheque/debt/expenses)
    - shift_session: per-shift mirror of a vault slot, merged into the vault
      and deactivated when the shift closes

    BALANCE: never stored. Always sum(in) - sum(out) over account_transactions.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "account_key", name="uq_accounts_shift_key"),
        db.Index(
            "uq_accounts_vault_key",
            "account_key",
            unique=True,
            sqlite_where=text("account_scope = 'vault_base'"),
            postgresql_where=text("account_scope = 'vault_base'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(32), nullable=False, default="cash")
    currency = db.Column(db.String(8), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # System-managed accounts cannot be edited through ordinary account operations
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)

    account_scope = db.Column(db.String(32), nullable=False, default="custom", index=True)
    account_key = db.Column(db.String(32), nullable=True)

    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    base_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    parent_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_shift_managed(self) -> bool:
        return self.account_scope == "shift_session"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "currency": self.currency,
            "is_active": self.is_active,
            "is_system": self.is_system,
            "is_locked": self.is_locked,
            "account_scope": self.account_scope,
            "account_key": self.account_key,
            "shift_id": self.shift_id,
            "base_account_id": self.base_account_id,
            "parent_account_id": self.parent_account_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountTransaction(db.Model):
    """
    Immutable ledger posting.

    (source_type, source_id) is a tagged correlation handle, not a foreign key:
    pos_payment, expense, manual_receipt, deposit, withdrawal, transfer,
    shift_opening_cash, shift_cash_adjustment, shift_close_merge, cashier_expense.

    Rows are only ever deleted as part of a compensating void (cashier expense
    delete, reopen-with-clear) in the same transaction as their source.
    """
    __tablename__ = "account_transactions"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_account_transactions_amount_positive"),
        db.CheckConstraint("direction IN ('in', 'out')", name="ck_account_transactions_direction"),
        db.Index("ix_account_txns_source", "source_type", "source_id"),
        db.Index("ix_account_txns_account_created", "account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    direction = db.Column(db.String(3), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(500), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "direction": self.direction,
            "amount": as_float(self.amount),
            "source_type": self.source_type,
            "source_id": self.source_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountTransfer(db.Model):
    """Money moved between two accounts; always paired with one out and one in posting."""
    __tablename__ = "account_transfers"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_account_transfers_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    to_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.String(500), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "amount": as_float(self.amount),
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountRelation(db.Model):
    """Outgoing allocation rule: a percentage of from_account flows to to_account."""
    __tablename__ = "account_relations"
    __table_args__ = (
        db.UniqueConstraint("from_account_id", "to_account_id", "kind", name="uq_account_relations_pair_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    to_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    percentage = db.Column(db.Numeric(7, 3), nullable=False)
    kind = db.Column(db.String(32), nullable=False, default="allocation")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "percentage": as_float(self.percentage),
            "kind": self.kind,
        }


class PaymentMethodAccount(db.Model):
    """Operator fallback mapping: payment method -> account."""
    __tablename__ = "payment_method_accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    method = db.Column(db.String(32), nullable=False, unique=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "account_id": self.account_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class Expense(db.Model):
    """
    Money paid out of an account.

    shift_id is set for cashier expenses (paid from the drawer during a shift).
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_date = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.String(128), nullable=False)
    supplier = db.Column(db.String(200), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    note = db.Column(db.String(500), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_date": self.expense_date.isoformat() if self.expense_date else None,
            "category": self.category,
            "supplier": self.supplier,
            "amount": as_float(self.amount),
            "method": self.method,
            "account_id": self.account_id,
            "shift_id": self.shift_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Receipt(db.Model):
    """Manual income not tied to an order (catering deposit, refund from a supplier)."""
    __tablename__ = "receipts"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_receipts_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_date = db.Column(db.Date, nullable=False, index=True)
    source = db.Column(db.String(200), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    note = db.Column(db.String(500), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_date": self.receipt_date.isoformat() if self.receipt_date else None,
            "source": self.source,
            "amount": as_float(self.amount),
            "method": self.method,
            "account_id": self.account_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
