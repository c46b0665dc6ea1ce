# Overview: Work shift model; at most one shift is open system-wide.

from __future__ import annotations

from ..extensions import db
from ..money import as_float
from app.time_utils import to_utc_z


class Shift(db.Model):
    """
    Cashier work shift.

    WHY: Each shift isolates its money movements in shift-session accounts
    until close, when they are reconciled and merged into the vault.

    ONE OPEN SHIFT: open_marker is True while the shift is open and NULL once
    closed. The unique constraint lets any number of NULLs through but only
    one True, so two concurrent opens cannot both commit.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("open_marker", name="uq_shifts_single_open"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    opened_by_user_id = db.Column(db.Integer, nullable=False)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    opening_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    closed_by_user_id = db.Column(db.Integer, nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    closing_cash = db.Column(db.Numeric(12, 2), nullable=True)

    note = db.Column(db.String(500), nullable=True)
    open_marker = db.Column(db.Boolean, nullable=True, default=True)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "opened_by_user_id": self.opened_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "opening_cash": as_float(self.opening_cash),
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closing_cash": as_float(self.closing_cash),
            "note": self.note,
            "is_open": self.is_open,
        }
