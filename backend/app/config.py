# backend/app/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/respos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///respos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Currency stamped on system accounts (FX is a passthrough)
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "ILS").strip().upper() or "ILS"

    # Cashier expenses drawn from the shift cash drawer
    CASHIER_EXPENSES_ENABLED = os.environ.get("CASHIER_EXPENSES_ENABLED", "1").strip().lower() in ("1", "true", "yes")
    # Empty or <= 0 means "no cap"
    CASHIER_EXPENSES_CAP_AMOUNT = os.environ.get("CASHIER_EXPENSES_CAP_AMOUNT", "")

    ORDER_HISTORY_LIMIT = int(os.environ.get("ORDER_HISTORY_LIMIT", "500"))
