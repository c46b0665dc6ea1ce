# Overview: Daily two-digit order number allocation with collision skipping.

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderCounter
from app.time_utils import business_date_today
from .concurrency import lock_for_update, run_atomic
from .errors import ExhaustedError


# Printed tickets reserve two characters for the order tag
MAX_ORDER_NO = 99


def _get_or_create_counter(business_date: date) -> OrderCounter:
    query = db.session.query(OrderCounter).filter(OrderCounter.business_date == business_date)
    counter = lock_for_update(query).first()
    if counter is not None:
        return counter

    try:
        with db.session.begin_nested():
            counter = OrderCounter(business_date=business_date, next_no=1)
            db.session.add(counter)
    except IntegrityError:
        # Another allocator created the row first
        counter = lock_for_update(query).one()
    return counter


def next_order_no_locked(business_date: date) -> int:
    """
    Allocate an order number inside the caller's transaction.

    WHY: Concurrent allocators may race on the counter. Each attempt advances
    and flushes the counter before checking, so a racer never sees the same
    candidate twice; numbers may be skipped, never duplicated. The
    (business_date, order_no) unique constraint backs this at commit.

    Raises:
        ExhaustedError: all 99 slots for the date are taken
    """
    counter = _get_or_create_counter(business_date)

    for _ in range(MAX_ORDER_NO):
        candidate = counter.next_no
        counter.next_no = 1 if candidate >= MAX_ORDER_NO else candidate + 1
        db.session.flush()

        taken = (
            db.session.query(Order.id)
            .filter(Order.business_date == business_date, Order.order_no == candidate)
            .first()
        )
        if taken is None:
            return candidate

    raise ExhaustedError(
        "ORDER_NO_EXHAUSTED",
        f"All {MAX_ORDER_NO} order numbers for {business_date.isoformat()} are in use",
        {"business_date": business_date.isoformat()},
    )


def next_order_no(business_date: date | None = None, *, cancel=None) -> int:
    """Standalone allocation (own transaction). Defaults to today's business date."""
    business_date = business_date or business_date_today()
    return run_atomic(lambda: next_order_no_locked(business_date), cancel=cancel)
