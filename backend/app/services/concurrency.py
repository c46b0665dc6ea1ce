# Overview: Transaction helpers shared by every mutating service: row locks, retry, cancellation and the atomic wrapper.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConflictError, OperationCancelled


def lock_for_update(query):
    """
    Apply row-level locking for read-then-write paths.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def check_cancelled(cancel) -> None:
    """Raise OperationCancelled when the caller's token (threading.Event or similar) is set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("CANCELLED", "Operation cancelled")


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Anything else propagates on the first try.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                current_app.logger.error("Giving up after %s attempts: %s", attempts, exc)
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, cancel=None, attempts: int = 3):
    """
    Run ``func`` as one transaction: commit on success, roll back on any error.

    WHY: Payment + ledger posting, shift close + merge, and merge-orders must
    never leave a partial state behind. ``func`` only stages work (add/flush);
    the single commit happens here after a final cancellation check.

    Raises:
        ConflictError: a unique constraint fired (callers may retry the whole op)
        OperationCancelled: the cancellation token was set
        PosError subclasses raised by ``func`` propagate unchanged
    """
    def _op():
        try:
            check_cancelled(cancel)
            result = func()
            check_cancelled(cancel)
            db.session.commit()
            return result
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("CONFLICT", "Conflicting concurrent change", {"error": str(exc.orig)}) from exc
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts)
