# Overview: Fire-and-forget audit sink for order lifecycle events.

from __future__ import annotations

import json

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog
from app.time_utils import utcnow


def write_audit(
    *,
    action: str,
    entity_type: str,
    entity_id: int | None,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> bool:
    """
    Record an audit entry in its own short transaction.

    Called after the triggering operation has committed. A failure here is
    logged and swallowed: the audit trail must never undo a sale.

    Returns True when the entry was stored.
    """
    try:
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=json.dumps(payload, default=str) if payload is not None else None,
            created_at=utcnow(),
        )
        db.session.add(entry)
        db.session.commit()
        return True
    except (SQLAlchemyError, TypeError, ValueError) as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Audit write failed for %s %s#%s: %s", action, entity_type, entity_id, exc
        )
        return False
