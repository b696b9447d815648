# kingrent/services/audit.py
from __future__ import annotations

from typing import Any

from flask_login import current_user

from kingrent.extensions import db
from kingrent.models import AuditAction, AuditEntity, AuditLog


def _current_user_id() -> int | None:
    # current_user is None outside a request (CLI job)
    if getattr(current_user, "is_authenticated", False):
        return current_user.id
    return None


def record(
    entity: AuditEntity,
    entity_id: Any,
    action: AuditAction,
    payload: dict | None = None,
    user_id: int | None = None,
) -> AuditLog:
    """
    Adds an audit row to the session. Does NOT commit: the caller owns the transaction.
    """
    row = AuditLog(
        entity=entity,
        entity_id=str(entity_id),
        action=action,
        payload_snapshot=payload or None,
        user_id=user_id if user_id is not None else _current_user_id(),
    )
    db.session.add(row)
    return row
