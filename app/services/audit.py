# app/services/audit.py
"""
Audit sink: one append-only entry per state-changing operation.

Each entry is written in its own SAVEPOINT so a failing insert never poisons
the caller's transaction; persistence failures are logged as warnings only.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.core.security import Actor
from app.models.audit_log import AuditLog

logger = get_logger(__name__)


def _snapshot(value: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    return jsonable_encoder(value, custom_encoder={Decimal: str})


def emit_audit(
    db: Session,
    actor: Optional[Actor],
    action_type: str,
    target_type: str,
    target_id: Any,
    *,
    old_value: Optional[dict[str, Any]] = None,
    new_value: Optional[dict[str, Any]] = None,
) -> Optional[AuditLog]:
    entry = AuditLog(
        actor_id=actor.id if actor else None,
        actor_name=actor.display_name if actor else "system",
        action_type=action_type,
        target_type=target_type,
        target_id=str(target_id),
        old_value=_snapshot(old_value),
        new_value=_snapshot(new_value),
    )
    try:
        with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError as e:
        logger.warning(
            "Audit entry not persisted",
            action_type=action_type,
            target_type=target_type,
            target_id=str(target_id),
            error=str(e),
        )
        return None
    return entry


def list_audit_entries(
    db: Session,
    *,
    target_type: Optional[str] = None,
    target_id: Any = None,
    action_type: Optional[str] = None,
    limit: int = 100,
) -> list[AuditLog]:
    q = select(AuditLog)
    if target_type:
        q = q.where(AuditLog.target_type == target_type)
    if target_id is not None:
        q = q.where(AuditLog.target_id == str(target_id))
    if action_type:
        q = q.where(AuditLog.action_type == action_type)
    return list(db.scalars(q.order_by(AuditLog.id.desc()).limit(limit)))


__all__ = ["emit_audit", "list_audit_entries"]
