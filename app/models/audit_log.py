# app/models/audit_log.py
"""
Audit log: append-only record of state-changing operations.

Rows are only ever inserted (see app.services.audit.emit_audit); nothing in the
application updates or deletes them.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class AuditAction:
    INVOICE_CREATED = "invoice_created"
    INVOICE_SENT = "invoice_sent"
    INVOICE_VOIDED = "invoice_voided"
    INVOICE_PAID = "invoice_paid"
    PRODUCT_ROUTED = "product_routed"
    PRODUCT_STATUS_CHANGED = "product_status_changed"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_LOCKED = "product_locked"
    PRODUCT_UNLOCKED = "product_unlocked"
    PRODUCT_DELETED = "product_deleted"
    PRODUCT_RESTORED = "product_restored"
    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_MARGIN_UPDATED = "order_margin_updated"
    ORDER_REPRICED = "order_repriced"
    MARGIN_DEFAULTS_UPDATED = "margin_defaults_updated"


class AuditLog(BaseModel):
    __tablename__ = "audit_logs"

    actor_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(255))
    action_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    old_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    new_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    @property
    def timestamp(self):
        return self.created_at


__all__ = ["AuditLog", "AuditAction"]
