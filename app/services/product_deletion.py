# app/services/product_deletion.py
"""
Soft delete / restore for order products.

Delete: guard invoiced products, claim the row (conditional UPDATE), remove
media from storage best-effort, audit, commit. If storage was already touched
and the commit fails, a ConsistencyError is raised for manual reconciliation.

Restore: explicit allow-list of actor ids, re-read on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    AuthorizationError,
    ConsistencyError,
    GuardError,
    OrderDeskValidationError,
)
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.audit_log import AuditAction
from app.models.base import utc_now
from app.models.order import OrderProduct
from app.models.system_config import SystemConfig
from app.services.audit import emit_audit
from app.services.invoicing import void_invoice
from app.services.media_storage import MediaStorage
from app.services.order_service import get_order_product

logger = get_logger(__name__)

RESTORE_ALLOWLIST_KEY = "restore_allowed_actor_ids"


@dataclass
class DeletionResult:
    product: OrderProduct
    media_removed: int = 0
    voided_invoice_id: Optional[int] = None
    warnings: list[str] = field(default_factory=list)


def _snapshot(product: OrderProduct) -> dict[str, Any]:
    return {
        "order_id": product.order_id,
        "product_name": product.product_name,
        "product_status": product.product_status.value,
        "invoiced": product.invoiced,
        "invoice_id": product.invoice_id,
        "client_product_price": product.client_product_price,
        "total_quantity": product.total_quantity,
        "media": [m.public_id for m in product.media],
    }


def delete_product(
    db: Session,
    actor: Actor,
    product_id: int,
    reason: str,
    *,
    void_invoice_reason: Optional[str] = None,
    storage: Optional[MediaStorage] = None,
) -> DeletionResult:
    ensure_admin(actor, "delete products")
    reason = (reason or "").strip()
    if not reason:
        raise OrderDeskValidationError("A deletion reason is required", code="reason_required")

    product = get_order_product(db, product_id)
    result = DeletionResult(product=product)

    if product.invoiced:
        if not actor.is_elevated:
            raise GuardError(
                "Product is invoiced; void the invoice before deleting it",
                code="product_invoiced",
            )
        invoice_id = product.invoice_id
        logger.warning(
            "Invoiced product deleted by elevated actor",
            product_id=product.id,
            invoice_id=invoice_id,
            actor_id=actor.id,
            void_invoice=bool(void_invoice_reason),
        )
        if void_invoice_reason:
            void_invoice(db, actor, invoice_id, void_invoice_reason)
            product = get_order_product(db, product_id)
            result.product = product
            result.voided_invoice_id = invoice_id
            result.warnings.append(f"Invoice {invoice_id} was voided before deletion")
        else:
            result.warnings.append(
                f"Product was billed on invoice {invoice_id}; the invoice may need review"
            )

    old_value = _snapshot(product)
    now = utc_now()
    res = db.execute(
        update(OrderProduct)
        .where(
            OrderProduct.id == product.id,
            OrderProduct.deleted_at.is_(None),
            OrderProduct.version == product.version,
        )
        .values(
            deleted_at=now,
            deleted_by=actor.id,
            deleted_by_name=actor.name,
            deletion_reason=reason,
            version=product.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise GuardError("Product was modified concurrently; reload and retry", code="stale_product")

    storage = storage or MediaStorage()
    removed = storage.remove_product_media(product)
    result.media_removed = len(removed)

    try:
        emit_audit(
            db,
            actor,
            AuditAction.PRODUCT_DELETED,
            "order_product",
            product.id,
            old_value=old_value,
            new_value={"deletion_reason": reason, "media_removed": len(removed), "warnings": result.warnings},
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        if removed:
            logger.critical(
                "Product media removed but soft delete not persisted",
                product_id=product.id,
                media=[m.public_id for m in removed],
                error=str(e),
            )
            raise ConsistencyError(
                "Product media was removed but the deletion could not be saved",
                extra={"product_id": product.id, "media": [m.public_id for m in removed]},
            )
        raise

    db.refresh(product)
    logger.info(
        "Order product deleted",
        product_id=product.id,
        deleted_by=actor.id,
        media_removed=len(removed),
        warnings=result.warnings,
    )
    return result


def restore_allowed_ids(db: Session, settings: Optional[Settings] = None) -> set[str]:
    settings = settings or get_settings()
    allowed = {str(i).strip() for i in settings.RESTORE_ALLOWED_ACTOR_IDS if str(i).strip()}
    row = db.scalar(select(SystemConfig).where(SystemConfig.key == RESTORE_ALLOWLIST_KEY))
    if row is not None and row.value:
        allowed.update(v.strip() for v in row.value.split(",") if v.strip())
    return allowed


def restore_product(
    db: Session,
    actor: Actor,
    product_id: int,
    *,
    settings: Optional[Settings] = None,
) -> OrderProduct:
    if actor.id not in restore_allowed_ids(db, settings):
        logger.warning("Restore denied", actor_id=actor.id, product_id=product_id)
        raise AuthorizationError("You are not allowed to restore deleted products", code="restore_not_allowed")

    product = get_order_product(db, product_id, include_deleted=True)
    if not product.is_deleted:
        raise OrderDeskValidationError("Product is not deleted", code="not_deleted")

    old_value = {
        "deleted_at": product.deleted_at,
        "deleted_by": product.deleted_by,
        "deletion_reason": product.deletion_reason,
    }
    res = db.execute(
        update(OrderProduct)
        .where(OrderProduct.id == product.id, OrderProduct.deleted_at.is_not(None))
        .values(
            deleted_at=None,
            deleted_by=None,
            deleted_by_name=None,
            deletion_reason=None,
            version=OrderProduct.version + 1,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise GuardError("Product was restored concurrently", code="stale_product")
    emit_audit(db, actor, AuditAction.PRODUCT_RESTORED, "order_product", product.id, old_value=old_value)
    db.commit()
    db.refresh(product)
    logger.info("Order product restored", product_id=product.id, restored_by=actor.id)
    return product


def list_deleted_products(db: Session, order_id: Optional[int] = None) -> list[OrderProduct]:
    q = (
        select(OrderProduct)
        .where(OrderProduct.deleted_at.is_not(None))
        .options(selectinload(OrderProduct.items), selectinload(OrderProduct.media))
    )
    if order_id is not None:
        q = q.where(OrderProduct.order_id == order_id)
    return list(db.scalars(q.order_by(OrderProduct.deleted_at.desc())))


__all__ = [
    "RESTORE_ALLOWLIST_KEY",
    "DeletionResult",
    "delete_product",
    "restore_product",
    "restore_allowed_ids",
    "list_deleted_products",
]
