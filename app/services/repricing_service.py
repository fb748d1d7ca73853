# app/services/repricing_service.py
"""
Freeze client prices: recompute and persist client-side prices of an order's products.

Run after an order margin is saved (or on demand). Persisted prices are what
the margin resolver treats as finalized, so invoices stay stable even if the
defaults move later.

Skipped:
- soft-deleted and already-invoiced products (their billing snapshot is fixed)
- products with a manually set price (client_price_locked) unless force=True
- products locked by a non-admin role (the manufacturer is still completing them)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.core.security import Actor
from app.models.audit_log import AuditAction
from app.models.order import Order, OrderMarginOverride, OrderProduct, RoutingParty, ShippingMethod
from app.services.audit import emit_audit
from app.services.margin import (
    MarginDefaults,
    compute_client_sample_fee,
    compute_client_shipping_price,
    compute_client_unit_price,
)
from app.services.margin_config import get_margin_defaults, get_order_margin

log = get_logger(__name__)


@dataclass
class RepriceResult:
    order_id: int
    repriced: list[int] = field(default_factory=list)
    skipped: dict[int, str] = field(default_factory=dict)


PRICE_INPUT_FIELDS = frozenset(
    {
        "product_price",
        "sample_fee",
        "shipping_air_price",
        "shipping_boat_price",
        "margin_override_percentage",
        "shipping_margin_override_percentage",
    }
)


def client_price_values(
    p: OrderProduct, order_margin: Optional[OrderMarginOverride], defaults: MarginDefaults
) -> dict[str, Optional[Decimal]]:
    return {
        "client_product_price": compute_client_unit_price(p, order_margin, defaults),
        "client_sample_fee": compute_client_sample_fee(p, defaults),
        "client_shipping_air_price": compute_client_shipping_price(p, order_margin, defaults, ShippingMethod.AIR),
        "client_shipping_boat_price": compute_client_shipping_price(p, order_margin, defaults, ShippingMethod.BOAT),
    }


def _skip_reason(p: OrderProduct, force: bool) -> Optional[str]:
    if p.deleted_at is not None:
        return "deleted"
    if p.invoiced:
        return "invoiced"
    if p.client_price_locked and not force:
        return "manual_price"
    if p.is_locked and p.locked_by_role != RoutingParty.ADMIN.value:
        return "locked"
    return None


def reprice_order(
    db: Session,
    order_id: int,
    *,
    actor: Optional[Actor] = None,
    force: bool = False,
) -> RepriceResult:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})

    defaults = get_margin_defaults(db)
    order_margin = get_order_margin(db, order_id)
    products = db.scalars(
        select(OrderProduct)
        .where(OrderProduct.order_id == order_id)
        .options(selectinload(OrderProduct.items))
        .order_by(OrderProduct.id)
    ).all()

    result = RepriceResult(order_id=order_id)
    changes: dict[int, dict[str, Optional[Decimal]]] = {}
    for p in products:
        reason = _skip_reason(p, force)
        if reason:
            result.skipped[p.id] = reason
            continue
        new = client_price_values(p, order_margin, defaults)
        for attr, value in new.items():
            setattr(p, attr, value)
        if force:
            p.client_price_locked = False
        p.version = (p.version or 0) + 1
        changes[p.id] = new
        result.repriced.append(p.id)

    if changes:
        emit_audit(
            db,
            actor,
            AuditAction.ORDER_REPRICED,
            "order",
            order_id,
            new_value={"defaults_version": defaults.version, "products": changes},
        )
    db.commit()
    log.info(
        "Order repriced",
        order_id=order_id,
        repriced=len(result.repriced),
        skipped=len(result.skipped),
        defaults_version=defaults.version,
    )
    return result


def refresh_client_prices(
    db: Session, product: OrderProduct, *, keep: frozenset[str] | set[str] = frozenset()
) -> dict[str, Optional[Decimal]]:
    """
    Re-derive the persisted client prices of one product after its cost or
    margin override changed. Only prices that are already persisted are
    rewritten (unset ones resolve live anyway); fields in `keep` were set
    explicitly by the caller and stay as they are. Does not commit.
    """
    if product.invoiced or product.client_price_locked:
        return {}
    fresh = client_price_values(product, get_order_margin(db, product.order_id), get_margin_defaults(db))
    changes = {
        attr: value
        for attr, value in fresh.items()
        if attr not in keep and getattr(product, attr) is not None and getattr(product, attr) != value
    }
    if changes:
        db.execute(
            update(OrderProduct)
            .where(OrderProduct.id == product.id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
    return changes


__all__ = ["RepriceResult", "reprice_order", "refresh_client_prices", "client_price_values", "PRICE_INPUT_FIELDS"]
