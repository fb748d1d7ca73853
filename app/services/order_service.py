# app/services/order_service.py
"""Order and order-product creation / loading."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.core.exceptions import NotFoundError, OrderDeskValidationError
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.base import utc_now
from app.models.order import (
    Order,
    OrderItem,
    OrderMedia,
    OrderProduct,
    OrderStatus,
    ProductCategory,
    RoutingParty,
)
from app.services.margin import validate_flat_fee

logger = get_logger(__name__)


def generate_order_number(db: Session) -> str:
    base = f"ORD-{utc_now().strftime('%Y%m%d')}"
    count = db.scalar(select(func.count(Order.id)).where(Order.order_number.like(f"{base}-%"))) or 0
    seq = count + 1
    while db.scalar(select(Order.id).where(Order.order_number == f"{base}-{seq:04d}")) is not None:
        seq += 1
    return f"{base}-{seq:04d}"


def create_order(
    db: Session,
    actor: Actor,
    *,
    client_id: str,
    client_name: Optional[str] = None,
    client_email: Optional[str] = None,
    client_phone: Optional[str] = None,
    manufacturer_id: Optional[str] = None,
    manufacturer_name: Optional[str] = None,
    name: Optional[str] = None,
    sample_fee: Any = None,
) -> Order:
    ensure_admin(actor, "create orders")
    if not (client_id or "").strip():
        raise OrderDeskValidationError("client_id is required")
    order = Order(
        order_number=generate_order_number(db),
        name=name,
        status=OrderStatus.DRAFT,
        client_id=client_id.strip(),
        client_name=client_name,
        client_email=client_email,
        client_phone=client_phone,
        manufacturer_id=manufacturer_id,
        manufacturer_name=manufacturer_name,
        created_by=actor.id,
        sample_fee=validate_flat_fee(sample_fee, "sample_fee"),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Order created", order_id=order.id, order_number=order.order_number)
    return order


def add_order_product(
    db: Session,
    actor: Actor,
    order_id: int,
    *,
    catalog_product_id: str,
    product_name: str,
    product_category: ProductCategory | str = ProductCategory.STANDARD,
    items: Iterable[Mapping[str, Any]] = (),
    media: Iterable[Mapping[str, Any]] = (),
    **fields: Any,
) -> OrderProduct:
    ensure_admin(actor, "add products")
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})
    if order.is_terminal:
        raise OrderDeskValidationError("Order is closed", code="order_closed")
    try:
        category = ProductCategory(product_category)
    except ValueError:
        raise OrderDeskValidationError("Unknown product category", extra={"category": str(product_category)})

    for key in ("product_price", "sample_fee", "shipping_air_price", "shipping_boat_price"):
        if key in fields:
            fields[key] = validate_flat_fee(fields[key], key)

    product = OrderProduct(
        order_id=order_id,
        catalog_product_id=catalog_product_id,
        product_name=product_name,
        product_category=category,
        routed_to=RoutingParty.ADMIN,
        **fields,
    )
    for it in items:
        qty = int(it.get("quantity") or 0)
        if qty < 0:
            raise OrderDeskValidationError("quantity must be >= 0")
        product.items.append(
            OrderItem(variant_combo=it.get("variant_combo") or "", quantity=qty, notes=it.get("notes"))
        )
    for m in media:
        product.media.append(OrderMedia(public_id=m["public_id"], url=m.get("url"), file_name=m.get("file_name")))
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def get_order(db: Session, order_id: int) -> Order:
    order = db.scalar(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.products).selectinload(OrderProduct.items))
    )
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})
    return order


def get_order_product(db: Session, product_id: int, *, include_deleted: bool = False) -> OrderProduct:
    product = db.scalar(
        select(OrderProduct)
        .where(OrderProduct.id == product_id)
        .options(selectinload(OrderProduct.items), selectinload(OrderProduct.media))
    )
    if product is None or (product.deleted_at is not None and not include_deleted):
        raise NotFoundError("Order product not found", extra={"product_id": product_id})
    return product


__all__ = ["create_order", "add_order_product", "get_order", "get_order_product", "generate_order_number"]
