# app/models/order.py
"""
Order / OrderProduct / OrderItem / OrderMedia / OrderMarginOverride.

- order status machine (ALLOWED_TRANSITIONS), enforced by app.services.workflow
- per-product workflow: product_status + routed_to + lock (with version counter)
- manufacturer cost fields vs. persisted client-side prices
- invoicing flags (invoiced / invoice_id / invoiced_at)
- soft delete record (see SoftDeleteMixin)

Time: naive UTC everywhere (utc_now).
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.models.base import BaseModel, SoftDeleteMixin, enum_column

if TYPE_CHECKING:
    from app.models.invoice import Invoice


# ---------------------------------------------------------------------------
# Enums & allowed transitions
# ---------------------------------------------------------------------------
class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    SUBMITTED_TO_MANUFACTURER = "submitted_to_manufacturer"
    MANUFACTURER_PROCESSED = "manufacturer_processed"
    SUBMITTED_TO_CLIENT = "submitted_to_client"
    CLIENT_REVIEWED = "client_reviewed"
    APPROVED_BY_CLIENT = "approved_by_client"
    SUBMITTED_FOR_SAMPLE = "submitted_for_sample"
    SAMPLE_IN_PRODUCTION = "sample_in_production"
    SAMPLE_DELIVERED = "sample_delivered"
    SAMPLE_APPROVED = "sample_approved"
    IN_PRODUCTION = "in_production"
    PARTIALLY_IN_PRODUCTION = "partially_in_production"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.REJECTED})

_S = OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    _S.DRAFT: {_S.SUBMITTED, _S.SUBMITTED_TO_MANUFACTURER},
    _S.SUBMITTED: {_S.SUBMITTED_TO_MANUFACTURER, _S.SUBMITTED_FOR_SAMPLE},
    _S.SUBMITTED_TO_MANUFACTURER: {_S.MANUFACTURER_PROCESSED},
    _S.MANUFACTURER_PROCESSED: {_S.SUBMITTED_TO_CLIENT, _S.IN_PRODUCTION, _S.SUBMITTED_FOR_SAMPLE},
    _S.SUBMITTED_TO_CLIENT: {_S.CLIENT_REVIEWED},
    _S.CLIENT_REVIEWED: {_S.APPROVED_BY_CLIENT, _S.SUBMITTED_FOR_SAMPLE},
    _S.APPROVED_BY_CLIENT: {_S.IN_PRODUCTION},
    _S.SUBMITTED_FOR_SAMPLE: {_S.SAMPLE_IN_PRODUCTION},
    _S.SAMPLE_IN_PRODUCTION: {_S.SAMPLE_DELIVERED},
    _S.SAMPLE_DELIVERED: {_S.SAMPLE_APPROVED},
    _S.SAMPLE_APPROVED: {_S.IN_PRODUCTION},
    _S.IN_PRODUCTION: {_S.PARTIALLY_IN_PRODUCTION, _S.COMPLETED},
    _S.PARTIALLY_IN_PRODUCTION: {_S.IN_PRODUCTION, _S.COMPLETED},
    _S.REVISION_REQUESTED: {
        _S.DRAFT,
        _S.SUBMITTED,
        _S.SUBMITTED_TO_MANUFACTURER,
        _S.SUBMITTED_TO_CLIENT,
    },
    _S.COMPLETED: set(),
    _S.REJECTED: set(),
}

# any non-terminal state may be sent back or rejected
for _src, _dst in ALLOWED_TRANSITIONS.items():
    if _src not in TERMINAL_ORDER_STATUSES:
        _dst.update({_S.REVISION_REQUESTED, _S.REJECTED})
    _dst.discard(_src)
del _src, _dst


class ProductStatus(str, enum.Enum):
    PENDING = "pending"
    SENT_TO_MANUFACTURER = "sent_to_manufacturer"
    PENDING_ADMIN = "pending_admin"
    SAMPLE_REQUESTED = "sample_requested"
    PENDING_CLIENT_APPROVAL = "pending_client_approval"
    CLIENT_APPROVED = "client_approved"
    APPROVED_FOR_PRODUCTION = "approved_for_production"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    REVISION_REQUESTED = "revision_requested"
    REJECTED = "rejected"
    ON_HOLD = "on_hold"


# statuses that make a product billable regardless of routing
INVOICEABLE_PRODUCT_STATUSES = frozenset(
    {ProductStatus.APPROVED_FOR_PRODUCTION, ProductStatus.IN_PRODUCTION, ProductStatus.COMPLETED}
)


class RoutingParty(str, enum.Enum):
    ADMIN = "admin"
    MANUFACTURER = "manufacturer"
    CLIENT = "client"


class ShippingMethod(str, enum.Enum):
    NONE = "none"
    AIR = "air"
    BOAT = "boat"


class ProductCategory(str, enum.Enum):
    STANDARD = "standard"
    CLOTHING = "clothing"
    ACCESSORY = "accessory"


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------
class Order(BaseModel):
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus), nullable=False, default=OrderStatus.DRAFT, index=True
    )
    status_note: Mapped[Optional[str]] = mapped_column(Text)

    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    client_email: Mapped[Optional[str]] = mapped_column(String(255))
    client_phone: Mapped[Optional[str]] = mapped_column(String(32))
    manufacturer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    manufacturer_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_by: Mapped[Optional[str]] = mapped_column(String(64))

    # order-level sample fee (manufacturer side); marked up by the sample margin when billed
    sample_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sample_invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # plain integer: orders <-> invoices would otherwise be a FK cycle
    sample_invoice_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)

    products: Mapped[list["OrderProduct"]] = relationship(
        "OrderProduct", back_populates="order", order_by="OrderProduct.id"
    )
    margin_override: Mapped[Optional["OrderMarginOverride"]] = relationship(
        "OrderMarginOverride", back_populates="order", uselist=False
    )
    invoices: Mapped[list["Invoice"]] = relationship("Invoice", back_populates="order", order_by="Invoice.id")

    __table_args__ = (CheckConstraint("sample_fee IS NULL OR sample_fee >= 0", name="sample_fee_nonneg"),)

    @property
    def active_products(self) -> list["OrderProduct"]:
        return [p for p in self.products if p.deleted_at is None]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.status, set())


# ---------------------------------------------------------------------------
# OrderProduct
# ---------------------------------------------------------------------------
class OrderProduct(BaseModel, SoftDeleteMixin):
    __tablename__ = "order_products"

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    catalog_product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_order_number: Mapped[Optional[str]] = mapped_column(String(64))
    product_category: Mapped[ProductCategory] = mapped_column(
        enum_column(ProductCategory), nullable=False, default=ProductCategory.STANDARD
    )

    # manufacturer side (per unit, except shipping which is per line)
    product_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    sample_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    shipping_air_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    shipping_boat_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    # client side, persisted once computed (or set manually)
    client_product_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    client_sample_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    client_shipping_air_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    client_shipping_boat_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    client_price_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # product-level margin overrides (percent)
    margin_override_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    shipping_margin_override_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))

    selected_shipping_method: Mapped[ShippingMethod] = mapped_column(
        enum_column(ShippingMethod), nullable=False, default=ShippingMethod.NONE
    )
    production_eta: Mapped[Optional[date]] = mapped_column(Date)
    manufacturer_notes: Mapped[Optional[str]] = mapped_column(Text)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)

    # workflow
    product_status: Mapped[ProductStatus] = mapped_column(
        enum_column(ProductStatus), nullable=False, default=ProductStatus.PENDING, index=True
    )
    routed_to: Mapped[RoutingParty] = mapped_column(
        enum_column(RoutingParty), nullable=False, default=RoutingParty.ADMIN, index=True
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by_role: Mapped[Optional[str]] = mapped_column(String(32))
    locked_by: Mapped[Optional[str]] = mapped_column(String(64))
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # invoicing
    invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoiced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    order: Mapped[Order] = relationship("Order", back_populates="products")
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order_product", order_by="OrderItem.id", cascade="all, delete-orphan"
    )
    media: Mapped[list["OrderMedia"]] = relationship(
        "OrderMedia", back_populates="order_product", order_by="OrderMedia.id", cascade="all, delete-orphan"
    )
    invoice: Mapped[Optional["Invoice"]] = relationship("Invoice", foreign_keys=[invoice_id])

    __table_args__ = (
        Index("ix_order_products_order_deleted", "order_id", "deleted_at"),
        CheckConstraint("product_price IS NULL OR product_price >= 0", name="product_price_nonneg"),
        CheckConstraint("NOT invoiced OR invoice_id IS NOT NULL", name="invoiced_has_invoice"),
    )

    @validates("product_price", "sample_fee", "shipping_air_price", "shipping_boat_price")
    def _nonneg_cost(self, key: str, v):
        if v is not None and Decimal(str(v)) < 0:
            raise ValueError(f"{key} must be >= 0")
        return v

    @property
    def total_quantity(self) -> int:
        return sum(int(i.quantity or 0) for i in self.items)

    @property
    def is_clothing(self) -> bool:
        return self.product_category == ProductCategory.CLOTHING

    @property
    def is_accessory(self) -> bool:
        return self.product_category == ProductCategory.ACCESSORY


class OrderItem(BaseModel):
    """A variant combination (size/color...) with its quantity."""

    __tablename__ = "order_items"

    order_product_id: Mapped[int] = mapped_column(
        ForeignKey("order_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    variant_combo: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    order_product: Mapped[OrderProduct] = relationship("OrderProduct", back_populates="items")

    __table_args__ = (CheckConstraint("quantity >= 0", name="quantity_nonneg"),)


class OrderMedia(BaseModel):
    """File attached to an order product, stored in the external media store."""

    __tablename__ = "order_media"

    order_product_id: Mapped[int] = mapped_column(
        ForeignKey("order_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(1024))
    file_name: Mapped[Optional[str]] = mapped_column(String(255))
    storage_removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    order_product: Mapped[OrderProduct] = relationship("OrderProduct", back_populates="media")


class OrderMarginOverride(BaseModel):
    """Zero-or-one per order; unset fields fall through to the global defaults."""

    __tablename__ = "order_margins"

    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    margin_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    shipping_margin_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    clothing_fee_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))

    order: Mapped[Order] = relationship("Order", back_populates="margin_override")


__all__ = [
    "OrderStatus",
    "ProductStatus",
    "RoutingParty",
    "ShippingMethod",
    "ProductCategory",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_ORDER_STATUSES",
    "INVOICEABLE_PRODUCT_STATUSES",
    "Order",
    "OrderProduct",
    "OrderItem",
    "OrderMedia",
    "OrderMarginOverride",
]
