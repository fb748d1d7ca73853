"""
Order / order product Pydantic schemas.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import EmailStr, Field

from app.models.order import (
    OrderStatus,
    ProductCategory,
    ProductStatus,
    RoutingParty,
    ShippingMethod,
)
from app.schemas.base import BaseCreateSchema, BaseSchema, BaseUpdateSchema, TimestampedSchema

Money = Decimal
Percent = Decimal


# ---------------------------- requests ----------------------------
class OrderCreate(BaseCreateSchema):
    client_id: str = Field(..., min_length=1, max_length=64)
    client_name: Optional[str] = Field(None, max_length=255)
    client_email: Optional[EmailStr] = None
    client_phone: Optional[str] = Field(None, max_length=32)
    manufacturer_id: Optional[str] = Field(None, max_length=64)
    manufacturer_name: Optional[str] = Field(None, max_length=255)
    name: Optional[str] = Field(None, max_length=255)
    sample_fee: Optional[Money] = Field(None, ge=0)


class OrderItemIn(BaseCreateSchema):
    variant_combo: str = Field("", max_length=255)
    quantity: int = Field(0, ge=0)
    notes: Optional[str] = None


class OrderMediaIn(BaseCreateSchema):
    public_id: str = Field(..., min_length=1, max_length=255)
    url: Optional[str] = None
    file_name: Optional[str] = None


class OrderProductCreate(BaseCreateSchema):
    catalog_product_id: str = Field(..., min_length=1, max_length=64)
    product_name: str = Field(..., min_length=1, max_length=255)
    product_category: ProductCategory = ProductCategory.STANDARD
    product_order_number: Optional[str] = Field(None, max_length=64)
    product_price: Optional[Money] = Field(None, ge=0)
    sample_fee: Optional[Money] = Field(None, ge=0)
    shipping_air_price: Optional[Money] = Field(None, ge=0)
    shipping_boat_price: Optional[Money] = Field(None, ge=0)
    selected_shipping_method: Optional[ShippingMethod] = None
    production_eta: Optional[date] = None
    margin_override_percentage: Optional[Percent] = Field(None, ge=0, le=500)
    shipping_margin_override_percentage: Optional[Percent] = Field(None, ge=0, le=500)
    manufacturer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    items: list[OrderItemIn] = Field(default_factory=list)
    media: list[OrderMediaIn] = Field(default_factory=list)


class OrderProductUpdate(BaseUpdateSchema):
    product_name: Optional[str] = Field(None, max_length=255)
    product_price: Optional[Money] = None
    sample_fee: Optional[Money] = None
    shipping_air_price: Optional[Money] = None
    shipping_boat_price: Optional[Money] = None
    client_product_price: Optional[Money] = None
    client_sample_fee: Optional[Money] = None
    client_shipping_air_price: Optional[Money] = None
    client_shipping_boat_price: Optional[Money] = None
    margin_override_percentage: Optional[Percent] = None
    shipping_margin_override_percentage: Optional[Percent] = None
    selected_shipping_method: Optional[ShippingMethod] = None
    production_eta: Optional[date] = None
    manufacturer_notes: Optional[str] = None
    admin_notes: Optional[str] = None


class OrderTransitionRequest(BaseCreateSchema):
    status: OrderStatus
    note: Optional[str] = None


class OrderMarginUpdate(BaseUpdateSchema):
    """Omitted fields are left alone; explicit null clears the override."""

    margin_percentage: Optional[Percent] = None
    shipping_margin_percentage: Optional[Percent] = None
    clothing_fee_override: Optional[Money] = None
    reprice: bool = True


class RouteRequest(BaseCreateSchema):
    routed_to: RoutingParty
    new_status: Optional[ProductStatus] = None


class BulkActionRequest(BaseCreateSchema):
    product_ids: list[int] = Field(..., min_length=1)
    action: str = Field(..., min_length=1)


class DeleteProductRequest(BaseCreateSchema):
    reason: str = Field(..., min_length=1, max_length=1000)
    void_invoice_reason: Optional[str] = None


# ---------------------------- responses ----------------------------
class OrderItemResponse(TimestampedSchema):
    variant_combo: str
    quantity: int
    notes: Optional[str] = None


class OrderMediaResponse(TimestampedSchema):
    public_id: str
    url: Optional[str] = None
    file_name: Optional[str] = None
    storage_removed_at: Optional[datetime] = None


class ClientOrderProductResponse(TimestampedSchema):
    """What a client may see of a product: client-side prices only."""

    order_id: int
    catalog_product_id: str
    product_name: str
    product_order_number: Optional[str] = None
    product_category: ProductCategory
    client_product_price: Optional[Money] = None
    client_sample_fee: Optional[Money] = None
    client_shipping_air_price: Optional[Money] = None
    client_shipping_boat_price: Optional[Money] = None
    selected_shipping_method: ShippingMethod
    production_eta: Optional[date] = None
    manufacturer_notes: Optional[str] = None
    product_status: ProductStatus
    routed_to: RoutingParty
    is_locked: bool
    locked_by_role: Optional[str] = None
    version: int
    invoiced: bool
    invoice_id: Optional[int] = None
    invoiced_at: Optional[datetime] = None
    total_quantity: int
    deleted_at: Optional[datetime] = None
    items: list[OrderItemResponse] = Field(default_factory=list)
    media: list[OrderMediaResponse] = Field(default_factory=list)


class OrderProductResponse(ClientOrderProductResponse):
    product_price: Optional[Money] = None
    sample_fee: Optional[Money] = None
    shipping_air_price: Optional[Money] = None
    shipping_boat_price: Optional[Money] = None
    client_price_locked: bool
    margin_override_percentage: Optional[Percent] = None
    shipping_margin_override_percentage: Optional[Percent] = None
    admin_notes: Optional[str] = None
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    deleted_by_name: Optional[str] = None
    deletion_reason: Optional[str] = None


class OrderResponse(TimestampedSchema):
    order_number: str
    name: Optional[str] = None
    status: OrderStatus
    status_note: Optional[str] = None
    client_id: str
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    manufacturer_id: Optional[str] = None
    manufacturer_name: Optional[str] = None
    created_by: Optional[str] = None
    sample_fee: Optional[Money] = None
    sample_invoiced: bool
    sample_invoice_id: Optional[int] = None
    # soft-deleted products are hidden here; see /order-products/deleted
    products: list[OrderProductResponse] = Field(default_factory=list, validation_alias="active_products")


class ClientOrderResponse(OrderResponse):
    products: list[ClientOrderProductResponse] = Field(default_factory=list, validation_alias="active_products")


class OrderMarginResponse(BaseSchema):
    order_id: int
    margin_percentage: Optional[Percent] = None
    shipping_margin_percentage: Optional[Percent] = None
    clothing_fee_override: Optional[Money] = None
    updated_by: Optional[str] = None


class RepriceResponse(BaseSchema):
    order_id: int
    repriced: list[int]
    skipped: dict[int, str]


class DeletionResponse(BaseSchema):
    product: OrderProductResponse
    media_removed: int
    voided_invoice_id: Optional[int] = None
    warnings: list[str] = Field(default_factory=list)
