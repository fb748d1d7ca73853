"""Database models package.

Single import point for models: importing the package registers every table
in Base.metadata (needed by create_all and Alembic autogenerate).
"""

from __future__ import annotations

from app.models.base import Base, BaseModel, SoftDeleteMixin, utc_now
from app.models.order import (
    ALLOWED_TRANSITIONS,
    INVOICEABLE_PRODUCT_STATUSES,
    Order,
    OrderItem,
    OrderMarginOverride,
    OrderMedia,
    OrderProduct,
    OrderStatus,
    ProductCategory,
    ProductStatus,
    RoutingParty,
    ShippingMethod,
)
from app.models.invoice import BILLED_INVOICE_STATUSES, Invoice, InvoiceItem, InvoiceItemType, InvoiceStatus
from app.models.system_config import SystemConfig
from app.models.audit_log import AuditAction, AuditLog

__all__ = [
    "Base",
    "BaseModel",
    "SoftDeleteMixin",
    "utc_now",
    "ALLOWED_TRANSITIONS",
    "INVOICEABLE_PRODUCT_STATUSES",
    "Order",
    "OrderItem",
    "OrderMarginOverride",
    "OrderMedia",
    "OrderProduct",
    "OrderStatus",
    "ProductCategory",
    "ProductStatus",
    "RoutingParty",
    "ShippingMethod",
    "BILLED_INVOICE_STATUSES",
    "Invoice",
    "InvoiceItem",
    "InvoiceItemType",
    "InvoiceStatus",
    "SystemConfig",
    "AuditAction",
    "AuditLog",
]
