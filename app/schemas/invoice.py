"""
Invoice Pydantic schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import EmailStr, Field

from app.models.invoice import InvoiceItemType, InvoiceStatus
from app.schemas.base import BaseCreateSchema, BaseSchema, TimestampedSchema


class CustomItemIn(BaseCreateSchema):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)


class InvoiceCreate(BaseCreateSchema):
    order_id: int
    product_ids: list[int] = Field(default_factory=list)
    custom_items: list[CustomItemIn] = Field(default_factory=list)
    include_order_sample_fee: bool = False
    status: Literal["draft", "sent"] = "draft"
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    payment_link: Optional[str] = Field(None, max_length=1024)


class VoidInvoiceRequest(BaseCreateSchema):
    reason: str


class MarkPaidRequest(BaseCreateSchema):
    paid_at: Optional[datetime] = None


class InvoiceItemResponse(TimestampedSchema):
    order_product_id: Optional[int] = None
    item_type: InvoiceItemType
    description: str
    quantity: int
    unit_price: Decimal
    amount: Decimal


class InvoiceResponse(TimestampedSchema):
    order_id: int
    invoice_number: str
    amount: Decimal
    status: InvoiceStatus
    due_date: Optional[datetime] = None
    is_overdue: bool
    notes: Optional[str] = None
    created_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    sent_to: Optional[list[str]] = None
    paid_at: Optional[datetime] = None
    voided: bool
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None
    void_reason: Optional[str] = None
    payment_link: Optional[str] = None


class InvoiceDetailResponse(InvoiceResponse):
    items: list[InvoiceItemResponse] = Field(default_factory=list)


class ProductLineResponse(BaseSchema):
    product_id: int
    product_name: str
    unit_price: Optional[Decimal] = None
    quantity: int
    production_total: Decimal
    sample_fee: Decimal
    shipping: Decimal
    total: Decimal


class InvoiceSummaryResponse(BaseSchema):
    order_id: int
    order_number: str
    total_value: Decimal
    invoiced_amount: Decimal
    ready_to_invoice: Decimal
    order_sample_fee: Decimal
    products: list[ProductLineResponse]
    invoices: list[InvoiceResponse]


class SendInvoiceRequest(BaseCreateSchema):
    invoice_id: int = Field(..., alias="invoiceId")
    method: Literal["email", "sms", "both"]
    to: list[EmailStr] = Field(default_factory=list)
    cc: list[EmailStr] = Field(default_factory=list)
    phone: Optional[str] = None
    payment_url: Optional[str] = Field(None, alias="paymentUrl")
    message: Optional[str] = None


class SendInvoiceResponse(BaseSchema):
    success: bool
    email_id: Optional[str] = Field(None, alias="emailId")
    sms_result: Optional[dict[str, Any]] = Field(None, alias="smsResult")
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
