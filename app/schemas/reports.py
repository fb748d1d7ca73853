"""Report schemas."""

from decimal import Decimal
from typing import Optional

from app.schemas.base import BaseSchema


class TopProductRow(BaseSchema):
    catalog_product_id: str
    product_name: Optional[str] = None
    quantity: int
    order_count: int
    revenue: Decimal


class OrderFinancialRow(BaseSchema):
    order_id: int
    order_number: str
    client_name: Optional[str] = None
    status: str
    product_count: int
    total_value: Decimal
    invoiced_amount: Decimal
    ready_to_invoice: Decimal
    overdue_invoices: int


class FinancialTotals(BaseSchema):
    total_value: Decimal
    invoiced_amount: Decimal
    ready_to_invoice: Decimal


class OrderFinancialReport(BaseSchema):
    orders: list[OrderFinancialRow]
    totals: FinancialTotals
