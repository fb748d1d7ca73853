# app/models/invoice.py
"""
Invoice / InvoiceItem.

- Invoice numbering: INV-YYYYMMDD-00001 (generate_number)
- status: draft -> sent -> paid, any non-paid -> voided
- is_overdue is derived on every read, never stored
- InvoiceItem is a frozen snapshot of what was billed
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from app.models.base import BaseModel, enum_column, utc_now
from app.models.order import Order, OrderProduct


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    VOIDED = "voided"


# only these count towards an order's invoiced amount
BILLED_INVOICE_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID})


class InvoiceItemType(str, enum.Enum):
    PRODUCTION = "production"
    SAMPLE = "sample"
    SHIPPING = "shipping"
    ORDER_SAMPLE = "order_sample"
    CUSTOM = "custom"


class Invoice(BaseModel):
    __tablename__ = "invoices"

    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[InvoiceStatus] = mapped_column(
        enum_column(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT, index=True
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sent_to: Mapped[Optional[list[str]]] = mapped_column(JSON)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    voided_by: Mapped[Optional[str]] = mapped_column(String(64))
    void_reason: Mapped[Optional[str]] = mapped_column(Text)

    payment_link: Mapped[Optional[str]] = mapped_column(String(1024))
    document_url: Mapped[Optional[str]] = mapped_column(String(1024))

    order: Mapped[Order] = relationship("Order", back_populates="invoices")
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", order_by="InvoiceItem.id", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_invoices_order_status", "order_id", "status"),
        CheckConstraint("amount >= 0", name="amount_nonneg"),
    )

    @validates("notes", "void_reason")
    def _strip_text(self, _k: str, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @classmethod
    def generate_number(
        cls,
        session: Session,
        *,
        prefix: str = "INV",
        date: Optional[datetime] = None,
        width: int = 5,
    ) -> str:
        dt = date or utc_now()
        base = f"{(prefix or 'INV').upper()}-{dt.strftime('%Y%m%d')}"
        q = select(cls.invoice_number).where(cls.invoice_number.like(f"{base}-%"))
        existing = {row[0] for row in session.execute(q).all()}
        seq = len(existing) + 1
        while True:
            candidate = f"{base}-{str(seq).zfill(width)}"
            if candidate not in existing:
                return candidate
            seq += 1

    @property
    def is_overdue(self) -> bool:
        if self.status == InvoiceStatus.PAID or self.due_date is None:
            return False
        return self.due_date < utc_now()

    @property
    def counts_as_billed(self) -> bool:
        return self.status in BILLED_INVOICE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["is_overdue"] = self.is_overdue
        return data


class InvoiceItem(BaseModel):
    """Snapshot of a billed line; later price changes never touch it."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    order_product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("order_products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    item_type: Mapped[InvoiceItemType] = mapped_column(enum_column(InvoiceItemType), nullable=False)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # line total (unit_price * quantity); never re-derived from the description
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="items")
    order_product: Mapped[Optional[OrderProduct]] = relationship("OrderProduct")


__all__ = ["Invoice", "InvoiceItem", "InvoiceStatus", "InvoiceItemType", "BILLED_INVOICE_STATUSES"]
