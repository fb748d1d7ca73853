"""
Reporting aggregates. Soft-deleted products never contribute.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models.order import Order, OrderProduct, ProductStatus
from app.services.invoicing import get_order_invoice_summary
from app.services.margin import ZERO, money, price_product
from app.services.margin_config import get_margin_defaults, get_order_margin


def top_products(db: Session, limit: int = 10) -> list[dict[str, Any]]:
    """Client revenue per catalog product, highest first."""
    defaults = get_margin_defaults(db)
    products = db.scalars(
        select(OrderProduct)
        .where(
            OrderProduct.deleted_at.is_(None),
            OrderProduct.product_status != ProductStatus.REJECTED,
        )
        .options(selectinload(OrderProduct.items))
    ).all()

    margins: dict[int, Any] = {}
    buckets: dict[str, dict[str, Any]] = defaultdict(
        lambda: {"product_name": None, "quantity": 0, "orders": set(), "revenue": ZERO}
    )
    for p in products:
        if p.order_id not in margins:
            margins[p.order_id] = get_order_margin(db, p.order_id)
        pricing = price_product(p, margins[p.order_id], defaults)
        b = buckets[p.catalog_product_id or p.product_name]
        b["product_name"] = b["product_name"] or p.product_name
        b["quantity"] += pricing.quantity
        b["orders"].add(p.order_id)
        b["revenue"] += pricing.total

    rows = [
        {
            "catalog_product_id": key,
            "product_name": b["product_name"],
            "quantity": b["quantity"],
            "order_count": len(b["orders"]),
            "revenue": money(b["revenue"]),
        }
        for key, b in buckets.items()
    ]
    rows.sort(key=lambda r: (r["revenue"], r["quantity"]), reverse=True)
    return rows[:limit]


def order_financial_summary(db: Session, *, client_id: Optional[str] = None) -> dict[str, Any]:
    q = select(Order.id)
    if client_id:
        q = q.where(Order.client_id == client_id)
    orders = []
    totals = {"total_value": ZERO, "invoiced_amount": ZERO, "ready_to_invoice": ZERO}
    for order_id in db.scalars(q.order_by(Order.id)):
        s = get_order_invoice_summary(db, order_id)
        orders.append(
            {
                "order_id": s.order.id,
                "order_number": s.order.order_number,
                "client_name": s.order.client_name,
                "status": s.order.status.value,
                "product_count": len(s.order.active_products),
                "total_value": s.total_value,
                "invoiced_amount": s.invoiced_amount,
                "ready_to_invoice": s.ready_to_invoice,
                "overdue_invoices": sum(1 for inv in s.invoices if inv.is_overdue and not inv.voided),
            }
        )
        totals["total_value"] += s.total_value
        totals["invoiced_amount"] += s.invoiced_amount
        totals["ready_to_invoice"] += s.ready_to_invoice
    return {"orders": orders, "totals": {k: money(v) for k, v in totals.items()}}


__all__ = ["top_products", "order_financial_summary"]
