# app/services/invoicing.py
"""
Invoice reconciliation engine.

- total_value: client totals of every invoiceable, non-deleted product
  (+ the order-level sample fee while it has not been billed elsewhere)
- invoiced_amount: sum of sent/paid invoices (draft and voided never count)
- ready_to_invoice = max(0, total_value - invoiced_amount)
- create: snapshot lines into InvoiceItems, then claim products with a
  conditional UPDATE (invoiced = false) so a product can never sit on two
  live invoices
- void: invoice + product unlink + audit in one transaction, verified after commit
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app.core.config import get_settings
from app.core.exceptions import (
    ConsistencyError,
    GuardError,
    NotFoundError,
    OrderDeskValidationError,
)
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.audit_log import AuditAction
from app.models.base import utc_now
from app.models.invoice import (
    BILLED_INVOICE_STATUSES,
    Invoice,
    InvoiceItem,
    InvoiceItemType,
    InvoiceStatus,
)
from app.models.order import Order, OrderProduct, ShippingMethod
from app.services.audit import emit_audit
from app.services.margin import ZERO, MarginDefaults, money, order_sample_fee_client, price_product, to_decimal
from app.services.margin_config import get_margin_defaults, get_order_margin
from app.services.workflow import is_invoiceable

logger = get_logger(__name__)

MIN_VOID_REASON_LENGTH = 10


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
@dataclass
class ProductLine:
    product: OrderProduct
    unit_price: Optional[Decimal]
    quantity: int
    production_total: Decimal
    sample_fee: Decimal
    shipping: Decimal
    total: Decimal


@dataclass
class OrderInvoiceSummary:
    order: Order
    total_value: Decimal
    invoiced_amount: Decimal
    ready_to_invoice: Decimal
    order_sample_fee: Decimal
    products: list[ProductLine] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)


def _load_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})
    return order


def _live_products(db: Session, order_id: int) -> Sequence[OrderProduct]:
    return db.scalars(
        select(OrderProduct)
        .where(OrderProduct.order_id == order_id, OrderProduct.deleted_at.is_(None))
        .options(selectinload(OrderProduct.items))
        .order_by(OrderProduct.id)
    ).all()


def invoiceable_lines(db: Session, order: Order, defaults: Optional[MarginDefaults] = None) -> list[ProductLine]:
    defaults = defaults or get_margin_defaults(db)
    order_margin = get_order_margin(db, order.id)
    lines: list[ProductLine] = []
    for p in _live_products(db, order.id):
        if not is_invoiceable(p):
            continue
        pricing = price_product(p, order_margin, defaults)
        lines.append(
            ProductLine(
                product=p,
                unit_price=pricing.unit_price,
                quantity=pricing.quantity,
                production_total=pricing.production_total,
                sample_fee=pricing.sample_fee,
                shipping=pricing.shipping,
                total=pricing.total,
            )
        )
    return lines


def order_invoiced_amount(db: Session, order_id: int) -> Decimal:
    total = db.scalar(
        select(func.coalesce(func.sum(Invoice.amount), 0)).where(
            Invoice.order_id == order_id,
            Invoice.status.in_(BILLED_INVOICE_STATUSES),
            Invoice.voided.is_(False),
        )
    )
    return money(total)


def get_order_invoice_summary(db: Session, order_id: int) -> OrderInvoiceSummary:
    order = _load_order(db, order_id)
    defaults = get_margin_defaults(db)
    lines = invoiceable_lines(db, order, defaults)
    sample = order_sample_fee_client(order, defaults)
    total_value = money(sum((ln.total for ln in lines), ZERO) + sample)
    invoiced = order_invoiced_amount(db, order_id)
    invoices = list(db.scalars(select(Invoice).where(Invoice.order_id == order_id).order_by(Invoice.id)))
    return OrderInvoiceSummary(
        order=order,
        total_value=total_value,
        invoiced_amount=invoiced,
        ready_to_invoice=max(ZERO, money(total_value - invoiced)),
        order_sample_fee=sample,
        products=lines,
        invoices=invoices,
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
def _product_items(line: ProductLine) -> list[InvoiceItem]:
    p = line.product
    items: list[InvoiceItem] = []
    if line.unit_price is not None and line.quantity > 0 and line.production_total > 0:
        items.append(
            InvoiceItem(
                order_product_id=p.id,
                item_type=InvoiceItemType.PRODUCTION,
                description=f"{p.product_name} - production ({line.quantity} units)",
                quantity=line.quantity,
                unit_price=line.unit_price,
                amount=line.production_total,
            )
        )
    if line.sample_fee > 0:
        items.append(
            InvoiceItem(
                order_product_id=p.id,
                item_type=InvoiceItemType.SAMPLE,
                description=f"{p.product_name} - sample fee",
                quantity=1,
                unit_price=line.sample_fee,
                amount=line.sample_fee,
            )
        )
    if line.shipping > 0:
        method = ShippingMethod(p.selected_shipping_method).value
        items.append(
            InvoiceItem(
                order_product_id=p.id,
                item_type=InvoiceItemType.SHIPPING,
                description=f"{p.product_name} - {method} shipping",
                quantity=1,
                unit_price=line.shipping,
                amount=line.shipping,
            )
        )
    return items


def _custom_items(custom_items: Iterable[Mapping[str, Any]]) -> list[InvoiceItem]:
    items: list[InvoiceItem] = []
    for raw in custom_items:
        description = str(raw.get("description") or "").strip()
        if not description:
            raise OrderDeskValidationError("Custom item description is required")
        quantity = int(raw.get("quantity") or 1)
        if quantity < 1:
            raise OrderDeskValidationError("Custom item quantity must be >= 1", extra={"description": description})
        unit_price = to_decimal(raw.get("unit_price"))
        if unit_price is None or unit_price < 0:
            raise OrderDeskValidationError("Custom item unit_price must be >= 0", extra={"description": description})
        unit_price = money(unit_price)
        items.append(
            InvoiceItem(
                item_type=InvoiceItemType.CUSTOM,
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                amount=money(unit_price * quantity),
            )
        )
    return items


def create_invoice(
    db: Session,
    actor: Actor,
    order_id: int,
    *,
    product_ids: Sequence[int] = (),
    custom_items: Iterable[Mapping[str, Any]] = (),
    include_order_sample_fee: bool = False,
    status: InvoiceStatus | str = InvoiceStatus.DRAFT,
    due_date: Optional[datetime] = None,
    notes: Optional[str] = None,
    payment_link: Optional[str] = None,
) -> Invoice:
    ensure_admin(actor, "create invoices")
    try:
        initial = InvoiceStatus(status)
    except ValueError:
        raise OrderDeskValidationError("Unknown invoice status", extra={"status": str(status)})
    if initial not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
        raise OrderDeskValidationError("New invoices must be draft or sent", extra={"status": initial.value})

    order = _load_order(db, order_id)
    defaults = get_margin_defaults(db)
    ids = list(dict.fromkeys(int(i) for i in product_ids))

    lines_by_id = {ln.product.id: ln for ln in invoiceable_lines(db, order, defaults)}
    selected: list[ProductLine] = []
    for pid in ids:
        line = lines_by_id.get(pid)
        if line is None:
            product = db.get(OrderProduct, pid)
            if product is None or product.order_id != order_id or product.deleted_at is not None:
                raise NotFoundError("Order product not found", extra={"product_id": pid})
            raise OrderDeskValidationError(
                "Product is not eligible for invoicing", code="not_invoiceable", extra={"product_id": pid}
            )
        if line.product.invoiced:
            raise OrderDeskValidationError(
                "Product is already invoiced; void its invoice first",
                code="already_invoiced",
                extra={"product_id": pid, "invoice_id": line.product.invoice_id},
            )
        selected.append(line)

    items: list[InvoiceItem] = []
    for line in selected:
        items.extend(_product_items(line))

    sample_fee = ZERO
    if include_order_sample_fee:
        if order.sample_invoiced:
            raise OrderDeskValidationError("Order sample fee is already invoiced", code="already_invoiced")
        sample_fee = order_sample_fee_client(order, defaults)
        if sample_fee <= 0:
            raise OrderDeskValidationError("Order has no sample fee to invoice")
        items.append(
            InvoiceItem(
                item_type=InvoiceItemType.ORDER_SAMPLE,
                description=f"Sample fee - order {order.order_number}",
                quantity=1,
                unit_price=sample_fee,
                amount=sample_fee,
            )
        )

    items.extend(_custom_items(custom_items))
    if not items:
        raise OrderDeskValidationError("Invoice has no billable lines")

    now = utc_now()
    invoice = Invoice(
        order_id=order_id,
        invoice_number=Invoice.generate_number(db, date=now),
        amount=money(sum((i.amount for i in items), ZERO)),
        status=initial,
        due_date=due_date or now + timedelta(days=get_settings().INVOICE_DUE_DAYS),
        notes=notes,
        created_by=actor.id,
        payment_link=payment_link,
        sent_at=now if initial == InvoiceStatus.SENT else None,
    )
    invoice.items = items
    db.add(invoice)
    try:
        db.flush()
        if ids:
            res = db.execute(
                update(OrderProduct)
                .where(
                    OrderProduct.id.in_(ids),
                    OrderProduct.invoiced.is_(False),
                    OrderProduct.deleted_at.is_(None),
                )
                .values(invoiced=True, invoice_id=invoice.id, invoiced_at=now, version=OrderProduct.version + 1)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != len(ids):
                raise OrderDeskValidationError(
                    "Some products were invoiced concurrently; reload and retry", code="already_invoiced"
                )
        if include_order_sample_fee:
            res = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.sample_invoiced.is_(False))
                .values(sample_invoiced=True, sample_invoice_id=invoice.id)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise OrderDeskValidationError("Order sample fee is already invoiced", code="already_invoiced")

        emit_audit(
            db,
            actor,
            AuditAction.INVOICE_CREATED,
            "invoice",
            invoice.id,
            new_value={
                "invoice_number": invoice.invoice_number,
                "order_id": order_id,
                "amount": str(invoice.amount),
                "status": initial.value,
                "product_ids": ids,
                "order_sample_fee": str(sample_fee),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(invoice)
    for line in selected:
        db.refresh(line.product)
    db.refresh(order)
    logger.info(
        "Invoice created",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        order_id=order_id,
        amount=str(invoice.amount),
        products=len(ids),
    )
    return invoice


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------
def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.scalar(select(Invoice).where(Invoice.id == invoice_id).options(selectinload(Invoice.items)))
    if invoice is None:
        raise NotFoundError("Invoice not found", extra={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    db: Session,
    *,
    order_id: Optional[int] = None,
    status: Optional[InvoiceStatus | str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Invoice]:
    q = select(Invoice)
    if order_id is not None:
        q = q.where(Invoice.order_id == order_id)
    if status is not None:
        try:
            q = q.where(Invoice.status == InvoiceStatus(status))
        except ValueError:
            raise OrderDeskValidationError("Unknown invoice status", extra={"status": str(status)})
    return list(db.scalars(q.order_by(Invoice.id.desc()).limit(limit).offset(offset)))


# ---------------------------------------------------------------------------
# Void / paid
# ---------------------------------------------------------------------------
def _still_linked(db: Session, invoice_id: int) -> list[int]:
    return list(db.scalars(select(OrderProduct.id).where(OrderProduct.invoice_id == invoice_id)))


def void_invoice(db: Session, actor: Actor, invoice_id: int, reason: str) -> Invoice:
    ensure_admin(actor, "void invoices")
    reason = (reason or "").strip()
    if len(reason) < MIN_VOID_REASON_LENGTH:
        raise OrderDeskValidationError(
            f"Void reason must be at least {MIN_VOID_REASON_LENGTH} characters", code="void_reason_too_short"
        )
    invoice = get_invoice(db, invoice_id)
    if invoice.voided or invoice.status == InvoiceStatus.VOIDED:
        raise OrderDeskValidationError("Invoice is already voided", code="already_voided")
    if invoice.status == InvoiceStatus.PAID:
        raise GuardError("Paid invoices cannot be voided", code="invoice_paid")

    old_status = invoice.status.value
    now = utc_now()
    try:
        res = db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.voided.is_(False), Invoice.status != InvoiceStatus.PAID)
            .values(
                voided=True,
                status=InvoiceStatus.VOIDED,
                void_reason=reason,
                voided_by=actor.id,
                voided_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise GuardError("Invoice changed concurrently; reload and retry", code="stale_invoice")
        unlinked = _still_linked(db, invoice_id)
        db.execute(
            update(OrderProduct)
            .where(OrderProduct.invoice_id == invoice_id)
            .values(invoiced=False, invoice_id=None, invoiced_at=None, version=OrderProduct.version + 1)
            .execution_options(synchronize_session=False)
        )
        db.execute(
            update(Order)
            .where(Order.sample_invoice_id == invoice_id)
            .values(sample_invoiced=False, sample_invoice_id=None)
            .execution_options(synchronize_session=False)
        )
        emit_audit(
            db,
            actor,
            AuditAction.INVOICE_VOIDED,
            "invoice",
            invoice_id,
            old_value={"status": old_status, "amount": str(invoice.amount), "product_ids": unlinked},
            new_value={"status": InvoiceStatus.VOIDED.value, "void_reason": reason},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    remaining = _still_linked(db, invoice_id)
    if remaining:
        logger.critical(
            "Voided invoice still linked to products",
            invoice_id=invoice_id,
            product_ids=remaining,
        )
        raise ConsistencyError(
            "Invoice was voided but some products are still linked to it",
            extra={"invoice_id": invoice_id, "product_ids": remaining},
        )

    db.expire_all()
    invoice = get_invoice(db, invoice_id)
    logger.info("Invoice voided", invoice_id=invoice_id, unlinked=len(unlinked), voided_by=actor.id)
    return invoice


def mark_invoice_paid(db: Session, actor: Actor, invoice_id: int, paid_at: Optional[datetime] = None) -> Invoice:
    ensure_admin(actor, "mark invoices paid")
    invoice = get_invoice(db, invoice_id)
    if invoice.status != InvoiceStatus.SENT:
        raise OrderDeskValidationError(
            "Only sent invoices can be marked paid", code="invalid_transition", extra={"status": invoice.status.value}
        )
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = paid_at or utc_now()
    db.flush()
    emit_audit(
        db,
        actor,
        AuditAction.INVOICE_PAID,
        "invoice",
        invoice_id,
        old_value={"status": InvoiceStatus.SENT.value},
        new_value={"status": InvoiceStatus.PAID.value, "paid_at": invoice.paid_at},
    )
    db.commit()
    db.refresh(invoice)
    return invoice


__all__ = [
    "MIN_VOID_REASON_LENGTH",
    "ProductLine",
    "OrderInvoiceSummary",
    "invoiceable_lines",
    "order_invoiced_amount",
    "get_order_invoice_summary",
    "create_invoice",
    "get_invoice",
    "list_invoices",
    "void_invoice",
    "mark_invoice_paid",
]
