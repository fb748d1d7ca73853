"""
Invoice endpoints: create, list, send (email/SMS), void, mark paid, PDF.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.security import Actor, ensure_admin, get_current_actor
from app.models.invoice import InvoiceStatus
from app.schemas.invoice import (
    InvoiceCreate,
    InvoiceDetailResponse,
    InvoiceResponse,
    MarkPaidRequest,
    SendInvoiceRequest,
    SendInvoiceResponse,
    VoidInvoiceRequest,
)
from app.services.invoice_delivery import InvoiceDelivery, send_invoice
from app.services.invoicing import create_invoice, get_invoice, list_invoices, mark_invoice_paid, void_invoice
from app.utils.pdf import get_pdf_generator

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=InvoiceDetailResponse, status_code=status.HTTP_201_CREATED)
def create_invoice_endpoint(
    payload: InvoiceCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Snapshot the selected products (and optional custom lines) into a new invoice."""
    invoice = create_invoice(
        db,
        actor,
        payload.order_id,
        product_ids=payload.product_ids,
        custom_items=[c.model_dump() for c in payload.custom_items],
        include_order_sample_fee=payload.include_order_sample_fee,
        status=payload.status,
        due_date=payload.due_date,
        notes=payload.notes,
        payment_link=payload.payment_link,
    )
    return InvoiceDetailResponse.model_validate(get_invoice(db, invoice.id))


@router.get("", response_model=list[InvoiceResponse])
def list_invoices_endpoint(
    order_id: Optional[int] = Query(None, ge=1),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_admin(actor, "list invoices")
    invoices = list_invoices(db, order_id=order_id, status=status_filter, limit=limit, offset=offset)
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.post("/send", response_model=SendInvoiceResponse)
def send_invoice_endpoint(
    payload: SendInvoiceRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Deliver an invoice by email, SMS or both.

    The invoice is marked sent only once every requested channel succeeded.
    """
    req = InvoiceDelivery(
        invoice_id=payload.invoice_id,
        method=payload.method,
        to=[str(e) for e in payload.to],
        cc=[str(e) for e in payload.cc],
        phone=payload.phone,
        payment_url=payload.payment_url,
        message=payload.message,
    )
    result = send_invoice(db, actor, req)
    return SendInvoiceResponse(
        success=result.success,
        email_id=result.email_id,
        sms_result=result.sms_result,
        message=result.message,
        details=result.details,
    )


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
def get_invoice_endpoint(
    invoice_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_admin(actor, "view invoices")
    return InvoiceDetailResponse.model_validate(get_invoice(db, invoice_id))


@router.post("/{invoice_id}/void", response_model=InvoiceDetailResponse)
def void_invoice_endpoint(
    payload: VoidInvoiceRequest,
    invoice_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Void an invoice and release its products for re-invoicing."""
    return InvoiceDetailResponse.model_validate(void_invoice(db, actor, invoice_id, payload.reason))


@router.post("/{invoice_id}/paid", response_model=InvoiceDetailResponse)
def mark_paid_endpoint(
    payload: Optional[MarkPaidRequest] = None,
    invoice_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    paid_at = payload.paid_at if payload else None
    mark_invoice_paid(db, actor, invoice_id, paid_at)
    return InvoiceDetailResponse.model_validate(get_invoice(db, invoice_id))


@router.get("/{invoice_id}/pdf")
def invoice_pdf_endpoint(
    invoice_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_admin(actor, "download invoices")
    invoice = get_invoice(db, invoice_id)
    pdf = get_pdf_generator().render_invoice(invoice, invoice.order)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{invoice.invoice_number}.pdf"'},
    )
