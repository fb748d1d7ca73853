# app/services/invoice_delivery.py
"""
Send invoice: render PDF, deliver by email and/or SMS, then mark sent.

The invoice is marked sent only after every requested channel succeeded.
Delivery failures abort with ServiceUnavailableError and change nothing; a
failure to record the send after delivery is a ConsistencyError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ConsistencyError, OrderDeskValidationError, ServiceUnavailableError
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.audit_log import AuditAction
from app.models.base import utc_now
from app.models.invoice import Invoice, InvoiceStatus
from app.services.audit import emit_audit
from app.services.email_service import EmailAttachment, EmailMessage, EmailService
from app.services.invoicing import get_invoice
from app.services.sms_service import SmsService
from app.utils.pdf import PDFGenerator

logger = get_logger(__name__)

DELIVERY_METHODS = ("email", "sms", "both")


@dataclass
class InvoiceDelivery:
    invoice_id: int
    method: str
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    phone: Optional[str] = None
    payment_url: Optional[str] = None
    message: Optional[str] = None

    @property
    def wants_email(self) -> bool:
        return self.method in ("email", "both")

    @property
    def wants_sms(self) -> bool:
        return self.method in ("sms", "both")


@dataclass
class DeliveryResult:
    success: bool
    message: str
    email_id: Optional[str] = None
    sms_result: Optional[dict[str, Any]] = None
    details: dict[str, Any] = field(default_factory=dict)


def _fmt_amount(invoice: Invoice) -> str:
    return f"${invoice.amount:,.2f}"


def _default_sms_text(invoice: Invoice, payment_url: Optional[str], company: str) -> str:
    text = f"{company}: invoice {invoice.invoice_number} for {_fmt_amount(invoice)} is ready."
    if invoice.due_date:
        text += f" Due {invoice.due_date.strftime('%Y-%m-%d')}."
    if payment_url:
        text += f" Pay: {payment_url}"
    return text


class InvoiceDeliveryService:
    def __init__(
        self,
        *,
        email_service: Optional[EmailService] = None,
        sms_service: Optional[SmsService] = None,
        pdf_generator: Optional[PDFGenerator] = None,
    ):
        self.settings = get_settings()
        self.email_service = email_service or EmailService()
        self.sms_service = sms_service or SmsService()
        self.pdf_generator = pdf_generator or PDFGenerator()

    def _validate(self, req: InvoiceDelivery, invoice: Invoice) -> Optional[str]:
        if req.method not in DELIVERY_METHODS:
            raise OrderDeskValidationError("method must be one of email, sms, both", extra={"method": req.method})
        if req.wants_email and not req.to:
            raise OrderDeskValidationError("At least one recipient email is required")
        phone = (req.phone or invoice.order.client_phone or "").strip() or None
        if req.wants_sms and not phone:
            raise OrderDeskValidationError("Phone number is required for SMS delivery")
        if invoice.voided or invoice.status == InvoiceStatus.VOIDED:
            raise OrderDeskValidationError("Voided invoices cannot be sent", code="invoice_voided")
        if not invoice.items:
            raise OrderDeskValidationError("Invoice has no items", code="empty_invoice")
        return phone

    def _send_email(self, req: InvoiceDelivery, invoice: Invoice, pdf: bytes) -> str:
        order = invoice.order
        ctx = dict(
            invoice=invoice,
            order=order,
            client_name=order.client_name,
            amount=_fmt_amount(invoice),
            due_date=invoice.due_date.strftime("%Y-%m-%d") if invoice.due_date else None,
            payment_url=req.payment_url or invoice.payment_link,
            message=req.message,
            company_name=self.settings.COMPANY_NAME,
        )
        msg = EmailMessage(
            to=list(req.to),
            cc=list(req.cc),
            subject=f"Invoice {invoice.invoice_number} from {self.settings.COMPANY_NAME}",
            body=self.email_service.render("invoice.txt", **ctx),
            html_body=self.email_service.render("invoice.html", **ctx),
            attachments=[EmailAttachment(filename=f"{invoice.invoice_number}.pdf", content=pdf)],
        )
        return self.email_service.send_email(msg)

    def send(self, db: Session, actor: Actor, req: InvoiceDelivery) -> DeliveryResult:
        ensure_admin(actor, "send invoices")
        invoice = get_invoice(db, req.invoice_id)
        phone = self._validate(req, invoice)

        email_id: Optional[str] = None
        sms_result: Optional[dict[str, Any]] = None
        if req.wants_email:
            pdf = self.pdf_generator.render_invoice(invoice, invoice.order)
            email_id = self._send_email(req, invoice, pdf)
        if req.wants_sms:
            text = req.message or _default_sms_text(
                invoice, req.payment_url or invoice.payment_link, self.settings.COMPANY_NAME
            )
            try:
                sms_result = self.sms_service.send(phone or "", text)
            except ServiceUnavailableError as e:
                if email_id:
                    # email already went out; the invoice still stays unsent
                    e.extra = {**e.extra, "emailId": email_id, "emailDelivered": True}
                raise

        recipients = list(req.to) + list(req.cc) + ([sms_result["to"]] if sms_result else [])
        self._mark_sent(db, actor, invoice, req, recipients, email_id)
        logger.info(
            "Invoice sent",
            invoice_id=invoice.id,
            method=req.method,
            email_id=email_id,
            sms_message_id=(sms_result or {}).get("message_id"),
        )
        return DeliveryResult(
            success=True,
            message="Invoice sent successfully",
            email_id=email_id,
            sms_result=sms_result,
            details={
                "invoiceNumber": invoice.invoice_number,
                "status": invoice.status.value,
                "sentTo": recipients,
                "sentAt": invoice.sent_at.isoformat() if invoice.sent_at else None,
            },
        )

    def _mark_sent(
        self,
        db: Session,
        actor: Actor,
        invoice: Invoice,
        req: InvoiceDelivery,
        recipients: list[str],
        email_id: Optional[str],
    ) -> None:
        now = utc_now()
        values: dict[str, Any] = {"sent_at": now, "sent_to": recipients, "updated_at": now}
        if invoice.status != InvoiceStatus.PAID:
            values["status"] = InvoiceStatus.SENT
        if req.payment_url:
            values["payment_link"] = req.payment_url
        old_status = invoice.status.value
        try:
            res = db.execute(
                update(Invoice)
                .where(Invoice.id == invoice.id, Invoice.voided.is_(False))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConsistencyError(
                    "Invoice was delivered but voided before it could be marked sent",
                    extra={"invoice_id": invoice.id, "emailId": email_id},
                )
            emit_audit(
                db,
                actor,
                AuditAction.INVOICE_SENT,
                "invoice",
                invoice.id,
                old_value={"status": old_status},
                new_value={"status": values.get("status", invoice.status).value, "sent_to": recipients, "method": req.method},
            )
            db.commit()
        except ConsistencyError:
            db.rollback()
            logger.critical("Delivered invoice not marked sent", invoice_id=invoice.id, email_id=email_id)
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.critical("Delivered invoice not marked sent", invoice_id=invoice.id, email_id=email_id, error=str(e))
            raise ConsistencyError(
                "Invoice was delivered but could not be marked sent",
                extra={"invoice_id": invoice.id, "emailId": email_id},
            )
        db.refresh(invoice)


def send_invoice(db: Session, actor: Actor, req: InvoiceDelivery, **services: Any) -> DeliveryResult:
    return InvoiceDeliveryService(**services).send(db, actor, req)


__all__ = ["InvoiceDelivery", "DeliveryResult", "InvoiceDeliveryService", "send_invoice", "DELIVERY_METHODS"]
