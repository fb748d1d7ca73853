"""Invoice delivery by email / SMS / both."""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    AuthorizationError,
    ConsistencyError,
    OrderDeskValidationError,
    ServiceUnavailableError,
)
from app.integrations.sms_base import sms_result
from app.models import AuditAction, AuditLog, InvoiceStatus
from app.services import invoice_delivery
from app.services.email_service import EmailService
from app.services.invoice_delivery import InvoiceDelivery, send_invoice
from app.services.invoicing import create_invoice, get_invoice, mark_invoice_paid, void_invoice
from app.services.sms_service import SmsService
from app.utils.pdf import PDFGenerator


class OutboxEmailService(EmailService):
    """Renders the real templates, keeps messages instead of talking SMTP."""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.outbox = []

    def send_email(self, message):
        if self.fail:
            raise ServiceUnavailableError("Email delivery failed", code="email_failed")
        self.outbox.append(message)
        return f"<msg-{len(self.outbox)}@orderdesk.test>"


class FakeSmsClient:
    name = "fake"

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    def send_sms(self, recipient, text, *, sender=None):
        self.sent.append((recipient, text))
        if self.ok:
            return sms_result(self.name, success=True, message_id="sms-1")
        return sms_result(self.name, success=False, error="Number blocked")


class StaticPdf:
    def render_invoice(self, invoice, order):
        return b"%PDF-1.4 test"


@pytest.fixture
def invoice(db_session, admin, make_order, make_product):
    order = make_order()
    product = make_product(order, price="12.50", quantity=4)
    return create_invoice(db_session, admin, order.id, product_ids=[product.id], payment_link="https://pay.example/x")


@pytest.fixture
def email():
    return OutboxEmailService()


@pytest.fixture
def sms_client():
    return FakeSmsClient()


@pytest.fixture
def deliver(db_session, admin, email, sms_client):
    def _deliver(actor=admin, **kw):
        req = InvoiceDelivery(**kw)
        return send_invoice(
            db_session,
            actor,
            req,
            email_service=email,
            sms_service=SmsService(client=sms_client),
            pdf_generator=StaticPdf(),
        )

    return _deliver


class TestEmail:
    def test_email_marks_sent(self, db_session, invoice, email, deliver):
        result = deliver(invoice_id=invoice.id, method="email", to=["billing@client.test"], cc=["pm@client.test"])

        assert result.success is True
        assert result.email_id == "<msg-1@orderdesk.test>"
        assert result.sms_result is None
        assert result.details["status"] == "sent"
        assert result.details["sentTo"] == ["billing@client.test", "pm@client.test"]

        msg = email.outbox[0]
        assert msg.to == ["billing@client.test"]
        assert msg.cc == ["pm@client.test"]
        assert invoice.invoice_number in msg.subject
        assert "$50.00" in msg.body
        assert "https://pay.example/x" in msg.body
        assert msg.attachments[0].filename == f"{invoice.invoice_number}.pdf"
        assert msg.attachments[0].content.startswith(b"%PDF")

        inv = get_invoice(db_session, invoice.id)
        assert inv.status == InvoiceStatus.SENT
        assert inv.sent_at is not None
        assert inv.sent_to == ["billing@client.test", "pm@client.test"]
        assert db_session.query(AuditLog).filter_by(action_type=AuditAction.INVOICE_SENT).count() == 1

    def test_recipient_required(self, invoice, deliver):
        with pytest.raises(OrderDeskValidationError):
            deliver(invoice_id=invoice.id, method="email", to=[])

    def test_email_failure_leaves_invoice_unsent(self, db_session, admin, invoice, sms_client):
        with pytest.raises(ServiceUnavailableError):
            send_invoice(
                db_session,
                admin,
                InvoiceDelivery(invoice_id=invoice.id, method="email", to=["a@b.test"]),
                email_service=OutboxEmailService(fail=True),
                sms_service=SmsService(client=sms_client),
                pdf_generator=StaticPdf(),
            )
        inv = get_invoice(db_session, invoice.id)
        assert inv.status == InvoiceStatus.DRAFT
        assert inv.sent_at is None

    def test_real_pdf_attached(self, db_session, admin, invoice, email, sms_client):
        send_invoice(
            db_session,
            admin,
            InvoiceDelivery(invoice_id=invoice.id, method="email", to=["a@b.test"]),
            email_service=email,
            sms_service=SmsService(client=sms_client),
            pdf_generator=PDFGenerator(company_name="OrderDesk Test"),
        )
        assert email.outbox[0].attachments[0].content.startswith(b"%PDF")


class TestSms:
    def test_sms_uses_order_phone(self, db_session, invoice, sms_client, deliver):
        result = deliver(invoice_id=invoice.id, method="sms")
        assert sms_client.sent[0][0] == "+15551234567"
        assert invoice.invoice_number in sms_client.sent[0][1]
        assert "https://pay.example/x" in sms_client.sent[0][1]
        assert result.sms_result["message_id"] == "sms-1"
        assert result.email_id is None
        assert get_invoice(db_session, invoice.id).status == InvoiceStatus.SENT

    def test_custom_message(self, invoice, sms_client, deliver):
        deliver(invoice_id=invoice.id, method="sms", phone="+44 20 7946 0958", message="Pay soon please")
        assert sms_client.sent == [("+442079460958", "Pay soon please")]

    def test_both_with_sms_failure(self, db_session, admin, invoice, email):
        with pytest.raises(ServiceUnavailableError) as ei:
            send_invoice(
                db_session,
                admin,
                InvoiceDelivery(invoice_id=invoice.id, method="both", to=["a@b.test"]),
                email_service=email,
                sms_service=SmsService(client=FakeSmsClient(ok=False)),
                pdf_generator=StaticPdf(),
            )
        assert ei.value.extra["emailId"] == "<msg-1@orderdesk.test>"
        assert ei.value.extra["emailDelivered"] is True
        assert len(email.outbox) == 1
        assert get_invoice(db_session, invoice.id).status == InvoiceStatus.DRAFT

    def test_both(self, db_session, invoice, email, sms_client, deliver):
        result = deliver(invoice_id=invoice.id, method="both", to=["a@b.test"], payment_url="https://pay.example/new")
        assert result.email_id and result.sms_result
        assert result.details["sentTo"] == ["a@b.test", "+15551234567"]
        assert get_invoice(db_session, invoice.id).payment_link == "https://pay.example/new"


class TestGuards:
    def test_unknown_method(self, invoice, deliver):
        with pytest.raises(OrderDeskValidationError):
            deliver(invoice_id=invoice.id, method="fax", to=["a@b.test"])

    def test_voided_invoice(self, db_session, admin, invoice, deliver):
        void_invoice(db_session, admin, invoice.id, "Entered against the wrong order")
        with pytest.raises(OrderDeskValidationError) as ei:
            deliver(invoice_id=invoice.id, method="email", to=["a@b.test"])
        assert ei.value.code == "invoice_voided"

    def test_admin_only(self, invoice, manufacturer, deliver):
        with pytest.raises(AuthorizationError):
            deliver(actor=manufacturer, invoice_id=invoice.id, method="email", to=["a@b.test"])

    def test_resend_paid_keeps_paid(self, db_session, admin, invoice, deliver):
        deliver(invoice_id=invoice.id, method="email", to=["a@b.test"])
        mark_invoice_paid(db_session, admin, invoice.id)
        result = deliver(invoice_id=invoice.id, method="email", to=["a@b.test"])
        assert result.details["status"] == "paid"


class TestRecordingTheSend:
    def test_commit_failure_after_delivery(self, db_session, invoice, email, deliver, monkeypatch, record_logs):
        logs = record_logs(invoice_delivery)

        def _commit():
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(db_session, "commit", _commit)
        with pytest.raises(ConsistencyError) as ei:
            deliver(invoice_id=invoice.id, method="email", to=["ap@client.test"])

        assert ei.value.extra == {"invoice_id": invoice.id, "emailId": "<msg-1@orderdesk.test>"}
        assert len(email.outbox) == 1
        [(event, fields)] = logs.at("critical")
        assert event == "Delivered invoice not marked sent"
        assert fields["email_id"] == "<msg-1@orderdesk.test>"
        assert fields["error"] == "database is locked"

        db_session.expire_all()
        assert get_invoice(db_session, invoice.id).status == InvoiceStatus.DRAFT

    def test_voided_during_delivery(self, db_session, admin, invoice, record_logs):
        logs = record_logs(invoice_delivery)

        class VoidingEmailService(OutboxEmailService):
            def send_email(self, message):
                void_invoice(db_session, admin, invoice.id, "Replaced while the email was in flight")
                return super().send_email(message)

        with pytest.raises(ConsistencyError) as ei:
            send_invoice(
                db_session,
                admin,
                InvoiceDelivery(invoice_id=invoice.id, method="email", to=["ap@client.test"]),
                email_service=VoidingEmailService(),
                sms_service=SmsService(client=FakeSmsClient()),
                pdf_generator=StaticPdf(),
            )

        assert ei.value.extra["invoice_id"] == invoice.id
        [(event, fields)] = logs.at("critical")
        assert event == "Delivered invoice not marked sent"
        assert fields["invoice_id"] == invoice.id
        inv = get_invoice(db_session, invoice.id)
        assert inv.status == InvoiceStatus.VOIDED
        assert inv.sent_at is None
