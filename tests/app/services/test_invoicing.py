"""Invoice creation, reconciliation summary, void and paid."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import (
    AuthorizationError,
    ConsistencyError,
    GuardError,
    NotFoundError,
    OrderDeskValidationError,
)
from app.models import AuditAction, AuditLog, InvoiceItemType, InvoiceStatus, ProductStatus, utc_now
from app.services import invoicing
from app.services.invoicing import (
    create_invoice,
    get_invoice,
    get_order_invoice_summary,
    list_invoices,
    mark_invoice_paid,
    order_invoiced_amount,
    void_invoice,
)
from app.services.product_deletion import delete_product
from app.services.workflow import update_product_fields

D = Decimal
VOID_REASON = "Client cancelled the order"


@pytest.fixture
def priced_order(set_defaults, make_order, make_product):
    """80% margin: a $100 standard product and a $4 x 1000 clothing product with a $6 fee."""
    set_defaults(default_margin_percentage="80", clothing_product_fee="6")
    order = make_order()
    mug = make_product(order, price="100.00", quantity=1, product_name="Mug")
    tee = make_product(order, price="4.00", quantity=1000, category="clothing", product_name="Tee")
    return order, mug, tee


class TestSummary:
    def test_totals(self, db_session, priced_order):
        order, mug, tee = priced_order
        s = get_order_invoice_summary(db_session, order.id)
        assert [ln.total for ln in s.products] == [D("180.00"), D("10000.00")]
        assert s.total_value == D("10180.00")
        assert s.invoiced_amount == D("0.00")
        assert s.ready_to_invoice == D("10180.00")

    def test_order_sample_fee_counts(self, db_session, set_defaults, make_order, make_product):
        set_defaults(default_sample_margin_percentage="50")
        order = make_order(sample_fee="20")
        make_product(order, price="1.00", quantity=10)
        s = get_order_invoice_summary(db_session, order.id)
        assert s.order_sample_fee == D("30.00")
        assert s.total_value == D("40.00")

    def test_deleted_products_excluded(self, db_session, admin, priced_order):
        order, mug, tee = priced_order
        delete_product(db_session, admin, tee.id, "duplicate line")
        s = get_order_invoice_summary(db_session, order.id)
        assert [ln.product.id for ln in s.products] == [mug.id]
        assert s.total_value == D("180.00")

    def test_ready_to_invoice_never_negative(self, db_session, admin, priced_order):
        order, mug, tee = priced_order
        create_invoice(
            db_session,
            admin,
            order.id,
            custom_items=[{"description": "Rush fee", "quantity": 1, "unit_price": "20000"}],
            status="sent",
        )
        s = get_order_invoice_summary(db_session, order.id)
        assert s.invoiced_amount == D("20000.00")
        assert s.ready_to_invoice == D("0.00")

    def test_drafts_do_not_count(self, db_session, admin, priced_order):
        order, mug, tee = priced_order
        create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        assert order_invoiced_amount(db_session, order.id) == D("0.00")


class TestCreate:
    def test_snapshot_and_flags(self, db_session, admin, priced_order):
        order, mug, tee = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id, tee.id], status="sent")

        assert inv.invoice_number.startswith("INV-")
        assert inv.status == InvoiceStatus.SENT
        assert inv.sent_at is not None
        assert inv.amount == D("10180.00")
        assert inv.due_date > utc_now() + timedelta(days=29)

        production = [i for i in inv.items if i.item_type == InvoiceItemType.PRODUCTION]
        assert {(i.quantity, i.unit_price, i.amount) for i in production} == {
            (1, D("180.00"), D("180.00")),
            (1000, D("10.00"), D("10000.00")),
        }
        for p in (mug, tee):
            assert p.invoiced is True
            assert p.invoice_id == inv.id
            assert p.invoiced_at is not None

        entry = db_session.query(AuditLog).filter_by(action_type=AuditAction.INVOICE_CREATED).one()
        assert entry.new_value["amount"] == "10180.00"

    def test_items_are_frozen(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        update_product_fields(db_session, admin, mug.id, {"client_product_price": "999.00"})
        db_session.refresh(inv)
        assert inv.amount == D("180.00")
        assert inv.items[0].unit_price == D("180.00")

    def test_sample_and_shipping_lines(self, db_session, admin, set_defaults, make_order, make_product):
        set_defaults(default_sample_margin_percentage="10", default_shipping_margin_percentage="10")
        order = make_order()
        p = make_product(
            order,
            price="2.00",
            quantity=5,
            sample_fee="50",
            shipping_air_price="100",
            selected_shipping_method="air",
        )
        inv = create_invoice(db_session, admin, order.id, product_ids=[p.id])
        by_type = {i.item_type: i.amount for i in inv.items}
        assert by_type == {
            InvoiceItemType.PRODUCTION: D("10.00"),
            InvoiceItemType.SAMPLE: D("55.00"),
            InvoiceItemType.SHIPPING: D("110.00"),
        }
        assert inv.amount == D("175.00")

    def test_reinvoicing_rejected_until_voided(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        first = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        with pytest.raises(OrderDeskValidationError) as ei:
            create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        assert ei.value.code == "already_invoiced"

        void_invoice(db_session, admin, first.id, VOID_REASON)
        second = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        db_session.refresh(mug)
        assert mug.invoice_id == second.id

    def test_order_sample_fee_once(self, db_session, admin, set_defaults, make_order):
        set_defaults(default_sample_margin_percentage="0")
        order = make_order(sample_fee="25")
        inv = create_invoice(db_session, admin, order.id, include_order_sample_fee=True)
        assert inv.amount == D("25.00")
        db_session.refresh(order)
        assert order.sample_invoiced is True
        with pytest.raises(OrderDeskValidationError):
            create_invoice(db_session, admin, order.id, include_order_sample_fee=True)

    def test_not_invoiceable_product(self, db_session, admin, make_order, make_product):
        order = make_order()
        p = make_product(order, price=None)
        with pytest.raises(OrderDeskValidationError) as ei:
            create_invoice(db_session, admin, order.id, product_ids=[p.id])
        assert ei.value.code == "not_invoiceable"

    def test_foreign_product(self, db_session, admin, make_order, make_product):
        order = make_order()
        other = make_product(make_order(client_id="client-2"))
        with pytest.raises(NotFoundError):
            create_invoice(db_session, admin, order.id, product_ids=[other.id])

    def test_empty_invoice_rejected(self, db_session, admin, make_order):
        with pytest.raises(OrderDeskValidationError):
            create_invoice(db_session, admin, make_order().id)

    def test_bad_custom_item(self, db_session, admin, make_order):
        with pytest.raises(OrderDeskValidationError):
            create_invoice(db_session, admin, make_order().id, custom_items=[{"description": "", "unit_price": "1"}])

    def test_initial_status_limited(self, db_session, admin, make_order):
        with pytest.raises(OrderDeskValidationError):
            create_invoice(
                db_session, admin, make_order().id, custom_items=[{"description": "x", "unit_price": "1"}], status="paid"
            )

    def test_admin_only(self, db_session, manufacturer, make_order):
        with pytest.raises(AuthorizationError):
            create_invoice(db_session, manufacturer, make_order().id)


class TestVoid:
    def test_void_unlinks_products(self, db_session, admin, priced_order):
        order, mug, tee = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id, tee.id], status="sent")
        voided = void_invoice(db_session, admin, inv.id, VOID_REASON)

        assert voided.voided is True
        assert voided.status == InvoiceStatus.VOIDED
        assert voided.void_reason == VOID_REASON
        assert voided.voided_by == admin.id
        for p in (mug, tee):
            db_session.refresh(p)
            assert (p.invoiced, p.invoice_id, p.invoiced_at) == (False, None, None)

        s = get_order_invoice_summary(db_session, order.id)
        assert s.invoiced_amount == D("0.00")
        assert s.ready_to_invoice == s.total_value

        entry = db_session.query(AuditLog).filter_by(action_type=AuditAction.INVOICE_VOIDED).one()
        assert sorted(entry.old_value["product_ids"]) == sorted([mug.id, tee.id])

    def test_void_releases_order_sample(self, db_session, admin, make_order):
        order = make_order(sample_fee="25")
        inv = create_invoice(db_session, admin, order.id, include_order_sample_fee=True)
        void_invoice(db_session, admin, inv.id, VOID_REASON)
        db_session.refresh(order)
        assert (order.sample_invoiced, order.sample_invoice_id) == (False, None)

    def test_short_reason(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        with pytest.raises(OrderDeskValidationError) as ei:
            void_invoice(db_session, admin, inv.id, "  oops    ")
        assert ei.value.code == "void_reason_too_short"

    def test_twice(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        void_invoice(db_session, admin, inv.id, VOID_REASON)
        with pytest.raises(OrderDeskValidationError):
            void_invoice(db_session, admin, inv.id, VOID_REASON)

    def test_paid_cannot_be_voided(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id], status="sent")
        mark_invoice_paid(db_session, admin, inv.id)
        with pytest.raises(GuardError):
            void_invoice(db_session, admin, inv.id, VOID_REASON)


    def test_link_left_behind_is_consistency_error(self, db_session, admin, priced_order, monkeypatch, record_logs):
        order, mug, tee = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id, tee.id], status="sent")
        logs = record_logs(invoicing)
        real = invoicing._still_linked
        calls = []

        def stuck(db, invoice_id):
            calls.append(invoice_id)
            return real(db, invoice_id) if len(calls) == 1 else [tee.id]

        monkeypatch.setattr(invoicing, "_still_linked", stuck)

        with pytest.raises(ConsistencyError) as ei:
            void_invoice(db_session, admin, inv.id, VOID_REASON)

        assert ei.value.extra == {"invoice_id": inv.id, "product_ids": [tee.id]}
        [(event, fields)] = logs.at("critical")
        assert event == "Voided invoice still linked to products"
        assert fields == {"invoice_id": inv.id, "product_ids": [tee.id]}
        db_session.expire_all()
        assert get_invoice(db_session, inv.id).status == InvoiceStatus.VOIDED


class TestPaid:
    def test_sent_to_paid(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id], status="sent")
        paid = mark_invoice_paid(db_session, admin, inv.id)
        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None
        assert paid.is_overdue is False
        assert order_invoiced_amount(db_session, order.id) == D("180.00")

    def test_draft_cannot_be_paid(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
        with pytest.raises(OrderDeskValidationError):
            mark_invoice_paid(db_session, admin, inv.id)

    def test_overdue_is_derived(self, db_session, admin, priced_order):
        order, mug, _ = priced_order
        inv = create_invoice(
            db_session, admin, order.id, product_ids=[mug.id], status="sent", due_date=utc_now() - timedelta(days=1)
        )
        assert inv.is_overdue is True


def test_list_invoices_filters(db_session, admin, priced_order):
    order, mug, tee = priced_order
    a = create_invoice(db_session, admin, order.id, product_ids=[mug.id])
    b = create_invoice(db_session, admin, order.id, product_ids=[tee.id], status="sent")
    assert [i.id for i in list_invoices(db_session, order_id=order.id)] == [b.id, a.id]
    assert [i.id for i in list_invoices(db_session, status="sent")] == [b.id]
    with pytest.raises(OrderDeskValidationError):
        list_invoices(db_session, status="lost")


def test_product_status_does_not_matter_once_invoiced(db_session, admin, make_order, make_product):
    order = make_order()
    p = make_product(order, price="3.00", quantity=2, status=ProductStatus.IN_PRODUCTION)
    inv = create_invoice(db_session, admin, order.id, product_ids=[p.id])
    assert inv.amount == D("6.00")
