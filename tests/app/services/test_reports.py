from datetime import timedelta
from decimal import Decimal

from app.models import ProductStatus, utc_now
from app.services.invoicing import create_invoice
from app.services.product_deletion import delete_product
from app.services.reports import order_financial_summary, top_products

D = Decimal


class _NoMedia:
    def remove_product_media(self, product):
        return []


def test_top_products_groups_by_catalog_id(db_session, admin, make_order, make_product, set_defaults):
    set_defaults(default_margin_percentage="100")
    first, second = make_order(), make_order()
    make_product(first, price="1.00", quantity=10, catalog_product_id="MUG", product_name="Mug")
    make_product(second, price="1.00", quantity=5, catalog_product_id="MUG", product_name="Mug")
    make_product(first, price="50.00", quantity=1, catalog_product_id="JACKET", product_name="Jacket")
    make_product(first, price="999.00", quantity=1, catalog_product_id="CAP", status=ProductStatus.REJECTED)
    gone = make_product(first, price="999.00", quantity=1, catalog_product_id="HAT")
    delete_product(db_session, admin, gone.id, "mistake", storage=_NoMedia())

    rows = top_products(db_session)
    assert [r["catalog_product_id"] for r in rows] == ["JACKET", "MUG"]
    mug = rows[1]
    assert (mug["quantity"], mug["order_count"], mug["revenue"]) == (15, 2, D("30.00"))
    assert top_products(db_session, limit=1)[0]["product_name"] == "Jacket"


def test_order_financial_summary(db_session, admin, make_order, make_product):
    mine = make_order()
    theirs = make_order(client_id="client-2", client_name="Other Co")
    p = make_product(mine, price="10.00", quantity=10)
    make_product(mine, price="5.00", quantity=2)
    make_product(theirs, price="1.00", quantity=1)
    create_invoice(
        db_session, admin, mine.id, product_ids=[p.id], status="sent", due_date=utc_now() - timedelta(days=3)
    )

    report = order_financial_summary(db_session)
    assert [o["order_id"] for o in report["orders"]] == [mine.id, theirs.id]
    row = report["orders"][0]
    assert row["product_count"] == 2
    assert (row["total_value"], row["invoiced_amount"], row["ready_to_invoice"]) == (D("110.00"), D("100.00"), D("10.00"))
    assert row["overdue_invoices"] == 1
    assert report["totals"] == {
        "total_value": D("111.00"),
        "invoiced_amount": D("100.00"),
        "ready_to_invoice": D("11.00"),
    }

    only_theirs = order_financial_summary(db_session, client_id="client-2")
    assert [o["client_name"] for o in only_theirs["orders"]] == ["Other Co"]
