"""Global margin defaults, per-order overrides and repricing."""

from decimal import Decimal

import pytest

from app.core.exceptions import AuthorizationError, OrderDeskValidationError
from app.models import AuditAction, AuditLog, SystemConfig
from app.services.margin_config import get_margin_defaults, set_order_margin, update_margin_defaults
from app.services.repricing_service import reprice_order
from app.services.workflow import update_product_fields

D = Decimal


class TestDefaults:
    def test_empty_table_is_all_zero(self, db_session):
        defaults = get_margin_defaults(db_session)
        assert defaults.margin_percentage == D("0")
        assert defaults.version == 0

    def test_update_bumps_version_and_audits(self, db_session, set_defaults):
        after = set_defaults(default_margin_percentage="80", clothing_product_fee="6")
        assert after.margin_percentage == D("80")
        assert after.clothing_product_fee == D("6.00")
        assert after.version == 1

        again = set_defaults(default_margin_percentage="75")
        assert again.version == 2
        assert again.clothing_product_fee == D("6.00")

        actions = [a.action_type for a in db_session.query(AuditLog).all()]
        assert actions.count(AuditAction.MARGIN_DEFAULTS_UPDATED) == 2

    def test_accessory_falls_back_to_margin(self, db_session, set_defaults):
        set_defaults(default_margin_percentage="30")
        assert get_margin_defaults(db_session).accessory_margin_percentage == D("30")

    def test_out_of_range_rejected(self, db_session, set_defaults):
        with pytest.raises(OrderDeskValidationError):
            set_defaults(default_margin_percentage="501")
        assert get_margin_defaults(db_session).version == 0

    def test_non_admin_rejected(self, db_session, client_actor):
        with pytest.raises(AuthorizationError):
            update_margin_defaults(db_session, client_actor, {"default_margin_percentage": "10"})

    def test_cache_follows_version_row(self, db_session, set_defaults):
        set_defaults(default_margin_percentage="10")
        assert get_margin_defaults(db_session).margin_percentage == D("10")

        # another process writes directly and bumps the counter
        row = db_session.query(SystemConfig).filter_by(key="default_margin_percentage").one()
        row.value = "55"
        counter = db_session.query(SystemConfig).filter_by(key="margin_config_version").one()
        counter.value = "2"
        db_session.commit()

        assert get_margin_defaults(db_session).margin_percentage == D("55")


class TestOrderMargin:
    def test_override_reprices_products(self, db_session, admin, make_order, make_product, set_defaults):
        set_defaults(default_margin_percentage="80")
        order = make_order()
        product = make_product(order, price="100.00", quantity=1)
        reprice_order(db_session, order.id, actor=admin)
        db_session.refresh(product)
        assert product.client_product_price == D("180.00")

        om = set_order_margin(db_session, admin, order.id, margin_percentage="50")
        assert om.margin_percentage == D("50")
        db_session.refresh(product)
        assert product.client_product_price == D("150.00")

    def test_omitted_fields_left_alone(self, db_session, admin, make_order):
        order = make_order()
        set_order_margin(db_session, admin, order.id, margin_percentage="50", clothing_fee_override="3", reprice=False)
        om = set_order_margin(db_session, admin, order.id, shipping_margin_percentage="10", reprice=False)
        assert om.margin_percentage == D("50")
        assert om.clothing_fee_override == D("3.00")
        assert om.shipping_margin_percentage == D("10")

        cleared = set_order_margin(db_session, admin, order.id, margin_percentage=None, reprice=False)
        assert cleared.margin_percentage is None

    def test_override_validated(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(OrderDeskValidationError):
            set_order_margin(db_session, admin, order.id, margin_percentage="-5")


class TestReprice:
    def test_skips_manual_and_invoiced(self, db_session, admin, make_order, make_product, set_defaults):
        set_defaults(default_margin_percentage="20")
        order = make_order()
        auto = make_product(order, price="10.00", quantity=1)
        manual = make_product(order, price="10.00", quantity=1)
        update_product_fields(db_session, admin, manual.id, {"client_product_price": "99.00"})

        result = reprice_order(db_session, order.id, actor=admin)
        assert result.repriced == [auto.id]
        assert result.skipped == {manual.id: "manual_price"}

        db_session.refresh(manual)
        assert manual.client_product_price == D("99.00")

    def test_force_overrides_manual_price(self, db_session, admin, make_order, make_product, set_defaults):
        set_defaults(default_margin_percentage="20")
        order = make_order()
        manual = make_product(order, price="10.00", quantity=1)
        update_product_fields(db_session, admin, manual.id, {"client_product_price": "99.00"})

        result = reprice_order(db_session, order.id, actor=admin, force=True)
        assert manual.id in result.repriced
        db_session.refresh(manual)
        assert manual.client_product_price == D("12.00")
        assert manual.client_price_locked is False


class TestEditsAfterOrderMargin:
    """Persisted client prices follow later cost and override edits."""

    @pytest.fixture
    def frozen(self, db_session, admin, make_order, make_product, set_defaults):
        set_defaults(default_margin_percentage="10", default_shipping_margin_percentage="10")
        order = make_order()
        product = make_product(order, price="100.00", quantity=1)
        update_product_fields(
            db_session, admin, product.id, {"selected_shipping_method": "air", "shipping_air_price": "20.00"}
        )
        set_order_margin(db_session, admin, order.id, margin_percentage="50", shipping_margin_percentage="25")
        db_session.refresh(product)
        assert product.client_product_price == D("150.00")
        assert product.client_shipping_air_price == D("25.00")
        return product

    def test_product_override_then_removed(self, db_session, admin, frozen):
        update_product_fields(db_session, admin, frozen.id, {"margin_override_percentage": "80"})
        assert frozen.client_product_price == D("180.00")

        update_product_fields(db_session, admin, frozen.id, {"margin_override_percentage": None})
        assert frozen.client_product_price == D("150.00")

    def test_cost_change(self, db_session, admin, frozen):
        update_product_fields(db_session, admin, frozen.id, {"margin_override_percentage": "80"})
        update_product_fields(db_session, admin, frozen.id, {"product_price": "200.00"})
        assert frozen.client_product_price == D("360.00")

        entry = (
            db_session.query(AuditLog)
            .filter_by(action_type=AuditAction.PRODUCT_UPDATED)
            .order_by(AuditLog.id.desc())
            .first()
        )
        assert entry.old_value["client_product_price"] == "180.00"
        assert entry.new_value["client_product_price"] == "360.00"

    def test_shipping_override(self, db_session, admin, frozen):
        update_product_fields(db_session, admin, frozen.id, {"shipping_margin_override_percentage": "50"})
        assert frozen.client_shipping_air_price == D("30.00")
        assert frozen.client_product_price == D("150.00")

    def test_manual_price_untouched(self, db_session, admin, frozen):
        update_product_fields(db_session, admin, frozen.id, {"client_product_price": "999.00"})
        update_product_fields(db_session, admin, frozen.id, {"product_price": "1.00"})
        assert frozen.client_product_price == D("999.00")

    def test_explicit_client_field_wins(self, db_session, admin, frozen):
        update_product_fields(
            db_session, admin, frozen.id, {"shipping_air_price": "40.00", "client_shipping_air_price": "41.00"}
        )
        assert frozen.client_shipping_air_price == D("41.00")
