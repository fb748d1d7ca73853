"""Order state machine, product routing, locks and field edits."""

import pytest

from app.core.exceptions import AuthorizationError, GuardError, OrderDeskValidationError
from app.models import AuditAction, AuditLog, OrderStatus, ProductStatus, RoutingParty
from app.services.workflow import (
    apply_product_action,
    bulk_route_action,
    is_invoiceable,
    list_products_for_party,
    lock_product,
    route_product,
    transition_order,
    unlock_product,
    update_product_fields,
)


class TestOrderTransitions:
    def test_legal_path(self, db_session, admin, make_order):
        order = make_order()
        order = transition_order(db_session, admin, order.id, "submitted_to_manufacturer")
        order = transition_order(db_session, admin, order.id, OrderStatus.MANUFACTURER_PROCESSED, note="quoted")
        assert order.status == OrderStatus.MANUFACTURER_PROCESSED
        assert order.status_note == "quoted"

        entry = db_session.query(AuditLog).filter_by(action_type=AuditAction.ORDER_STATUS_CHANGED).first()
        assert entry.old_value == {"status": "draft"}
        assert entry.target_id == str(order.id)

    def test_illegal_transition_rejected(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(OrderDeskValidationError) as ei:
            transition_order(db_session, admin, order.id, "completed")
        assert ei.value.code == "invalid_transition"
        db_session.refresh(order)
        assert order.status == OrderStatus.DRAFT

    def test_terminal_is_final(self, db_session, admin, make_order):
        order = make_order()
        transition_order(db_session, admin, order.id, "rejected")
        with pytest.raises(OrderDeskValidationError):
            transition_order(db_session, admin, order.id, "draft")

    def test_unknown_status(self, db_session, admin, make_order):
        order = make_order()
        with pytest.raises(OrderDeskValidationError):
            transition_order(db_session, admin, order.id, "teleported")

    def test_only_admin(self, db_session, manufacturer, make_order):
        order = make_order()
        with pytest.raises(AuthorizationError):
            transition_order(db_session, manufacturer, order.id, "submitted")


class TestProductActions:
    def test_round_trip_admin_manufacturer_client(self, db_session, admin, manufacturer, client_actor, make_order, make_product):
        order = make_order()
        product = make_product(order)

        p = apply_product_action(db_session, admin, product.id, "send_to_manufacturer")
        assert (p.product_status, p.routed_to) == (ProductStatus.SENT_TO_MANUFACTURER, RoutingParty.MANUFACTURER)

        p = apply_product_action(db_session, manufacturer, product.id, "send_to_admin")
        assert p.routed_to == RoutingParty.ADMIN

        p = apply_product_action(db_session, admin, product.id, "send_for_approval")
        assert p.routed_to == RoutingParty.CLIENT

        p = apply_product_action(db_session, client_actor, product.id, "approve")
        assert (p.product_status, p.routed_to) == (ProductStatus.CLIENT_APPROVED, RoutingParty.ADMIN)

    def test_wrong_party(self, db_session, manufacturer, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(AuthorizationError) as ei:
            apply_product_action(db_session, manufacturer, product.id, "send_to_manufacturer")
        assert ei.value.code == "action_not_allowed"

    def test_not_the_holder(self, db_session, manufacturer, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(AuthorizationError) as ei:
            apply_product_action(db_session, manufacturer, product.id, "send_to_admin")
        assert ei.value.code == "not_routed_to_actor"

    def test_from_status_enforced(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(OrderDeskValidationError):
            apply_product_action(db_session, admin, product.id, "complete")

    def test_version_increments(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        before = product.version
        p = apply_product_action(db_session, admin, product.id, "hold")
        assert p.version == before + 1

    def test_bulk_is_all_or_nothing(self, db_session, admin, make_order, make_product):
        order = make_order()
        a = make_product(order)
        b = make_product(order, status=ProductStatus.COMPLETED)
        with pytest.raises(OrderDeskValidationError):
            bulk_route_action(db_session, admin, [a.id, b.id], "send_to_manufacturer")
        db_session.refresh(a)
        assert a.routed_to == RoutingParty.ADMIN

        done = bulk_route_action(db_session, admin, [a.id], "send_to_manufacturer")
        assert [p.id for p in done] == [a.id]
        assert list_products_for_party(db_session, order.id, "manufacturer") == done

    def test_route_is_admin_only(self, db_session, admin, manufacturer, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(AuthorizationError):
            route_product(db_session, manufacturer, product.id, "client")
        p = route_product(db_session, admin, product.id, "client", "pending_client_approval")
        assert (p.routed_to, p.product_status) == (RoutingParty.CLIENT, ProductStatus.PENDING_CLIENT_APPROVAL)


class TestLocks:
    def test_lock_blocks_other_party(self, db_session, admin, manufacturer, make_order, make_product):
        product = make_product(make_order())
        apply_product_action(db_session, admin, product.id, "send_to_manufacturer")

        locked = lock_product(db_session, manufacturer, product.id)
        assert locked.is_locked and locked.locked_by_role == "manufacturer"

        with pytest.raises(AuthorizationError) as ei:
            update_product_fields(db_session, admin, product.id, {"product_price": "5.00"})
        assert ei.value.code == "product_locked"

        # notes are not lock protected
        p = update_product_fields(db_session, admin, product.id, {"admin_notes": "chase the factory"})
        assert p.admin_notes == "chase the factory"

        p = update_product_fields(db_session, manufacturer, product.id, {"product_price": "5.00"})
        assert str(p.product_price) == "5.00"

    def test_routing_ignores_lock_but_status_change_does_not(
        self, db_session, admin, manufacturer, make_order, make_product
    ):
        product = make_product(make_order())
        apply_product_action(db_session, admin, product.id, "send_to_manufacturer")
        lock_product(db_session, manufacturer, product.id)

        with pytest.raises(AuthorizationError) as ei:
            route_product(db_session, admin, product.id, "admin", "pending_admin")
        assert ei.value.code == "product_locked"

        p = route_product(db_session, admin, product.id, "admin")
        assert p.routed_to == RoutingParty.ADMIN
        assert p.product_status == ProductStatus.SENT_TO_MANUFACTURER
        assert p.is_locked and p.locked_by_role == "manufacturer"
        entry = db_session.query(AuditLog).filter_by(action_type=AuditAction.PRODUCT_ROUTED).one()
        assert entry.new_value == {"routed_to": "admin", "product_status": "sent_to_manufacturer"}

    def test_double_lock(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        lock_product(db_session, admin, product.id)
        with pytest.raises(GuardError) as ei:
            lock_product(db_session, admin, product.id)
        assert ei.value.code == "already_locked"

    def test_unlock_by_owner_or_elevated(self, db_session, admin, super_admin, manufacturer, make_order, make_product):
        product = make_product(make_order())
        apply_product_action(db_session, admin, product.id, "send_to_manufacturer")
        lock_product(db_session, manufacturer, product.id)

        with pytest.raises(AuthorizationError):
            unlock_product(db_session, admin, product.id)

        p = unlock_product(db_session, super_admin, product.id)
        assert p.is_locked is False
        assert p.locked_by_role is None

    def test_unlock_when_not_locked(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(OrderDeskValidationError):
            unlock_product(db_session, admin, product.id)


class TestFieldEdits:
    def test_manufacturer_cannot_touch_client_price(self, db_session, admin, manufacturer, make_order, make_product):
        product = make_product(make_order())
        apply_product_action(db_session, admin, product.id, "send_to_manufacturer")
        with pytest.raises(AuthorizationError):
            update_product_fields(db_session, manufacturer, product.id, {"client_product_price": "1.00"})

    def test_client_cannot_edit(self, db_session, client_actor, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(AuthorizationError):
            update_product_fields(db_session, client_actor, product.id, {"admin_notes": "x"})

    def test_manual_client_price_locks_repricing(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        p = update_product_fields(db_session, admin, product.id, {"client_product_price": "8.00"})
        assert p.client_price_locked is True
        p = update_product_fields(db_session, admin, product.id, {"client_product_price": None})
        assert p.client_price_locked is False

    def test_margin_override_validated(self, db_session, admin, make_order, make_product):
        product = make_product(make_order())
        with pytest.raises(OrderDeskValidationError):
            update_product_fields(db_session, admin, product.id, {"margin_override_percentage": "900"})


class TestInvoiceability:
    def test_status_makes_product_invoiceable(self, make_order, make_product):
        product = make_product(make_order(), price=None, status=ProductStatus.APPROVED_FOR_PRODUCTION)
        assert is_invoiceable(product)

    def test_admin_held_priced_product(self, make_order, make_product):
        assert is_invoiceable(make_product(make_order()))

    def test_unpriced_product_elsewhere_is_not(self, db_session, admin, make_order, make_product):
        product = make_product(make_order(), price=None)
        assert not is_invoiceable(product)
        p = apply_product_action(db_session, admin, product.id, "send_to_manufacturer")
        assert not is_invoiceable(p)
