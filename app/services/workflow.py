# app/services/workflow.py
"""
Order / product workflow engine.

- Order status machine: admin only, edges from ALLOWED_TRANSITIONS.
- Product hand-offs: named route actions; only the party the product is routed
  to may act, and a locked product only accepts changes from the locking role.
- Locks are claimed with a conditional UPDATE (is_locked = false), and every
  product write is guarded by the `version` counter, so two concurrent writers
  cannot both pass the check.
- is_invoiceable(): eligibility predicate used by invoicing; evaluated on every read.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AuthorizationError,
    GuardError,
    NotFoundError,
    OrderDeskValidationError,
)
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.audit_log import AuditAction
from app.models.base import utc_now
from app.models.order import (
    ALLOWED_TRANSITIONS,
    INVOICEABLE_PRODUCT_STATUSES,
    Order,
    OrderProduct,
    OrderStatus,
    ProductStatus,
    RoutingParty,
    ShippingMethod,
)
from app.services.audit import emit_audit
from app.services.margin import to_decimal, validate_flat_fee, validate_margin_percentage
from app.services.repricing_service import PRICE_INPUT_FIELDS, refresh_client_prices

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Invoiceability
# ---------------------------------------------------------------------------
def _positive(*values: Any) -> bool:
    for v in values:
        d = to_decimal(v)
        if d is not None and d > 0:
            return True
    return False


def is_invoiceable(product: OrderProduct) -> bool:
    if product.deleted_at is not None:
        return False
    if product.product_status in INVOICEABLE_PRODUCT_STATUSES:
        return True
    if product.routed_to == RoutingParty.ADMIN:
        has_price = _positive(product.client_product_price, product.product_price)
        has_sample = _positive(product.client_sample_fee, product.sample_fee)
        return has_price or has_sample
    return False


# ---------------------------------------------------------------------------
# Order transitions
# ---------------------------------------------------------------------------
def transition_order(
    db: Session,
    actor: Actor,
    order_id: int,
    new_status: OrderStatus | str,
    note: Optional[str] = None,
) -> Order:
    ensure_admin(actor, "change order status")
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise OrderDeskValidationError("Unknown order status", extra={"status": str(new_status)})

    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})
    old = order.status
    if target not in ALLOWED_TRANSITIONS.get(old, set()):
        raise OrderDeskValidationError(
            f"Illegal status transition: {old.value} -> {target.value}",
            code="invalid_transition",
            extra={"from": old.value, "to": target.value},
        )

    res = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == old)
        .values(status=target, status_note=note, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise GuardError("Order status changed concurrently; reload and retry", code="stale_order")

    emit_audit(
        db,
        actor,
        AuditAction.ORDER_STATUS_CHANGED,
        "order",
        order_id,
        old_value={"status": old.value},
        new_value={"status": target.value, "note": note},
    )
    db.commit()
    db.refresh(order)
    logger.info("Order status changed", order_id=order_id, old=old.value, new=target.value)
    return order


# ---------------------------------------------------------------------------
# Product route actions
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RouteAction:
    name: str
    party: RoutingParty
    new_status: ProductStatus
    routed_to: RoutingParty
    from_statuses: Optional[frozenset[ProductStatus]] = None


_P = ProductStatus
_R = RoutingParty

ROUTE_ACTIONS: dict[str, RouteAction] = {
    a.name: a
    for a in (
        # manufacturer
        RouteAction("send_to_admin", _R.MANUFACTURER, _P.PENDING_ADMIN, _R.ADMIN),
        RouteAction(
            "in_production",
            _R.MANUFACTURER,
            _P.IN_PRODUCTION,
            _R.MANUFACTURER,
            frozenset({_P.APPROVED_FOR_PRODUCTION}),
        ),
        RouteAction("shipped", _R.MANUFACTURER, _P.SHIPPED, _R.ADMIN, frozenset({_P.IN_PRODUCTION})),
        # admin
        RouteAction("send_to_manufacturer", _R.ADMIN, _P.SENT_TO_MANUFACTURER, _R.MANUFACTURER),
        RouteAction("approve_for_production", _R.ADMIN, _P.APPROVED_FOR_PRODUCTION, _R.MANUFACTURER),
        RouteAction("request_sample", _R.ADMIN, _P.SAMPLE_REQUESTED, _R.MANUFACTURER),
        RouteAction("send_for_approval", _R.ADMIN, _P.PENDING_CLIENT_APPROVAL, _R.CLIENT),
        RouteAction("send_back_to_manufacturer", _R.ADMIN, _P.REVISION_REQUESTED, _R.MANUFACTURER),
        RouteAction("hold", _R.ADMIN, _P.ON_HOLD, _R.ADMIN),
        RouteAction("reject", _R.ADMIN, _P.REJECTED, _R.ADMIN),
        RouteAction("complete", _R.ADMIN, _P.COMPLETED, _R.ADMIN, frozenset({_P.IN_PRODUCTION, _P.SHIPPED})),
        # client
        RouteAction("approve", _R.CLIENT, _P.CLIENT_APPROVED, _R.ADMIN, frozenset({_P.PENDING_CLIENT_APPROVAL})),
        RouteAction(
            "request_changes", _R.CLIENT, _P.REVISION_REQUESTED, _R.ADMIN, frozenset({_P.PENDING_CLIENT_APPROVAL})
        ),
    )
}

TERMINAL_PRODUCT_STATUSES = frozenset({_P.COMPLETED, _P.REJECTED})


def _load_product(db: Session, product_id: int) -> OrderProduct:
    product = db.get(OrderProduct, product_id)
    if product is None or product.deleted_at is not None:
        raise NotFoundError("Order product not found", extra={"product_id": product_id})
    return product


def _ensure_not_locked_for(product: OrderProduct, party: str) -> None:
    if product.is_locked and product.locked_by_role != party:
        raise AuthorizationError(
            "Product is locked by another party",
            code="product_locked",
            extra={"locked_by_role": product.locked_by_role},
        )


def _ensure_holder(product: OrderProduct, actor: Actor) -> None:
    if product.routed_to != actor.routing_party:
        raise AuthorizationError("Product is not routed to you", code="not_routed_to_actor")


def _guarded_write(
    db: Session, product: OrderProduct, party: str, values: dict[str, Any], *, respect_lock: bool = True
) -> None:
    """Conditional UPDATE on (version, lock); loses deterministically to a concurrent writer."""
    expected = product.version
    cond = [OrderProduct.id == product.id, OrderProduct.version == expected, OrderProduct.deleted_at.is_(None)]
    if respect_lock:
        cond.append(or_(OrderProduct.is_locked.is_(False), OrderProduct.locked_by_role == party))
    stmt = (
        update(OrderProduct)
        .where(*cond)
        .values(**values, version=expected + 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    if res.rowcount != 1:
        db.rollback()
        raise GuardError(
            "Product was modified concurrently; reload and retry",
            code="stale_product",
            extra={"product_id": product.id, "expected_version": expected},
        )


def _apply_action(db: Session, actor: Actor, product: OrderProduct, action: RouteAction) -> dict[str, Any]:
    party = actor.routing_party
    if action.party.value != party:
        raise AuthorizationError(f"Action '{action.name}' is not available to {party}", code="action_not_allowed")
    _ensure_holder(product, actor)
    _ensure_not_locked_for(product, party)
    if product.product_status in TERMINAL_PRODUCT_STATUSES:
        raise OrderDeskValidationError(
            f"Product is {product.product_status.value}", code="invalid_transition"
        )
    if action.from_statuses is not None and product.product_status not in action.from_statuses:
        raise OrderDeskValidationError(
            f"Action '{action.name}' is not valid from status {product.product_status.value}",
            code="invalid_transition",
            extra={"allowed_from": sorted(s.value for s in action.from_statuses)},
        )

    old = {"product_status": product.product_status.value, "routed_to": product.routed_to.value}
    new = {"product_status": action.new_status.value, "routed_to": action.routed_to.value, "action": action.name}
    _guarded_write(db, product, party, {"product_status": action.new_status, "routed_to": action.routed_to})
    emit_audit(db, actor, AuditAction.PRODUCT_STATUS_CHANGED, "order_product", product.id, old_value=old, new_value=new)
    return new


def _get_action(action: str) -> RouteAction:
    route_action = ROUTE_ACTIONS.get(action)
    if route_action is None:
        raise OrderDeskValidationError("Unknown product action", extra={"action": action})
    return route_action


def apply_product_action(db: Session, actor: Actor, product_id: int, action: str) -> OrderProduct:
    route_action = _get_action(action)
    product = _load_product(db, product_id)
    _apply_action(db, actor, product, route_action)
    db.commit()
    db.refresh(product)
    logger.info("Product action applied", product_id=product_id, action=action, party=actor.routing_party)
    return product


def bulk_route_action(db: Session, actor: Actor, product_ids: Iterable[int], action: str) -> list[OrderProduct]:
    """All-or-nothing: any failure rolls back every product in the batch."""
    route_action = _get_action(action)
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        raise OrderDeskValidationError("No products selected")
    products: list[OrderProduct] = []
    try:
        for pid in ids:
            product = _load_product(db, pid)
            _apply_action(db, actor, product, route_action)
            products.append(product)
        db.commit()
    except Exception:
        db.rollback()
        raise
    for p in products:
        db.refresh(p)
    logger.info("Bulk product action applied", action=action, count=len(products))
    return products


def route_product(
    db: Session,
    actor: Actor,
    product_id: int,
    routed_to: RoutingParty | str,
    new_status: Optional[ProductStatus | str] = None,
) -> OrderProduct:
    """
    Explicit re-routing; changing routed_to is reserved to admins.

    Re-routing alone ignores another party's lock. A status change is a
    transition and is refused while someone else holds the lock.
    """
    ensure_admin(actor, "change product routing")
    try:
        target = RoutingParty(routed_to)
        status = ProductStatus(new_status) if new_status is not None else None
    except ValueError:
        raise OrderDeskValidationError("Invalid routing target or status")

    product = _load_product(db, product_id)
    if status is not None:
        _ensure_not_locked_for(product, actor.routing_party)
    old = {"routed_to": product.routed_to.value, "product_status": product.product_status.value}
    values: dict[str, Any] = {"routed_to": target}
    if status is not None:
        values["product_status"] = status
    _guarded_write(db, product, actor.routing_party, values, respect_lock=status is not None)
    emit_audit(
        db,
        actor,
        AuditAction.PRODUCT_ROUTED,
        "order_product",
        product_id,
        old_value=old,
        new_value={"routed_to": target.value, "product_status": status.value if status else old["product_status"]},
    )
    db.commit()
    db.refresh(product)
    return product


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------
def lock_product(db: Session, actor: Actor, product_id: int) -> OrderProduct:
    product = _load_product(db, product_id)
    party = actor.routing_party
    if not actor.is_admin and product.routed_to != party:
        raise AuthorizationError("Only the current holder or an admin may lock a product", code="not_routed_to_actor")

    res = db.execute(
        update(OrderProduct)
        .where(
            OrderProduct.id == product_id,
            OrderProduct.is_locked.is_(False),
            OrderProduct.deleted_at.is_(None),
        )
        .values(
            is_locked=True,
            locked_by_role=party,
            locked_by=actor.id,
            locked_at=utc_now(),
            version=OrderProduct.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(product)
        raise GuardError(
            "Product is already locked",
            code="already_locked",
            extra={"locked_by_role": product.locked_by_role},
        )
    emit_audit(db, actor, AuditAction.PRODUCT_LOCKED, "order_product", product_id, new_value={"locked_by_role": party})
    db.commit()
    db.refresh(product)
    return product


def unlock_product(db: Session, actor: Actor, product_id: int) -> OrderProduct:
    """Only the locking role (or an elevated actor) may release the lock."""
    product = _load_product(db, product_id)
    if not product.is_locked:
        raise OrderDeskValidationError("Product is not locked", code="not_locked")
    party = actor.routing_party
    if product.locked_by_role != party and not actor.is_elevated:
        raise AuthorizationError("Only the locking party may unlock this product", code="product_locked")

    cond = [OrderProduct.id == product_id, OrderProduct.is_locked.is_(True)]
    if not actor.is_elevated:
        cond.append(OrderProduct.locked_by_role == party)
    res = db.execute(
        update(OrderProduct)
        .where(and_(*cond))
        .values(
            is_locked=False,
            locked_by_role=None,
            locked_by=None,
            locked_at=None,
            version=OrderProduct.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise GuardError("Lock changed concurrently; reload and retry", code="stale_product")
    emit_audit(
        db,
        actor,
        AuditAction.PRODUCT_UNLOCKED,
        "order_product",
        product_id,
        old_value={"locked_by_role": product.locked_by_role},
    )
    db.commit()
    db.refresh(product)
    return product


# ---------------------------------------------------------------------------
# Field edits
# ---------------------------------------------------------------------------
# pricing/ETA/shipping: blocked while another party holds the lock
LOCK_PROTECTED_FIELDS = frozenset(
    {
        "product_price",
        "sample_fee",
        "shipping_air_price",
        "shipping_boat_price",
        "client_product_price",
        "client_sample_fee",
        "client_shipping_air_price",
        "client_shipping_boat_price",
        "margin_override_percentage",
        "shipping_margin_override_percentage",
        "selected_shipping_method",
        "production_eta",
    }
)

MANUFACTURER_FIELDS = frozenset(
    {
        "product_price",
        "sample_fee",
        "shipping_air_price",
        "shipping_boat_price",
        "selected_shipping_method",
        "production_eta",
        "manufacturer_notes",
    }
)

ADMIN_FIELDS = LOCK_PROTECTED_FIELDS | {"admin_notes", "product_name"}

_MONEY_FIELDS = frozenset(
    {
        "product_price",
        "sample_fee",
        "shipping_air_price",
        "shipping_boat_price",
        "client_product_price",
        "client_sample_fee",
        "client_shipping_air_price",
        "client_shipping_boat_price",
    }
)
_PERCENT_FIELDS = frozenset({"margin_override_percentage", "shipping_margin_override_percentage"})


def _clean_value(field: str, value: Any) -> Any:
    if field in _MONEY_FIELDS:
        return validate_flat_fee(value, field)
    if field in _PERCENT_FIELDS:
        return validate_margin_percentage(value, field)
    if field == "selected_shipping_method":
        try:
            return ShippingMethod(value or ShippingMethod.NONE)
        except ValueError:
            raise OrderDeskValidationError("Invalid shipping method", extra={"value": value})
    return value


def update_product_fields(db: Session, actor: Actor, product_id: int, changes: Mapping[str, Any]) -> OrderProduct:
    product = _load_product(db, product_id)
    party = actor.routing_party
    if actor.is_admin:
        allowed = ADMIN_FIELDS
    elif party == RoutingParty.MANUFACTURER.value:
        _ensure_holder(product, actor)
        allowed = MANUFACTURER_FIELDS
    else:
        raise AuthorizationError("Clients cannot edit product fields")

    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise AuthorizationError("Fields not editable by this role", extra={"fields": unknown})
    lock_sensitive = bool(set(changes) & LOCK_PROTECTED_FIELDS)
    if lock_sensitive:
        _ensure_not_locked_for(product, party)

    values = {f: _clean_value(f, v) for f, v in changes.items()}
    if "client_product_price" in values:
        # a hand-set client price is final; repricing leaves it alone
        values["client_price_locked"] = values["client_product_price"] is not None
    if not values:
        return product

    old = {f: getattr(product, f) for f in changes}
    _guarded_write(db, product, party, values, respect_lock=lock_sensitive)
    repriced: dict[str, Any] = {}
    if set(changes) & PRICE_INPUT_FIELDS:
        db.refresh(product)
        repriced = refresh_client_prices(db, product, keep=set(changes))
        old.update({f: getattr(product, f) for f in repriced})
    emit_audit(
        db,
        actor,
        AuditAction.PRODUCT_UPDATED,
        "order_product",
        product_id,
        old_value={k: (str(v) if isinstance(v, Decimal) else v) for k, v in old.items()},
        new_value={k: (str(v) if isinstance(v, Decimal) else v) for k, v in {**values, **repriced}.items()},
    )
    db.commit()
    db.refresh(product)
    return product


def list_products_for_party(db: Session, order_id: int, party: RoutingParty | str) -> list[OrderProduct]:
    return list(
        db.scalars(
            select(OrderProduct)
            .where(
                OrderProduct.order_id == order_id,
                OrderProduct.routed_to == RoutingParty(party),
                OrderProduct.deleted_at.is_(None),
            )
            .order_by(OrderProduct.id)
        )
    )


__all__ = [
    "is_invoiceable",
    "transition_order",
    "RouteAction",
    "ROUTE_ACTIONS",
    "apply_product_action",
    "bulk_route_action",
    "route_product",
    "lock_product",
    "unlock_product",
    "update_product_fields",
    "list_products_for_party",
]
