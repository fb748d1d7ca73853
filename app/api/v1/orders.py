"""
Order endpoints: create/read, status transitions, per-order margins and
invoice reconciliation summary.
"""

from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.exceptions import AuthorizationError
from app.core.security import Actor, ActorRole, ensure_admin, get_current_actor
from app.models.order import Order, OrderProduct
from app.schemas.invoice import InvoiceResponse, InvoiceSummaryResponse, ProductLineResponse
from app.schemas.order import (
    ClientOrderProductResponse,
    ClientOrderResponse,
    OrderCreate,
    OrderMarginResponse,
    OrderMarginUpdate,
    OrderProductCreate,
    OrderProductResponse,
    OrderResponse,
    OrderTransitionRequest,
    RepriceResponse,
)
from app.services.invoicing import get_order_invoice_summary
from app.services.margin_config import set_order_margin
from app.services.order_service import add_order_product, create_order, get_order
from app.services.repricing_service import reprice_order
from app.services.workflow import transition_order

router = APIRouter(prefix="/orders", tags=["Orders"])


def ensure_can_view(order: Order, actor: Actor) -> None:
    if actor.is_admin:
        return
    if actor.role == ActorRole.CLIENT and order.client_id == actor.id:
        return
    if actor.role == ActorRole.MANUFACTURER and order.manufacturer_id == actor.id:
        return
    raise AuthorizationError("You do not have access to this order", code="order_forbidden")


def ensure_can_view_product(product: OrderProduct, actor: Actor) -> None:
    ensure_can_view(product.order, actor)
    if not actor.is_admin and product.routed_to != actor.routing_party:
        raise AuthorizationError("Product is not routed to you", code="not_routed_to_actor")


def product_response(product: OrderProduct, actor: Actor) -> OrderProductResponse | ClientOrderProductResponse:
    if actor.role == ActorRole.CLIENT:
        return ClientOrderProductResponse.model_validate(product)
    return OrderProductResponse.model_validate(product)


def order_response(order: Order, actor: Actor) -> OrderResponse | ClientOrderResponse:
    """Non-admins only see the products currently routed to them; clients never see manufacturer costs."""
    schema = ClientOrderResponse if actor.role == ActorRole.CLIENT else OrderResponse
    resp = schema.model_validate(order)
    if not actor.is_admin:
        resp.products = [p for p in resp.products if p.routed_to == actor.routing_party]
    return resp


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order_endpoint(
    payload: OrderCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Create a new order (admin)."""
    order = create_order(db, actor, **payload.model_dump())
    return OrderResponse.model_validate(get_order(db, order.id))


@router.get("/{order_id}", response_model=Union[OrderResponse, ClientOrderResponse])
def get_order_endpoint(
    order_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    order = get_order(db, order_id)
    ensure_can_view(order, actor)
    return order_response(order, actor)


@router.post("/{order_id}/transition", response_model=OrderResponse)
def transition_order_endpoint(
    payload: OrderTransitionRequest,
    order_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Move the order along the status graph (admin)."""
    transition_order(db, actor, order_id, payload.status, payload.note)
    return OrderResponse.model_validate(get_order(db, order_id))


@router.put("/{order_id}/margin", response_model=OrderMarginResponse)
def set_order_margin_endpoint(
    payload: OrderMarginUpdate,
    order_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Upsert the order-level margin override.

    Only fields present in the body are touched; `null` clears one.
    Non-invoiced, non-manually-priced products are repriced unless `reprice=false`.
    """
    fields = payload.model_dump(include=payload.model_fields_set - {"reprice"})
    om = set_order_margin(db, actor, order_id, reprice=payload.reprice, **fields)
    return OrderMarginResponse.model_validate(om)


@router.post("/{order_id}/reprice", response_model=RepriceResponse)
def reprice_order_endpoint(
    order_id: int = Path(..., ge=1),
    force: bool = Query(False, description="Also reprice products with a hand-set client price"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_admin(actor, "reprice orders")
    result = reprice_order(db, order_id, actor=actor, force=force)
    return RepriceResponse(order_id=result.order_id, repriced=result.repriced, skipped=result.skipped)


@router.get("/{order_id}/invoice-summary", response_model=InvoiceSummaryResponse)
def invoice_summary_endpoint(
    order_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """total_value / invoiced_amount / ready_to_invoice for one order."""
    ensure_admin(actor, "view invoice summaries")
    s = get_order_invoice_summary(db, order_id)
    return InvoiceSummaryResponse(
        order_id=s.order.id,
        order_number=s.order.order_number,
        total_value=s.total_value,
        invoiced_amount=s.invoiced_amount,
        ready_to_invoice=s.ready_to_invoice,
        order_sample_fee=s.order_sample_fee,
        products=[
            ProductLineResponse(
                product_id=ln.product.id,
                product_name=ln.product.product_name,
                unit_price=ln.unit_price,
                quantity=ln.quantity,
                production_total=ln.production_total,
                sample_fee=ln.sample_fee,
                shipping=ln.shipping,
                total=ln.total,
            )
            for ln in s.products
        ],
        invoices=[InvoiceResponse.model_validate(inv) for inv in s.invoices],
    )


@router.post("/{order_id}/products", response_model=OrderProductResponse, status_code=status.HTTP_201_CREATED)
def add_order_product_endpoint(
    payload: OrderProductCreate,
    order_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    fields = payload.model_dump(exclude={"items", "media"}, exclude_none=True)
    product = add_order_product(
        db,
        actor,
        order_id,
        items=[i.model_dump() for i in payload.items],
        media=[m.model_dump() for m in payload.media],
        **fields,
    )
    return OrderProductResponse.model_validate(product)
