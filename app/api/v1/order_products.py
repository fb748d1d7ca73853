"""
Order product endpoints: routing actions, locking, field edits,
soft delete / restore.
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy.orm import Session

from app.api.v1.orders import ensure_can_view_product, product_response
from app.core.db import get_db
from app.core.security import Actor, ensure_admin, get_current_actor
from app.schemas.order import (
    BulkActionRequest,
    ClientOrderProductResponse,
    DeleteProductRequest,
    DeletionResponse,
    OrderProductResponse,
    OrderProductUpdate,
    RouteRequest,
)
from app.services.order_service import get_order_product
from app.services.product_deletion import delete_product, list_deleted_products, restore_product
from app.services.workflow import (
    apply_product_action,
    bulk_route_action,
    lock_product,
    route_product,
    unlock_product,
    update_product_fields,
)

ProductView = Union[OrderProductResponse, ClientOrderProductResponse]

router = APIRouter(prefix="/order-products", tags=["Order products"])


@router.get("/deleted", response_model=list[OrderProductResponse])
def list_deleted_endpoint(
    order_id: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Soft-deleted products with their deletion reason (admin)."""
    ensure_admin(actor, "view deleted products")
    return [OrderProductResponse.model_validate(p) for p in list_deleted_products(db, order_id)]


@router.post("/bulk-action", response_model=list[ProductView])
def bulk_action_endpoint(
    payload: BulkActionRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Apply one route action to several products; all or nothing."""
    products = bulk_route_action(db, actor, payload.product_ids, payload.action)
    return [product_response(p, actor) for p in products]


@router.get("/{product_id}", response_model=ProductView)
def get_product_endpoint(
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = get_order_product(db, product_id)
    ensure_can_view_product(product, actor)
    return product_response(product, actor)


@router.patch("/{product_id}", response_model=ProductView)
def update_product_endpoint(
    payload: OrderProductUpdate,
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = update_product_fields(db, actor, product_id, payload.model_dump(exclude_unset=True))
    return product_response(get_order_product(db, product.id), actor)


@router.post("/{product_id}/actions/{action}", response_model=ProductView)
def product_action_endpoint(
    product_id: int = Path(..., ge=1),
    action: str = Path(..., min_length=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Route action available to the actor's party (e.g. send_to_admin, approve)."""
    product = apply_product_action(db, actor, product_id, action)
    return product_response(get_order_product(db, product.id), actor)


@router.post("/{product_id}/route", response_model=OrderProductResponse)
def route_product_endpoint(
    payload: RouteRequest,
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = route_product(db, actor, product_id, payload.routed_to, payload.new_status)
    return OrderProductResponse.model_validate(get_order_product(db, product.id))


@router.post("/{product_id}/lock", response_model=ProductView)
def lock_product_endpoint(
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = lock_product(db, actor, product_id)
    return product_response(get_order_product(db, product.id), actor)


@router.post("/{product_id}/unlock", response_model=ProductView)
def unlock_product_endpoint(
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = unlock_product(db, actor, product_id)
    return product_response(get_order_product(db, product.id), actor)


@router.delete("/{product_id}", response_model=DeletionResponse)
def delete_product_endpoint(
    product_id: int = Path(..., ge=1),
    payload: DeleteProductRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    Soft delete a product.

    Invoiced products need an elevated actor; pass `void_invoice_reason` to
    void the linked invoice first.
    """
    result = delete_product(
        db,
        actor,
        product_id,
        payload.reason,
        void_invoice_reason=payload.void_invoice_reason,
    )
    return DeletionResponse(
        product=OrderProductResponse.model_validate(get_order_product(db, product_id, include_deleted=True)),
        media_removed=result.media_removed,
        voided_invoice_id=result.voided_invoice_id,
        warnings=result.warnings,
    )


@router.post("/{product_id}/restore", response_model=OrderProductResponse)
def restore_product_endpoint(
    product_id: int = Path(..., ge=1),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    product = restore_product(db, actor, product_id)
    return OrderProductResponse.model_validate(get_order_product(db, product.id))
