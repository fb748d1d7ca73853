"""Reporting endpoints (admin)."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.security import Actor, require_admin
from app.schemas.reports import OrderFinancialReport, TopProductRow
from app.services.reports import order_financial_summary, top_products

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/top-products", response_model=list[TopProductRow])
def top_products_endpoint(
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return top_products(db, limit)


@router.get("/orders", response_model=OrderFinancialReport)
def orders_report_endpoint(
    client_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return order_financial_summary(db, client_id=client_id)
