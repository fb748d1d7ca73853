"""Global margin / fee defaults."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.security import Actor, get_current_actor, require_admin
from app.schemas.settings import MarginDefaultsResponse, MarginDefaultsUpdate
from app.services.margin_config import get_margin_defaults, update_margin_defaults

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/margins", response_model=MarginDefaultsResponse)
def get_margins_endpoint(
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return MarginDefaultsResponse(**get_margin_defaults(db).as_dict())


@router.put("/margins", response_model=MarginDefaultsResponse)
def update_margins_endpoint(
    payload: MarginDefaultsUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Percentages must be within [0, 500]; flat fees must be >= 0."""
    defaults = update_margin_defaults(db, actor, payload.model_dump(exclude_unset=True))
    return MarginDefaultsResponse(**defaults.as_dict())
