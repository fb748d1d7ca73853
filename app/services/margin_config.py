# app/services/margin_config.py
"""
Global margin defaults: a versioned, cached snapshot over the system_config table.

Reads check only the version counter row; the full key set is reloaded when the
counter moved, so a request never sees a half-applied admin edit. Writes
validate, upsert and bump the counter in one transaction.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, OrderDeskValidationError
from app.core.logging import get_logger
from app.core.security import Actor, ensure_admin
from app.models.audit_log import AuditAction
from app.models.order import Order, OrderMarginOverride
from app.models.system_config import SystemConfig
from app.services.audit import emit_audit
from app.services.margin import MarginDefaults, ZERO, to_decimal, validate_flat_fee, validate_margin_percentage

logger = get_logger(__name__)

VERSION_KEY = "margin_config_version"

PERCENT_KEYS = (
    "default_margin_percentage",
    "default_shipping_margin_percentage",
    "default_sample_margin_percentage",
    "accessory_margin_percentage",
)
FEE_KEYS = ("clothing_product_fee", "clothing_sample_fee")
CONFIG_KEYS = PERCENT_KEYS + FEE_KEYS

_cache_lock = threading.Lock()
_cached: Optional[MarginDefaults] = None


def invalidate_margin_cache() -> None:
    global _cached
    with _cache_lock:
        _cached = None


def _read_version(db: Session) -> int:
    raw = db.scalar(select(SystemConfig.value).where(SystemConfig.key == VERSION_KEY))
    try:
        return int(raw or 0)
    except ValueError:
        logger.warning("Corrupt margin config version", value=raw)
        return 0


def _load(db: Session, version: int) -> MarginDefaults:
    rows = db.execute(select(SystemConfig.key, SystemConfig.value).where(SystemConfig.key.in_(CONFIG_KEYS))).all()
    values: dict[str, Decimal] = {}
    for key, raw in rows:
        d = to_decimal(raw)
        if d is not None:
            values[key] = d
    margin = values.get("default_margin_percentage", ZERO)
    return MarginDefaults(
        margin_percentage=margin,
        shipping_margin_percentage=values.get("default_shipping_margin_percentage", ZERO),
        sample_margin_percentage=values.get("default_sample_margin_percentage", ZERO),
        clothing_product_fee=values.get("clothing_product_fee", ZERO),
        clothing_sample_fee=values.get("clothing_sample_fee", ZERO),
        accessory_margin_percentage=values.get("accessory_margin_percentage", margin),
        version=version,
    )


def get_margin_defaults(db: Session) -> MarginDefaults:
    global _cached
    version = _read_version(db)
    with _cache_lock:
        if _cached is not None and _cached.version == version:
            return _cached
    snapshot = _load(db, version)
    with _cache_lock:
        _cached = snapshot
    return snapshot


def _upsert(db: Session, key: str, value: str, actor_id: Optional[str]) -> None:
    row = db.scalar(select(SystemConfig).where(SystemConfig.key == key))
    if row is None:
        db.add(SystemConfig(key=key, value=value, updated_by=actor_id))
    else:
        row.value = value
        row.updated_by = actor_id


def _bump_version(db: Session, expected: int, actor_id: Optional[str]) -> int:
    """Compare-and-set on the counter row; a concurrent writer makes this fail."""
    new_version = expected + 1
    if expected == 0 and db.scalar(select(SystemConfig.id).where(SystemConfig.key == VERSION_KEY)) is None:
        db.add(SystemConfig(key=VERSION_KEY, value=str(new_version), updated_by=actor_id))
        return new_version
    res = db.execute(
        update(SystemConfig)
        .where(SystemConfig.key == VERSION_KEY, SystemConfig.value == str(expected))
        .values(value=str(new_version), updated_by=actor_id)
    )
    if res.rowcount != 1:
        db.rollback()
        raise OrderDeskValidationError(
            "Margin defaults were changed concurrently; reload and retry", code="config_version_conflict"
        )
    return new_version


def update_margin_defaults(db: Session, actor: Actor, values: Mapping[str, Any]) -> MarginDefaults:
    """Validate and persist a partial update of the global defaults."""
    ensure_admin(actor, "change margin defaults")
    cleaned: dict[str, Decimal] = {}
    for key, raw in values.items():
        if key not in CONFIG_KEYS or raw is None:
            continue
        if key in PERCENT_KEYS:
            cleaned[key] = validate_margin_percentage(raw, key)
        else:
            cleaned[key] = validate_flat_fee(raw, key)

    before = get_margin_defaults(db)
    if not cleaned:
        return before

    for key, value in cleaned.items():
        _upsert(db, key, str(value), actor.id)
    _bump_version(db, before.version, actor.id)
    db.flush()

    emit_audit(
        db,
        actor,
        AuditAction.MARGIN_DEFAULTS_UPDATED,
        "system_config",
        "margin_defaults",
        old_value=before.as_dict(),
        new_value={k: str(v) for k, v in cleaned.items()},
    )
    db.commit()
    invalidate_margin_cache()
    after = get_margin_defaults(db)
    logger.info("Margin defaults updated", version=after.version, keys=sorted(cleaned))
    return after


def get_order_margin(db: Session, order_id: int) -> Optional[OrderMarginOverride]:
    return db.scalar(select(OrderMarginOverride).where(OrderMarginOverride.order_id == order_id))


_UNSET: Any = object()


def set_order_margin(
    db: Session,
    actor: Actor,
    order_id: int,
    *,
    margin_percentage: Any = _UNSET,
    shipping_margin_percentage: Any = _UNSET,
    clothing_fee_override: Any = _UNSET,
    reprice: bool = True,
) -> OrderMarginOverride:
    """Upsert the per-order override; None clears a field, omitted leaves it alone."""
    ensure_admin(actor, "change order margins")
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", extra={"order_id": order_id})

    om = get_order_margin(db, order_id)
    before = om.to_dict() if om is not None else None
    if om is None:
        om = OrderMarginOverride(order_id=order_id)
        db.add(om)
    if margin_percentage is not _UNSET:
        om.margin_percentage = validate_margin_percentage(margin_percentage, "margin_percentage")
    if shipping_margin_percentage is not _UNSET:
        om.shipping_margin_percentage = validate_margin_percentage(
            shipping_margin_percentage, "shipping_margin_percentage"
        )
    if clothing_fee_override is not _UNSET:
        om.clothing_fee_override = validate_flat_fee(clothing_fee_override, "clothing_fee_override")
    om.updated_by = actor.id
    db.flush()

    emit_audit(
        db,
        actor,
        AuditAction.ORDER_MARGIN_UPDATED,
        "order",
        order_id,
        old_value=before,
        new_value=om.to_dict(),
    )
    db.commit()

    if reprice:
        from app.services.repricing_service import reprice_order

        reprice_order(db, order_id, actor=actor)
    db.refresh(om)
    return om


__all__ = [
    "CONFIG_KEYS",
    "PERCENT_KEYS",
    "FEE_KEYS",
    "VERSION_KEY",
    "get_margin_defaults",
    "update_margin_defaults",
    "invalidate_margin_cache",
    "get_order_margin",
    "set_order_margin",
]
