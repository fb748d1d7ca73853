# app/services/margin.py
"""
Margin resolver: manufacturer costs -> client-facing prices.

Unit price precedence (first match wins):
  1. persisted client_product_price on the product (frozen/manual)
  2. clothing flat fee per unit (order clothing_fee_override, else global clothing_product_fee)
  3. product-level margin override
  4. order-level margin override
  5. global default (accessory_margin_percentage for accessories)

Shipping is charged only for the selected method, per line:
  persisted client price -> product shipping override -> order shipping override -> global.

Every multiplication is rounded to cents (ROUND_HALF_UP, i.e. half away from zero),
so stored totals always equal the sum of their displayed parts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from app.core.exceptions import OrderDeskValidationError
from app.models.order import Order, OrderMarginOverride, OrderProduct, ShippingMethod

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
MAX_MARGIN_PERCENT = Decimal("500")


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------
def to_decimal(v: Any) -> Optional[Decimal]:
    if v is None or v == "":
        return None
    if isinstance(v, Decimal):
        return v
    try:
        return Decimal(str(v))
    except (InvalidOperation, ValueError):
        raise OrderDeskValidationError("Invalid numeric value", extra={"value": str(v)})


def money(v: Any) -> Decimal:
    d = to_decimal(v)
    if d is None:
        return ZERO
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def apply_margin(cost: Decimal, percent: Decimal) -> Decimal:
    return money(cost * (1 + percent / HUNDRED))


# ---------------------------------------------------------------------------
# Write-time validation
# ---------------------------------------------------------------------------
def validate_margin_percentage(value: Any, field: str = "margin_percentage") -> Optional[Decimal]:
    """[0, 500] inclusive; out-of-range is rejected, never clamped."""
    d = to_decimal(value)
    if d is None:
        return None
    if d < 0 or d > MAX_MARGIN_PERCENT:
        raise OrderDeskValidationError(
            f"{field} must be between 0 and {MAX_MARGIN_PERCENT}",
            code="margin_out_of_range",
            extra={"field": field, "value": str(d)},
        )
    return d


def validate_flat_fee(value: Any, field: str = "fee") -> Optional[Decimal]:
    d = to_decimal(value)
    if d is None:
        return None
    if d < 0:
        raise OrderDeskValidationError(
            f"{field} must be >= 0", code="fee_out_of_range", extra={"field": field, "value": str(d)}
        )
    return money(d)


# ---------------------------------------------------------------------------
# Global defaults snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class MarginDefaults:
    margin_percentage: Decimal = ZERO
    shipping_margin_percentage: Decimal = ZERO
    sample_margin_percentage: Decimal = ZERO
    clothing_product_fee: Decimal = ZERO
    # Persisted and editable but not consumed by any pricing path; the intended
    # formula is undecided, so sample fees stay percentage-only.
    clothing_sample_fee: Decimal = ZERO
    accessory_margin_percentage: Decimal = ZERO
    version: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "default_margin_percentage": self.margin_percentage,
            "default_shipping_margin_percentage": self.shipping_margin_percentage,
            "default_sample_margin_percentage": self.sample_margin_percentage,
            "clothing_product_fee": self.clothing_product_fee,
            "clothing_sample_fee": self.clothing_sample_fee,
            "accessory_margin_percentage": self.accessory_margin_percentage,
            "version": self.version,
        }


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
def resolve_margin_percentage(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> tuple[Decimal, str]:
    """Percentage applied to the unit price and where it came from."""
    if product.margin_override_percentage is not None:
        return Decimal(product.margin_override_percentage), "product"
    if order_margin is not None and order_margin.margin_percentage is not None:
        return Decimal(order_margin.margin_percentage), "order"
    if product.is_accessory:
        return defaults.accessory_margin_percentage, "accessory_default"
    return defaults.margin_percentage, "global"


def clothing_fee(order_margin: Optional[OrderMarginOverride], defaults: MarginDefaults) -> Decimal:
    if order_margin is not None and order_margin.clothing_fee_override is not None:
        return money(order_margin.clothing_fee_override)
    return defaults.clothing_product_fee


def compute_client_unit_price(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> Optional[Decimal]:
    """Live derivation from cost, ignoring any persisted client price."""
    cost = to_decimal(product.product_price)
    if cost is None:
        return None
    if product.is_clothing:
        return money(cost + clothing_fee(order_margin, defaults))
    pct, _ = resolve_margin_percentage(product, order_margin, defaults)
    return apply_margin(cost, pct)


def resolve_client_unit_price(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> Optional[Decimal]:
    if product.client_product_price is not None:
        return money(product.client_product_price)
    return compute_client_unit_price(product, order_margin, defaults)


def _shipping_fields(method: ShippingMethod) -> Optional[tuple[str, str]]:
    if method == ShippingMethod.AIR:
        return "shipping_air_price", "client_shipping_air_price"
    if method == ShippingMethod.BOAT:
        return "shipping_boat_price", "client_shipping_boat_price"
    return None


def compute_client_shipping_price(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
    method: Optional[ShippingMethod] = None,
) -> Optional[Decimal]:
    fields = _shipping_fields(method or product.selected_shipping_method)
    if fields is None:
        return None
    cost = to_decimal(getattr(product, fields[0]))
    if cost is None:
        return None
    if product.shipping_margin_override_percentage is not None:
        pct = Decimal(product.shipping_margin_override_percentage)
    elif order_margin is not None and order_margin.shipping_margin_percentage is not None:
        pct = Decimal(order_margin.shipping_margin_percentage)
    else:
        pct = defaults.shipping_margin_percentage
    return apply_margin(cost, pct)


def resolve_client_shipping_price(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> Decimal:
    """Selected method only; the other method's cost is never charged."""
    fields = _shipping_fields(product.selected_shipping_method)
    if fields is None:
        return ZERO
    persisted = getattr(product, fields[1])
    if persisted is not None:
        return money(persisted)
    return compute_client_shipping_price(product, order_margin, defaults) or ZERO


def compute_client_sample_fee(product: OrderProduct, defaults: MarginDefaults) -> Optional[Decimal]:
    cost = to_decimal(product.sample_fee)
    if cost is None:
        return None
    return apply_margin(cost, defaults.sample_margin_percentage)


def resolve_client_sample_fee(product: OrderProduct, defaults: MarginDefaults) -> Decimal:
    if product.client_sample_fee is not None:
        return money(product.client_sample_fee)
    return compute_client_sample_fee(product, defaults) or ZERO


def order_sample_fee_client(order: Order, defaults: MarginDefaults) -> Decimal:
    cost = to_decimal(order.sample_fee)
    if cost is None:
        return ZERO
    return apply_margin(cost, defaults.sample_margin_percentage)


@dataclass(frozen=True)
class ProductPricing:
    unit_price: Optional[Decimal]
    quantity: int
    production_total: Decimal
    sample_fee: Decimal
    shipping: Decimal

    @property
    def total(self) -> Decimal:
        return money(self.production_total + self.sample_fee + self.shipping)


def price_product(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> ProductPricing:
    unit = resolve_client_unit_price(product, order_margin, defaults)
    qty = product.total_quantity
    production = money(unit * qty) if unit is not None else ZERO
    return ProductPricing(
        unit_price=unit,
        quantity=qty,
        production_total=production,
        sample_fee=resolve_client_sample_fee(product, defaults),
        shipping=resolve_client_shipping_price(product, order_margin, defaults),
    )


def product_client_total(
    product: OrderProduct,
    order_margin: Optional[OrderMarginOverride],
    defaults: MarginDefaults,
) -> Decimal:
    return price_product(product, order_margin, defaults).total


__all__ = [
    "CENT",
    "ZERO",
    "MarginDefaults",
    "ProductPricing",
    "money",
    "to_decimal",
    "apply_margin",
    "validate_margin_percentage",
    "validate_flat_fee",
    "resolve_margin_percentage",
    "compute_client_unit_price",
    "resolve_client_unit_price",
    "compute_client_shipping_price",
    "resolve_client_shipping_price",
    "compute_client_sample_fee",
    "resolve_client_sample_fee",
    "order_sample_fee_client",
    "price_product",
    "product_client_total",
]
