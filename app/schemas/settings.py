"""Global margin configuration schemas."""

from decimal import Decimal
from typing import Optional

from app.schemas.base import BaseSchema, BaseUpdateSchema


class MarginDefaultsResponse(BaseSchema):
    default_margin_percentage: Decimal
    default_shipping_margin_percentage: Decimal
    default_sample_margin_percentage: Decimal
    clothing_product_fee: Decimal
    # stored and editable; no pricing path reads it
    clothing_sample_fee: Decimal
    accessory_margin_percentage: Decimal
    version: int


class MarginDefaultsUpdate(BaseUpdateSchema):
    default_margin_percentage: Optional[Decimal] = None
    default_shipping_margin_percentage: Optional[Decimal] = None
    default_sample_margin_percentage: Optional[Decimal] = None
    clothing_product_fee: Optional[Decimal] = None
    clothing_sample_fee: Optional[Decimal] = None
    accessory_margin_percentage: Optional[Decimal] = None
