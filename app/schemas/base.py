"""
Base Pydantic schemas with common patterns.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """Base schema for responses read off ORM objects."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)


class BaseCreateSchema(BaseModel):
    """Base schema for request bodies."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True, populate_by_name=True)


class BaseUpdateSchema(BaseCreateSchema):
    """Partial update; callers use model_dump(exclude_unset=True)."""


class TimestampedSchema(BaseSchema):
    """Schema with timestamp fields."""

    id: int
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseModel):
    """Problem+json error body."""

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    error: str = Field(..., description="Error message (same as detail)")
    code: str
    details: Optional[dict] = None
    instance: Optional[str] = None


class SuccessResponse(BaseModel):
    """Success response schema."""

    message: str = Field(..., description="Success message")
    data: Optional[dict] = Field(None, description="Additional data")
