"""SMS Pydantic schemas."""

from typing import Optional

from pydantic import Field

from app.schemas.base import BaseCreateSchema, BaseSchema


class SmsSendRequest(BaseCreateSchema):
    to: str = Field(..., min_length=1, max_length=32)
    message: str = Field(..., min_length=1)


class SmsSendResponse(BaseSchema):
    success: bool
    message_id: Optional[str] = Field(None, alias="messageId")
    provider: str
    error: Optional[str] = None
