"""Provider-agnostic SMS endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.security import Actor, require_admin
from app.schemas.sms import SmsSendRequest, SmsSendResponse
from app.services.sms_service import SmsService, get_sms_service

router = APIRouter(prefix="/sms", tags=["SMS"])


@router.post("/send", response_model=SmsSendResponse)
def send_sms_endpoint(
    payload: SmsSendRequest,
    actor: Actor = Depends(require_admin),
    sms: SmsService = Depends(get_sms_service),
):
    result = sms.send(payload.to, payload.message)
    return SmsSendResponse(
        success=result["success"],
        message_id=result["message_id"],
        provider=result["provider"],
        error=result["error"],
    )
