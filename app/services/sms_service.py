"""
Provider-agnostic SMS sending (backend chosen by SMS_PROVIDER).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from app.core.config import Settings, get_settings
from app.core.exceptions import OrderDeskValidationError, ServiceUnavailableError
from app.core.logging import get_logger
from app.integrations.sms_base import SmsProvider, get_sms_client, normalize_phone

logger = get_logger(__name__)

MAX_SMS_LENGTH = 1600


class SmsService:
    """Normalizes the number, dispatches, and turns provider rejections into errors."""

    def __init__(self, client: Optional[SmsProvider] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> SmsProvider:
        if self._client is None:
            self._client = get_sms_client(self.settings)
        return self._client

    def send(self, to: str, message: str) -> Dict[str, Any]:
        text = (message or "").strip()
        if not text:
            raise OrderDeskValidationError("Message is required")
        if len(text) > MAX_SMS_LENGTH:
            raise OrderDeskValidationError(f"Message exceeds {MAX_SMS_LENGTH} characters")
        phone = normalize_phone(to, self.settings.SMS_DEFAULT_COUNTRY_CODE)

        client = self.client
        result = client.send_sms(phone, text)
        if not result.get("success"):
            logger.warning("SMS rejected by provider", provider=client.name, to=phone, error=result.get("error"))
            raise ServiceUnavailableError(
                result.get("error") or "Failed to send SMS",
                code="sms_failed",
                extra={"provider": client.name, "error": result.get("error")},
            )
        logger.info("SMS sent", provider=client.name, to=phone, message_id=result.get("message_id"))
        return {
            "success": True,
            "message_id": result.get("message_id"),
            "provider": client.name,
            "to": phone,
            "error": None,
        }


def get_sms_service() -> SmsService:
    return SmsService()


__all__ = ["SmsService", "get_sms_service", "MAX_SMS_LENGTH"]
