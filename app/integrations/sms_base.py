# app/integrations/sms_base.py
from __future__ import annotations

import re
from typing import Any, Dict, Optional, Protocol

import httpx

from app.core.config import Settings, get_settings
from app.core.exceptions import OrderDeskValidationError

_NON_PHONE_CHARS = re.compile(r"[^\d+]")


class SmsProvider(Protocol):
    name: str

    def send_sms(self, recipient: str, text: str, *, sender: str | None = None) -> Dict[str, Any]: ...


def normalize_phone(raw: str, default_country_code: str = "1") -> str:
    """
    Leading +countrycode form. Numbers without one are taken as domestic
    (10 digits) or already carrying the domestic code (11 digits starting with it).
    """
    phone = _NON_PHONE_CHARS.sub("", raw or "")
    if not phone.lstrip("+"):
        raise OrderDeskValidationError("Phone number is required", code="invalid_phone")
    if phone.startswith("+"):
        return "+" + phone.lstrip("+")
    if len(phone) == 10:
        return f"+{default_country_code}{phone}"
    if len(phone) == 11 and phone.startswith(default_country_code):
        return "+" + phone
    return "+" + phone


def sms_result(
    provider: str,
    *,
    success: bool,
    message_id: Optional[str] = None,
    error: Optional[str] = None,
    raw: Any = None,
) -> Dict[str, Any]:
    return {
        "provider": provider,
        "success": bool(success),
        "message_id": message_id,
        "error": error,
        "raw": raw,
    }


def build_http_client(base_url: str, settings: Settings, transport: httpx.BaseTransport | None = None, **kw) -> httpx.Client:
    """Keep-alive client with the request-level timeout applied to every call."""
    return httpx.Client(base_url=base_url, timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport, **kw)


def get_sms_client(
    settings: Optional[Settings] = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> SmsProvider:
    s = settings or get_settings()
    provider = s.SMS_PROVIDER
    if provider == "twilio":
        from app.integrations.twilio import TwilioClient

        return TwilioClient(s, transport=transport)
    if provider == "mobizon":
        from app.integrations.mobizon import MobizonClient

        return MobizonClient(s, transport=transport)
    if provider == "vonage":
        from app.integrations.vonage import VonageClient

        return VonageClient(s, transport=transport)
    raise OrderDeskValidationError(f"Unsupported SMS_PROVIDER: {provider}")
