# app/integrations/vonage.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger
from app.integrations.sms_base import build_http_client, sms_result

log = get_logger(__name__)


class VonageClient:
    name = "vonage"

    def __init__(self, settings: Settings, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.api_key = settings.VONAGE_API_KEY or ""
        self.api_secret = settings.VONAGE_API_SECRET or ""
        self.sender = settings.VONAGE_FROM or ""
        if not (self.api_key and self.api_secret and self.sender):
            raise ServiceUnavailableError("SMS service not configured (Vonage)", code="sms_not_configured")
        self._client = build_http_client(settings.VONAGE_API_URL.rstrip("/"), settings, transport)

    def send_sms(self, recipient: str, text: str, *, sender: str | None = None) -> Dict[str, Any]:
        """/sms/json; each message part reports status "0" on success."""
        payload = {
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "from": sender or self.sender,
            "to": recipient.lstrip("+"),
            "text": text,
        }
        try:
            resp = self._client.post("/sms/json", data=payload)
            data = resp.json()
        except httpx.HTTPError as e:
            log.warning("Vonage HTTP error", error=str(e))
            raise ServiceUnavailableError("SMS provider unreachable", code="sms_failed", extra={"provider": self.name})
        except ValueError:
            return sms_result(self.name, success=False, error=f"invalid_response (HTTP {resp.status_code})")

        messages = data.get("messages") or []
        failed = [m for m in messages if str(m.get("status")) != "0"]
        if resp.status_code < 400 and messages and not failed:
            return sms_result(self.name, success=True, message_id=messages[0].get("message-id"), raw=data)
        error = (failed[0].get("error-text") if failed else None) or "Failed to send SMS"
        return sms_result(self.name, success=False, error=error, raw=data)
