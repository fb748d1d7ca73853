# app/integrations/mobizon.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger
from app.integrations.sms_base import build_http_client, sms_result

log = get_logger(__name__)


class MobizonClient:
    name = "mobizon"

    def __init__(self, settings: Settings, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.api_key = settings.MOBIZON_API_KEY or ""
        self.sender = settings.MOBIZON_SENDER or None
        if not self.api_key:
            raise ServiceUnavailableError("SMS service not configured (MOBIZON_API_KEY)", code="sms_not_configured")
        base_url = settings.MOBIZON_API_URL.rstrip("/") + "/service"
        self._client = build_http_client(
            base_url, settings, transport, headers={"Authorization": f"Token {self.api_key}"}
        )

    def send_sms(self, recipient: str, text: str, *, sender: str | None = None) -> Dict[str, Any]:
        """
        /service/message/sendSms (form-encoded); success is {"code": 0, "data": {"messageId": ...}}.
        """
        payload = {"recipient": recipient.lstrip("+"), "text": text}
        frm = sender or self.sender
        if frm:
            payload["from"] = frm

        try:
            resp = self._client.post("/message/sendSms", data=payload)
            data = resp.json()
        except httpx.HTTPError as e:
            log.warning("Mobizon HTTP error", error=str(e))
            raise ServiceUnavailableError("SMS provider unreachable", code="sms_failed", extra={"provider": self.name})
        except ValueError:
            return sms_result(self.name, success=False, error=f"invalid_response (HTTP {resp.status_code})")

        if resp.status_code < 400 and data.get("code") == 0:
            return sms_result(self.name, success=True, message_id=(data.get("data") or {}).get("messageId"), raw=data)
        return sms_result(self.name, success=False, error=data.get("message") or str(data), raw=data)
