# app/integrations/twilio.py
from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import ServiceUnavailableError
from app.core.logging import get_logger
from app.integrations.sms_base import build_http_client, sms_result

log = get_logger(__name__)

# Twilio error codes worth a readable message
_ERROR_MESSAGES = {
    21211: "Invalid phone number format",
    21214: "Phone number is not a valid mobile number",
    21608: "The phone number is unverified. Trial accounts can only send to verified numbers.",
    21610: "This phone number has been blocked from receiving messages",
    21614: "Phone number is not a valid mobile number",
}


class TwilioClient:
    name = "twilio"

    def __init__(self, settings: Settings, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.account_sid = settings.TWILIO_ACCOUNT_SID or ""
        self.auth_token = settings.TWILIO_AUTH_TOKEN or ""
        self.sender = settings.TWILIO_FROM_NUMBER or ""
        if not (self.account_sid and self.auth_token and self.sender):
            raise ServiceUnavailableError(
                "SMS service not configured. Missing Twilio credentials.", code="sms_not_configured"
            )
        self._client = build_http_client(
            settings.TWILIO_API_URL.rstrip("/"), settings, transport, auth=(self.account_sid, self.auth_token)
        )

    def send_sms(self, recipient: str, text: str, *, sender: str | None = None) -> Dict[str, Any]:
        url = f"/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        payload = {"To": recipient, "From": sender or self.sender, "Body": text}
        try:
            resp = self._client.post(url, data=payload)
            data = resp.json()
        except httpx.HTTPError as e:
            log.warning("Twilio HTTP error", error=str(e))
            raise ServiceUnavailableError("SMS provider unreachable", code="sms_failed", extra={"provider": self.name})
        except ValueError:
            return sms_result(self.name, success=False, error=f"invalid_response (HTTP {resp.status_code})")

        if resp.status_code < 400 and data.get("sid"):
            return sms_result(self.name, success=True, message_id=data["sid"], raw=data)
        code = data.get("code")
        error = _ERROR_MESSAGES.get(code) or data.get("message") or "Failed to send SMS"
        return sms_result(self.name, success=False, error=error, raw=data)
