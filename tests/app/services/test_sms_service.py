"""SmsService: validation, normalization, provider failures."""

import pytest

from app.core.exceptions import OrderDeskValidationError, ServiceUnavailableError
from app.integrations.sms_base import sms_result
from app.services.sms_service import MAX_SMS_LENGTH, SmsService


class RecordingClient:
    name = "fake"

    def __init__(self, ok=True, error=None):
        self.ok = ok
        self.error = error
        self.sent = []

    def send_sms(self, recipient, text, *, sender=None):
        self.sent.append((recipient, text))
        if self.ok:
            return sms_result(self.name, success=True, message_id=f"msg-{len(self.sent)}")
        return sms_result(self.name, success=False, error=self.error)


def test_send_normalizes_number():
    client = RecordingClient()
    result = SmsService(client=client).send("555-123-4567", "  Your invoice is ready  ")
    assert client.sent == [("+15551234567", "Your invoice is ready")]
    assert result == {"success": True, "message_id": "msg-1", "provider": "fake", "to": "+15551234567", "error": None}


def test_provider_rejection_raises():
    client = RecordingClient(ok=False, error="Invalid phone number format")
    with pytest.raises(ServiceUnavailableError) as ei:
        SmsService(client=client).send("5551234567", "hi")
    assert ei.value.code == "sms_failed"
    assert ei.value.extra == {"provider": "fake", "error": "Invalid phone number format"}


@pytest.mark.parametrize("message", ["", "   ", "x" * (MAX_SMS_LENGTH + 1)])
def test_message_validated(message):
    client = RecordingClient()
    with pytest.raises(OrderDeskValidationError):
        SmsService(client=client).send("5551234567", message)
    assert client.sent == []


def test_missing_phone():
    with pytest.raises(OrderDeskValidationError):
        SmsService(client=RecordingClient()).send("", "hi")
