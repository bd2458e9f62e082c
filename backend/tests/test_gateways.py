import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs

import httpx
import pytest

from buildops.exceptions import GatewayError
from buildops.integrations import (
    DisabledSignatureGateway,
    HttpSignatureGateway,
    LoggingSmsGateway,
    TwilioSmsGateway,
    build_signature_gateway,
    build_sms_gateway,
    twilio_request_signature,
)

TWILIO_BASE = "https://api.twilio.test/2010-04-01"


def _twilio(handler):
    client = httpx.Client(base_url=TWILIO_BASE, transport=httpx.MockTransport(handler))
    return TwilioSmsGateway(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550000000",
        client=client,
    )


def test_twilio_success():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SM42", "status": "queued"})

    result = _twilio(handler).send_message("+15555550101", "Hello")

    assert result.delivered is True
    assert result.provider_id == "SM42"
    assert result.status == "queued"
    assert seen["url"] == f"{TWILIO_BASE}/Accounts/AC123/Messages.json"
    assert seen["form"] == {"To": ["+15555550101"], "From": ["+15550000000"], "Body": ["Hello"]}


def test_twilio_provider_error_is_reported_not_raised():
    def handler(request):
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    result = _twilio(handler).send_message("+1555", "Hello")

    assert result.delivered is False
    assert "400" in result.error
    assert "Invalid 'To' Phone Number" in result.error


def test_twilio_network_error_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = _twilio(handler).send_message("+15555550101", "Hello")

    assert result.delivered is False
    assert "unreachable" in result.error


def test_twilio_requires_credentials():
    with pytest.raises(ValueError):
        TwilioSmsGateway(account_sid="", auth_token="x", from_number="+15550000000")


def test_twilio_request_signature_sorts_params_after_url():
    url = "https://ops.example.test/api/webhooks/sms-status"
    params = {"MessageStatus": "delivered", "MessageSid": "SM42"}
    payload = b"https://ops.example.test/api/webhooks/sms-statusMessageSidSM42MessageStatusdelivered"
    expected = base64.b64encode(hmac.new(b"secret", payload, hashlib.sha1).digest()).decode()

    assert twilio_request_signature("secret", url, params) == expected
    assert twilio_request_signature("other", url, params) != expected


def test_logging_gateway_keeps_messages():
    gateway = LoggingSmsGateway()
    result = gateway.send_message("+15555550101", "Hi")
    assert result.delivered is True
    assert gateway.sent == [("+15555550101", "Hi")]


def _signature(handler):
    client = httpx.Client(base_url="https://sign.example.test", transport=httpx.MockTransport(handler))
    return HttpSignatureGateway(base_url="https://sign.example.test", client=client)


def test_signature_request_success():
    def handler(request):
        assert request.url.path == "/payment-applications/12/signature-requests"
        assert json.loads(request.content) == {"paymentApplicationId": 12}
        return httpx.Response(200, json={"documentUrl": "https://sign.example.test/d/12.pdf", "envelopeId": "env-12"})

    signature = _signature(handler).request_signature(12)

    assert signature.document_url == "https://sign.example.test/d/12.pdf"
    assert signature.envelope_id == "env-12"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"documentUrl": "https://x"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_signature_failures_raise_gateway_error(response):
    with pytest.raises(GatewayError):
        _signature(lambda request: response).request_signature(1)


def test_signature_network_failure():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError, match="unreachable"):
        _signature(handler).request_signature(1)


def test_disabled_signature_gateway():
    with pytest.raises(GatewayError, match="not configured"):
        DisabledSignatureGateway().request_signature(1)


def test_gateway_factories():
    assert isinstance(build_sms_gateway({"SMS_BACKEND": "log"}), LoggingSmsGateway)
    assert isinstance(build_sms_gateway({}), LoggingSmsGateway)
    with pytest.raises(ValueError):
        build_sms_gateway({"SMS_BACKEND": "carrier-pigeon"})
    with pytest.raises(ValueError):
        build_sms_gateway({"SMS_BACKEND": "twilio"})

    assert isinstance(build_signature_gateway({}), DisabledSignatureGateway)
    gateway = build_signature_gateway({"SIGNATURE_SERVICE_URL": "https://sign.example.test", "SIGNATURE_SERVICE_TOKEN": "t"})
    assert isinstance(gateway, HttpSignatureGateway)
