"""
Outbound SMS gateways.

send_message() never raises for delivery problems: it returns a
DeliveryResult and the caller decides whether a failure aborts the
operation (single-item flows) or is reported per item (batch flows).

Testability: pass an httpx.Client built on httpx.MockTransport to
TwilioSmsGateway instead of letting it create a real client.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    error: str | None = None
    provider_id: str | None = None
    status: str | None = None


class SmsGateway:
    """Interface: send_message(destination, body) -> DeliveryResult."""

    def send_message(self, destination: str, body: str) -> DeliveryResult:
        raise NotImplementedError


class LoggingSmsGateway(SmsGateway):
    """Development backend: writes messages to the log and reports success."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_message(self, destination: str, body: str) -> DeliveryResult:
        self.sent.append((destination, body))
        logger.info("SMS (log backend) to=%s body=%r", destination, body)
        return DeliveryResult(delivered=True, status="logged")


class TwilioSmsGateway(SmsGateway):
    """Twilio Programmable Messaging over its REST API."""

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not (account_sid and auth_token and from_number):
            raise ValueError("Twilio account SID, auth token and phone number are required")
        self.account_sid = account_sid
        self.from_number = from_number
        self._client = client or httpx.Client(
            base_url=api_base.rstrip("/"),
            auth=(account_sid, auth_token),
            timeout=timeout,
        )

    def send_message(self, destination: str, body: str) -> DeliveryResult:
        if not destination:
            return DeliveryResult(delivered=False, error="No destination phone number")

        path = f"/Accounts/{self.account_sid}/Messages.json"
        try:
            resp = self._client.post(path, data={"To": destination, "From": self.from_number, "Body": body})
        except httpx.HTTPError as exc:
            logger.warning("Twilio request failed to=%s: %s", destination, exc)
            return DeliveryResult(delivered=False, error=f"SMS provider unreachable: {exc}")

        if resp.status_code >= 400:
            try:
                message = resp.json().get("message") or resp.text
            except ValueError:
                message = resp.text
            logger.warning("Twilio rejected message to=%s status=%s: %s", destination, resp.status_code, message)
            return DeliveryResult(delivered=False, error=f"SMS provider error {resp.status_code}: {message}")

        data = resp.json()
        logger.info("Twilio accepted message to=%s sid=%s", destination, data.get("sid"))
        return DeliveryResult(delivered=True, provider_id=data.get("sid"), status=data.get("status"))


def twilio_request_signature(auth_token: str, url: str, params: dict) -> str:
    """
    Value Twilio sends in X-Twilio-Signature: base64 HMAC-SHA1 of the full
    callback URL followed by each POST parameter name and value, sorted by name.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")
