"""
Gateway construction and lookup.

Gateways are built once per app from config and stored on app.extensions;
services receive them as constructor arguments.
"""

from __future__ import annotations

from flask import Flask, current_app

from .sms_gateway import (
    DeliveryResult,
    LoggingSmsGateway,
    SmsGateway,
    TwilioSmsGateway,
    twilio_request_signature,
)
from .signature_gateway import DisabledSignatureGateway, HttpSignatureGateway, SignatureGateway, SignatureRequest

SMS_EXTENSION_KEY = "buildops.sms_gateway"
SIGNATURE_EXTENSION_KEY = "buildops.signature_gateway"


def build_sms_gateway(config) -> SmsGateway:
    backend = (config.get("SMS_BACKEND") or "log").lower()
    if backend == "twilio":
        return TwilioSmsGateway(
            account_sid=config.get("TWILIO_ACCOUNT_SID"),
            auth_token=config.get("TWILIO_AUTH_TOKEN"),
            from_number=config.get("TWILIO_PHONE_NUMBER"),
            api_base=config.get("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01"),
            timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 10.0),
        )
    if backend == "log":
        return LoggingSmsGateway()
    raise ValueError(f"Unknown SMS_BACKEND: {backend}")


def build_signature_gateway(config) -> SignatureGateway:
    base_url = config.get("SIGNATURE_SERVICE_URL")
    if not base_url:
        return DisabledSignatureGateway()
    return HttpSignatureGateway(
        base_url=base_url,
        token=config.get("SIGNATURE_SERVICE_TOKEN"),
        timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 10.0),
    )


def init_gateways(app: Flask) -> None:
    app.extensions.setdefault(SMS_EXTENSION_KEY, build_sms_gateway(app.config))
    app.extensions.setdefault(SIGNATURE_EXTENSION_KEY, build_signature_gateway(app.config))


def get_sms_gateway() -> SmsGateway:
    return current_app.extensions[SMS_EXTENSION_KEY]


def get_signature_gateway() -> SignatureGateway:
    return current_app.extensions[SIGNATURE_EXTENSION_KEY]


__all__ = [
    "DeliveryResult", "SmsGateway", "LoggingSmsGateway", "TwilioSmsGateway", "twilio_request_signature",
    "SignatureRequest", "SignatureGateway", "HttpSignatureGateway", "DisabledSignatureGateway",
    "build_sms_gateway", "build_signature_gateway", "init_gateways",
    "get_sms_gateway", "get_signature_gateway",
]
