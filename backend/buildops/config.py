# backend/buildops/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///buildops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Decision queue tuning
    QUEUE_URGENT_AGE_DAYS = int(os.environ.get("QUEUE_URGENT_AGE_DAYS", "3"))
    QUEUE_HIGH_VALUE_CHANGE_ORDER = os.environ.get("QUEUE_HIGH_VALUE_CHANGE_ORDER", "10000")
    QUEUE_POLL_INTERVAL_SECONDS = int(os.environ.get("QUEUE_POLL_INTERVAL_SECONDS", "30"))

    # "log" writes messages to the application log instead of sending them
    SMS_BACKEND = os.environ.get("SMS_BACKEND", "log")
    TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER = os.environ.get("TWILIO_PHONE_NUMBER")
    TWILIO_API_BASE = os.environ.get("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01")
    # Public URL Twilio posts delivery callbacks to; signatures are computed over it
    TWILIO_STATUS_CALLBACK_URL = os.environ.get("TWILIO_STATUS_CALLBACK_URL")

    # Unset disables e-signature requests
    SIGNATURE_SERVICE_URL = os.environ.get("SIGNATURE_SERVICE_URL")
    SIGNATURE_SERVICE_TOKEN = os.environ.get("SIGNATURE_SERVICE_TOKEN")
    # Bearer token the signature service sends on status webhooks; unset rejects them
    SIGNATURE_WEBHOOK_SECRET = os.environ.get("SIGNATURE_WEBHOOK_SECRET")

    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))

    DAILY_LOG_TIMEZONE = os.environ.get("DAILY_LOG_TIMEZONE", "America/New_York")
    DAILY_LOG_MAX_RETRIES = int(os.environ.get("DAILY_LOG_MAX_RETRIES", "3"))

    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
