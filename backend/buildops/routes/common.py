# Overview: Shared helpers for API routes; service construction and error translation.

from __future__ import annotations

from decimal import Decimal

from flask import current_app, jsonify, request

from ..exceptions import ServiceError, ValidationError
from ..extensions import db
from ..integrations import get_signature_gateway, get_sms_gateway
from ..services.change_order_service import ChangeOrderService
from ..services.daily_log_service import DailyLogService
from ..services.decision_queue_service import DecisionQueueService
from ..services.document_service import DocumentService
from ..services.notification_service import NotificationService
from ..services.sms_intake_service import SmsIntakeService


def payment_service() -> SmsIntakeService:
    return SmsIntakeService(db.session, sms_gateway=get_sms_gateway())


def document_service() -> DocumentService:
    return DocumentService(db.session, get_signature_gateway())


def notification_service() -> NotificationService:
    return NotificationService(db.session, get_sms_gateway())


def change_order_service() -> ChangeOrderService:
    return ChangeOrderService(db.session)


def daily_log_service() -> DailyLogService:
    cfg = current_app.config
    return DailyLogService(
        db.session,
        sms_gateway=get_sms_gateway(),
        timezone_name=cfg["DAILY_LOG_TIMEZONE"],
        default_max_retries=cfg["DAILY_LOG_MAX_RETRIES"],
    )


def decision_queue_service() -> DecisionQueueService:
    cfg = current_app.config
    return DecisionQueueService(
        db.session,
        urgent_age_days=cfg["QUEUE_URGENT_AGE_DAYS"],
        high_value_threshold=Decimal(str(cfg["QUEUE_HIGH_VALUE_CHANGE_ORDER"])),
    )


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def optional_int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def service_error_response(e: ServiceError):
    if e.status_code >= 500:
        current_app.logger.warning("%s: %s %s", e.code, e.message, e.details)
    return jsonify(e.to_dict()), e.status_code


def internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500
