# Overview: Outbound SMS through the configured gateway, with per-message delivery records.

from __future__ import annotations

import logging

from ..exceptions import GatewayError, NotFoundError, ValidationError
from ..integrations.sms_gateway import DeliveryResult, SmsGateway
from ..models import SmsMessage
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

# Provider status callbacks we track; anything else is ignored upstream
DELIVERY_STATUSES = {"queued", "sent", "delivered", "undelivered", "failed"}


def sms_intake_message(*, project_name: str, trade: str | None, contractor_name: str) -> str:
    return (
        f"Payment app for {project_name} - {trade or 'General'} - {contractor_name}. "
        "Ready for some quick questions? Reply YES to start."
    )


def confirmation_message(*, reference: str, project_name: str, amount) -> str:
    return (
        f"{reference} for {project_name} was reviewed: ${amount:,.2f} this period. "
        "Reply YES to confirm or call your PM with questions."
    )


def daily_log_message(*, project_name: str, client_name: str | None) -> str:
    return (
        f"Hi! This is your daily log reminder for project: {project_name} ({client_name or 'N/A'}). "
        "Please reply with your notes for today."
    )


class NotificationService:
    """Sends SMS and records every attempt as an SmsMessage row (not committed here)."""

    def __init__(self, session, gateway: SmsGateway, *, clock=utcnow) -> None:
        self.session = session
        self.gateway = gateway
        self.clock = clock

    def deliver(self, destination: str | None, body: str) -> DeliveryResult:
        if not destination:
            return DeliveryResult(delivered=False, error="No destination phone number")
        result = self.gateway.send_message(destination, body)
        if not result.delivered:
            logger.warning("SMS to %s not delivered: %s", destination, result.error)
        return result

    def record(
        self,
        destination: str | None,
        body: str,
        result: DeliveryResult,
        *,
        related_type: str | None = None,
        related_id: int | None = None,
    ) -> SmsMessage:
        message = SmsMessage(
            destination=destination or "",
            body=body,
            delivered=result.delivered,
            provider_id=result.provider_id,
            status=(result.status or "sent") if result.delivered else "failed",
            error=(result.error or "")[:500] or None,
            related_type=related_type,
            related_id=related_id,
            created_at=self.clock(),
        )
        self.session.add(message)
        return message

    def send(self, destination, body, *, related_type=None, related_id=None) -> DeliveryResult:
        result = self.deliver(destination, body)
        self.record(destination, body, result, related_type=related_type, related_id=related_id)
        return result

    def send_or_raise(self, destination, body, *, related_type=None, related_id=None) -> DeliveryResult:
        """
        Single-item flows: a failed delivery is recorded and committed, then
        surfaced as GatewayError. Call before making other changes in the
        session.
        """
        result = self.send(destination, body, related_type=related_type, related_id=related_id)
        if not result.delivered:
            self.session.commit()
            raise GatewayError(
                f"SMS to {destination or 'unknown number'} failed: {result.error}",
                {"destination": destination, "related_type": related_type, "related_id": related_id},
            )
        return result

    def record_delivery_status(self, provider_id: str, status: str, *, error: str | None = None) -> SmsMessage:
        """Apply a provider status callback. Commits."""
        status = (status or "").lower()
        if status not in DELIVERY_STATUSES:
            raise ValidationError(f"Unknown delivery status: {status}", {"provider_id": provider_id})
        message = self.session.query(SmsMessage).filter_by(provider_id=provider_id).first()
        if message is None:
            raise NotFoundError("SmsMessage", provider_id)
        message.status = status
        message.delivered = status in ("sent", "delivered")
        if error:
            message.error = error[:500]
        message.updated_at = self.clock()
        self.session.commit()
        return message
