# Overview: Payment-application documents and e-signature routing.

from __future__ import annotations

import logging

from ..exceptions import NotFoundError, ValidationError
from ..integrations.signature_gateway import SignatureGateway
from ..models import PaymentApplication, PaymentDocument
from ..permissions import Caller, require
from ..time_utils import utcnow
from . import lifecycle_service as lifecycle
from .concurrency import atomic

logger = logging.getLogger(__name__)

SIGNATURE_STATUSES = {"sent_for_signature", "signed", "declined", "voided"}


class DocumentService:
    def __init__(self, session, signature_gateway: SignatureGateway, *, clock=utcnow) -> None:
        self.session = session
        self.signature_gateway = signature_gateway
        self.clock = clock

    def request_signature(self, app_id: int, caller: Caller) -> PaymentDocument:
        """
        Generate the payment application document and route it for signature.

        Only approved or check_ready applications can be signed. Gateway
        failures propagate as GatewayError and nothing is stored.
        """
        require(caller, "SEND_FOR_SIGNATURE", resource=f"payment_application:{app_id}")
        app = self.session.get(PaymentApplication, app_id)
        if app is None:
            raise NotFoundError("PaymentApplication", app_id)
        if app.status not in lifecycle.FROZEN_STATUSES:
            raise ValidationError(
                f"Payment application {app.id} must be approved before signature (status {app.status})",
                {"id": app.id, "status": app.status, "action": "request_signature"},
            )
        if app.document is not None and app.document.status in ("sent_for_signature", "signed"):
            raise ValidationError(
                f"Payment application {app.id} already has a document {app.document.status}",
                {"id": app.id, "envelope_id": app.document.envelope_id},
            )

        signature = self.signature_gateway.request_signature(app.id)

        now = self.clock()
        with atomic(self.session):
            document = app.document
            if document is None:
                document = PaymentDocument(payment_app_id=app.id, created_at=now)
                self.session.add(document)
            document.document_url = signature.document_url
            document.envelope_id = signature.envelope_id
            document.status = "sent_for_signature"
            document.updated_at = now

        logger.info("Payment application %s sent for signature envelope=%s", app.id, signature.envelope_id)
        return document

    def record_signature_status(self, envelope_id: str, status: str) -> PaymentDocument:
        """Webhook: the signature service reports envelope progress."""
        if not envelope_id:
            raise ValidationError("envelope_id is required")
        status = (status or "").strip().lower()
        if status not in SIGNATURE_STATUSES:
            raise ValidationError(
                f"Unknown signature status: {status}",
                {"envelope_id": envelope_id, "allowed": sorted(SIGNATURE_STATUSES)},
            )
        document = self.session.query(PaymentDocument).filter_by(envelope_id=envelope_id).first()
        if document is None:
            raise NotFoundError("PaymentDocument", envelope_id)
        with atomic(self.session):
            document.status = status
            document.updated_at = self.clock()
        logger.info("Envelope %s is now %s", envelope_id, status)
        return document
