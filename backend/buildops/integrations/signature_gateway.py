"""
Document/e-signature gateway.

request_signature() asks the signature service to render the payment
application document and route it for signing. Completion is reported
later through the signature webhook, not by this call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..exceptions import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignatureRequest:
    document_url: str
    envelope_id: str


class SignatureGateway:
    def request_signature(self, payment_app_id: int) -> SignatureRequest:
        raise NotImplementedError


class DisabledSignatureGateway(SignatureGateway):
    """Used when no signature service is configured."""

    def request_signature(self, payment_app_id: int) -> SignatureRequest:
        raise GatewayError(
            "E-signature service is not configured",
            {"payment_app_id": payment_app_id},
        )


class HttpSignatureGateway(SignatureGateway):
    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)

    def request_signature(self, payment_app_id: int) -> SignatureRequest:
        path = f"/payment-applications/{payment_app_id}/signature-requests"
        try:
            resp = self._client.post(path, json={"paymentApplicationId": payment_app_id})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("Signature service rejected app=%s: %s", payment_app_id, exc)
            raise GatewayError(
                f"Signature service returned {exc.response.status_code}",
                {"payment_app_id": payment_app_id},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Signature service unreachable app=%s: %s", payment_app_id, exc)
            raise GatewayError("Signature service unreachable", {"payment_app_id": payment_app_id}) from exc
        except ValueError as exc:
            raise GatewayError("Signature service returned invalid JSON", {"payment_app_id": payment_app_id}) from exc

        document_url = data.get("documentUrl")
        envelope_id = data.get("envelopeId")
        if not document_url or not envelope_id:
            raise GatewayError(
                "Signature service response missing documentUrl or envelopeId",
                {"payment_app_id": payment_app_id},
            )
        logger.info("Signature requested app=%s envelope=%s", payment_app_id, envelope_id)
        return SignatureRequest(document_url=document_url, envelope_id=envelope_id)
