# backend/buildops/routes/webhooks.py
"""
Inbound callbacks from external services.

- POST /api/webhooks/signature   {"envelopeId", "status"}
- POST /api/webhooks/sms-status  Twilio status callback (form or JSON):
                                 MessageSid, MessageStatus, ErrorMessage

Callers are services, not users, so there is no caller role here. The
signature webhook needs "Authorization: Bearer <SIGNATURE_WEBHOOK_SECRET>";
the SMS webhook needs a valid X-Twilio-Signature. Both return 401 otherwise.
"""

from flask import Blueprint, request, jsonify

from ..decorators import require_twilio_signature, require_webhook_token
from ..exceptions import ServiceError, ValidationError
from .common import document_service, internal_error, json_body, notification_service, service_error_response


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/signature")
@require_webhook_token("SIGNATURE_WEBHOOK_SECRET")
def signature_webhook_route():
    try:
        data = json_body()
        document = document_service().record_signature_status(data.get("envelopeId"), data.get("status"))
        return jsonify({"document": document.to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to process signature webhook")


@webhooks_bp.post("/sms-status")
@require_twilio_signature
def sms_status_webhook_route():
    try:
        data = request.form.to_dict() if request.form else json_body()
        sid = data.get("MessageSid")
        if not sid:
            raise ValidationError("MessageSid is required")
        message = notification_service().record_delivery_status(
            sid, data.get("MessageStatus"), error=data.get("ErrorMessage")
        )
        return jsonify({"message": message.to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to process SMS status webhook")
