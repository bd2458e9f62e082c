# backend/buildops/routes/payment_applications.py
"""
Payment Application API Routes

Lifecycle:
- POST /api/payment-applications                    create (submitted)
- POST /api/payment-applications/sms-intake         start SMS intake (sms_sent)
- POST /api/payment-applications/:id/review         submitted -> needs_review
- PATCH /api/payment-applications/:id/progress/:pid PM-verified percent
- POST /api/payment-applications/:id/verify         mark PM verification complete
- POST /api/payment-applications/:id/request-confirmation  needs_review -> sms_sent
- POST /api/payment-applications/:id/contractor-submission sms_sent -> submitted
- POST /api/payment-applications/:id/approve        -> approved
- POST /api/payment-applications/:id/reject         needs_review -> rejected
- POST /api/payment-applications/:id/resubmit       rejected -> submitted
- POST /api/payment-applications/:id/check-ready    approved -> check_ready
- POST /api/payment-applications/:id/quick-approve  admin shortcut
- POST /api/payment-applications/:id/signature      route for e-signature
- DELETE /api/payment-applications/:id
- POST /api/payment-applications/bulk-approve | bulk-delete

Caller identity comes from g.caller; approved_by/rejected_by are never taken
from the request body. Transition routes accept an optional
"expected_status"; a stale value returns 409 so the client refetches.
"""

from flask import Blueprint, request, jsonify, g

from ..exceptions import ServiceError, ValidationError
from ..decorators import require_auth, require_permission
from ..time_utils import parse_iso_date
from .common import (
    document_service,
    internal_error,
    json_body,
    optional_int_arg,
    payment_service,
    service_error_response,
)


payment_applications_bp = Blueprint("payment_applications", __name__, url_prefix="/api/payment-applications")


def _app_response(app, message: str | None = None, status: int = 200):
    body = {"payment_application": app.to_dict(include_progress=True)}
    if message:
        body["message"] = message
    return jsonify(body), status


# =============================================================================
# READS
# =============================================================================

@payment_applications_bp.get("")
@require_auth
@require_permission("VIEW_PAYMENT_APPS")
def list_payment_applications_route():
    """
    Query params: project_id, contractor_id, status (comma-separated),
    limit (default 100, max 500), offset.
    """
    try:
        statuses = [s for s in (request.args.get("status") or "").split(",") if s]
        limit = min(max(optional_int_arg("limit") or 100, 1), 500)
        offset = max(optional_int_arg("offset") or 0, 0)
        items, total = payment_service().list_applications(
            project_id=optional_int_arg("project_id"),
            contractor_id=optional_int_arg("contractor_id"),
            statuses=statuses or None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [a.to_dict() for a in items],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to list payment applications")


@payment_applications_bp.get("/<int:app_id>")
@require_auth
@require_permission("VIEW_PAYMENT_APPS")
def get_payment_application_route(app_id: int):
    try:
        app = payment_service().get(app_id)
        body = app.to_dict(include_progress=True)
        body["approval_log"] = [entry.to_dict() for entry in app.approval_logs]
        return jsonify({"payment_application": body}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to load payment application")


# =============================================================================
# CREATION
# =============================================================================

@payment_applications_bp.post("")
@require_auth
def create_payment_application_route():
    """
    Request body:
    {
        "project_id": 1,
        "contractor_id": 2,
        "line_items": [{"line_item_id": 10, "submitted_percent": 40}],
        "pm_notes": "optional",
        "payment_period_end": "2026-01-31"   (optional, defaults to today)
    }
    """
    try:
        data = json_body()
        try:
            period_end = parse_iso_date(data.get("payment_period_end"))
        except ValueError:
            raise ValidationError("payment_period_end must be a YYYY-MM-DD date")
        if data.get("project_id") is None or data.get("contractor_id") is None:
            raise ValidationError("project_id and contractor_id are required")
        app = payment_service().create_manual(
            g.caller,
            project_id=int(data["project_id"]),
            contractor_id=int(data["contractor_id"]),
            line_items=data.get("line_items"),
            pm_notes=data.get("pm_notes"),
            payment_period_end=period_end,
        )
        return _app_response(app, f"Payment application {app.reference_number} created", 201)
    except ServiceError as e:
        return service_error_response(e)
    except (TypeError, ValueError):
        return jsonify({"error": "project_id and contractor_id must be integers"}), 400
    except Exception:
        return internal_error("Failed to create payment application")


@payment_applications_bp.post("/sms-intake")
@require_auth
def start_sms_intake_route():
    """
    Request body: {"project_id": 1, "contractor_ids": [2, 3]}

    Returns one result per contractor; 200 even when some fail.
    """
    try:
        data = json_body()
        if data.get("project_id") is None:
            raise ValidationError("project_id is required")
        results = payment_service().initiate_sms_intake(
            g.caller,
            project_id=int(data["project_id"]),
            contractor_ids=data.get("contractor_ids"),
        )
        started = sum(1 for r in results if r.ok)
        return jsonify({
            "results": [r.to_dict() for r in results],
            "started": started,
            "failed": len(results) - started,
        }), 200
    except ServiceError as e:
        return service_error_response(e)
    except (TypeError, ValueError):
        return jsonify({"error": "project_id must be an integer"}), 400
    except Exception:
        return internal_error("Failed to start SMS intake")


# =============================================================================
# REVIEW
# =============================================================================

@payment_applications_bp.post("/<int:app_id>/review")
@require_auth
def open_for_review_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().open_for_review(app_id, g.caller, expected_status=data.get("expected_status"))
        return _app_response(app)
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to open payment application for review")


@payment_applications_bp.patch("/<int:app_id>/progress/<int:progress_id>")
@require_auth
def update_progress_route(app_id: int, progress_id: int):
    """
    Request body:
    {
        "pm_verified_percent": 55,
        "adjustment_reason": "optional",
        "verification_photos_count": 3   (optional)
    }
    """
    try:
        data = json_body()
        app = payment_service().update_line_item_progress(
            app_id,
            progress_id,
            g.caller,
            pm_verified_percent=data.get("pm_verified_percent"),
            adjustment_reason=data.get("adjustment_reason"),
            verification_photos_count=data.get("verification_photos_count"),
        )
        return _app_response(app)
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to update line item progress")


@payment_applications_bp.post("/<int:app_id>/verify")
@require_auth
def complete_verification_route(app_id: int):
    try:
        app = payment_service().complete_verification(app_id, g.caller)
        return _app_response(app, "Verification completed")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to complete verification")


@payment_applications_bp.post("/<int:app_id>/request-confirmation")
@require_auth
def request_confirmation_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().request_contractor_confirmation(
            app_id, g.caller, expected_status=data.get("expected_status")
        )
        return _app_response(app, "Confirmation requested from contractor")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to request contractor confirmation")


@payment_applications_bp.post("/<int:app_id>/contractor-submission")
@require_auth
def contractor_submission_route(app_id: int):
    """
    Request body:
    {
        "percents": {"10": 60, "11": 25},
        "photos_uploaded_count": 4,
        "lien_waiver_required": false,
        "notes": "optional"
    }
    """
    try:
        data = json_body()
        app = payment_service().record_contractor_submission(
            app_id,
            g.caller,
            percents=data.get("percents"),
            photos_uploaded_count=data.get("photos_uploaded_count"),
            lien_waiver_required=data.get("lien_waiver_required"),
            notes=data.get("notes"),
            expected_status=data.get("expected_status"),
        )
        return _app_response(app, "Progress submitted")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to record contractor submission")


# =============================================================================
# DECISIONS
# =============================================================================

@payment_applications_bp.post("/<int:app_id>/approve")
@require_auth
def approve_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().approve(
            app_id, g.caller, notes=data.get("notes"), expected_status=data.get("expected_status")
        )
        return _app_response(app, f"Payment application {app.reference_number} approved")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to approve payment application")


@payment_applications_bp.post("/<int:app_id>/quick-approve")
@require_auth
def quick_approve_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().quick_approve(
            app_id, g.caller, notes=data.get("notes"), expected_status=data.get("expected_status")
        )
        return _app_response(app, f"Payment application {app.reference_number} approved")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to quick-approve payment application")


@payment_applications_bp.post("/<int:app_id>/reject")
@require_auth
def reject_route(app_id: int):
    """Request body: {"rejection_notes": "required", "expected_status": "needs_review"}"""
    try:
        data = json_body()
        app = payment_service().reject(
            app_id,
            g.caller,
            rejection_notes=data.get("rejection_notes"),
            expected_status=data.get("expected_status"),
        )
        return _app_response(app, f"Payment application {app.reference_number} rejected")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to reject payment application")


@payment_applications_bp.post("/<int:app_id>/resubmit")
@require_auth
def resubmit_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().resubmit(
            app_id, g.caller, notes=data.get("notes"), expected_status=data.get("expected_status")
        )
        return _app_response(app, f"Payment application {app.reference_number} resubmitted")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to resubmit payment application")


@payment_applications_bp.post("/<int:app_id>/check-ready")
@require_auth
def check_ready_route(app_id: int):
    try:
        data = json_body()
        app = payment_service().mark_check_ready(app_id, g.caller, expected_status=data.get("expected_status"))
        return _app_response(app, f"Payment application {app.reference_number} marked check ready")
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to mark payment application check ready")


@payment_applications_bp.post("/<int:app_id>/signature")
@require_auth
def request_signature_route(app_id: int):
    try:
        document = document_service().request_signature(app_id, g.caller)
        return jsonify({"document": document.to_dict()}), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to request signature")


@payment_applications_bp.delete("/<int:app_id>")
@require_auth
def delete_payment_application_route(app_id: int):
    try:
        payment_service().delete(app_id, g.caller)
        return jsonify({"message": f"Payment application {app_id} deleted"}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to delete payment application")


# =============================================================================
# BULK
# =============================================================================

def _bulk_ids(data: dict) -> list:
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("ids must be a non-empty list")
    return ids


@payment_applications_bp.post("/bulk-approve")
@require_auth
def bulk_approve_route():
    """
    Request body: {"ids": [1, 2, 3], "notes": "optional"}

    Each id is approved in its own transaction; the response lists
    per-item outcomes. Returns 200 even when some items fail.
    """
    try:
        data = json_body()
        result = payment_service().bulk_approve(_bulk_ids(data), g.caller, notes=data.get("notes"))
        return jsonify(result.to_dict()), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Bulk approve failed")


@payment_applications_bp.post("/bulk-delete")
@require_auth
def bulk_delete_route():
    try:
        data = json_body()
        result = payment_service().bulk_delete(_bulk_ids(data), g.caller)
        return jsonify(result.to_dict()), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Bulk delete failed")
