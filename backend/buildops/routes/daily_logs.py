# backend/buildops/routes/daily_logs.py
"""
Daily Log Request API Routes

- GET  /api/daily-logs?project_id=&status=
- POST /api/daily-logs              schedule a request (admin, pm)
- POST /api/daily-logs/dispatch     send due requests now (scheduler hook)
- POST /api/daily-logs/responses    PM reply: {"phone_number", "notes"}
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..exceptions import ServiceError
from .common import daily_log_service, internal_error, json_body, optional_int_arg, service_error_response


daily_logs_bp = Blueprint("daily_logs", __name__, url_prefix="/api/daily-logs")


@daily_logs_bp.get("")
@require_auth
@require_permission("MANAGE_DAILY_LOGS")
def list_daily_logs_route():
    try:
        items = daily_log_service().list_requests(
            project_id=optional_int_arg("project_id"),
            status=request.args.get("status") or None,
        )
        return jsonify({"items": [r.to_dict() for r in items], "count": len(items)}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to list daily log requests")


@daily_logs_bp.post("")
@require_auth
def create_daily_log_route():
    """
    Request body:
    {
        "project_id": 1,
        "pm_phone_number": "+15551234567",
        "request_date": "2026-03-02",
        "request_time": "17:30",
        "max_retries": 3   (optional)
    }
    """
    try:
        item = daily_log_service().create(g.caller, json_body())
        return jsonify({"daily_log_request": item.to_dict()}), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to create daily log request")


@daily_logs_bp.post("/dispatch")
@require_auth
@require_permission("MANAGE_DAILY_LOGS")
def dispatch_daily_logs_route():
    try:
        summary = daily_log_service().dispatch_due()
        return jsonify(summary.to_dict()), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Daily log dispatch failed")


@daily_logs_bp.post("/responses")
@require_auth
@require_permission("MANAGE_DAILY_LOGS")
def record_daily_log_response_route():
    try:
        data = json_body()
        item = daily_log_service().record_response(data.get("phone_number"), data.get("notes"))
        return jsonify({"daily_log_request": item.to_dict()}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to record daily log response")
