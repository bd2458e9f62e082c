# backend/buildops/routes/change_orders.py
"""
Change Order API Routes

- GET  /api/change-orders?project_id=&status=
- POST /api/change-orders                 create (admin, pm)
- POST /api/change-orders/:id/approve     admin; adds cost impact to the contract
- POST /api/change-orders/:id/reject      admin; requires reason
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..exceptions import ServiceError
from .common import change_order_service, internal_error, json_body, optional_int_arg, service_error_response


change_orders_bp = Blueprint("change_orders", __name__, url_prefix="/api/change-orders")


@change_orders_bp.get("")
@require_auth
@require_permission("VIEW_DECISION_QUEUE")
def list_change_orders_route():
    try:
        items = change_order_service().list_change_orders(
            project_id=optional_int_arg("project_id"),
            status=request.args.get("status") or None,
        )
        return jsonify({"items": [co.to_dict() for co in items], "count": len(items)}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to list change orders")


@change_orders_bp.post("")
@require_auth
def create_change_order_route():
    """
    Request body:
    {
        "project_id": 1,
        "contractor_id": 2,
        "description": "Add two windows on east elevation",
        "cost_impact": 4250.00,
        "schedule_impact_days": 3,          (optional)
        "reason_category": "owner_request"  (optional)
    }
    """
    try:
        co = change_order_service().create(g.caller, json_body())
        return jsonify({"change_order": co.to_dict()}), 201
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to create change order")


@change_orders_bp.post("/<int:co_id>/approve")
@require_auth
def approve_change_order_route(co_id: int):
    try:
        co = change_order_service().approve(co_id, g.caller, comment=json_body().get("comment"))
        return jsonify({"change_order": co.to_dict(), "message": f"Change order {co.co_number} approved"}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to approve change order")


@change_orders_bp.post("/<int:co_id>/reject")
@require_auth
def reject_change_order_route(co_id: int):
    try:
        co = change_order_service().reject(co_id, g.caller, reason=json_body().get("reason"))
        return jsonify({"change_order": co.to_dict(), "message": f"Change order {co.co_number} rejected"}), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to reject change order")
