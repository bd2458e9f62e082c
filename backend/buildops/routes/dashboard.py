# backend/buildops/routes/dashboard.py
"""
Dashboard API Routes

- GET /api/dashboard/decision-queue        urgent / needsReview / readyToPay buckets
- GET /api/dashboard/budget                portfolio budget roll-up
- GET /api/dashboard/budget/:project_id    single project roll-up

All read-only; clients poll. The queue response carries the configured poll
interval so the UI does not hardcode it.
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_permission
from ..exceptions import ServiceError
from ..extensions import db
from ..services.budget_service import BudgetRollupService
from .common import decision_queue_service, internal_error, optional_int_arg, service_error_response


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/decision-queue")
@require_auth
@require_permission("VIEW_DECISION_QUEUE")
def decision_queue_route():
    """Query params: project_id (optional)."""
    try:
        queue = decision_queue_service().build(project_id=optional_int_arg("project_id"))
        body = queue.to_dict()
        body["pollIntervalSeconds"] = current_app.config["QUEUE_POLL_INTERVAL_SECONDS"]
        return jsonify(body), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to build decision queue")


@dashboard_bp.get("/budget")
@require_auth
@require_permission("VIEW_BUDGET")
def portfolio_budget_route():
    """Query params: status (e.g. "active"; omit for all projects)."""
    try:
        portfolio = BudgetRollupService(db.session).portfolio(status=request.args.get("status") or None)
        return jsonify(portfolio.to_dict()), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to compute budget roll-up")


@dashboard_bp.get("/budget/<int:project_id>")
@require_auth
@require_permission("VIEW_BUDGET")
def project_budget_route(project_id: int):
    try:
        rollup = BudgetRollupService(db.session).project_rollup(project_id)
        return jsonify(rollup.to_dict()), 200
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to compute project budget")
