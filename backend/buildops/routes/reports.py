# backend/buildops/routes/reports.py
"""
Report exports.

- GET /api/reports/budget.xlsx   portfolio budget roll-up as an Excel workbook
"""

from io import BytesIO

from flask import Blueprint, request, send_file

from ..decorators import require_auth, require_permission
from ..exceptions import ServiceError
from ..extensions import db
from ..services.budget_service import BudgetRollupService, build_budget_workbook
from ..time_utils import utcnow
from .common import internal_error, service_error_response


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@reports_bp.get("/budget.xlsx")
@require_auth
@require_permission("VIEW_BUDGET")
def budget_workbook_route():
    try:
        portfolio = BudgetRollupService(db.session).portfolio(status=request.args.get("status") or None)
        content = build_budget_workbook(portfolio)
        return send_file(
            BytesIO(content),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=f"budget-{utcnow():%Y%m%d}.xlsx",
        )
    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        return internal_error("Failed to export budget workbook")
