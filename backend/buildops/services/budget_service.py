# Overview: Budget roll-up per project and portfolio; the authoritative source for "spent".

"""
Budget roll-up invariants

- budget    = sum(contract_amount) over active contracts of the project
- spent     = sum(current_period_value) over approved and check_ready
              payment applications of the project
- remaining = budget - spent, negative when over budget (never clamped)
- utilization = spent / budget * 100 rounded to one decimal; 0 when budget is 0
- Portfolio figures are sums of the per-project figures, so the two views
  always reconcile.

Project.spent and ProjectContractor.paid_to_date are caches; refresh_cached_totals
overwrites them from the roll-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import AggregationError, NotFoundError
from ..models import PaymentApplication, Project, ProjectContractor
from ..money import ZERO, money_to_json, quantize_money
from .lifecycle_service import PAID_STATUSES

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")


def utilization_percent(spent: Decimal, budget: Decimal) -> Decimal:
    if budget <= 0:
        return Decimal("0.0")
    return (spent / budget * Decimal(100)).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BudgetRollup:
    project_id: int
    project_name: str
    budget: Decimal
    spent: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.budget - self.spent

    @property
    def utilization(self) -> Decimal:
        return utilization_percent(self.spent, self.budget)

    @property
    def over_budget(self) -> bool:
        return self.spent > self.budget

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "budget": money_to_json(self.budget),
            "spent": money_to_json(self.spent),
            "remaining": money_to_json(self.remaining),
            "utilization": float(self.utilization),
            "over_budget": self.over_budget,
        }


@dataclass(frozen=True)
class PortfolioRollup:
    projects: list[BudgetRollup] = field(default_factory=list)

    @property
    def budget(self) -> Decimal:
        return sum((p.budget for p in self.projects), ZERO)

    @property
    def spent(self) -> Decimal:
        return sum((p.spent for p in self.projects), ZERO)

    @property
    def remaining(self) -> Decimal:
        return sum((p.remaining for p in self.projects), ZERO)

    @property
    def utilization(self) -> Decimal:
        return utilization_percent(self.spent, self.budget)

    @property
    def over_budget_count(self) -> int:
        return sum(1 for p in self.projects if p.over_budget)

    def to_dict(self) -> dict:
        return {
            "projects": [p.to_dict() for p in self.projects],
            "totals": {
                "budget": money_to_json(self.budget),
                "spent": money_to_json(self.spent),
                "remaining": money_to_json(self.remaining),
                "utilization": float(self.utilization),
                "over_budget_projects": self.over_budget_count,
                "project_count": len(self.projects),
            },
        }


class BudgetRollupService:
    def __init__(self, session) -> None:
        self.session = session

    def _contract_totals(self, project_ids: list[int]) -> dict[int, Decimal]:
        rows = (
            self.session.query(ProjectContractor.project_id, func.sum(ProjectContractor.contract_amount))
            .filter(
                ProjectContractor.project_id.in_(project_ids),
                ProjectContractor.contract_status == "active",
            )
            .group_by(ProjectContractor.project_id)
            .all()
        )
        return {pid: quantize_money(total or ZERO) for pid, total in rows}

    def _spent_totals(self, project_ids: list[int]) -> dict[int, Decimal]:
        rows = (
            self.session.query(PaymentApplication.project_id, func.sum(PaymentApplication.current_period_value))
            .filter(
                PaymentApplication.project_id.in_(project_ids),
                PaymentApplication.status.in_(PAID_STATUSES),
            )
            .group_by(PaymentApplication.project_id)
            .all()
        )
        return {pid: quantize_money(total or ZERO) for pid, total in rows}

    def _rollups(self, projects: list[Project]) -> list[BudgetRollup]:
        ids = [p.id for p in projects]
        if not ids:
            return []
        budgets = self._contract_totals(ids)
        spent = self._spent_totals(ids)
        return [
            BudgetRollup(
                project_id=p.id,
                project_name=p.name,
                budget=budgets.get(p.id, ZERO),
                spent=spent.get(p.id, ZERO),
            )
            for p in projects
        ]

    def project_rollup(self, project_id: int) -> BudgetRollup:
        try:
            project = self.session.get(Project, project_id)
            if project is None:
                raise NotFoundError("Project", project_id)
            return self._rollups([project])[0]
        except SQLAlchemyError as exc:
            logger.exception("Budget roll-up failed for project %s", project_id)
            raise AggregationError("Failed to compute budget roll-up", {"project_id": project_id}) from exc

    def portfolio(self, *, project_ids: list[int] | None = None, status: str | None = None) -> PortfolioRollup:
        """Roll up every project in scope; status=None means all statuses."""
        try:
            query = self.session.query(Project)
            if project_ids is not None:
                query = query.filter(Project.id.in_(project_ids))
            if status:
                query = query.filter(Project.status == status)
            projects = query.order_by(Project.id).all()
            return PortfolioRollup(projects=self._rollups(projects))
        except SQLAlchemyError as exc:
            logger.exception("Portfolio budget roll-up failed")
            raise AggregationError("Failed to compute portfolio budget roll-up") from exc

    def contractor_paid(self, project_id: int, contractor_id: int) -> Decimal:
        total = (
            self.session.query(func.sum(PaymentApplication.current_period_value))
            .filter(
                PaymentApplication.project_id == project_id,
                PaymentApplication.contractor_id == contractor_id,
                PaymentApplication.status.in_(PAID_STATUSES),
            )
            .scalar()
        )
        return quantize_money(total or ZERO)

    def refresh_cached_totals(self, *, project_ids: list[int] | None = None) -> int:
        """
        Overwrite Project.spent and ProjectContractor.paid_to_date from the
        roll-up. Does not commit; returns the number of projects refreshed.
        """
        query = self.session.query(Project)
        if project_ids is not None:
            query = query.filter(Project.id.in_(project_ids))
        projects = query.all()
        for rollup, project in zip(self._rollups(projects), projects):
            project.spent = rollup.spent
        contracts = self.session.query(ProjectContractor).filter(
            ProjectContractor.project_id.in_([p.id for p in projects])
        )
        for contract in contracts:
            contract.paid_to_date = self.contractor_paid(contract.project_id, contract.contractor_id)
        return len(projects)


def build_budget_workbook(portfolio: PortfolioRollup) -> bytes:
    """Render a portfolio roll-up as an XLSX workbook."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Budget"
    headers = ["Project ID", "Project", "Budget", "Spent", "Remaining", "Utilization %", "Over Budget"]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for p in portfolio.projects:
        ws.append([
            p.project_id,
            p.project_name,
            float(p.budget),
            float(p.spent),
            float(p.remaining),
            float(p.utilization),
            "YES" if p.over_budget else "",
        ])

    ws.append([
        None,
        "TOTAL",
        float(portfolio.budget),
        float(portfolio.spent),
        float(portfolio.remaining),
        float(portfolio.utilization),
        portfolio.over_budget_count or "",
    ])
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    for col in ("C", "D", "E"):
        for cell in ws[col][1:]:
            cell.number_format = "#,##0.00"
    ws.column_dimensions["B"].width = 40

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
