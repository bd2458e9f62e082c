from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_to_json
from ..time_utils import to_utc_z

MONEY = db.Numeric(14, 2)
PERCENT = db.Numeric(5, 2)


class Project(db.Model):
    """
    Construction project.

    budget/spent are stored for display only; the budget roll-up recomputes
    both from contracts and approved payment applications and overwrites
    spent as a cache.
    """
    __tablename__ = "projects"
    __table_args__ = (
        db.Index("ix_projects_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    client_name = db.Column(db.String(200), nullable=True)
    current_phase = db.Column(db.String(100), nullable=True)
    at_risk = db.Column(db.Boolean, nullable=False, default=False)
    budget = db.Column(MONEY, nullable=False, default=Decimal("0"))
    spent = db.Column(MONEY, nullable=False, default=Decimal("0"))
    status = db.Column(db.String(32), nullable=False, default="active")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    contracts = db.relationship("ProjectContractor", back_populates="project", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "client_name": self.client_name,
            "current_phase": self.current_phase,
            "at_risk": self.at_risk,
            "budget": money_to_json(self.budget),
            "spent": money_to_json(self.spent),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Contractor(db.Model):
    __tablename__ = "contractors"
    __table_args__ = (
        db.CheckConstraint(
            "performance_score IS NULL OR (performance_score >= 0 AND performance_score <= 5)",
            name="ck_contractors_performance_score",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    trade = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive, pending
    insurance_status = db.Column(db.String(16), nullable=False, default="valid")  # valid, invalid
    license_status = db.Column(db.String(16), nullable=False, default="valid")  # valid, invalid
    performance_score = db.Column(db.Numeric(3, 2), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    contracts = db.relationship("ProjectContractor", back_populates="contractor", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "trade": self.trade,
            "phone": self.phone,
            "email": self.email,
            "status": self.status,
            "compliance": {
                "insurance": self.insurance_status,
                "license": self.license_status,
            },
            "performance_score": float(self.performance_score) if self.performance_score is not None else None,
        }


class ProjectContractor(db.Model):
    """
    Contract between a project and a contractor.

    paid_to_date is a cache refreshed by the budget roll-up; approved
    payment applications are the source of truth.
    """
    __tablename__ = "project_contractors"
    __table_args__ = (
        db.UniqueConstraint("project_id", "contractor_id", name="uq_project_contractors_pair"),
        db.CheckConstraint("contract_amount >= 0", name="ck_project_contractors_amount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    contractor_id = db.Column(db.Integer, db.ForeignKey("contractors.id"), nullable=False, index=True)
    contract_amount = db.Column(MONEY, nullable=False, default=Decimal("0"))
    original_contract_amount = db.Column(MONEY, nullable=False, default=Decimal("0"))
    paid_to_date = db.Column(MONEY, nullable=False, default=Decimal("0"))
    contract_status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive
    change_orders_pending = db.Column(db.Boolean, nullable=False, default=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    project = db.relationship("Project", back_populates="contracts")
    contractor = db.relationship("Contractor", back_populates="contracts")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "contractor_id": self.contractor_id,
            "contract_amount": money_to_json(self.contract_amount),
            "original_contract_amount": money_to_json(self.original_contract_amount),
            "paid_to_date": money_to_json(self.paid_to_date),
            "contract_status": self.contract_status,
            "change_orders_pending": self.change_orders_pending,
        }


class LineItem(db.Model):
    """
    Scope-of-work entry on a contract (schedule of values row).

    from_previous_application is the percent complete as of the last
    approved payment application; approval rolls it forward.
    """
    __tablename__ = "project_line_items"
    __table_args__ = (
        db.Index("ix_line_items_project_contractor", "project_id", "contractor_id"),
        db.CheckConstraint("scheduled_value >= 0", name="ck_line_items_scheduled_nonneg"),
        db.CheckConstraint(
            "from_previous_application >= 0 AND from_previous_application <= 100",
            name="ck_line_items_previous_pct",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    contractor_id = db.Column(db.Integer, db.ForeignKey("contractors.id"), nullable=False)
    item_no = db.Column(db.String(32), nullable=True)
    description_of_work = db.Column(db.String(500), nullable=False)
    scheduled_value = db.Column(MONEY, nullable=False, default=Decimal("0"))
    from_previous_application = db.Column(PERCENT, nullable=False, default=Decimal("0"))
    percent_completed = db.Column(PERCENT, nullable=False, default=Decimal("0"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "contractor_id": self.contractor_id,
            "item_no": self.item_no,
            "description_of_work": self.description_of_work,
            "scheduled_value": money_to_json(self.scheduled_value),
            "from_previous_application": float(self.from_previous_application),
            "percent_completed": float(self.percent_completed),
        }


class ChangeOrder(db.Model):
    __tablename__ = "change_orders"
    __table_args__ = (
        db.UniqueConstraint("project_id", "co_number", name="uq_change_orders_project_number"),
        db.Index("ix_change_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    contractor_id = db.Column(db.Integer, db.ForeignKey("contractors.id"), nullable=False, index=True)
    co_number = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(1000), nullable=False)
    cost_impact = db.Column(MONEY, nullable=False, default=Decimal("0"))
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, approved, rejected
    schedule_impact_days = db.Column(db.Integer, nullable=True)
    reason_category = db.Column(db.String(32), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.String(1000), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    project = db.relationship("Project")
    contractor = db.relationship("Contractor")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "contractor_id": self.contractor_id,
            "co_number": self.co_number,
            "description": self.description,
            "cost_impact": money_to_json(self.cost_impact),
            "status": self.status,
            "schedule_impact_days": self.schedule_impact_days,
            "reason_category": self.reason_category,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
        }
