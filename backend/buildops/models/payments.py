from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import ZERO, money_to_json
from ..time_utils import to_iso_date, to_utc_z
from .projects import MONEY, PERCENT


class PaymentApplication(db.Model):
    """
    A contractor's periodic request for payment against a contract.

    current_payment and current_period_value always equal the sum of the
    progress rows' calculated_amount; the lifecycle service recomputes them
    in the same transaction as any progress change. Status moves only through
    conditional updates (see services/concurrency.py).
    """
    __tablename__ = "payment_applications"
    __table_args__ = (
        db.Index("ix_payment_apps_status_period", "status", "payment_period_end"),
        db.Index("ix_payment_apps_project_contractor", "project_id", "contractor_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False)
    contractor_id = db.Column(db.Integer, db.ForeignKey("contractors.id"), nullable=False)

    # submitted, needs_review, sms_sent, approved, rejected, check_ready
    status = db.Column(db.String(16), nullable=False, default="submitted")

    # Dollar amounts
    current_payment = db.Column(MONEY, nullable=False, default=Decimal("0"))
    current_period_value = db.Column(MONEY, nullable=False, default=Decimal("0"))
    previous_payments = db.Column(MONEY, nullable=False, default=Decimal("0"))
    total_contract_amount = db.Column(MONEY, nullable=False, default=Decimal("0"))

    payment_period_end = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)
    rejection_notes = db.Column(db.Text, nullable=True)
    check_ready_at = db.Column(db.DateTime(timezone=True), nullable=True)

    pm_notes = db.Column(db.Text, nullable=True)
    pm_verification_completed = db.Column(db.Boolean, nullable=False, default=False)
    photos_uploaded_count = db.Column(db.Integer, nullable=False, default=0)
    lien_waiver_required = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    project = db.relationship("Project")
    contractor = db.relationship("Contractor")
    progress = db.relationship(
        "LineItemProgress",
        back_populates="payment_app",
        cascade="all, delete-orphan",
        order_by="LineItemProgress.id",
    )
    document = db.relationship(
        "PaymentDocument", back_populates="payment_app", uselist=False, cascade="all, delete-orphan"
    )
    sms_conversation = db.relationship(
        "PaymentSmsConversation", back_populates="payment_app", uselist=False, cascade="all, delete-orphan"
    )
    approval_logs = db.relationship(
        "PaymentApprovalLog",
        back_populates="payment_app",
        cascade="all, delete-orphan",
        order_by="PaymentApprovalLog.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def reference_number(self) -> str:
        return f"PA-{self.id:04d}"

    @property
    def grand_total(self) -> Decimal:
        return (self.previous_payments or ZERO) + (self.current_payment or ZERO)

    @property
    def balance_remaining(self) -> Decimal:
        return (self.total_contract_amount or ZERO) - self.grand_total

    def to_dict(self, *, include_progress: bool = False) -> dict:
        data = {
            "id": self.id,
            "reference_number": self.reference_number,
            "project_id": self.project_id,
            "contractor_id": self.contractor_id,
            "status": self.status,
            "current_payment": money_to_json(self.current_payment),
            "current_period_value": money_to_json(self.current_period_value),
            "previous_payments": money_to_json(self.previous_payments),
            "total_contract_amount": money_to_json(self.total_contract_amount),
            "grand_total": money_to_json(self.grand_total),
            "balance_remaining": money_to_json(self.balance_remaining),
            "payment_period_end": to_iso_date(self.payment_period_end),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
            "approval_notes": self.approval_notes,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejection_notes": self.rejection_notes,
            "check_ready_at": to_utc_z(self.check_ready_at),
            "pm_notes": self.pm_notes,
            "pm_verification_completed": self.pm_verification_completed,
            "photos_uploaded_count": self.photos_uploaded_count,
            "lien_waiver_required": self.lien_waiver_required,
            "version_id": self.version_id,
        }
        if include_progress:
            data["line_items"] = [row.to_dict() for row in self.progress]
            data["document"] = self.document.to_dict() if self.document else None
        return data


class LineItemProgress(db.Model):
    """Per-line-item percent and amount for one payment application."""
    __tablename__ = "payment_line_item_progress"
    __table_args__ = (
        db.UniqueConstraint("payment_app_id", "line_item_id", name="uq_progress_app_line_item"),
        db.CheckConstraint("previous_percent >= 0 AND previous_percent <= 100", name="ck_progress_previous_pct"),
        db.CheckConstraint("submitted_percent >= 0 AND submitted_percent <= 100", name="ck_progress_submitted_pct"),
        db.CheckConstraint(
            "pm_verified_percent IS NULL OR (pm_verified_percent >= 0 AND pm_verified_percent <= 100)",
            name="ck_progress_verified_pct",
        ),
        db.CheckConstraint("this_period_percent >= 0 AND this_period_percent <= 100", name="ck_progress_period_pct"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_app_id = db.Column(db.Integer, db.ForeignKey("payment_applications.id"), nullable=False, index=True)
    line_item_id = db.Column(db.Integer, db.ForeignKey("project_line_items.id"), nullable=False)
    previous_percent = db.Column(PERCENT, nullable=False, default=Decimal("0"))
    submitted_percent = db.Column(PERCENT, nullable=False, default=Decimal("0"))
    pm_verified_percent = db.Column(PERCENT, nullable=True)
    this_period_percent = db.Column(PERCENT, nullable=False, default=Decimal("0"))
    calculated_amount = db.Column(MONEY, nullable=False, default=Decimal("0"))
    verification_photos_count = db.Column(db.Integer, nullable=False, default=0)
    pm_adjustment_reason = db.Column(db.String(500), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payment_app = db.relationship("PaymentApplication", back_populates="progress")
    line_item = db.relationship("LineItem")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_percent(self) -> Decimal:
        """PM-verified percent when present, otherwise what was submitted."""
        if self.pm_verified_percent is not None:
            return self.pm_verified_percent
        return self.submitted_percent

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_app_id": self.payment_app_id,
            "line_item_id": self.line_item_id,
            "description_of_work": self.line_item.description_of_work if self.line_item else None,
            "scheduled_value": money_to_json(self.line_item.scheduled_value) if self.line_item else None,
            "previous_percent": float(self.previous_percent),
            "submitted_percent": float(self.submitted_percent),
            "pm_verified_percent": float(self.pm_verified_percent) if self.pm_verified_percent is not None else None,
            "this_period_percent": float(self.this_period_percent),
            "calculated_amount": money_to_json(self.calculated_amount),
            "verification_photos_count": self.verification_photos_count,
            "pm_adjustment_reason": self.pm_adjustment_reason,
        }


class PaymentDocument(db.Model):
    __tablename__ = "payment_documents"
    __table_args__ = (
        db.UniqueConstraint("payment_app_id", name="uq_payment_documents_app"),
        db.Index("ix_payment_documents_envelope", "envelope_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_app_id = db.Column(db.Integer, db.ForeignKey("payment_applications.id"), nullable=False)
    document_url = db.Column(db.String(1000), nullable=True)
    envelope_id = db.Column(db.String(128), nullable=True)
    # generated, sent_for_signature, signed, declined, voided
    status = db.Column(db.String(32), nullable=False, default="generated")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_app = db.relationship("PaymentApplication", back_populates="document")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_app_id": self.payment_app_id,
            "document_url": self.document_url,
            "envelope_id": self.envelope_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentSmsConversation(db.Model):
    __tablename__ = "payment_sms_conversations"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    payment_app_id = db.Column(db.Integer, db.ForeignKey("payment_applications.id"), nullable=False, unique=True)
    contractor_phone = db.Column(db.String(32), nullable=False)
    # awaiting_start, in_progress, completed
    conversation_state = db.Column(db.String(32), nullable=False, default="awaiting_start")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_app = db.relationship("PaymentApplication", back_populates="sms_conversation")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_app_id": self.payment_app_id,
            "contractor_phone": self.contractor_phone,
            "conversation_state": self.conversation_state,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentApprovalLog(db.Model):
    """Append-only record of every lifecycle transition."""
    __tablename__ = "payment_approval_logs"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    payment_app_id = db.Column(db.Integer, db.ForeignKey("payment_applications.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    performed_by = db.Column(db.Integer, nullable=True)
    performed_role = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment_app = db.relationship("PaymentApplication", back_populates="approval_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_app_id": self.payment_app_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "performed_by": self.performed_by,
            "performed_role": self.performed_role,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
