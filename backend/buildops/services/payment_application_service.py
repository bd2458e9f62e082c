# Overview: Payment-application lifecycle engine; creation, review, approval and bulk actions.

"""
Payment Application Lifecycle

Every status change goes through _transition(), which:
- checks the caller's expected_status (ConflictError on mismatch)
- checks the state machine and its preconditions (lifecycle_service)
- performs a conditional UPDATE guarded by status and version_id
- appends a PaymentApprovalLog row

Public methods own their transaction (atomic); bulk methods run one
transaction per item and never roll back earlier successes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import NotFoundError, ServiceError, ValidationError
from ..models import (
    Contractor,
    LineItem,
    LineItemProgress,
    PaymentApplication,
    PaymentApprovalLog,
    Project,
    ProjectContractor,
)
from ..money import ZERO, quantize_money
from ..permissions import Caller, require
from ..time_utils import utcnow
from ..validation import validate_percent
from . import lifecycle_service as lifecycle
from .budget_service import BudgetRollupService
from .concurrency import atomic, conditional_update, lock_for_update
from .notification_service import NotificationService, confirmation_message
from .progress_service import recalculate_row, recompute_totals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkItemResult:
    id: int
    ok: bool
    status: str | None = None
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "ok": self.ok, "status": self.status, "error": self.error, "code": self.code}


@dataclass
class BulkResult:
    action: str
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class PaymentApplicationService:
    def __init__(self, session, *, sms_gateway=None, clock=utcnow) -> None:
        self.session = session
        self.sms_gateway = sms_gateway
        self.clock = clock

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, app_id: int, *, for_update: bool = False) -> PaymentApplication:
        query = self.session.query(PaymentApplication).filter(PaymentApplication.id == app_id)
        if for_update:
            query = lock_for_update(query)
        app = query.first()
        if app is None:
            raise NotFoundError("PaymentApplication", app_id)
        return app

    def list_applications(
        self,
        *,
        project_id: int | None = None,
        contractor_id: int | None = None,
        statuses: list[str] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[PaymentApplication], int]:
        query = self.session.query(PaymentApplication)
        if project_id is not None:
            query = query.filter(PaymentApplication.project_id == project_id)
        if contractor_id is not None:
            query = query.filter(PaymentApplication.contractor_id == contractor_id)
        if statuses:
            unknown = sorted(set(statuses) - set(lifecycle.STATUSES))
            if unknown:
                raise ValidationError(f"Unknown status filter: {', '.join(unknown)}")
            query = query.filter(PaymentApplication.status.in_(statuses))
        total = query.count()
        items = (
            query.order_by(PaymentApplication.created_at.desc(), PaymentApplication.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return items, total

    def approved_total(self, project_id: int, contractor_id: int) -> Decimal:
        total = (
            self.session.query(func.sum(PaymentApplication.current_period_value))
            .filter(
                PaymentApplication.project_id == project_id,
                PaymentApplication.contractor_id == contractor_id,
                PaymentApplication.status.in_(lifecycle.PAID_STATUSES),
            )
            .scalar()
        )
        return quantize_money(total or ZERO)

    # =========================================================================
    # CREATION
    # =========================================================================

    def active_contract(self, project_id: int, contractor_id: int) -> ProjectContractor:
        if self.session.get(Project, project_id) is None:
            raise NotFoundError("Project", project_id)
        if self.session.get(Contractor, contractor_id) is None:
            raise NotFoundError("Contractor", contractor_id)
        contract = (
            self.session.query(ProjectContractor)
            .filter_by(project_id=project_id, contractor_id=contractor_id)
            .first()
        )
        if contract is None or contract.contract_status != "active":
            raise ValidationError(
                f"Contractor {contractor_id} has no active contract on project {project_id}",
                {"project_id": project_id, "contractor_id": contractor_id},
            )
        return contract

    def new_application(self, contract: ProjectContractor, *, status: str, payment_period_end: date | None = None):
        now = self.clock()
        return PaymentApplication(
            project_id=contract.project_id,
            contractor_id=contract.contractor_id,
            status=status,
            current_payment=ZERO,
            current_period_value=ZERO,
            previous_payments=self.approved_total(contract.project_id, contract.contractor_id),
            total_contract_amount=quantize_money(contract.contract_amount),
            payment_period_end=payment_period_end or now.date(),
            created_at=now,
            updated_at=now,
        )

    def create_manual(
        self,
        caller: Caller,
        *,
        project_id: int,
        contractor_id: int,
        line_items: list[dict],
        pm_notes: str | None = None,
        payment_period_end: date | None = None,
    ) -> PaymentApplication:
        """
        PM-entered application; starts in submitted.

        line_items: [{"line_item_id": int, "submitted_percent": number}, ...]
        Each percent is cumulative (0-100) and may not drop below the line
        item's percent from the previous application.
        """
        require(caller, "CREATE_PAYMENT_APPS", resource="payment_application")
        contract = self.active_contract(project_id, contractor_id)

        if not isinstance(line_items, list) or not line_items:
            raise ValidationError("At least one line item is required")

        entries: dict[int, Decimal] = {}
        for entry in line_items:
            if not isinstance(entry, dict) or entry.get("line_item_id") is None:
                raise ValidationError("Each line item needs a line_item_id")
            try:
                line_item_id = int(entry["line_item_id"])
            except (TypeError, ValueError):
                raise ValidationError("line_item_id must be an integer")
            if line_item_id in entries:
                raise ValidationError(f"Line item {line_item_id} appears more than once")
            entries[line_item_id] = validate_percent(entry.get("submitted_percent"), field="submitted_percent")

        found = {
            li.id: li
            for li in self.session.query(LineItem).filter(
                LineItem.id.in_(list(entries)),
                LineItem.project_id == project_id,
                LineItem.contractor_id == contractor_id,
            )
        }
        missing = sorted(set(entries) - set(found))
        if missing:
            raise ValidationError(
                f"Line items not on this contract: {', '.join(str(m) for m in missing)}",
                {"line_item_ids": missing},
            )

        app = self.new_application(contract, status=lifecycle.SUBMITTED, payment_period_end=payment_period_end)
        app.pm_notes = pm_notes
        for line_item_id, submitted in entries.items():
            line_item = found[line_item_id]
            previous = line_item.from_previous_application
            if submitted < previous:
                raise ValidationError(
                    f"Line item {line_item_id}: submitted percent {submitted} is below previous {previous}",
                    {"line_item_id": line_item_id},
                )
            row = LineItemProgress(
                line_item=line_item,
                previous_percent=previous,
                submitted_percent=submitted,
            )
            recalculate_row(row, line_item.scheduled_value)
            app.progress.append(row)

        if not any(row.this_period_percent > 0 for row in app.progress):
            raise ValidationError("At least one line item must show progress this period")

        recompute_totals(app)

        with atomic(self.session):
            self.session.add(app)
            self.session.flush()
            self._log(app, "create", None, app.status, caller, pm_notes)

        logger.info(
            "Payment application %s created manually project=%s contractor=%s amount=%s",
            app.id, project_id, contractor_id, app.current_payment,
        )
        return app

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _log(self, app, action, from_status, to_status, caller: Caller, notes=None) -> None:
        self.session.add(
            PaymentApprovalLog(
                payment_app_id=app.id,
                action=action,
                from_status=from_status,
                to_status=to_status,
                performed_by=caller.user_id,
                performed_role=caller.role,
                notes=notes,
                created_at=self.clock(),
            )
        )

    def _transition(
        self,
        app: PaymentApplication,
        action: str,
        caller: Caller,
        *,
        expected_status: str | None = None,
        notes: str | None = None,
        values: dict | None = None,
    ) -> None:
        """Apply one state-machine step inside the caller's transaction."""
        transition = lifecycle.check_transition(app, action, expected_status=expected_status, notes=notes)
        from_status = app.status
        changes = {"status": transition.target, "updated_at": self.clock()}
        changes.update(values or {})
        conditional_update(self.session, app, expected_status=from_status, values=changes)
        self._log(app, action, from_status, transition.target, caller, notes)
        logger.info(
            "Payment application %s: %s -> %s (%s by user=%s role=%s)",
            app.id, from_status, transition.target, action, caller.user_id, caller.role,
        )

    def transition(self, app_id: int, action: str, caller: Caller, **kwargs) -> PaymentApplication:
        """Permission check + single transition in its own transaction."""
        require(caller, lifecycle.TRANSITIONS[action].permission, resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        with atomic(self.session):
            self._transition(app, action, caller, **kwargs)
        return app

    def open_for_review(self, app_id: int, caller: Caller, *, expected_status: str | None = None):
        return self.transition(app_id, "open_for_review", caller, expected_status=expected_status)

    def _roll_forward_line_items(self, app: PaymentApplication) -> None:
        for row in app.progress:
            line_item = row.line_item
            percent = row.effective_percent
            if percent > line_item.from_previous_application:
                line_item.from_previous_application = percent
            if percent > line_item.percent_completed:
                line_item.percent_completed = percent

    def _approve(self, app_id: int, action: str, caller: Caller, *, notes=None, expected_status=None):
        require(caller, lifecycle.TRANSITIONS[action].permission, resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        with atomic(self.session):
            frozen_amount = app.current_payment
            self._transition(
                app,
                action,
                caller,
                expected_status=expected_status,
                notes=notes,
                values={
                    "approved_at": self.clock(),
                    "approved_by": caller.user_id,
                    "approval_notes": notes,
                    "current_payment": frozen_amount,
                    "current_period_value": frozen_amount,
                },
            )
            self._roll_forward_line_items(app)
            BudgetRollupService(self.session).refresh_cached_totals(project_ids=[app.project_id])
        return app

    def approve(self, app_id: int, caller: Caller, *, notes: str | None = None, expected_status: str | None = None):
        return self._approve(app_id, "approve", caller, notes=notes, expected_status=expected_status)

    def quick_approve(self, app_id: int, caller: Caller, *, notes: str | None = None, expected_status: str | None = None):
        """Decision-queue shortcut: approve any open application without verification. Admin only."""
        return self._approve(app_id, "quick_approve", caller, notes=notes, expected_status=expected_status)

    def reject(self, app_id: int, caller: Caller, *, rejection_notes: str | None, expected_status: str | None = None):
        require(caller, lifecycle.TRANSITIONS["reject"].permission, resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        notes = (rejection_notes or "").strip()
        with atomic(self.session):
            self._transition(
                app,
                "reject",
                caller,
                expected_status=expected_status,
                notes=notes,
                values={
                    "rejected_at": self.clock(),
                    "rejected_by": caller.user_id,
                    "rejection_notes": notes,
                },
            )
        return app

    def resubmit(self, app_id: int, caller: Caller, *, notes: str | None = None, expected_status: str | None = None):
        """rejected -> submitted; clears the rejection and any prior verification."""
        return self.transition(
            app_id,
            "resubmit",
            caller,
            expected_status=expected_status,
            notes=notes,
            values={
                "rejected_at": None,
                "rejected_by": None,
                "rejection_notes": None,
                "pm_verification_completed": False,
            },
        )

    def mark_check_ready(self, app_id: int, caller: Caller, *, expected_status: str | None = None):
        return self.transition(
            app_id,
            "mark_check_ready",
            caller,
            expected_status=expected_status,
            values={"check_ready_at": self.clock()},
        )

    def request_contractor_confirmation(self, app_id: int, caller: Caller, *, expected_status: str | None = None):
        """
        needs_review -> sms_sent: text the contractor the reviewed amount.

        The SMS goes out before the status changes; a failed send raises
        GatewayError and leaves the application in needs_review.
        """
        require(caller, lifecycle.TRANSITIONS["request_confirmation"].permission, resource=f"payment_application:{app_id}")
        app = self.get(app_id)
        lifecycle.check_transition(app, "request_confirmation", expected_status=expected_status)
        if self.sms_gateway is None:
            raise ValidationError("No SMS gateway configured")
        phone = app.contractor.phone if app.contractor else None
        if not phone:
            raise ValidationError(
                f"Contractor {app.contractor_id} has no phone number",
                {"id": app.id, "contractor_id": app.contractor_id},
            )

        notifier = NotificationService(self.session, self.sms_gateway, clock=self.clock)
        body = confirmation_message(
            reference=app.reference_number,
            project_name=app.project.name,
            amount=app.current_payment,
        )
        notifier.send_or_raise(phone, body, related_type="payment_application", related_id=app.id)

        with atomic(self.session):
            self._transition(app, "request_confirmation", caller, expected_status=expected_status)
        return app

    # =========================================================================
    # LINE ITEM PROGRESS
    # =========================================================================

    def update_line_item_progress(
        self,
        app_id: int,
        progress_id: int,
        caller: Caller,
        *,
        pm_verified_percent,
        adjustment_reason: str | None = None,
        verification_photos_count: int | None = None,
    ) -> PaymentApplication:
        """
        PM-verified percent for one row. Recomputes the row amount and the
        application totals in the same transaction; clears
        pm_verification_completed so changed figures get re-verified.
        """
        require(caller, "REVIEW_PAYMENT_APPS", resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        lifecycle.ensure_editable(app)

        row = next((r for r in app.progress if r.id == progress_id), None)
        if row is None:
            raise NotFoundError("LineItemProgress", progress_id)

        percent = validate_percent(pm_verified_percent, field="pm_verified_percent")
        if percent < row.previous_percent:
            raise ValidationError(
                f"pm_verified_percent {percent} is below previous percent {row.previous_percent}",
                {"id": app.id, "progress_id": progress_id},
            )
        if verification_photos_count is not None:
            if not isinstance(verification_photos_count, int) or verification_photos_count < 0:
                raise ValidationError("verification_photos_count must be a non-negative integer")

        with atomic(self.session):
            row.pm_verified_percent = percent
            if adjustment_reason is not None:
                row.pm_adjustment_reason = adjustment_reason.strip() or None
            if verification_photos_count is not None:
                row.verification_photos_count = verification_photos_count
            recalculate_row(row, row.line_item.scheduled_value)
            recompute_totals(app, now=self.clock())
            app.pm_verification_completed = False

        logger.info(
            "Payment application %s progress %s verified at %s%% (total now %s)",
            app.id, progress_id, percent, app.current_payment,
        )
        return app

    def complete_verification(self, app_id: int, caller: Caller) -> PaymentApplication:
        """Mark PM verification done; unverified rows accept the submitted percent."""
        require(caller, "REVIEW_PAYMENT_APPS", resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        if app.status not in (lifecycle.NEEDS_REVIEW, lifecycle.SMS_SENT):
            raise ValidationError(
                f"Payment application {app.id} must be under review to verify (status {app.status})",
                {"id": app.id, "status": app.status, "action": "complete_verification"},
            )
        with atomic(self.session):
            for row in app.progress:
                if row.pm_verified_percent is None:
                    row.pm_verified_percent = row.submitted_percent
                recalculate_row(row, row.line_item.scheduled_value)
            recompute_totals(app, now=self.clock())
            app.pm_verification_completed = True
            self._log(app, "complete_verification", app.status, app.status, caller)
        return app

    # =========================================================================
    # DELETION
    # =========================================================================

    def delete(self, app_id: int, caller: Caller) -> None:
        """Delete with cascade to progress, document, conversation and log rows."""
        require(caller, "DELETE_PAYMENT_APPS", resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        lifecycle.ensure_deletable(app)
        with atomic(self.session):
            self.session.delete(app)
        logger.info("Payment application %s deleted by user=%s role=%s", app_id, caller.user_id, caller.role)

    # =========================================================================
    # BULK
    # =========================================================================

    def _bulk(self, action: str, ids, op) -> BulkResult:
        result = BulkResult(action=action)
        seen: set[int] = set()
        for raw_id in ids:
            try:
                app_id = int(raw_id)
            except (TypeError, ValueError):
                result.results.append(BulkItemResult(id=raw_id, ok=False, error="Invalid id", code="VALIDATION_ERROR"))
                continue
            if app_id in seen:
                # one result per submitted id
                result.results.append(
                    BulkItemResult(id=app_id, ok=False, error="Duplicate id in request", code="DUPLICATE")
                )
                continue
            seen.add(app_id)
            try:
                status = op(app_id)
            except ServiceError as exc:
                self.session.rollback()
                result.results.append(BulkItemResult(id=app_id, ok=False, error=exc.message, code=exc.code))
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception("Bulk %s failed for payment application %s", action, app_id)
                result.results.append(BulkItemResult(id=app_id, ok=False, error=str(exc), code="DATABASE_ERROR"))
            else:
                result.results.append(BulkItemResult(id=app_id, ok=True, status=status))
        logger.info("Bulk %s: %s succeeded, %s failed", action, result.succeeded, result.failed)
        return result

    def bulk_approve(self, ids: list[int], caller: Caller, *, notes: str | None = None) -> BulkResult:
        """Quick-approve each id in its own transaction. Admin only."""
        require(caller, "QUICK_APPROVE", resource="payment_application:bulk")
        return self._bulk("approve", ids, lambda app_id: self.quick_approve(app_id, caller, notes=notes).status)

    def bulk_delete(self, ids: list[int], caller: Caller) -> BulkResult:
        require(caller, "DELETE_PAYMENT_APPS", resource="payment_application:bulk")

        def _delete(app_id):
            self.delete(app_id, caller)
            return "deleted"

        return self._bulk("delete", ids, _delete)
