# Overview: Contractor SMS intake; starts sms_sent applications and records contractor-reported progress.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import GatewayError, ServiceError, ValidationError
from ..models import Contractor, LineItem, LineItemProgress, PaymentSmsConversation, Project
from ..money import ZERO
from ..permissions import Caller, require
from ..validation import validate_percent
from . import lifecycle_service as lifecycle
from .concurrency import atomic
from .notification_service import NotificationService, sms_intake_message
from .payment_application_service import PaymentApplicationService
from .progress_service import recalculate_row, recompute_totals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntakeResult:
    contractor_id: int
    ok: bool
    payment_app_id: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "contractor_id": self.contractor_id,
            "ok": self.ok,
            "payment_app_id": self.payment_app_id,
            "error": self.error,
        }


class SmsIntakeService(PaymentApplicationService):
    """
    Pay cycles started by text message.

    initiate_sms_intake() creates one sms_sent application per contractor
    and texts the contractor; record_contractor_submission() stores the
    percents the contractor reported and moves the application to submitted.
    """

    def initiate_sms_intake(self, caller: Caller, *, project_id: int, contractor_ids: list[int]) -> list[IntakeResult]:
        require(caller, "CREATE_PAYMENT_APPS", resource=f"project:{project_id}")
        if not isinstance(contractor_ids, list) or not contractor_ids:
            raise ValidationError("contractor_ids must be a non-empty list")
        if self.sms_gateway is None:
            raise ValidationError("No SMS gateway configured")

        results = []
        for contractor_id in dict.fromkeys(contractor_ids):
            try:
                app_id = self._start_intake(caller, project_id, int(contractor_id))
            except ServiceError as exc:
                self.session.rollback()
                results.append(IntakeResult(contractor_id=contractor_id, ok=False, error=exc.message))
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.exception("SMS intake failed for contractor %s on project %s", contractor_id, project_id)
                results.append(IntakeResult(contractor_id=contractor_id, ok=False, error=str(exc)))
            except (TypeError, ValueError):
                results.append(IntakeResult(contractor_id=contractor_id, ok=False, error="Invalid contractor id"))
            else:
                results.append(IntakeResult(contractor_id=contractor_id, ok=True, payment_app_id=app_id))

        sent = sum(1 for r in results if r.ok)
        logger.info("SMS intake for project %s: %s started, %s failed", project_id, sent, len(results) - sent)
        return results

    def _start_intake(self, caller: Caller, project_id: int, contractor_id: int) -> int:
        contract = self.active_contract(project_id, contractor_id)
        if contract.contract_amount is None or contract.contract_amount <= 0:
            raise ValidationError(f"Contract for contractor {contractor_id} has no contract amount")

        contractor = self.session.get(Contractor, contractor_id)
        project = self.session.get(Project, project_id)
        if not contractor.phone:
            raise ValidationError(f"Contractor {contractor_id} has no phone number")

        line_items = (
            self.session.query(LineItem)
            .filter_by(project_id=project_id, contractor_id=contractor_id)
            .order_by(LineItem.id)
            .all()
        )
        if not line_items:
            raise ValidationError(f"Contractor {contractor_id} has no line items on project {project_id}")

        notifier = NotificationService(self.session, self.sms_gateway, clock=self.clock)
        phone = contractor.phone
        body = sms_intake_message(project_name=project.name, trade=contractor.trade, contractor_name=contractor.name)
        result = None
        try:
            with atomic(self.session):
                # the application is flushed before the text goes out and
                # rolled back if the send fails
                app = self.new_application(contract, status=lifecycle.SMS_SENT)
                for line_item in line_items:
                    app.progress.append(
                        LineItemProgress(
                            line_item=line_item,
                            previous_percent=line_item.from_previous_application,
                            submitted_percent=line_item.from_previous_application,
                            this_period_percent=ZERO,
                            calculated_amount=ZERO,
                        )
                    )
                app.sms_conversation = PaymentSmsConversation(
                    contractor_phone=phone,
                    conversation_state="awaiting_start",
                    created_at=self.clock(),
                )
                self.session.add(app)
                self.session.flush()
                self._log(app, "sms_intake", None, app.status, caller)

                result = notifier.deliver(phone, body)
                if not result.delivered:
                    raise GatewayError(
                        f"SMS to contractor {contractor_id} failed: {result.error}",
                        {"contractor_id": contractor_id},
                    )
                notifier.record(phone, body, result, related_type="payment_application", related_id=app.id)
                app_id = app.id
        except GatewayError:
            if result is None:
                raise
            with atomic(self.session):
                notifier.record(phone, body, result, related_type="payment_application")
            raise

        logger.info("SMS intake started: payment application %s for contractor %s", app_id, contractor_id)
        return app_id

    def record_contractor_submission(
        self,
        app_id: int,
        caller: Caller,
        *,
        percents: dict,
        photos_uploaded_count: int | None = None,
        lien_waiver_required: bool | None = None,
        notes: str | None = None,
        expected_status: str | None = None,
    ):
        """
        Store contractor-reported cumulative percents ({line_item_id: percent})
        and move sms_sent -> submitted. Line items not mentioned keep their
        current percent.
        """
        require(caller, lifecycle.TRANSITIONS["contractor_submission"].permission, resource=f"payment_application:{app_id}")
        app = self.get(app_id, for_update=True)
        lifecycle.check_transition(app, "contractor_submission", expected_status=expected_status)

        if not isinstance(percents, dict) or not percents:
            raise ValidationError("percents must map line_item_id to percent")
        rows = {row.line_item_id: row for row in app.progress}
        updates = {}
        for raw_id, raw_pct in percents.items():
            try:
                line_item_id = int(raw_id)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid line_item_id: {raw_id}")
            if line_item_id not in rows:
                raise ValidationError(
                    f"Line item {line_item_id} is not part of payment application {app.id}",
                    {"id": app.id, "line_item_id": line_item_id},
                )
            pct = validate_percent(raw_pct, field="submitted_percent")
            if pct < rows[line_item_id].previous_percent:
                raise ValidationError(
                    f"Line item {line_item_id}: {pct}% is below the previous {rows[line_item_id].previous_percent}%",
                    {"id": app.id, "line_item_id": line_item_id},
                )
            updates[line_item_id] = pct

        if photos_uploaded_count is not None and (
            not isinstance(photos_uploaded_count, int) or photos_uploaded_count < 0
        ):
            raise ValidationError("photos_uploaded_count must be a non-negative integer")

        with atomic(self.session):
            for line_item_id, pct in updates.items():
                row = rows[line_item_id]
                row.submitted_percent = pct
                row.pm_verified_percent = None
                recalculate_row(row, row.line_item.scheduled_value)
            recompute_totals(app)
            if app.sms_conversation is not None:
                app.sms_conversation.conversation_state = "completed"
                app.sms_conversation.updated_at = self.clock()
            values = {
                "current_payment": app.current_payment,
                "current_period_value": app.current_period_value,
                "pm_verification_completed": False,
            }
            if photos_uploaded_count is not None:
                values["photos_uploaded_count"] = photos_uploaded_count
            if lien_waiver_required is not None:
                values["lien_waiver_required"] = bool(lien_waiver_required)
            self._transition(app, "contractor_submission", caller, expected_status=expected_status, notes=notes, values=values)
        return app
