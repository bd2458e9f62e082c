# Overview: Decision queue; buckets open payment applications and change orders by urgency.

"""
Bucket rules (first match wins):

- urgent:      payment application in submitted for >= urgent_age_days, or a
               pending change order above the high-value threshold or older
               than urgent_age_days
- needsReview: needs_review, younger submitted applications, other pending
               change orders
- readyToPay:  sms_sent with PM verification completed

sms_sent applications still waiting on verification are not actionable and
are left out. Each bucket is sorted by daysOld descending, ties by
(type, id), so a fixed `now` always yields the same queue.

The whole aggregation is all-or-nothing: any failed read raises
AggregationError instead of returning partial counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..exceptions import AggregationError
from ..models import ChangeOrder, PaymentApplication
from ..money import money_to_json, to_decimal
from ..time_utils import days_between, to_utc_z, utcnow
from . import lifecycle_service as lifecycle

logger = logging.getLogger(__name__)

PAYMENT_APPLICATION = "payment_application"
CHANGE_ORDER = "change_order"

URGENT = "urgent"
NEEDS_REVIEW = "needsReview"
READY_TO_PAY = "readyToPay"

QUEUED_PAYMENT_STATUSES = (lifecycle.SUBMITTED, lifecycle.NEEDS_REVIEW, lifecycle.SMS_SENT)


@dataclass(frozen=True)
class QueueItem:
    id: int
    type: str
    reference_number: str
    project_id: int
    project_name: str | None
    contractor_id: int
    contractor_name: str | None
    amount: Decimal
    status: str
    days_old: int
    verification_completed: bool = False

    @property
    def sort_key(self):
        return (-self.days_old, self.type, self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "referenceNumber": self.reference_number,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "contractorId": self.contractor_id,
            "contractorName": self.contractor_name,
            "amount": money_to_json(self.amount),
            "status": self.status,
            "daysOld": self.days_old,
        }


@dataclass
class DecisionQueue:
    generated_at: datetime
    urgent: list[QueueItem] = field(default_factory=list)
    needs_review: list[QueueItem] = field(default_factory=list)
    ready_to_pay: list[QueueItem] = field(default_factory=list)

    @property
    def totals(self) -> dict:
        counts = {
            URGENT: len(self.urgent),
            NEEDS_REVIEW: len(self.needs_review),
            READY_TO_PAY: len(self.ready_to_pay),
        }
        counts["total"] = sum(counts.values())
        return counts

    def to_dict(self) -> dict:
        return {
            URGENT: [i.to_dict() for i in self.urgent],
            NEEDS_REVIEW: [i.to_dict() for i in self.needs_review],
            READY_TO_PAY: [i.to_dict() for i in self.ready_to_pay],
            "totals": self.totals,
            "generatedAt": to_utc_z(self.generated_at),
        }


def classify(item: QueueItem, *, urgent_age_days: int, high_value_threshold: Decimal) -> str | None:
    """Bucket for one item, or None when it is not actionable."""
    if item.type == CHANGE_ORDER:
        if item.amount > high_value_threshold or item.days_old >= urgent_age_days:
            return URGENT
        return NEEDS_REVIEW

    if item.status == lifecycle.SUBMITTED:
        return URGENT if item.days_old >= urgent_age_days else NEEDS_REVIEW
    if item.status == lifecycle.NEEDS_REVIEW:
        return NEEDS_REVIEW
    if item.status == lifecycle.SMS_SENT and item.verification_completed:
        return READY_TO_PAY
    return None


def bucket_items(
    items: list[QueueItem],
    *,
    now: datetime,
    urgent_age_days: int = 3,
    high_value_threshold: Decimal = Decimal("10000"),
) -> DecisionQueue:
    queue = DecisionQueue(generated_at=now)
    buckets = {URGENT: queue.urgent, NEEDS_REVIEW: queue.needs_review, READY_TO_PAY: queue.ready_to_pay}
    for item in items:
        bucket = classify(item, urgent_age_days=urgent_age_days, high_value_threshold=high_value_threshold)
        if bucket is not None:
            buckets[bucket].append(item)
    for bucket in buckets.values():
        bucket.sort(key=lambda i: i.sort_key)
    return queue


class DecisionQueueService:
    def __init__(
        self,
        session,
        *,
        urgent_age_days: int = 3,
        high_value_threshold=Decimal("10000"),
        clock=utcnow,
    ) -> None:
        if urgent_age_days < 0:
            raise ValueError("urgent_age_days must be >= 0")
        self.session = session
        self.urgent_age_days = urgent_age_days
        self.high_value_threshold = to_decimal(high_value_threshold, field="high_value_threshold")
        self.clock = clock

    def _payment_items(self, now: datetime, project_id: int | None) -> list[QueueItem]:
        query = (
            self.session.query(PaymentApplication)
            .options(joinedload(PaymentApplication.project), joinedload(PaymentApplication.contractor))
            .filter(PaymentApplication.status.in_(QUEUED_PAYMENT_STATUSES))
        )
        if project_id is not None:
            query = query.filter(PaymentApplication.project_id == project_id)
        return [
            QueueItem(
                id=app.id,
                type=PAYMENT_APPLICATION,
                reference_number=app.reference_number,
                project_id=app.project_id,
                project_name=app.project.name if app.project else None,
                contractor_id=app.contractor_id,
                contractor_name=app.contractor.name if app.contractor else None,
                amount=to_decimal(app.current_payment),
                status=app.status,
                days_old=days_between(app.payment_period_end or app.created_at, now),
                verification_completed=bool(app.pm_verification_completed),
            )
            for app in query.all()
        ]

    def _change_order_items(self, now: datetime, project_id: int | None) -> list[QueueItem]:
        query = (
            self.session.query(ChangeOrder)
            .options(joinedload(ChangeOrder.project), joinedload(ChangeOrder.contractor))
            .filter(ChangeOrder.status == "pending")
        )
        if project_id is not None:
            query = query.filter(ChangeOrder.project_id == project_id)
        return [
            QueueItem(
                id=co.id,
                type=CHANGE_ORDER,
                reference_number=co.co_number,
                project_id=co.project_id,
                project_name=co.project.name if co.project else None,
                contractor_id=co.contractor_id,
                contractor_name=co.contractor.name if co.contractor else None,
                amount=to_decimal(co.cost_impact),
                status=co.status,
                days_old=days_between(co.created_at, now),
            )
            for co in query.all()
        ]

    def build(self, *, project_id: int | None = None, now: datetime | None = None) -> DecisionQueue:
        now = now or self.clock()
        try:
            items = self._payment_items(now, project_id) + self._change_order_items(now, project_id)
        except SQLAlchemyError as exc:
            logger.exception("Decision queue aggregation failed (project=%s)", project_id)
            raise AggregationError(
                "Failed to load the decision queue; retry shortly",
                {"project_id": project_id},
            ) from exc

        queue = bucket_items(
            items,
            now=now,
            urgent_age_days=self.urgent_age_days,
            high_value_threshold=self.high_value_threshold,
        )
        logger.debug("Decision queue built: %s", queue.totals)
        return queue
