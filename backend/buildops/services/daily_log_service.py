# Overview: Daily-log SMS requests to project managers; scheduling, dispatch with retries, and replies.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import NotFoundError, ValidationError
from ..models import DailyLogRequest, Project
from ..permissions import Caller, require
from ..time_utils import utcnow
from ..validation import DAILY_LOG_REQUEST_POLICY, enforce_rules_daily_log_request, validate_payload
from .concurrency import atomic
from .notification_service import NotificationService, daily_log_message

logger = logging.getLogger(__name__)

PENDING = "pending"
SENT = "sent"
RECEIVED = "received"
FAILED = "failed"


@dataclass
class DispatchSummary:
    sent: int = 0
    failed: int = 0
    retrying: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.failed + self.retrying + self.skipped

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "retrying": self.retrying,
            "skipped": self.skipped,
        }


def _digits(phone: str | None) -> str:
    return "".join(ch for ch in (phone or "") if ch.isdigit())[-10:]


class DailyLogService:
    def __init__(
        self,
        session,
        *,
        sms_gateway=None,
        timezone_name: str = "America/New_York",
        default_max_retries: int = 3,
        clock=utcnow,
    ) -> None:
        self.session = session
        self.sms_gateway = sms_gateway
        self.tz = ZoneInfo(timezone_name)
        self.default_max_retries = default_max_retries
        self.clock = clock

    def list_requests(self, *, project_id: int | None = None, status: str | None = None) -> list[DailyLogRequest]:
        query = self.session.query(DailyLogRequest)
        if project_id is not None:
            query = query.filter(DailyLogRequest.project_id == project_id)
        if status:
            query = query.filter(DailyLogRequest.request_status == status)
        return query.order_by(DailyLogRequest.request_date.desc(), DailyLogRequest.request_time.desc()).all()

    def create(self, caller: Caller, payload: dict) -> DailyLogRequest:
        require(caller, "MANAGE_DAILY_LOGS", resource="daily_log_request")
        patch = validate_payload(
            model=DailyLogRequest, payload=payload, policy=DAILY_LOG_REQUEST_POLICY, partial=False
        )
        enforce_rules_daily_log_request(patch)
        if self.session.get(Project, patch["project_id"]) is None:
            raise NotFoundError("Project", patch["project_id"])
        patch.setdefault("max_retries", self.default_max_retries)

        with atomic(self.session):
            request = DailyLogRequest(
                **patch,
                request_status=PENDING,
                retry_count=0,
                created_by=caller.user_id,
                created_at=self.clock(),
            )
            self.session.add(request)
        logger.info(
            "Daily log request %s scheduled project=%s for %s %s",
            request.id, request.project_id, request.request_date, request.request_time,
        )
        return request

    def _local_now(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def due_requests(self, now: datetime) -> list[DailyLogRequest]:
        """Pending requests scheduled for today (local time) at or before the current minute."""
        local = self._local_now(now)
        current_time = local.time().replace(second=59, microsecond=999999, tzinfo=None)
        return (
            self.session.query(DailyLogRequest)
            .filter(
                DailyLogRequest.request_status == PENDING,
                DailyLogRequest.request_date == local.date(),
                DailyLogRequest.request_time <= current_time,
            )
            .order_by(DailyLogRequest.request_time, DailyLogRequest.id)
            .all()
        )

    def dispatch_due(self, *, now: datetime | None = None) -> DispatchSummary:
        """
        Send every due request, one transaction per request.

        A delivery failure bumps retry_count and leaves the request pending
        for the next run until retry_count reaches max_retries, then marks
        it failed. Requests without a phone number are marked failed and
        counted as skipped.
        """
        if self.sms_gateway is None:
            raise ValidationError("No SMS gateway configured")
        now = now or self.clock()
        notifier = NotificationService(self.session, self.sms_gateway, clock=self.clock)
        summary = DispatchSummary()

        for request in self.due_requests(now):
            try:
                with atomic(self.session):
                    outcome = self._dispatch_one(notifier, request, now)
            except SQLAlchemyError:
                logger.exception("Daily log request %s could not be updated", request.id)
                summary.failed += 1
                continue
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        logger.info("Daily log dispatch: %s", summary.to_dict())
        return summary

    def _dispatch_one(self, notifier: NotificationService, request: DailyLogRequest, now: datetime) -> str:
        if not request.pm_phone_number:
            request.request_status = FAILED
            request.last_error = "No PM phone number"
            return "skipped"

        project = request.project
        body = daily_log_message(
            project_name=project.name if project else f"#{request.project_id}",
            client_name=project.client_name if project else None,
        )
        result = notifier.send(
            request.pm_phone_number, body, related_type="daily_log_request", related_id=request.id
        )
        if result.delivered:
            request.request_status = SENT
            request.last_request_sent_at = now
            request.last_error = None
            return "sent"

        request.retry_count += 1
        request.last_error = (result.error or "Delivery failed")[:500]
        if request.retry_count >= request.max_retries:
            request.request_status = FAILED
            logger.warning("Daily log request %s failed after %s attempts", request.id, request.retry_count)
            return "failed"
        return "retrying"

    def record_response(self, phone_number: str, notes: str) -> DailyLogRequest:
        """Attach a PM's SMS reply to the most recent sent request for that number."""
        if not (notes or "").strip():
            raise ValidationError("notes are required")
        digits = _digits(phone_number)
        if len(digits) < 10:
            raise ValidationError("phone_number must contain at least 10 digits")

        candidates = (
            self.session.query(DailyLogRequest)
            .filter(DailyLogRequest.request_status == SENT)
            .order_by(DailyLogRequest.last_request_sent_at.desc(), DailyLogRequest.id.desc())
            .all()
        )
        request = next((r for r in candidates if _digits(r.pm_phone_number) == digits), None)
        if request is None:
            raise NotFoundError("DailyLogRequest", f"phone:{digits}")

        with atomic(self.session):
            request.request_status = RECEIVED
            request.received_notes = notes.strip()
            request.received_at = self.clock()
        logger.info("Daily log request %s received notes", request.id)
        return request
