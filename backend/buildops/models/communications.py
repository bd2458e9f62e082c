from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class DailyLogRequest(db.Model):
    """
    Scheduled SMS asking a PM for the day's site notes.

    pending -> sent -> received, or pending -> failed once retry_count
    reaches max_retries.
    """
    __tablename__ = "daily_log_requests"
    __table_args__ = (
        db.Index("ix_daily_log_requests_due", "request_status", "request_date", "request_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id"), nullable=False, index=True)
    pm_phone_number = db.Column(db.String(32), nullable=False)
    request_date = db.Column(db.Date, nullable=False)
    request_time = db.Column(db.Time, nullable=False)
    request_status = db.Column(db.String(16), nullable=False, default="pending")  # pending, sent, received, failed
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    max_retries = db.Column(db.Integer, nullable=False, default=3)
    last_request_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.String(500), nullable=True)
    received_notes = db.Column(db.Text, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    project = db.relationship("Project")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "pm_phone_number": self.pm_phone_number,
            "request_date": to_iso_date(self.request_date),
            "request_time": self.request_time.strftime("%H:%M") if self.request_time else None,
            "request_status": self.request_status,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "last_request_sent_at": to_utc_z(self.last_request_sent_at),
            "last_error": self.last_error,
            "received_notes": self.received_notes,
            "received_at": to_utc_z(self.received_at),
            "created_at": to_utc_z(self.created_at),
        }


class SmsMessage(db.Model):
    """Outbound SMS with its delivery outcome; status updates arrive by webhook."""
    __tablename__ = "sms_messages"
    __table_args__ = (
        db.Index("ix_sms_messages_provider_id", "provider_id"),
        db.Index("ix_sms_messages_related", "related_type", "related_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    destination = db.Column(db.String(32), nullable=False)
    body = db.Column(db.Text, nullable=False)
    delivered = db.Column(db.Boolean, nullable=False, default=False)
    provider_id = db.Column(db.String(64), nullable=True)
    # queued, sent, delivered, undelivered, failed
    status = db.Column(db.String(16), nullable=False, default="queued")
    error = db.Column(db.String(500), nullable=True)
    related_type = db.Column(db.String(32), nullable=True)
    related_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "destination": self.destination,
            "body": self.body,
            "delivered": self.delivered,
            "provider_id": self.provider_id,
            "status": self.status,
            "error": self.error,
            "related_type": self.related_type,
            "related_id": self.related_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
