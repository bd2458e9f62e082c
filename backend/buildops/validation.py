from __future__ import annotations
from datetime import date, datetime, time

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text, Time
from sqlalchemy.orm import DeclarativeMeta

from .exceptions import ValidationError
from .money import quantize_percent, to_decimal
from .time_utils import parse_iso_date, parse_iso_datetime


# $999,999,999.99 fits Numeric(14, 2)
MAX_AMOUNT = Decimal("999999999.99")
MAX_SCHEDULE_IMPACT_DAYS = 3650

CHANGE_ORDER_REASONS = {"owner_request", "design_change", "field_condition", "code_requirement", "other"}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Numeric):
        try:
            amount = to_decimal(value, field=col.key)
        except ValueError as exc:
            raise ValidationError(str(exc))
        if not amount.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        return amount

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # DateTime before Date: neither subclasses the other, but keep the order explicit
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            if d is None:
                raise ValidationError(f"{col.key} must be a YYYY-MM-DD date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, Time):
        if isinstance(value, time):
            return value
        if isinstance(value, str):
            try:
                return time.fromisoformat(value.strip())
            except ValueError:
                raise ValidationError(f"{col.key} must be an HH:MM time")
        raise ValidationError(f"{col.key} must be a time")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {"missing": missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


CHANGE_ORDER_POLICY = ModelValidationPolicy(
    writable_fields={
        "project_id", "contractor_id", "description", "cost_impact",
        "schedule_impact_days", "reason_category",
    },
    required_on_create={"project_id", "contractor_id", "description", "cost_impact"},
)

DAILY_LOG_REQUEST_POLICY = ModelValidationPolicy(
    writable_fields={"project_id", "pm_phone_number", "request_date", "request_time", "max_retries"},
    required_on_create={"project_id", "pm_phone_number", "request_date", "request_time"},
)


def enforce_rules_change_order(patch: dict) -> None:
    cost = patch.get("cost_impact")
    if cost is not None and abs(cost) > MAX_AMOUNT:
        raise ValidationError(f"cost_impact cannot exceed {MAX_AMOUNT:,}")

    days = patch.get("schedule_impact_days")
    if days is not None and not (0 <= days <= MAX_SCHEDULE_IMPACT_DAYS):
        raise ValidationError(f"schedule_impact_days must be between 0 and {MAX_SCHEDULE_IMPACT_DAYS}")

    reason = patch.get("reason_category")
    if reason is not None and reason not in CHANGE_ORDER_REASONS:
        raise ValidationError(
            f"reason_category must be one of: {', '.join(sorted(CHANGE_ORDER_REASONS))}"
        )


def enforce_rules_daily_log_request(patch: dict) -> None:
    phone = patch.get("pm_phone_number")
    if phone is not None:
        digits = "".join(ch for ch in phone if ch.isdigit())
        if len(digits) < 10:
            raise ValidationError("pm_phone_number must contain at least 10 digits")

    retries = patch.get("max_retries")
    if retries is not None and not (0 <= retries <= 10):
        raise ValidationError("max_retries must be between 0 and 10")


def validate_percent(value: Any, *, field: str) -> Decimal:
    """Percent input for progress rows: numeric, finite, within 0..100, rounded to 0.01."""
    if value is None or value == "":
        raise ValidationError(f"{field} is required")
    try:
        pct = to_decimal(value, field=field)
    except ValueError as exc:
        raise ValidationError(str(exc))
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100", {"field": field, "value": str(value)})
    return quantize_percent(pct)
