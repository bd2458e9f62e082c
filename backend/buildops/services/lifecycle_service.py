# Overview: Payment-application status state machine; pure rules, no database work.

"""
States and transitions:

    submitted ----open_for_review----> needs_review
    needs_review --request_confirmation--> sms_sent
    sms_sent --contractor_submission--> submitted
    needs_review | sms_sent --approve--> approved    (verification required)
    needs_review --reject--> rejected                (notes required)
    submitted | needs_review | sms_sent --quick_approve--> approved   (admin)
    rejected --resubmit--> submitted
    approved --mark_check_ready--> check_ready

approved and check_ready are frozen: progress edits and deletion are refused.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import ConflictError, ValidationError

SUBMITTED = "submitted"
NEEDS_REVIEW = "needs_review"
SMS_SENT = "sms_sent"
APPROVED = "approved"
REJECTED = "rejected"
CHECK_READY = "check_ready"

STATUSES = (SUBMITTED, NEEDS_REVIEW, SMS_SENT, APPROVED, REJECTED, CHECK_READY)

OPEN_STATUSES = frozenset({SUBMITTED, NEEDS_REVIEW, SMS_SENT})
FROZEN_STATUSES = frozenset({APPROVED, CHECK_READY})
# Statuses whose current_period_value counts as money spent
PAID_STATUSES = (APPROVED, CHECK_READY)


@dataclass(frozen=True)
class Transition:
    action: str
    sources: frozenset
    target: str
    permission: str


TRANSITIONS = {
    t.action: t
    for t in (
        Transition("open_for_review", frozenset({SUBMITTED}), NEEDS_REVIEW, "REVIEW_PAYMENT_APPS"),
        Transition("request_confirmation", frozenset({NEEDS_REVIEW}), SMS_SENT, "REVIEW_PAYMENT_APPS"),
        Transition("contractor_submission", frozenset({SMS_SENT}), SUBMITTED, "SUBMIT_PROGRESS"),
        Transition("approve", frozenset({NEEDS_REVIEW, SMS_SENT}), APPROVED, "APPROVE_PAYMENT_APPS"),
        Transition("reject", frozenset({NEEDS_REVIEW}), REJECTED, "APPROVE_PAYMENT_APPS"),
        Transition("quick_approve", OPEN_STATUSES, APPROVED, "QUICK_APPROVE"),
        Transition("resubmit", frozenset({REJECTED}), SUBMITTED, "RESUBMIT_PAYMENT_APPS"),
        Transition("mark_check_ready", frozenset({APPROVED}), CHECK_READY, "MARK_CHECK_READY"),
    )
}


def allowed_actions(status: str) -> list[str]:
    return sorted(action for action, t in TRANSITIONS.items() if status in t.sources)


def can_transition(status: str, action: str) -> bool:
    t = TRANSITIONS.get(action)
    return bool(t and status in t.sources)


def check_transition(app, action: str, *, expected_status: str | None = None, notes: str | None = None) -> Transition:
    """
    Validate that action may be applied to app right now.

    Raises ConflictError when the caller's expected_status is stale, and
    ValidationError when the transition or its preconditions are not met.
    """
    transition = TRANSITIONS.get(action)
    if transition is None:
        raise ValueError(f"Unknown lifecycle action: {action}")

    details = {
        "id": app.id,
        "from_status": app.status,
        "action": action,
        "to_status": transition.target,
    }

    if expected_status is not None and app.status != expected_status:
        raise ConflictError(
            f"Payment application {app.id} is {app.status}, expected {expected_status}",
            {**details, "expected_status": expected_status},
        )

    if app.status not in transition.sources:
        raise ValidationError(
            f"Cannot {action.replace('_', ' ')} payment application {app.id} in status {app.status}",
            {**details, "allowed_actions": allowed_actions(app.status)},
        )

    if action == "approve" and not app.pm_verification_completed:
        raise ValidationError(
            f"Payment application {app.id} cannot be approved before PM verification is completed",
            details,
        )

    if action == "reject" and not (notes or "").strip():
        raise ValidationError("rejection_notes is required to reject a payment application", details)

    return transition


def ensure_editable(app) -> None:
    if app.status in FROZEN_STATUSES:
        raise ValidationError(
            f"Payment application {app.id} is {app.status}; line items can no longer change",
            {"id": app.id, "status": app.status},
        )


def ensure_deletable(app) -> None:
    if app.status in FROZEN_STATUSES:
        raise ValidationError(
            f"Payment application {app.id} is {app.status} and cannot be deleted",
            {"id": app.id, "status": app.status, "action": "delete"},
        )
