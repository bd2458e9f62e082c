from types import SimpleNamespace

import pytest

from buildops.exceptions import ConflictError, ValidationError
from buildops.services import lifecycle_service as lifecycle


def _app(status, verified=False):
    return SimpleNamespace(id=7, status=status, pm_verification_completed=verified)


def test_allowed_actions_per_status():
    assert lifecycle.allowed_actions("submitted") == ["open_for_review", "quick_approve"]
    assert lifecycle.allowed_actions("needs_review") == [
        "approve", "quick_approve", "reject", "request_confirmation",
    ]
    assert lifecycle.allowed_actions("sms_sent") == ["approve", "contractor_submission", "quick_approve"]
    assert lifecycle.allowed_actions("rejected") == ["resubmit"]
    assert lifecycle.allowed_actions("approved") == ["mark_check_ready"]
    assert lifecycle.allowed_actions("check_ready") == []


def test_quick_approve_does_not_apply_to_rejected():
    assert not lifecycle.can_transition("rejected", "quick_approve")
    assert lifecycle.can_transition("sms_sent", "quick_approve")


def test_invalid_transition_lists_allowed_actions():
    with pytest.raises(ValidationError) as exc:
        lifecycle.check_transition(_app("approved"), "reject", notes="nope")
    assert exc.value.details["from_status"] == "approved"
    assert exc.value.details["action"] == "reject"
    assert exc.value.details["allowed_actions"] == ["mark_check_ready"]


def test_stale_expected_status_is_a_conflict_before_other_checks():
    with pytest.raises(ConflictError) as exc:
        lifecycle.check_transition(_app("approved"), "approve", expected_status="needs_review")
    assert exc.value.details["expected_status"] == "needs_review"


def test_approve_requires_verification():
    with pytest.raises(ValidationError, match="verification"):
        lifecycle.check_transition(_app("needs_review", verified=False), "approve")

    transition = lifecycle.check_transition(_app("needs_review", verified=True), "approve")
    assert transition.target == "approved"


def test_quick_approve_skips_verification():
    transition = lifecycle.check_transition(_app("submitted", verified=False), "quick_approve")
    assert transition.target == "approved"
    assert transition.permission == "QUICK_APPROVE"


@pytest.mark.parametrize("notes", [None, "", "   "])
def test_reject_requires_notes(notes):
    with pytest.raises(ValidationError, match="rejection_notes"):
        lifecycle.check_transition(_app("needs_review"), "reject", notes=notes)


def test_unknown_action_is_a_programming_error():
    with pytest.raises(ValueError):
        lifecycle.check_transition(_app("submitted"), "teleport")


@pytest.mark.parametrize("status", ["approved", "check_ready"])
def test_frozen_statuses_refuse_edits_and_deletes(status):
    with pytest.raises(ValidationError):
        lifecycle.ensure_editable(_app(status))
    with pytest.raises(ValidationError):
        lifecycle.ensure_deletable(_app(status))


@pytest.mark.parametrize("status", ["submitted", "needs_review", "sms_sent", "rejected"])
def test_open_statuses_allow_edits_and_deletes(status):
    lifecycle.ensure_editable(_app(status))
    lifecycle.ensure_deletable(_app(status))
