from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from buildops.exceptions import AggregationError
from buildops.models import ChangeOrder, PaymentApplication
from buildops.services.decision_queue_service import (
    CHANGE_ORDER,
    PAYMENT_APPLICATION,
    DecisionQueueService,
    QueueItem,
    bucket_items,
)

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _item(id, *, type=PAYMENT_APPLICATION, status="submitted", days_old=0, amount="1000", verified=False):
    return QueueItem(
        id=id,
        type=type,
        reference_number=f"PA-{id:04d}" if type == PAYMENT_APPLICATION else f"CO-{id:03d}",
        project_id=1,
        project_name="Maple Street Residence",
        contractor_id=1,
        contractor_name="Ridgeline Framing",
        amount=Decimal(amount),
        status=status,
        days_old=days_old,
        verification_completed=verified,
    )


# =============================================================================
# BUCKET RULES
# =============================================================================

def test_submitted_applications_become_urgent_at_the_age_threshold():
    queue = bucket_items(
        [_item(1, days_old=3), _item(2, days_old=2)],
        now=NOW,
        urgent_age_days=3,
    )
    assert [i.id for i in queue.urgent] == [1]
    assert [i.id for i in queue.needs_review] == [2]


def test_needs_review_and_ready_to_pay():
    queue = bucket_items(
        [
            _item(1, status="needs_review", days_old=10),
            _item(2, status="sms_sent", verified=True),
            _item(3, status="sms_sent", verified=False),
        ],
        now=NOW,
    )
    assert [i.id for i in queue.needs_review] == [1]
    assert [i.id for i in queue.ready_to_pay] == [2]
    assert queue.totals == {"urgent": 0, "needsReview": 1, "readyToPay": 1, "total": 2}


def test_change_order_urgency_by_value_or_age():
    queue = bucket_items(
        [
            _item(1, type=CHANGE_ORDER, status="pending", amount="25000"),
            _item(2, type=CHANGE_ORDER, status="pending", amount="500", days_old=4),
            _item(3, type=CHANGE_ORDER, status="pending", amount="10000", days_old=1),
        ],
        now=NOW,
        urgent_age_days=3,
        high_value_threshold=Decimal("10000"),
    )
    assert sorted(i.id for i in queue.urgent) == [1, 2]
    # exactly at the threshold is not "above" it
    assert [i.id for i in queue.needs_review] == [3]


def test_buckets_sorted_oldest_first_with_stable_ties():
    queue = bucket_items(
        [
            _item(5, days_old=4),
            _item(2, type=CHANGE_ORDER, status="pending", amount="50000", days_old=4),
            _item(3, days_old=9),
            _item(1, days_old=4),
        ],
        now=NOW,
    )
    assert [(i.type, i.id) for i in queue.urgent] == [
        (PAYMENT_APPLICATION, 3),
        (CHANGE_ORDER, 2),
        (PAYMENT_APPLICATION, 1),
        (PAYMENT_APPLICATION, 5),
    ]


def test_queue_serialization_uses_camel_case():
    queue = bucket_items([_item(1, days_old=5, amount="1234.5")], now=NOW)
    body = queue.to_dict()
    assert set(body) == {"urgent", "needsReview", "readyToPay", "totals", "generatedAt"}
    assert body["generatedAt"] == "2026-03-10T12:00:00Z"
    assert body["urgent"][0] == {
        "id": 1,
        "type": "payment_application",
        "referenceNumber": "PA-0001",
        "projectId": 1,
        "projectName": "Maple Street Residence",
        "contractorId": 1,
        "contractorName": "Ridgeline Framing",
        "amount": 1234.5,
        "status": "submitted",
        "daysOld": 5,
    }


def test_empty_queue():
    queue = bucket_items([], now=NOW)
    assert queue.totals["total"] == 0


# =============================================================================
# SERVICE
# =============================================================================

def _payment_app(db_session, job, *, status, period_end=None, amount="5000", verified=False):
    project, contractor, _, _ = job
    app = PaymentApplication(
        project_id=project.id,
        contractor_id=contractor.id,
        status=status,
        current_payment=Decimal(amount),
        current_period_value=Decimal(amount),
        payment_period_end=period_end,
        pm_verification_completed=verified,
        created_at=NOW - timedelta(days=1),
    )
    db_session.add(app)
    db_session.commit()
    return app


def _change_order(db_session, job, *, number, cost, created_at, status="pending"):
    project, contractor, _, _ = job
    co = ChangeOrder(
        project_id=project.id,
        contractor_id=contractor.id,
        co_number=number,
        description="Extra blocking",
        cost_impact=Decimal(cost),
        status=status,
        created_at=created_at,
    )
    db_session.add(co)
    db_session.commit()
    return co


def test_service_builds_queue_from_database(db_session, job):
    old = _payment_app(db_session, job, status="submitted", period_end=date(2026, 3, 1))
    fresh = _payment_app(db_session, job, status="submitted", period_end=date(2026, 3, 9))
    review = _payment_app(db_session, job, status="needs_review", period_end=date(2026, 3, 9))
    ready = _payment_app(db_session, job, status="sms_sent", period_end=date(2026, 3, 8), verified=True)
    _payment_app(db_session, job, status="sms_sent", verified=False)
    _payment_app(db_session, job, status="approved")
    _payment_app(db_session, job, status="rejected")
    big_co = _change_order(db_session, job, number="CO-001", cost="15000", created_at=NOW)
    _change_order(db_session, job, number="CO-002", cost="15000", created_at=NOW, status="approved")

    queue = DecisionQueueService(db_session).build(now=NOW)

    assert [(i.type, i.id) for i in queue.urgent] == [
        (PAYMENT_APPLICATION, old.id),
        (CHANGE_ORDER, big_co.id),
    ]
    assert [i.id for i in queue.needs_review] == [fresh.id, review.id]
    assert [i.id for i in queue.ready_to_pay] == [ready.id]
    assert queue.urgent[0].days_old == 9
    assert queue.urgent[1].reference_number == "CO-001"


def test_service_falls_back_to_created_at_for_age(db_session, job):
    app = _payment_app(db_session, job, status="submitted", period_end=None)
    app.created_at = NOW - timedelta(days=6, hours=1)
    db_session.commit()

    queue = DecisionQueueService(db_session).build(now=NOW)
    assert queue.urgent[0].id == app.id
    assert queue.urgent[0].days_old == 6


def test_service_filters_by_project(db_session, build, job):
    _payment_app(db_session, job, status="needs_review")
    other_job = build.job(project_name="Harbor Lofts", contractor_name="Clearwater Plumbing", phone="+15555550103")
    _payment_app(db_session, other_job, status="needs_review")

    queue = DecisionQueueService(db_session).build(project_id=other_job[0].id, now=NOW)
    assert queue.totals["total"] == 1
    assert queue.needs_review[0].project_name == "Harbor Lofts"


def test_service_uses_configured_thresholds(db_session, job):
    co = _change_order(db_session, job, number="CO-001", cost="600", created_at=NOW)
    queue = DecisionQueueService(db_session, high_value_threshold="500").build(now=NOW)
    assert [i.id for i in queue.urgent] == [co.id]


def test_service_failure_is_all_or_nothing(db_session, job, monkeypatch):
    _payment_app(db_session, job, status="needs_review")
    service = DecisionQueueService(db_session)

    def boom(now, project_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(service, "_change_order_items", boom)
    with pytest.raises(AggregationError) as exc:
        service.build(now=NOW)
    assert exc.value.status_code == 503


def test_negative_age_threshold_rejected(db_session):
    with pytest.raises(ValueError):
        DecisionQueueService(db_session, urgent_age_days=-1)
