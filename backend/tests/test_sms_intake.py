from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from buildops.exceptions import ConflictError, ForbiddenError, ValidationError
from buildops.integrations import DeliveryResult
from buildops.models import PaymentApplication, PaymentApprovalLog, SmsMessage
from buildops.services.sms_intake_service import SmsIntakeService


@pytest.fixture
def service(db_session, sms_gateway, clock):
    return SmsIntakeService(db_session, sms_gateway=sms_gateway, clock=clock)


def _start(service, caller, job):
    project, contractor, _, _ = job
    [result] = service.initiate_sms_intake(caller, project_id=project.id, contractor_ids=[contractor.id])
    assert result.ok, result.error
    return service.get(result.payment_app_id)


def test_intake_creates_sms_sent_application(db_session, service, sms_gateway, pm, job):
    project, contractor, _, (walls, roof) = job
    app = _start(service, pm, job)

    assert app.status == "sms_sent"
    assert app.current_payment == Decimal("0.00")
    assert app.total_contract_amount == Decimal("100000.00")
    assert [row.line_item_id for row in app.progress] == [walls.id, roof.id]
    assert all(row.submitted_percent == row.previous_percent for row in app.progress)
    assert app.sms_conversation.conversation_state == "awaiting_start"
    assert app.sms_conversation.contractor_phone == "+15555550101"

    destination, body = sms_gateway.sent[-1]
    assert destination == "+15555550101"
    assert body.startswith("Payment app for Maple Street Residence - Framing - Ridgeline Framing.")

    message = db_session.query(SmsMessage).one()
    assert message.related_id == app.id
    assert message.delivered is True

    log = db_session.query(PaymentApprovalLog).filter_by(payment_app_id=app.id).one()
    assert log.action == "sms_intake"


def test_intake_reports_per_contractor_failures(db_session, build, service, pm, job):
    project, contractor, _, _ = job
    silent = build.contractor(name="No Phone Co", phone=None)
    build.contract(project, silent, amount="20000")
    build.line_item(project, silent, "Cleanup", "20000")

    results = service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[contractor.id, silent.id])

    assert [r.ok for r in results] == [True, False]
    assert "phone" in results[1].error
    assert db_session.query(PaymentApplication).count() == 1


def test_intake_delivery_failure_creates_no_application(db_session, service, sms_gateway, pm, job):
    project, contractor, _, _ = job
    sms_gateway.fail_for.add(contractor.phone)

    [result] = service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[contractor.id])

    assert result.ok is False
    assert "carrier rejected" in result.error
    assert db_session.query(PaymentApplication).count() == 0
    message = db_session.query(SmsMessage).one()
    assert message.status == "failed"


def test_intake_application_exists_before_text_goes_out(db_session, clock, pm, job):
    project, contractor, _, _ = job
    seen = []

    class Inspecting:
        def send_message(self, destination, body):
            seen.append(db_session.query(PaymentApplication).filter_by(status="sms_sent").count())
            return DeliveryResult(delivered=True, provider_id="SM9000", status="queued")

    service = SmsIntakeService(db_session, sms_gateway=Inspecting(), clock=clock)
    [result] = service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[contractor.id])

    assert result.ok
    assert seen == [1]


def test_intake_database_failure_sends_nothing(db_session, service, sms_gateway, pm, job, monkeypatch):
    project, contractor, _, _ = job

    def broken_log(*args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(service, "_log", broken_log)
    [result] = service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[contractor.id])

    assert result.ok is False
    assert sms_gateway.sent == []
    assert db_session.query(PaymentApplication).count() == 0
    assert db_session.query(SmsMessage).count() == 0


def test_intake_requires_line_items_and_contract_amount(build, service, pm):
    project = build.project()
    no_items = build.contractor(name="Empty Scope", phone="+15555550111")
    build.contract(project, no_items, amount="1000")
    zero = build.contractor(name="Zero Contract", phone="+15555550112")
    build.contract(project, zero, amount="0")
    build.line_item(project, zero, "Nothing", "0")

    results = service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[no_items.id, zero.id])

    assert [r.ok for r in results] == [False, False]
    assert "line items" in results[0].error
    assert "contract amount" in results[1].error


def test_intake_input_validation(service, pm, viewer, job):
    project = job[0]
    with pytest.raises(ValidationError):
        service.initiate_sms_intake(pm, project_id=project.id, contractor_ids=[])
    with pytest.raises(ForbiddenError):
        service.initiate_sms_intake(viewer, project_id=project.id, contractor_ids=[job[1].id])


def test_contractor_submission_moves_to_submitted(db_session, service, pm, contractor_caller, job):
    _, _, _, (walls, roof) = job
    app = _start(service, pm, job)

    service.record_contractor_submission(
        app.id,
        contractor_caller,
        percents={str(walls.id): 50, str(roof.id): 25},
        photos_uploaded_count=4,
        lien_waiver_required=True,
        expected_status="sms_sent",
    )

    assert app.status == "submitted"
    assert app.current_payment == Decimal("40000.00")
    assert app.current_period_value == Decimal("40000.00")
    assert app.photos_uploaded_count == 4
    assert app.lien_waiver_required is True
    assert app.pm_verification_completed is False
    assert app.sms_conversation.conversation_state == "completed"

    actions = [log.action for log in app.approval_logs]
    assert actions == ["sms_intake", "contractor_submission"]


def test_contractor_submission_keeps_unmentioned_rows(service, pm, contractor_caller, job):
    _, _, _, (walls, roof) = job
    app = _start(service, pm, job)

    service.record_contractor_submission(app.id, contractor_caller, percents={walls.id: 10})

    rows = {row.line_item_id: row for row in app.progress}
    assert rows[walls.id].submitted_percent == Decimal("10")
    assert rows[roof.id].submitted_percent == Decimal("0")
    assert app.current_payment == Decimal("6000.00")


def test_contractor_submission_validation(service, pm, contractor_caller, job):
    app = _start(service, pm, job)

    with pytest.raises(ValidationError):
        service.record_contractor_submission(app.id, contractor_caller, percents={})
    with pytest.raises(ValidationError, match="not part of"):
        service.record_contractor_submission(app.id, contractor_caller, percents={999999: 10})
    with pytest.raises(ValidationError):
        service.record_contractor_submission(app.id, contractor_caller, percents={job[3][0].id: 140})
    with pytest.raises(ConflictError):
        service.record_contractor_submission(
            app.id, contractor_caller, percents={job[3][0].id: 10}, expected_status="needs_review"
        )


def test_contractor_submission_only_from_sms_sent(service, pm, contractor_caller, job):
    app = _start(service, pm, job)
    service.record_contractor_submission(app.id, contractor_caller, percents={job[3][0].id: 10})

    with pytest.raises(ValidationError):
        service.record_contractor_submission(app.id, contractor_caller, percents={job[3][0].id: 20})
