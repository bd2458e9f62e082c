from decimal import Decimal

import pytest

from buildops.integrations import twilio_request_signature
from buildops.models import ChangeOrder, PaymentApplication, PaymentDocument, SmsMessage


@pytest.fixture
def api(client, headers, pm):
    """POST/GET helpers defaulting to the PM caller."""

    class Api:
        def get(self, path, caller=pm, **kw):
            return client.get(path, headers=headers(caller), **kw)

        def post(self, path, caller=pm, json=None, **kw):
            return client.post(path, headers=headers(caller), json=json if json is not None else {}, **kw)

        def patch(self, path, caller=pm, json=None):
            return client.patch(path, headers=headers(caller), json=json or {})

        def delete(self, path, caller=pm):
            return client.delete(path, headers=headers(caller))

    return Api()


def _create_app(api, job, walls_pct=50, roof_pct=25):
    project, contractor, _, (walls, roof) = job
    resp = api.post("/api/payment-applications", json={
        "project_id": project.id,
        "contractor_id": contractor.id,
        "line_items": [
            {"line_item_id": walls.id, "submitted_percent": walls_pct},
            {"line_item_id": roof.id, "submitted_percent": roof_pct},
        ],
        "payment_period_end": "2026-03-01",
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["payment_application"]


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["status"] == "healthy"


def test_identity_headers_required(client, db_session):
    assert client.get("/api/payment-applications").status_code == 401
    resp = client.get("/api/payment-applications", headers={"X-User-Role": "superuser"})
    assert resp.status_code == 401
    resp = client.get("/api/payment-applications", headers={"X-User-Role": "pm", "X-User-Id": "abc"})
    assert resp.status_code == 401


def test_read_permission_denied_for_unmapped_route(api, db_session, contractor_caller):
    resp = api.get("/api/daily-logs", caller=contractor_caller)
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Permission denied", "required_permission": "MANAGE_DAILY_LOGS"}


def test_create_and_fetch_payment_application(api, job, sms_gateway):
    created = _create_app(api, job)
    assert created["status"] == "submitted"
    assert created["current_payment"] == 40000.0
    assert created["payment_period_end"] == "2026-03-01"
    assert [li["calculated_amount"] for li in created["line_items"]] == [30000.0, 10000.0]

    resp = api.get(f"/api/payment-applications/{created['id']}")
    assert resp.status_code == 200
    body = resp.get_json()["payment_application"]
    assert body["reference_number"] == created["reference_number"]
    assert [entry["action"] for entry in body["approval_log"]] == ["create"]

    listing = api.get("/api/payment-applications?status=submitted").get_json()
    assert listing["count"] == 1
    assert listing["items"][0]["id"] == created["id"]


def test_create_rejects_bad_input(api, job, viewer):
    resp = api.post("/api/payment-applications", json={"project_id": job[0].id})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"

    resp = api.post("/api/payment-applications", json={"project_id": "x", "contractor_id": 1})
    assert resp.status_code == 400

    resp = api.post("/api/payment-applications", caller=viewer, json={
        "project_id": job[0].id, "contractor_id": job[1].id,
        "line_items": [{"line_item_id": job[3][0].id, "submitted_percent": 10}],
    })
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "FORBIDDEN"


def test_unknown_application_returns_404(api, db_session):
    resp = api.get("/api/payment-applications/9999")
    assert resp.status_code == 404
    assert resp.get_json()["details"] == {"resource": "PaymentApplication", "id": 9999}


def test_review_verify_approve_over_http(api, job, sms_gateway):
    created = _create_app(api, job)
    app_id = created["id"]

    stale = api.post(f"/api/payment-applications/{app_id}/review", json={"expected_status": "needs_review"})
    assert stale.status_code == 409
    assert stale.get_json()["code"] == "CONFLICT"

    resp = api.post(f"/api/payment-applications/{app_id}/review", json={"expected_status": "submitted"})
    assert resp.status_code == 200
    assert resp.get_json()["payment_application"]["status"] == "needs_review"

    progress_id = created["line_items"][0]["id"]
    resp = api.patch(
        f"/api/payment-applications/{app_id}/progress/{progress_id}",
        json={"pm_verified_percent": 45, "adjustment_reason": "Site walk"},
    )
    assert resp.status_code == 200
    assert resp.get_json()["payment_application"]["current_payment"] == 37000.0

    resp = api.post(f"/api/payment-applications/{app_id}/approve")
    assert resp.status_code == 400

    assert api.post(f"/api/payment-applications/{app_id}/verify").status_code == 200
    resp = api.post(f"/api/payment-applications/{app_id}/approve", json={"notes": "ok"})
    assert resp.status_code == 200
    body = resp.get_json()["payment_application"]
    assert body["status"] == "approved"
    assert body["approved_by"] == 2

    resp = api.delete(f"/api/payment-applications/{app_id}")
    assert resp.status_code == 400


def test_reject_and_resubmit_over_http(api, job, contractor_caller):
    app_id = _create_app(api, job)["id"]
    api.post(f"/api/payment-applications/{app_id}/review")

    assert api.post(f"/api/payment-applications/{app_id}/reject").status_code == 400
    resp = api.post(f"/api/payment-applications/{app_id}/reject", json={"rejection_notes": "Too high"})
    assert resp.get_json()["payment_application"]["rejection_notes"] == "Too high"

    resp = api.post(f"/api/payment-applications/{app_id}/resubmit", caller=contractor_caller)
    assert resp.status_code == 200
    assert resp.get_json()["payment_application"]["status"] == "submitted"


def test_sms_intake_and_contractor_submission_over_http(api, db_session, job, sms_gateway, contractor_caller):
    project, contractor, _, (walls, roof) = job
    resp = api.post("/api/payment-applications/sms-intake", json={
        "project_id": project.id, "contractor_ids": [contractor.id],
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["started"] == 1
    app_id = body["results"][0]["payment_app_id"]

    resp = api.post(
        f"/api/payment-applications/{app_id}/contractor-submission",
        caller=contractor_caller,
        json={"percents": {str(walls.id): 50, str(roof.id): 25}, "photos_uploaded_count": 2},
    )
    assert resp.status_code == 200
    assert resp.get_json()["payment_application"]["status"] == "submitted"
    assert resp.get_json()["payment_application"]["current_payment"] == 40000.0


def test_request_confirmation_gateway_failure_returns_502(api, job, sms_gateway):
    app_id = _create_app(api, job)["id"]
    api.post(f"/api/payment-applications/{app_id}/review")
    sms_gateway.fail_for.add(job[1].phone)

    resp = api.post(f"/api/payment-applications/{app_id}/request-confirmation")
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "GATEWAY_ERROR"


def test_bulk_approve_is_admin_only(api, db_session, job, admin):
    first = _create_app(api, job)["id"]
    second = _create_app(api, job, walls_pct=60)["id"]

    assert api.post("/api/payment-applications/bulk-approve", json={"ids": [first]}).status_code == 403
    assert api.post("/api/payment-applications/bulk-approve", caller=admin, json={"ids": []}).status_code == 400

    resp = api.post("/api/payment-applications/bulk-approve", caller=admin, json={"ids": [first, second, 777]})
    assert resp.status_code == 200
    body = resp.get_json()
    assert (body["succeeded"], body["failed"]) == (2, 1)
    assert db_session.get(PaymentApplication, first).status == "approved"


def test_bulk_delete(api, db_session, job):
    first = _create_app(api, job)["id"]
    resp = api.post("/api/payment-applications/bulk-delete", json={"ids": [first, 888]})
    assert resp.get_json()["succeeded"] == 1
    assert db_session.get(PaymentApplication, first) is None


SMS_STATUS_URL = "http://localhost/api/webhooks/sms-status"


def _bearer(app):
    return {"Authorization": f"Bearer {app.config['SIGNATURE_WEBHOOK_SECRET']}"}


def _signed_form(app, form, url=SMS_STATUS_URL):
    signature = twilio_request_signature(app.config["TWILIO_AUTH_TOKEN"], url, form)
    return {"X-Twilio-Signature": signature}


def test_signature_and_webhook(api, client, app, db_session, job, admin, signature_gateway):
    app_id = _create_app(api, job)["id"]
    api.post(f"/api/payment-applications/{app_id}/quick-approve", caller=admin)

    resp = api.post(f"/api/payment-applications/{app_id}/signature")
    assert resp.status_code == 201
    envelope_id = resp.get_json()["document"]["envelope_id"]

    resp = client.post(
        "/api/webhooks/signature",
        headers=_bearer(app),
        json={"envelopeId": envelope_id, "status": "signed"},
    )
    assert resp.status_code == 200
    assert resp.get_json()["document"]["status"] == "signed"

    resp = client.post("/api/webhooks/signature", headers=_bearer(app), json={"envelopeId": "nope", "status": "signed"})
    assert resp.status_code == 404


@pytest.mark.parametrize("auth_header", [None, "Bearer wrong-secret", "Basic whsec-test", "Bearer "])
def test_signature_webhook_rejects_unauthenticated_calls(api, client, db_session, job, admin, signature_gateway, auth_header):
    app_id = _create_app(api, job)["id"]
    api.post(f"/api/payment-applications/{app_id}/quick-approve", caller=admin)
    envelope_id = api.post(f"/api/payment-applications/{app_id}/signature").get_json()["document"]["envelope_id"]

    headers = {"Authorization": auth_header} if auth_header else {}
    resp = client.post("/api/webhooks/signature", headers=headers, json={"envelopeId": envelope_id, "status": "signed"})

    assert resp.status_code == 401
    assert db_session.query(PaymentDocument).filter_by(envelope_id=envelope_id).one().status == "sent_for_signature"


def test_signature_webhook_fails_closed_without_secret(client, app, db_session):
    original = app.config["SIGNATURE_WEBHOOK_SECRET"]
    app.config["SIGNATURE_WEBHOOK_SECRET"] = None
    try:
        resp = client.post(
            "/api/webhooks/signature",
            headers={"Authorization": "Bearer anything"},
            json={"envelopeId": "env-1", "status": "signed"},
        )
    finally:
        app.config["SIGNATURE_WEBHOOK_SECRET"] = original
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Webhook not configured"}


def test_sms_status_webhook_accepts_signed_form_posts(api, client, app, db_session, job, sms_gateway):
    project, contractor, _, _ = job
    api.post("/api/payment-applications/sms-intake", json={"project_id": project.id, "contractor_ids": [contractor.id]})
    sid = db_session.query(SmsMessage).one().provider_id

    form = {"MessageSid": sid, "MessageStatus": "delivered"}
    resp = client.post("/api/webhooks/sms-status", headers=_signed_form(app, form), data=form)
    assert resp.status_code == 200
    assert resp.get_json()["message"]["status"] == "delivered"

    form = {"MessageStatus": "delivered"}
    resp = client.post("/api/webhooks/sms-status", headers=_signed_form(app, form), data=form)
    assert resp.status_code == 400


def test_sms_status_webhook_rejects_bad_signatures(api, client, app, db_session, job, sms_gateway):
    project, contractor, _, _ = job
    api.post("/api/payment-applications/sms-intake", json={"project_id": project.id, "contractor_ids": [contractor.id]})
    message = db_session.query(SmsMessage).one()
    form = {"MessageSid": message.provider_id, "MessageStatus": "failed"}

    assert client.post("/api/webhooks/sms-status", data=form).status_code == 401

    # signed for different parameters
    tampered = _signed_form(app, {"MessageSid": message.provider_id, "MessageStatus": "delivered"})
    assert client.post("/api/webhooks/sms-status", headers=tampered, data=form).status_code == 401

    # signed for another URL
    elsewhere = _signed_form(app, form, url="https://evil.example/api/webhooks/sms-status")
    assert client.post("/api/webhooks/sms-status", headers=elsewhere, data=form).status_code == 401

    db_session.expire_all()
    assert db_session.get(SmsMessage, message.id).status == "queued"


def test_decision_queue_endpoint(api, job, app):
    _create_app(api, job)
    resp = api.get("/api/dashboard/decision-queue")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["pollIntervalSeconds"] == app.config["QUEUE_POLL_INTERVAL_SECONDS"]
    assert body["totals"]["total"] == 1
    queued = (body["urgent"] + body["needsReview"])[0]
    assert queued["referenceNumber"].startswith("PA-")
    assert queued["amount"] == 40000.0


def test_budget_endpoints_and_report(api, db_session, job, admin, viewer):
    app_id = _create_app(api, job)["id"]
    api.post(f"/api/payment-applications/{app_id}/quick-approve", caller=admin)

    resp = api.get("/api/dashboard/budget", caller=viewer)
    assert resp.status_code == 200
    totals = resp.get_json()["totals"]
    assert totals["budget"] == 100000.0
    assert totals["spent"] == 40000.0
    assert totals["utilization"] == 40.0

    resp = api.get(f"/api/dashboard/budget/{job[0].id}", caller=viewer)
    assert resp.get_json()["remaining"] == 60000.0
    assert api.get("/api/dashboard/budget/4040", caller=viewer).status_code == 404

    resp = api.get("/api/reports/budget.xlsx", caller=viewer)
    assert resp.status_code == 200
    assert resp.mimetype == "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    assert resp.data[:2] == b"PK"


def test_change_order_routes(api, db_session, job, admin):
    project, contractor, contract, _ = job
    resp = api.post("/api/change-orders", json={
        "project_id": project.id,
        "contractor_id": contractor.id,
        "description": "Add two windows",
        "cost_impact": 4250,
    })
    assert resp.status_code == 201
    co_id = resp.get_json()["change_order"]["id"]

    assert api.post(f"/api/change-orders/{co_id}/approve").status_code == 403
    resp = api.post(f"/api/change-orders/{co_id}/approve", caller=admin, json={"comment": "ok"})
    assert resp.status_code == 200
    assert resp.get_json()["change_order"]["status"] == "approved"
    assert db_session.get(ChangeOrder, co_id).status == "approved"

    listing = api.get(f"/api/change-orders?project_id={project.id}").get_json()
    assert listing["count"] == 1


def test_daily_log_routes(api, job, sms_gateway):
    project = job[0]
    resp = api.post("/api/daily-logs", json={
        "project_id": project.id,
        "pm_phone_number": "+15555550150",
        "request_date": "2026-03-10",
        "request_time": "17:30",
    })
    assert resp.status_code == 201
    assert resp.get_json()["daily_log_request"]["request_status"] == "pending"

    listing = api.get(f"/api/daily-logs?project_id={project.id}").get_json()
    assert listing["count"] == 1

    resp = api.post("/api/daily-logs/responses", json={"phone_number": "+15555550150", "notes": "All good"})
    assert resp.status_code == 404


def test_cors_header_for_allowed_origin(client, db_session):
    resp = client.get("/api/health", headers={"Origin": "http://localhost:3000"})
    assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
    resp = client.get("/api/health", headers={"Origin": "https://evil.example"})
    assert "Access-Control-Allow-Origin" not in resp.headers


def test_money_is_serialized_as_float(api, job):
    created = _create_app(api, job, walls_pct=33.33)
    # 33.33% of 60,000 = 19,998.00; plus 25% of 40,000
    assert created["current_payment"] == float(Decimal("29998.00"))
