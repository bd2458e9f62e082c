"""
Pytest fixtures for buildops backend tests.

Provides the app with an in-memory database, a per-test clean session,
a scriptable SMS gateway, and builders for projects/contracts/line items.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from buildops import create_app
from buildops.extensions import db
from buildops.integrations import SMS_EXTENSION_KEY, SIGNATURE_EXTENSION_KEY
from buildops.integrations.sms_gateway import DeliveryResult, SmsGateway
from buildops.integrations.signature_gateway import SignatureGateway, SignatureRequest
from buildops.models import Contractor, LineItem, Project, ProjectContractor
from buildops.permissions import Caller


FIXED_NOW = datetime(2026, 3, 10, 15, 0, 0)
WEBHOOK_SECRET = "whsec-test"
TWILIO_AUTH_TOKEN = "twilio-test-token"


class FakeSmsGateway(SmsGateway):
    """Records every message; numbers in fail_for are reported undelivered."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self._next_sid = 1

    def send_message(self, destination, body):
        self.sent.append((destination, body))
        if destination in self.fail_for:
            return DeliveryResult(delivered=False, error="carrier rejected")
        sid = f"SM{self._next_sid:04d}"
        self._next_sid += 1
        return DeliveryResult(delivered=True, provider_id=sid, status="queued")


class FakeSignatureGateway(SignatureGateway):
    def __init__(self):
        self.requested = []

    def request_signature(self, payment_app_id):
        self.requested.append(payment_app_id)
        return SignatureRequest(
            document_url=f"https://docs.example.test/pa/{payment_app_id}.pdf",
            envelope_id=f"env-{payment_app_id}",
        )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SMS_BACKEND': 'log',
        'SIGNATURE_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'TWILIO_AUTH_TOKEN': TWILIO_AUTH_TOKEN,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def sms_gateway(app):
    gateway = FakeSmsGateway()
    app.extensions[SMS_EXTENSION_KEY] = gateway
    return gateway


@pytest.fixture(scope='function')
def signature_gateway(app):
    gateway = FakeSignatureGateway()
    app.extensions[SIGNATURE_EXTENSION_KEY] = gateway
    return gateway


@pytest.fixture
def admin():
    return Caller(user_id=1, role="admin")


@pytest.fixture
def pm():
    return Caller(user_id=2, role="pm")


@pytest.fixture
def contractor_caller():
    return Caller(user_id=3, role="contractor")


@pytest.fixture
def viewer():
    return Caller(user_id=4, role="viewer")


def headers_for(caller):
    """Request headers carrying a caller identity."""
    return {'X-User-Id': str(caller.user_id), 'X-User-Role': caller.role}


class Builder:
    """Creates committed rows with sensible defaults."""

    def __init__(self, session):
        self.session = session

    def project(self, name="Maple Street Residence", status="active", client_name="Acme Homes"):
        project = Project(name=name, client_name=client_name, status=status)
        self.session.add(project)
        self.session.commit()
        return project

    def contractor(self, name="Ridgeline Framing", trade="Framing", phone="+15555550101"):
        contractor = Contractor(name=name, trade=trade, phone=phone, status="active")
        self.session.add(contractor)
        self.session.commit()
        return contractor

    def contract(self, project, contractor, amount="100000", status="active"):
        contract = ProjectContractor(
            project_id=project.id,
            contractor_id=contractor.id,
            contract_amount=Decimal(amount),
            original_contract_amount=Decimal(amount),
            contract_status=status,
        )
        self.session.add(contract)
        self.session.commit()
        return contract

    def line_item(self, project, contractor, description, scheduled_value, previous="0"):
        item = LineItem(
            project_id=project.id,
            contractor_id=contractor.id,
            description_of_work=description,
            scheduled_value=Decimal(scheduled_value),
            from_previous_application=Decimal(previous),
            percent_completed=Decimal(previous),
        )
        self.session.add(item)
        self.session.commit()
        return item

    def job(self, *, project_name="Maple Street Residence", contractor_name="Ridgeline Framing",
            phone="+15555550101", amount="100000"):
        """Project + contractor + contract + two line items (60k / 40k)."""
        project = self.project(name=project_name)
        contractor = self.contractor(name=contractor_name, phone=phone)
        contract = self.contract(project, contractor, amount=amount)
        walls = self.line_item(project, contractor, "Wall framing", "60000")
        roof = self.line_item(project, contractor, "Roof framing", "40000")
        return project, contractor, contract, [walls, roof]


@pytest.fixture
def build(db_session):
    return Builder(db_session)


@pytest.fixture
def job(build):
    return build.job()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def headers():
    return headers_for
