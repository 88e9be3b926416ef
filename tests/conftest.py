"""
Shared fixtures: a temporary SQLite database, a controllable clock, and
delivery fakes that record what would have been sent.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest

from docflow.catalog import CarrierCatalog
from docflow.database import Database
from docflow.delivery import CarrierDelivery, ContactDelivery, DeliveryReceipt
from docflow.exceptions import DeliveryDispatchError
from docflow.lifecycle import LifecycleController

START = datetime(2024, 3, 1, 9, 0, 0)

CATALOG_DATA = {
    "carriers": [
        {"id": "migdal", "name": "Migdal", "logo": "🏛️"},
        {"id": "harel", "name": "Harel", "logo": "🔷"},
        {"id": "analyst", "name": "Analyst", "methods": ["email"]},
    ]
}


class FakeClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingContactDelivery(ContactDelivery):
    """Contact delivery that records calls and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self.fail_link = False
        self.before_send = None

    async def _record(self, channel, to, document, link, message, recipient_name):
        if self.before_send is not None:
            hook, self.before_send = self.before_send, None
            await hook()
        if self.fail:
            raise DeliveryDispatchError(f"{channel} gateway down", channel=channel)
        self.calls.append((channel, to, document.id, link, message))
        return DeliveryReceipt(channel=channel)

    async def send_email(self, to, document, link, message=None, recipient_name=None):
        return await self._record("email", to, document, link, message, recipient_name)

    async def send_sms(self, to, document, link, message=None, recipient_name=None):
        return await self._record("sms", to, document, link, message, recipient_name)

    async def generate_signature_link(self, document, request_id):
        if self.fail_link:
            raise DeliveryDispatchError("link service down", channel="link")
        return f"https://sign.example.com/{request_id}"

    def sent(self, channel):
        return [c for c in self.calls if c[0] == channel]


class RecordingCarrierDelivery(CarrierDelivery):
    """Carrier delivery that records submissions and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = False

    async def _record(self, method, carrier, document, submission_id, include_related):
        if self.fail:
            raise DeliveryDispatchError(f"{carrier.id} unreachable", channel=f"carrier-{method}")
        self.calls.append((method, carrier.id, document.id, submission_id, include_related))
        return DeliveryReceipt(channel=f"carrier-{method}")

    async def submit_via_email(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._record("email", carrier, document, submission_id, include_related)

    async def submit_via_portal(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._record("portal", carrier, document, submission_id, include_related)

    async def submit_via_api(self, carrier, document, submission_id, include_related=False, cover_note=None):  # noqa: E501
        return await self._record("api", carrier, document, submission_id, include_related)


@pytest.fixture
def db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}")
    db.create_tables()
    yield db

    db.engine.dispose()
    os.unlink(db_path)


@pytest.fixture
def catalog():
    return CarrierCatalog.from_dict(CATALOG_DATA)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def contact():
    return RecordingContactDelivery()


@pytest.fixture
def carrier():
    return RecordingCarrierDelivery()


@pytest.fixture
def controller(db, catalog, contact, carrier, clock):
    return LifecycleController(db, catalog, contact, carrier, clock=clock)


@pytest.fixture
def document(controller):
    return controller.create_document("Pension transfer", document_type="transfer", client_id="client-1")
