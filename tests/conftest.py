"""
Pytest configuration and fixtures for the Notify tests.
"""

import itertools
from datetime import timedelta

import pytest

from notify import create_app
from notify.config.settings import TestingConfig
from notify.models.entities import (
    MEETING,
    NOTIFICATION,
    TRANSACTION,
    Meeting,
    MeetingStatus,
    Notification,
    NotificationStatus,
    SenderSnapshot,
    Transaction,
    TransactionStatus,
    utcnow,
)
from notify.services.exceptions import ProviderError

SENDER = {
    "uid": "user-1",
    "name": "Maria Remetente",
    "email": "maria@example.com",
    "phone": "11987654321",
    "document": "52998224725",
}


class RecordingEmailClient:
    """Stands in for SendGridClient and records every send."""

    configured = True

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, to, subject, html_body, notification_id=None):
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html_body, "notification_id": notification_id})

    def close(self):
        pass


class RecordingMessagingClient:
    """Stands in for ZApiClient and records every send."""

    configured = True

    def __init__(self):
        self.documents = []
        self.texts = []
        self.document_error = None
        self.text_error = None
        self._ids = itertools.count(1)

    def send_document(self, phone, document_url, caption, file_name=None):
        if self.document_error is not None:
            raise self.document_error
        self.documents.append({"phone": phone, "url": document_url, "caption": caption})
        return f"MSG-{next(self._ids)}"

    def send_text(self, phone, message):
        if self.text_error is not None:
            raise self.text_error
        self.texts.append({"phone": phone, "message": message})
        return f"MSG-{next(self._ids)}"

    def close(self):
        pass


class FakeGateway:
    """In-memory Asaas: customers and charges keyed by id."""

    configured = True

    def __init__(self):
        self.customers = {}
        self.charges = {}
        self.created_charges = []
        self.charge_status = "PENDING"
        self._ids = itertools.count(1)

    def find_customer(self, cpf_cnpj):
        return self.customers.get(cpf_cnpj)

    def create_customer(self, name, email, cpf_cnpj):
        customer = {"id": f"cus_{next(self._ids)}", "name": name, "email": email, "cpfCnpj": cpf_cnpj}
        self.customers[cpf_cnpj] = customer
        return customer

    def create_charge(self, payload):
        charge = dict(payload, id=f"pay_{next(self._ids)}", status=self.charge_status)
        self.charges[charge["id"]] = charge
        self.created_charges.append(payload)
        return charge

    def get_pix_qr_code(self, payment_id):
        return {"encodedImage": "iVBORw0KGgo=", "payload": "00020126PIX", "expirationDate": "2030-01-01 23:59:59"}

    def get_charge(self, payment_id):
        if payment_id not in self.charges:
            raise ProviderError("asaas", "get_charge failed: not found", 404)
        return dict(self.charges[payment_id])

    def close(self):
        pass


class FakeTextClient:
    configured = True

    def __init__(self, text="NOTIFICAÇÃO EXTRAJUDICIAL\n\nPrezado(a)..."):
        self.text = text
        self.prompts = []
        self.error = None

    def generate(self, prompt, attachments=None):
        if self.error is not None:
            raise self.error
        self.prompts.append(prompt)
        return self.text

    def close(self):
        pass


@pytest.fixture
def app(tmp_path):
    """Create application for testing."""
    config_class = type("IsolatedTestingConfig", (TestingConfig,), {"BLOB_STORAGE_ROOT": str(tmp_path / "blobs")})
    app = create_app(config_class)
    app.config.update(
        {
            "TESTING": True,
        }
    )

    with app.app_context():
        yield app

    app.extensions["notify"].dispatcher.shutdown()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create test CLI runner."""
    return app.test_cli_runner()


@pytest.fixture
def services(app):
    return app.extensions["notify"]


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def email_client(services):
    fake = RecordingEmailClient()
    services.email_client = fake
    services.dispatcher.email_client = fake
    return fake


@pytest.fixture
def messaging_client(services):
    fake = RecordingMessagingClient()
    services.messaging_client = fake
    services.dispatcher.messaging_client = fake
    return fake


@pytest.fixture
def gateway(services):
    fake = FakeGateway()
    services.gateway = fake
    services.checkout.gateway = fake
    return fake


@pytest.fixture
def text_client(services):
    fake = FakeTextClient()
    services.text_client = fake
    services.notifications.text_client = fake
    return fake


@pytest.fixture
def make_notification(store):
    """Persist a notification with sensible defaults and return its document."""
    counter = itertools.count(1)

    def factory(status=NotificationStatus.AWAITING_PAYMENT, **overrides):
        notification_id = overrides.pop("notification_id", f"NOT-TEST{next(counter):05d}")
        sender = SenderSnapshot(**{**SENDER, **overrides.pop("sender", {})})
        notification = Notification(
            notification_id=notification_id,
            sender=sender,
            recipient_name="João Destinatário",
            recipient_email="joao@example.com",
            recipient_phone="(11) 91234-5678",
            recipient_document="11222333000181",
            subject="Cobrança de aluguel",
            content="Texto da notificação",
            pdf_url=f"http://localhost:5000/files/notificacoes_pdfs/{notification_id}.pdf",
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        raw_status = status.value if isinstance(status, NotificationStatus) else status
        return store.put(NOTIFICATION, notification_id, {**notification.to_dict(), "status": raw_status, **overrides})

    return factory


@pytest.fixture
def make_transaction(store):
    counter = itertools.count(1)

    def factory(status=TransactionStatus.PENDING, age=timedelta(0), **overrides):
        transaction_id = overrides.pop("transaction_id", f"TX-TEST{next(counter):05d}")
        notification_id = overrides.pop("notification_id", None)
        transaction = Transaction(
            transaction_id=transaction_id,
            description=f"Notificação Extrajudicial - Ref: {notification_id}",
            amount=57.92,
            date=utcnow() - age,
            owner_uid=SENDER["uid"],
            notification_id=notification_id,
        )
        raw_status = status.value if isinstance(status, TransactionStatus) else status
        return store.put(TRANSACTION, transaction_id, {**transaction.to_dict(), "status": raw_status, **overrides})

    return factory


@pytest.fixture
def make_meeting(store):
    counter = itertools.count(1)

    def factory(status=MeetingStatus.CANCELED, date="2030-01-15", time="14:00", **overrides):
        meeting_id = overrides.pop("meeting_id", f"MEET-TEST{next(counter):05d}")
        meeting = Meeting(
            meeting_id=meeting_id,
            host_uid=SENDER["uid"],
            host_name=SENDER["name"],
            title="Conciliação",
            date=date,
            time=time,
            meet_link=f"https://meet.jit.si/notify-{meeting_id.lower()}",
            guest_email="joao@example.com",
            guest_document="11222333000181",
            created_at=utcnow(),
        )
        raw_status = status.value if isinstance(status, MeetingStatus) else status
        return store.put(MEETING, meeting_id, {**meeting.to_dict(), "status": raw_status, **overrides})

    return factory
