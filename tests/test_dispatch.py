"""
Tests for the dispatch orchestrator.
"""

import threading
import time

from notify.models.entities import NOTIFICATION, NotificationStatus
from notify.services.channel_tracking import ChannelTracker
from notify.services.dispatch import (
    FAILED,
    SENT,
    SENT_AS_TEXT,
    SKIPPED,
    TIMED_OUT,
    DispatchOrchestrator,
    NotificationContent,
)
from notify.services.exceptions import ProviderError


def test_both_channels_sent(services, store, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]

    report = services.dispatcher.dispatch(nid)

    assert report.channels == {"email": SENT, "messaging": SENT}
    assert email_client.sent[0]["to"] == "joao@example.com"
    assert email_client.sent[0]["notification_id"] == nid
    assert email_client.sent[0]["subject"] == "NOTIFICAÇÃO EXTRAJUDICIAL: Cobrança de aluguel"
    assert messaging_client.documents[0]["phone"] == "5511912345678"
    doc = store.get(NOTIFICATION, nid)
    assert doc["email_status"] == "sent"
    assert doc["messaging_status"] == "sent"
    assert doc["messaging_message_id"] == "MSG-1"


def test_rendered_content_masks_sender_document(services, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    services.dispatcher.dispatch(nid)

    html = email_client.sent[0]["html"]
    caption = messaging_client.documents[0]["caption"]
    assert "***.982.247-**" in html
    assert "52998224725" not in html
    assert "***.982.247-**" in caption
    assert "João Destinatário" in caption


def test_email_body_escapes_user_text(services, make_notification, email_client):
    nid = make_notification(NotificationStatus.SENT, recipient_name="<script>alert(1)</script>")["notification_id"]
    services.dispatcher.dispatch(nid)
    html = email_client.sent[0]["html"]
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_document_failure_falls_back_to_text_with_link(
    services, store, make_notification, email_client, messaging_client
):
    notification = make_notification(NotificationStatus.SENT)
    messaging_client.document_error = ProviderError("zapi", "send_document failed", 500)

    report = services.dispatcher.dispatch(notification["notification_id"])

    assert report.channels["messaging"] == SENT_AS_TEXT
    assert notification["pdf_url"] in messaging_client.texts[0]["message"]
    assert store.get(NOTIFICATION, notification["notification_id"])["messaging_status"] == "sent"


def test_unexpected_document_error_falls_back_to_text(services, make_notification, messaging_client):
    notification = make_notification(NotificationStatus.SENT)
    messaging_client.document_error = AttributeError("'list' object has no attribute 'get'")

    report = services.dispatcher.dispatch(notification["notification_id"])

    assert report.channels["messaging"] == SENT_AS_TEXT
    assert messaging_client.texts


def test_channel_failures_are_independent(services, store, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    email_client.error = ProviderError("sendgrid", "send_email failed", 503)

    report = services.dispatcher.dispatch(nid)

    assert report.channels == {"email": FAILED, "messaging": SENT}
    doc = store.get(NOTIFICATION, nid)
    assert doc["email_status"] == "bounced"
    assert doc["messaging_status"] == "sent"
    assert doc["status"] == "sent"


def test_both_channels_failing(services, store, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    email_client.error = ProviderError("sendgrid", "down")
    messaging_client.document_error = ProviderError("zapi", "down")
    messaging_client.text_error = ProviderError("zapi", "down")

    report = services.dispatcher.dispatch(nid)

    assert report.channels == {"email": FAILED, "messaging": FAILED}
    doc = store.get(NOTIFICATION, nid)
    assert doc["messaging_status"] == "failed"
    assert doc["status"] == "sent"


def test_missing_contact_skips_channel(services, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT, recipient_phone=None)["notification_id"]
    report = services.dispatcher.dispatch(nid)
    assert report.channels == {"email": SENT, "messaging": SKIPPED}
    assert report.attempted == ["email"]
    assert messaging_client.documents == []


def test_without_pdf_sends_plain_text(services, make_notification, email_client, messaging_client):
    nid = make_notification(NotificationStatus.SENT, pdf_url=None)["notification_id"]
    report = services.dispatcher.dispatch(nid)
    assert report.channels["messaging"] == SENT
    assert messaging_client.documents == []
    assert len(messaging_client.texts) == 1


def test_unknown_notification(services, email_client):
    report = services.dispatcher.dispatch("NOT-MISSING")
    assert report.channels == {}
    assert email_client.sent == []


class _SlowEmail:
    configured = True

    def __init__(self, delay):
        self.delay = delay
        self.started = threading.Event()

    def send(self, to, subject, html_body, notification_id=None):
        self.started.set()
        time.sleep(self.delay)


class _SlowMessaging:
    configured = True

    def __init__(self, delay):
        self.delay = delay

    def send_document(self, phone, document_url, caption, file_name=None):
        time.sleep(self.delay)
        return "MSG-SLOW"

    def send_text(self, phone, message):
        return "MSG-TEXT"


def test_channels_run_concurrently(store, make_notification):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    dispatcher = DispatchOrchestrator(store, ChannelTracker(store), _SlowEmail(0.3), _SlowMessaging(0.3), timeout=5)
    try:
        started = time.monotonic()
        report = dispatcher.dispatch(nid)
        elapsed = time.monotonic() - started
    finally:
        dispatcher.shutdown()

    assert report.channels == {"email": SENT, "messaging": SENT}
    assert elapsed < 0.55


def test_slow_channel_times_out_without_blocking_the_other(store, make_notification):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    dispatcher = DispatchOrchestrator(store, ChannelTracker(store), _SlowEmail(1.0), _SlowMessaging(0), timeout=0.2)
    try:
        report = dispatcher.dispatch(nid)
    finally:
        dispatcher.shutdown(wait_for_pending=False)

    assert report.channels == {"email": TIMED_OUT, "messaging": SENT}


def test_background_dispatch_returns_before_sending(store, make_notification):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    email = _SlowEmail(0.2)
    dispatcher = DispatchOrchestrator(store, ChannelTracker(store), email, None, background=True)
    try:
        future = dispatcher.dispatch_in_background(nid)
        assert not future.done()
        report = future.result(timeout=5)
    finally:
        dispatcher.shutdown()

    assert email.started.is_set()
    assert report.channels == {"email": SENT, "messaging": SKIPPED}


def test_message_text_includes_document_link():
    content = NotificationContent(
        notification_id="NOT-1",
        recipient_name="Ana",
        subject="Vizinhança",
        sender_name="Bruno",
        sender_document="",
        document_url="https://files/NOT-1.pdf",
        issued_on="01/01/2030",
    )
    assert content.message_text_with_link().endswith("📄 *ACESSE O DOCUMENTO:*\nhttps://files/NOT-1.pdf")
    assert "Bruno" in content.message_caption()
    assert "(" not in content.message_caption().split("*Bruno")[1]
