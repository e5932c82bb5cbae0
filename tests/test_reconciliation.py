"""
Tests for payment and tracking webhook reconciliation.
"""

from notify.models.entities import (
    MEETING,
    NOTIFICATION,
    TRANSACTION,
    MeetingStatus,
    NotificationStatus,
    TransactionStatus,
)
from notify.services.reconciliation import PaymentConfirmation

TOKEN = "test-webhook-token"


def _payment_event(notification_id=None, event="PAYMENT_CONFIRMED", **payment):
    body = {"id": "pay_001", "billingType": "PIX", "paymentDate": "2030-01-10", "status": "CONFIRMED"}
    if notification_id:
        body["externalReference"] = notification_id
    body.update(payment)
    return {"event": event, "payment": body}


def test_confirmation_moves_everything_and_dispatches_once(
    services, store, make_notification, make_transaction, make_meeting, email_client, messaging_client
):
    notification = make_notification(NotificationStatus.AWAITING_PAYMENT)
    nid = notification["notification_id"]
    make_transaction(TransactionStatus.PENDING, notification_id=nid, transaction_id="TX-1")
    make_meeting(MeetingStatus.CANCELED, notification_id=nid, meeting_id="MEET-1")

    result = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)

    assert result.processed
    assert result.reason == "payment_confirmed"
    doc = store.get(NOTIFICATION, nid)
    assert doc["status"] == "sent"
    assert doc["payment_id"] == "pay_001"
    assert doc["payment_date"] == "2030-01-10"
    assert doc["payment_method"] == "PIX"
    assert store.get(TRANSACTION, "TX-1")["status"] == "paid"
    assert store.get(TRANSACTION, "TX-1")["paid_at"]
    assert store.get(MEETING, "MEET-1")["status"] == "scheduled"
    assert len(email_client.sent) == 1
    assert len(messaging_client.documents) == 1

    # Same event delivered again
    again = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)
    assert not again.processed
    assert again.reason == "already_processed"
    assert len(email_client.sent) == 1
    assert len(messaging_client.documents) == 1


def test_webhook_and_manual_check_race_dispatch_once(services, make_notification, email_client):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]

    first = services.reconciler.confirm_payment(PaymentConfirmation(nid, "pay_1", source="poll"))
    second = services.reconciler.handle_payment_webhook(_payment_event(nid, id="pay_1"), TOKEN)

    assert first.processed and not second.processed
    assert len(email_client.sent) == 1


def test_reference_falls_back_to_description(services, store, make_notification):
    make_notification(NotificationStatus.AWAITING_PAYMENT, notification_id="NOT-ABC123")
    payload = _payment_event(description="Notificação Extrajudicial - Ref: NOT-ABC123")

    result = services.reconciler.handle_payment_webhook(payload, TOKEN)

    assert result.entity_id == "NOT-ABC123"
    assert store.get(NOTIFICATION, "NOT-ABC123")["status"] == "sent"


def test_invalid_token_is_acknowledged_without_changes(services, store, make_notification):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]

    for token in ("wrong-token", None, ""):
        result = services.reconciler.handle_payment_webhook(_payment_event(nid), token)
        assert not result.processed
        assert result.reason == "invalid_token"
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"


def test_unset_secret_rejects_every_token(services, make_notification):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    services.reconciler.webhook_token = ""
    result = services.reconciler.handle_payment_webhook(_payment_event(nid), "")
    assert result.reason == "invalid_token"


def test_irrelevant_events_and_payloads_are_ignored(services, store, make_notification):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]

    assert services.reconciler.handle_payment_webhook(_payment_event(nid, "PAYMENT_CREATED"), TOKEN).reason == (
        "event_ignored"
    )
    assert services.reconciler.handle_payment_webhook({"event": "PAYMENT_CONFIRMED"}, TOKEN).reason == (
        "malformed_payload"
    )
    assert services.reconciler.handle_payment_webhook(["not", "a", "dict"], TOKEN).reason == "malformed_payload"
    assert services.reconciler.handle_payment_webhook(_payment_event(), TOKEN).reason == "reference_missing"
    assert services.reconciler.handle_payment_webhook(_payment_event("NOT-UNKNOWN"), TOKEN).reason == (
        "notification_not_found"
    )
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"


def test_legacy_statuses_are_read(services, store, make_notification):
    nid = make_notification("Aguardando Pagamento")["notification_id"]
    result = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)
    assert result.processed
    assert store.get(NOTIFICATION, nid)["status"] == "sent"


def test_later_status_is_not_regressed(services, store, make_notification):
    nid = make_notification(NotificationStatus.READ)["notification_id"]
    result = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)
    assert result.reason == "already_processed"
    assert store.get(NOTIFICATION, nid)["status"] == "read"


def test_failed_substep_does_not_block_the_others(
    services, store, make_notification, make_meeting, email_client, monkeypatch
):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    make_meeting(MeetingStatus.CANCELED, notification_id=nid, meeting_id="MEET-1")

    def broken(*args, **kwargs):
        raise RuntimeError("transaction store down")

    monkeypatch.setattr(services.reconciler, "_settle_transaction", broken)
    result = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)

    assert result.processed
    assert result.details["steps"]["transaction"] == "error"
    assert store.get(MEETING, "MEET-1")["status"] == "scheduled"
    assert len(email_client.sent) == 1


def test_transaction_matched_by_payment_id(services, store, make_notification, make_transaction):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    make_transaction(TransactionStatus.PENDING, transaction_id="TX-OLD", payment_id="pay_001")

    services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)

    assert store.get(TRANSACTION, "TX-OLD")["status"] == "paid"


def test_unlinked_meeting_matched_by_guest(services, store, make_notification, make_meeting):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    make_meeting(MeetingStatus.CANCELED, meeting_id="MEET-LEGACY")
    make_meeting(MeetingStatus.CANCELED, meeting_id="MEET-OTHER", guest_email="x@y.com", guest_document="1")

    result = services.reconciler.handle_payment_webhook(_payment_event(nid), TOKEN)

    assert result.details["steps"]["meeting"] == "scheduled"
    assert store.get(MEETING, "MEET-LEGACY")["status"] == "scheduled"
    assert store.get(MEETING, "MEET-OTHER")["status"] == "canceled"


def test_email_tracking_batch(services, store, make_notification):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    events = [
        {"event": "processed", "notificationId": nid},
        {"event": "delivered", "notificationId": nid},
        {"event": "open", "notificationId": nid},
        {"event": "open", "notificationId": nid},
        {"event": "delivered"},
        "garbage",
    ]

    result = services.reconciler.handle_tracking_payload(events)

    assert result.details == {"applied": 2, "ignored": 3}
    doc = store.get(NOTIFICATION, nid)
    assert doc["status"] == "read"
    assert doc["email_status"] == "opened"


def test_messaging_callback_resolved_by_message_id(services, store, make_notification):
    nid = make_notification(NotificationStatus.SENT, messaging_message_id="3EB0ABC")["notification_id"]

    result = services.reconciler.handle_tracking_payload({"ids": ["3EB0ABC"], "status": "READ"})
    assert result.processed
    assert result.entity_id == nid
    assert store.get(NOTIFICATION, nid)["status"] == "read"

    duplicate = services.reconciler.handle_tracking_payload({"messageId": "3EB0ABC", "status": 4})
    assert not duplicate.processed
    assert duplicate.reason == "already_processed"


def test_messaging_callback_unknown_message_or_status(services, make_notification):
    make_notification(NotificationStatus.SENT, messaging_message_id="3EB0ABC")
    reconciler = services.reconciler
    assert reconciler.handle_tracking_payload({"messageId": "NOPE", "status": "READ"}).reason == "message_not_found"
    assert reconciler.handle_tracking_payload({"messageId": "3EB0ABC", "status": "SENT"}).reason == "event_ignored"
    assert reconciler.handle_tracking_payload("text").reason == "malformed_payload"


def test_ignored_results_carry_their_context(services, make_notification):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    reconciler = services.reconciler

    created = reconciler.handle_payment_webhook(_payment_event(nid, "PAYMENT_CREATED"), TOKEN)
    assert created.to_dict() == {
        "received": True,
        "processed": False,
        "reason": "event_ignored",
        "payment_event": "PAYMENT_CREATED",
    }

    unreferenced = reconciler.handle_payment_webhook(_payment_event(id="pay_404"), TOKEN)
    assert unreferenced.details == {"payment_id": "pay_404"}

    unknown = reconciler.handle_tracking_payload({"messageId": "NOPE", "status": "READ"})
    assert unknown.to_dict()["message_id"] == "NOPE"

    assert reconciler.handle_payment_webhook(_payment_event(nid), "wrong").details == {}
