"""
Tests for refunds and the cancellation cascade.
"""

from datetime import timedelta

import pytest

from notify.models.entities import (
    MEETING,
    NOTIFICATION,
    TRANSACTION,
    MeetingStatus,
    NotificationStatus,
    TransactionStatus,
    parse_timestamp,
    utcnow,
)
from notify.services.exceptions import NotFoundError, RefundFailed, RefundRejected
from notify.services.reconciliation import PaymentConfirmation


@pytest.fixture
def paid_setup(make_notification, make_transaction, make_meeting):
    def build(age=timedelta(hours=1)):
        nid = make_notification(NotificationStatus.DELIVERED)["notification_id"]
        tx = make_transaction(TransactionStatus.PAID, age=age, notification_id=nid)
        meeting = make_meeting(MeetingStatus.SCHEDULED, notification_id=nid)
        return nid, tx, meeting

    return build


def test_refund_cascades(services, store, paid_setup):
    nid, tx, meeting = paid_setup()

    result = services.refunds.refund(tx["transaction_id"])

    assert result.correlated
    assert result.steps == ["transaction", "notification", "meeting"]
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == "refunded"
    assert store.get(TRANSACTION, tx["transaction_id"])["refunded_at"]
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"
    assert store.get(MEETING, meeting["meeting_id"])["status"] == "canceled"


def test_refund_window_edges(services, store, paid_setup):
    _, tx, _ = paid_setup()
    paid_on = parse_timestamp(tx["date"])

    services.refunds.refund(tx["transaction_id"], now=paid_on + timedelta(hours=23, minutes=59))
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == "refunded"

    _, late_tx, _ = paid_setup()
    late_paid_on = parse_timestamp(late_tx["date"])
    with pytest.raises(RefundRejected) as exc:
        services.refunds.refund(late_tx["transaction_id"], now=late_paid_on + timedelta(hours=24, seconds=1))
    assert exc.value.reason == RefundRejected.WINDOW_EXPIRED
    assert store.get(TRANSACTION, late_tx["transaction_id"])["status"] == "paid"


def test_refund_exactly_at_window_edge_is_accepted(services, paid_setup):
    _, tx, _ = paid_setup()
    services.refunds.refund(tx["transaction_id"], now=parse_timestamp(tx["date"]) + timedelta(hours=24))


@pytest.mark.parametrize(
    "status,reason",
    [
        (TransactionStatus.PENDING, RefundRejected.NOT_PAID),
        (TransactionStatus.FAILED, RefundRejected.NOT_PAID),
        (TransactionStatus.REFUNDED, RefundRejected.ALREADY_REFUNDED),
    ],
)
def test_rejection_reasons(services, store, make_transaction, status, reason):
    tx = make_transaction(status)
    with pytest.raises(RefundRejected) as exc:
        services.refunds.refund(tx["transaction_id"])
    assert exc.value.reason == reason
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == status.value


def test_second_refund_is_rejected(services, paid_setup):
    _, tx, _ = paid_setup()
    services.refunds.refund(tx["transaction_id"])
    with pytest.raises(RefundRejected) as exc:
        services.refunds.refund(tx["transaction_id"])
    assert exc.value.reason == RefundRejected.ALREADY_REFUNDED


def test_unknown_transaction(services):
    with pytest.raises(NotFoundError):
        services.refunds.refund("TX-NOPE")


def test_legacy_paid_label_is_refundable(services, store, make_transaction):
    tx = make_transaction("Pago")
    services.refunds.refund(tx["transaction_id"])
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == "refunded"


def test_only_the_linked_notification_is_reverted(services, store, paid_setup, make_notification):
    nid, tx, _ = paid_setup()
    newer = make_notification(NotificationStatus.SENT)["notification_id"]

    services.refunds.refund(tx["transaction_id"])

    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"
    assert store.get(NOTIFICATION, newer)["status"] == "sent"


def test_uncorrelated_transaction_uses_owner_scan(services, store, make_notification, make_transaction, make_meeting):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    meeting = make_meeting(MeetingStatus.SCHEDULED)
    tx = make_transaction(TransactionStatus.PAID)

    result = services.refunds.refund(tx["transaction_id"])

    assert not result.correlated
    assert result.notification_id == nid
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"
    assert store.get(MEETING, meeting["meeting_id"])["status"] == "canceled"


def test_failed_step_is_compensated(services, store, paid_setup, monkeypatch):
    nid, tx, meeting = paid_setup()

    def broken(meeting_id):
        raise RuntimeError("meeting store down")

    monkeypatch.setattr(services.refunds, "_cancel_meeting", broken)

    with pytest.raises(RefundFailed) as exc:
        services.refunds.refund(tx["transaction_id"])

    assert exc.value.step == "meeting"
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == "paid"
    assert store.get(TRANSACTION, tx["transaction_id"])["refunded_at"] is None
    assert store.get(NOTIFICATION, nid)["status"] == "delivered"
    assert store.get(MEETING, meeting["meeting_id"])["status"] == "scheduled"


def test_window_runs_from_settlement_not_creation(
    services, store, make_notification, make_transaction, email_client, messaging_client
):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    tx = make_transaction(TransactionStatus.PENDING, age=timedelta(days=2), notification_id=nid)
    services.reconciler.confirm_payment(PaymentConfirmation(nid, "pay_1"))

    settled = store.get(TRANSACTION, tx["transaction_id"])
    assert settled["status"] == "paid"
    assert settled["paid_at"]

    services.refunds.refund(tx["transaction_id"], now=utcnow() + timedelta(minutes=1))
    assert store.get(TRANSACTION, tx["transaction_id"])["status"] == "refunded"


def test_window_from_settlement_still_expires(
    services, store, make_notification, make_transaction, email_client, messaging_client
):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    tx = make_transaction(TransactionStatus.PENDING, age=timedelta(days=2), notification_id=nid)
    services.reconciler.confirm_payment(PaymentConfirmation(nid, "pay_1"))
    paid_at = parse_timestamp(store.get(TRANSACTION, tx["transaction_id"])["paid_at"])

    with pytest.raises(RefundRejected) as exc:
        services.refunds.refund(tx["transaction_id"], now=paid_at + timedelta(hours=24, seconds=1))
    assert exc.value.reason == RefundRejected.WINDOW_EXPIRED
