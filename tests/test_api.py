"""
Tests for the JSON API and the provider webhook endpoints.
"""

import io

from conftest import SENDER
from notify.models.entities import MEETING, NOTIFICATION, TRANSACTION, NotificationStatus, TransactionStatus
from notify.services.entity_store import StoreUnavailable

TOKEN_HEADERS = {"asaas-access-token": "test-webhook-token"}

DRAFT = {
    "sender": SENDER,
    "recipient_name": "João Destinatário",
    "recipient_email": "joao@example.com",
    "recipient_phone": "(11) 91234-5678",
    "recipient_document": "11.222.333/0001-81",
    "area": "Imobiliário",
    "subject": "Cobrança de aluguel",
    "facts": "Aluguéis de março e abril em atraso.",
    "content": "Prezado João, <b>pague</b>.",
}


def _create(client):
    response = client.post("/api/notifications", json=DRAFT)
    assert response.status_code == 201
    return response.get_json()["notification"]


def test_create_and_fetch_notification(client):
    created = _create(client)

    assert created["recipient_phone"] == "11912345678"
    assert created["content"] == "Prezado João, <b>pague</b>."

    response = client.get(f"/api/notifications/{created['notification_id']}")
    assert response.status_code == 200
    assert response.get_json()["notification"]["subject"] == "Cobrança de aluguel"

    listing = client.get("/api/notifications", query_string={"sender_uid": SENDER["uid"]}).get_json()
    assert listing["count"] == 1


def test_create_rejects_invalid_input(client):
    response = client.post("/api/notifications", json={**DRAFT, "recipient_document": "123.456.789-00"})
    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "validation_error"
    assert body["details"]["field"] == "recipient_document"

    response = client.post("/api/notifications", json={**DRAFT, "sender": {"uid": "user-1"}})
    assert response.status_code == 400

    response = client.post("/api/notifications", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_unknown_notification_is_404(client):
    response = client.get("/api/notifications/NOT-MISSING")
    assert response.status_code == 404
    assert response.get_json()["error"] == "not_found"


def test_patch_after_payment_is_409(client, make_notification):
    nid = make_notification(NotificationStatus.SENT)["notification_id"]
    response = client.patch(f"/api/notifications/{nid}", json={"subject": "Outro"})
    assert response.status_code == 409
    assert response.get_json()["error"] == "invalid_transition"


def test_generate_without_provider_is_503(client):
    nid = _create(client)["notification_id"]
    response = client.post(f"/api/notifications/{nid}/generate", json={})
    assert response.status_code == 503
    assert response.get_json()["error"] == "provider_not_configured"


def test_generate_with_provider(client, text_client):
    nid = _create(client)["notification_id"]
    response = client.post(f"/api/notifications/{nid}/generate", json={"tone": "firme"})
    assert response.status_code == 200
    assert response.get_json()["notification"]["content"] == text_client.text


def test_uploads(client, services):
    nid = _create(client)["notification_id"]

    response = client.post(
        f"/api/notifications/{nid}/pdf",
        data={"file": (io.BytesIO(b"%PDF-1.4"), "notificacao.pdf")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 201
    assert response.get_json()["pdf_url"].endswith(f"notificacoes_pdfs/{nid}.pdf")

    response = client.post(
        f"/api/notifications/{nid}/evidences",
        data={"file": (io.BytesIO(b"\x89PNG"), "foto.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 201
    evidence = response.get_json()["evidence"]
    assert evidence["media_type"] == "image"

    download = client.get(f"/files/{evidence['storage_path']}")
    assert download.status_code == 200
    assert download.data == b"\x89PNG"

    missing = client.post(f"/api/notifications/{nid}/pdf", data={}, content_type="multipart/form-data")
    assert missing.status_code == 400


def test_delivery_rejects_bad_meeting_time(client):
    nid = _create(client)["notification_id"]
    response = client.post(f"/api/notifications/{nid}/delivery", json={"meeting": {"date": "2030-02-01", "time": "9h"}})
    assert response.status_code == 400


def test_delete_draft(client, store):
    nid = _create(client)["notification_id"]
    response = client.delete(f"/api/notifications/{nid}")
    assert response.status_code == 200
    assert store.get(NOTIFICATION, nid) is None


def test_received_requires_valid_document(client, make_notification):
    make_notification(NotificationStatus.DELIVERED)
    make_notification(NotificationStatus.AWAITING_PAYMENT)

    response = client.get("/api/received", query_string={"document": "11.222.333/0001-81"})
    assert response.status_code == 200
    assert response.get_json()["count"] == 1

    assert client.get("/api/received", query_string={"document": "123"}).status_code == 400


def test_checkout_without_gateway_is_503(client, make_transaction):
    tx_id = make_transaction(TransactionStatus.PENDING)["transaction_id"]
    response = client.post(
        f"/api/transactions/{tx_id}/checkout",
        json={"billing_type": "PIX", "payer": {"name": "Maria", "document": "52998224725"}},
    )
    assert response.status_code == 503


def test_checkout_card_requires_card_data(client, gateway, make_transaction):
    tx_id = make_transaction(TransactionStatus.PENDING)["transaction_id"]
    response = client.post(
        f"/api/transactions/{tx_id}/checkout",
        json={"billing_type": "CREDIT_CARD", "payer": {"name": "Maria", "document": "52998224725"}},
    )
    assert response.status_code == 400
    assert gateway.created_charges == []


def test_refund_rejection_is_409_with_reason(client, make_transaction):
    tx_id = make_transaction(TransactionStatus.PENDING)["transaction_id"]
    response = client.post(f"/api/transactions/{tx_id}/refund")
    assert response.status_code == 409
    body = response.get_json()
    assert body["error"] == "refund_rejected"
    assert body["reason"] == "not_paid"


def test_payment_webhook_acknowledges_invalid_token(client, make_notification, store):
    nid = make_notification(NotificationStatus.AWAITING_PAYMENT)["notification_id"]
    payload = {"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_1", "externalReference": nid}}

    response = client.post("/webhooks/payment", json=payload, headers={"asaas-access-token": "nope"})

    assert response.status_code == 200
    assert response.get_json() == {"received": True, "processed": False, "reason": "invalid_token"}
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"


def test_payment_webhook_returns_500_when_store_is_down(client, services, monkeypatch):
    def unavailable(*args, **kwargs):
        raise StoreUnavailable("connection refused")

    monkeypatch.setattr(services.reconciler, "handle_payment_webhook", unavailable)
    monkeypatch.setattr(services.reconciler, "handle_tracking_payload", unavailable)

    response = client.post("/webhooks/payment", json={"event": "PAYMENT_RECEIVED"}, headers=TOKEN_HEADERS)
    assert response.status_code == 500
    assert response.get_json()["error"] == "store_unavailable"

    response = client.post("/webhooks/tracking", json=[{"event": "open"}])
    assert response.status_code == 500


def test_tracking_webhook_accepts_garbage(client):
    response = client.post("/webhooks/tracking", data="garbage", content_type="text/plain")
    assert response.status_code == 200
    assert response.get_json()["processed"] is False


def test_full_flow(client, store, gateway, email_client, messaging_client):
    """Draft, delivery with meeting, PIX checkout, webhook, tracking and refund."""
    nid = _create(client)["notification_id"]
    client.post(
        f"/api/notifications/{nid}/pdf",
        data={"file": (io.BytesIO(b"%PDF-1.4"), "notificacao.pdf")},
        content_type="multipart/form-data",
    )

    meeting = {"date": "2030-02-01", "time": "10:30"}
    delivery = client.post(f"/api/notifications/{nid}/delivery", json={"meeting": meeting})
    assert delivery.status_code == 201
    tx_id = delivery.get_json()["transaction"]["transaction_id"]
    meeting_id = delivery.get_json()["meeting"]["meeting_id"]

    checkout = client.post(
        f"/api/transactions/{tx_id}/checkout",
        json={"billing_type": "PIX", "payer": {"name": "Maria", "document": "52998224725"}},
    )
    assert checkout.status_code == 201
    payment_id = checkout.get_json()["payment_id"]
    assert checkout.get_json()["pix"]["payload"]

    # Not visible to the recipient before payment
    received = client.get("/api/received", query_string={"document": "11222333000181"}).get_json()
    assert received["count"] == 0

    webhook = client.post(
        "/webhooks/payment",
        json={
            "event": "PAYMENT_RECEIVED",
            "payment": {"id": payment_id, "externalReference": nid, "billingType": "PIX", "paymentDate": "2030-01-10"},
        },
        headers=TOKEN_HEADERS,
    )
    assert webhook.status_code == 200
    assert webhook.get_json()["processed"] is True

    assert store.get(NOTIFICATION, nid)["status"] == "sent"
    assert store.get(TRANSACTION, tx_id)["status"] == "paid"
    assert store.get(MEETING, meeting_id)["status"] == "scheduled"
    assert email_client.sent[0]["notification_id"] == nid
    assert messaging_client.documents[0]["url"].endswith(f"notificacoes_pdfs/{nid}.pdf")

    # The manual check after the webhook changes nothing
    gateway.charges[payment_id]["status"] = "RECEIVED"
    check = client.post(f"/api/payments/{payment_id}/check").get_json()
    assert check["paid"] is True
    assert check["confirmation"]["processed"] is False
    assert len(email_client.sent) == 1

    client.post("/webhooks/tracking", json=[{"event": "delivered", "notificationId": nid}])
    assert store.get(NOTIFICATION, nid)["status"] == "delivered"
    client.post("/webhooks/tracking", json={"messageId": "MSG-1", "status": "READ"})
    assert store.get(NOTIFICATION, nid)["status"] == "read"

    received = client.get("/api/received", query_string={"document": "11222333000181"}).get_json()
    assert received["count"] == 1

    meetings = client.get("/api/meetings", query_string={"host_uid": SENDER["uid"]}).get_json()
    assert meetings["meetings"][0]["status"] == "scheduled"

    refund = client.post(f"/api/transactions/{tx_id}/refund")
    assert refund.status_code == 200
    assert refund.get_json()["steps"] == ["transaction", "notification", "meeting"]
    assert store.get(TRANSACTION, tx_id)["status"] == "refunded"
    assert store.get(NOTIFICATION, nid)["status"] == "awaiting_payment"
    assert store.get(MEETING, meeting_id)["status"] == "canceled"

    transactions = client.get("/api/transactions", query_string={"owner_uid": SENDER["uid"]}).get_json()
    assert transactions["transactions"][0]["status"] == "refunded"

    again = client.post(f"/api/transactions/{tx_id}/refund")
    assert again.status_code == 409
    assert again.get_json()["reason"] == "already_refunded"
