"""
JSON API routes for Notify.

Authoring, checkout, refunds and the sender/recipient listings. Domain errors
raised by the services are turned into JSON responses by the handlers in
``notify.views.errors``.
"""

from flask import Blueprint, jsonify, request

from notify import get_services
from notify.models.entities import BILLING_TYPES, MEETING, NOTIFICATION_AREAS, TRANSACTION
from notify.utils.logging_config import get_logger
from notify.utils.security import secure_headers
from notify.utils.validators import ValidationError, validate_json, validator

api_bp = Blueprint("api", __name__)
logger = get_logger("api")

NOTIFICATION_SCHEMA = {
    "sender": {"type": "dict", "required": True},
    "recipient_name": {"type": "string", "required": True, "max_length": 200},
    "recipient_email": {"type": "email"},
    "recipient_phone": {"type": "phone"},
    "recipient_document": {"type": "document"},
    "recipient_address": {"type": "string", "max_length": 500},
    "area": {"type": "string", "allowed_values": NOTIFICATION_AREAS},
    "species": {"type": "string", "max_length": 200},
    "subject": {"type": "string", "required": True, "max_length": 300},
    "facts": {"type": "string", "max_length": 20000},
    "content": {"type": "string", "max_length": 100000},
}

DRAFT_UPDATE_SCHEMA = {
    name: {k: v for k, v in rules.items() if k != "required"}
    for name, rules in NOTIFICATION_SCHEMA.items()
    if name != "sender"
}
DRAFT_UPDATE_SCHEMA["signature_base64"] = {"type": "string", "max_length": 2_000_000}

SENDER_SCHEMA = {
    "uid": {"type": "id", "required": True},
    "name": {"type": "string", "required": True, "max_length": 200},
    "email": {"type": "email", "required": True},
    "phone": {"type": "phone"},
    "document": {"type": "document"},
    "photo_url": {"type": "string", "max_length": 1000},
}

MEETING_SCHEMA = {
    "date": {"type": "date", "required": True},
    "time": {"type": "time", "required": True},
}

CHECKOUT_SCHEMA = {
    "billing_type": {"type": "string", "required": True, "allowed_values": BILLING_TYPES},
    "payer": {"type": "dict", "required": True},
    "credit_card": {"type": "dict"},
}

PAYER_SCHEMA = {
    "name": {"type": "string", "required": True, "max_length": 200},
    "email": {"type": "email"},
    "document": {"type": "document", "required": True},
}


def _uploaded_file():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("A file upload is required", "file", "REQUIRED")
    data = upload.read()
    if not data:
        raise ValidationError("Uploaded file is empty", "file", "EMPTY")
    return upload, data


@api_bp.route("/notifications", methods=["POST"])
@validate_json(NOTIFICATION_SCHEMA)
@secure_headers
def create_notification(data):
    """Create a draft notification"""
    sender = validator.validate_request_data(data.pop("sender"), SENDER_SCHEMA)
    notification = get_services().notifications.create_draft(sender, data)
    return jsonify({"success": True, "notification": notification}), 201


@api_bp.route("/notifications")
@secure_headers
def list_notifications():
    """Notifications sent by a user"""
    sender_uid = validator.validate_entity_id(request.args.get("sender_uid"), "sender_uid")
    notifications = get_services().notifications.list_sent(sender_uid)
    return jsonify({"success": True, "notifications": notifications, "count": len(notifications)})


@api_bp.route("/notifications/<notification_id>")
@secure_headers
def get_notification(notification_id):
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    return jsonify({"success": True, "notification": get_services().notifications.get(notification_id)})


@api_bp.route("/notifications/<notification_id>", methods=["PATCH"])
@validate_json(DRAFT_UPDATE_SCHEMA)
@secure_headers
def update_notification(notification_id, data):
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    notification = get_services().notifications.update_draft(notification_id, data)
    return jsonify({"success": True, "notification": notification})


@api_bp.route("/notifications/<notification_id>", methods=["DELETE"])
@secure_headers
def delete_notification(notification_id):
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    get_services().notifications.delete(notification_id)
    return jsonify({"success": True, "notification_id": notification_id})


@api_bp.route("/notifications/<notification_id>/generate", methods=["POST"])
@validate_json({"tone": {"type": "string", "max_length": 50, "default": "formal"}})
@secure_headers
def generate_notification_text(notification_id, data):
    """Draft the notification body with the text-generation provider"""
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    notification = get_services().notifications.generate_text(notification_id, tone=data["tone"] or "formal")
    return jsonify({"success": True, "notification": notification})


@api_bp.route("/notifications/<notification_id>/pdf", methods=["POST"])
@secure_headers
def upload_notification_pdf(notification_id):
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    _, data = _uploaded_file()
    url = get_services().notifications.upload_pdf(notification_id, data)
    return jsonify({"success": True, "pdf_url": url}), 201


@api_bp.route("/notifications/<notification_id>/evidences", methods=["POST"])
@secure_headers
def upload_notification_evidence(notification_id):
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    upload, data = _uploaded_file()
    evidence = get_services().notifications.upload_evidence(notification_id, upload.filename, data, upload.mimetype)
    return jsonify({"success": True, "evidence": evidence}), 201


@api_bp.route("/notifications/<notification_id>/delivery", methods=["POST"])
@validate_json({"meeting": {"type": "dict"}})
@secure_headers
def request_delivery(notification_id, data):
    """Move a draft to awaiting payment; creates the pending transaction and optional meeting"""
    notification_id = validator.validate_entity_id(notification_id, "notification_id")
    meeting = validator.validate_request_data(data["meeting"], MEETING_SCHEMA) if data.get("meeting") else None
    result = get_services().notifications.request_delivery(notification_id, meeting)
    return jsonify({"success": True, **result}), 201


@api_bp.route("/received")
@secure_headers
def received_notifications():
    """Notifications addressed to a CPF/CNPJ"""
    document = validator.validate_document(request.args.get("document"), "document")
    notifications = get_services().notifications.list_received(document)
    return jsonify({"success": True, "notifications": notifications, "count": len(notifications)})


@api_bp.route("/transactions")
@secure_headers
def list_transactions():
    owner_uid = validator.validate_entity_id(request.args.get("owner_uid"), "owner_uid")
    transactions = get_services().store.query(TRANSACTION, owner_uid=owner_uid)
    transactions.sort(key=lambda t: t.get("date") or "", reverse=True)
    return jsonify({"success": True, "transactions": transactions, "count": len(transactions)})


@api_bp.route("/transactions/<transaction_id>/checkout", methods=["POST"])
@validate_json(CHECKOUT_SCHEMA)
@secure_headers
def checkout(transaction_id, data):
    """Create the gateway charge for a pending transaction"""
    transaction_id = validator.validate_entity_id(transaction_id, "transaction_id")
    payer = validator.validate_request_data(data["payer"], PAYER_SCHEMA)
    if data["billing_type"] == "CREDIT_CARD" and not data.get("credit_card"):
        raise ValidationError("credit_card is required for CREDIT_CARD payments", "credit_card", "REQUIRED")

    result = get_services().checkout.start_checkout(
        transaction_id,
        data["billing_type"],
        payer,
        credit_card=data.get("credit_card"),
        remote_ip=request.remote_addr,
    )
    return jsonify({"success": True, **result}), 201


@api_bp.route("/payments/<payment_id>/check", methods=["POST"])
@secure_headers
def check_payment(payment_id):
    """Manual payment status check (PIX 'I already paid')"""
    payment_id = validator.validate_entity_id(payment_id, "payment_id")
    result = get_services().checkout.check_payment_status(payment_id)
    return jsonify({"success": True, **result})


@api_bp.route("/transactions/<transaction_id>/refund", methods=["POST"])
@secure_headers
def refund_transaction(transaction_id):
    """Refund a paid transaction and cancel what it paid for"""
    transaction_id = validator.validate_entity_id(transaction_id, "transaction_id")
    result = get_services().refunds.refund(transaction_id)
    logger.info(
        "Refund completed",
        extra={"event": "api_refund", "transaction_id": transaction_id, "steps": result.steps},
    )
    return jsonify({"success": True, **result.to_dict()})


@api_bp.route("/meetings")
@secure_headers
def list_meetings():
    host_uid = validator.validate_entity_id(request.args.get("host_uid"), "host_uid")
    meetings = get_services().store.query(MEETING, host_uid=host_uid)
    meetings.sort(key=lambda m: (m.get("date") or "", m.get("time") or ""))
    return jsonify({"success": True, "meetings": meetings, "count": len(meetings)})
