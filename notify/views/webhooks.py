"""
Provider webhook endpoints.

Callbacks are acknowledged with 200 whether or not they changed anything, so
providers do not retry irrelevant or duplicate events. A 500 is returned only
when the entity store could not be reached, which makes the provider retry.
"""

from flask import Blueprint, jsonify, request

from notify import get_services
from notify.services.entity_store import ConcurrentUpdateError, StoreUnavailable
from notify.utils.logging_config import get_logger

webhooks_bp = Blueprint("webhooks", __name__)

PAYMENT_TOKEN_HEADER = "asaas-access-token"


def _store_failure(endpoint, error):
    get_logger("webhooks").error(
        "Webhook could not be processed, provider will retry",
        extra={
            "event": "webhook_store_error",
            "endpoint": endpoint,
            "error": str(error),
            "error_type": type(error).__name__,
        },
        exc_info=True,
    )
    return jsonify({"received": False, "error": "store_unavailable"}), 500


@webhooks_bp.route("/payment", methods=["POST"])
def payment_webhook():
    """Asaas payment events"""
    payload = request.get_json(silent=True)
    token = request.headers.get(PAYMENT_TOKEN_HEADER)
    try:
        result = get_services().reconciler.handle_payment_webhook(payload, token)
    except (StoreUnavailable, ConcurrentUpdateError) as e:
        return _store_failure("payment", e)
    return jsonify(result.to_dict()), 200


@webhooks_bp.route("/tracking", methods=["POST"])
def tracking_webhook():
    """SendGrid event batches (JSON array) and Z-API status callbacks (JSON object)"""
    payload = request.get_json(silent=True)
    try:
        result = get_services().reconciler.handle_tracking_payload(payload)
    except (StoreUnavailable, ConcurrentUpdateError) as e:
        return _store_failure("tracking", e)
    return jsonify(result.to_dict()), 200
