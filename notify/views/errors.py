"""
Error handlers for Notify.

Every error leaves the API as a JSON body with an ``error`` code.
"""

from flask import jsonify
from werkzeug.exceptions import HTTPException

from notify.services.entity_store import ConcurrentUpdateError, StoreUnavailable
from notify.services.exceptions import (
    InvalidTransition,
    NotFoundError,
    ProviderError,
    ProviderNotConfigured,
    RefundFailed,
    RefundRejected,
)
from notify.utils.logging_config import get_logger, log_security_event
from notify.utils.validators import ValidationError


def register_error_handlers(app):
    """Register error handlers with the Flask app"""
    logger = get_logger("views.errors")

    @app.errorhandler(ValidationError)
    def validation_error(error):
        log_security_event(
            "validation_error", {"field": error.field, "code": error.code, "error_message": error.message}
        )
        return jsonify({"success": False, "error": "validation_error", "details": error.to_dict()}), 400

    @app.errorhandler(NotFoundError)
    def entity_not_found(error):
        return jsonify({"success": False, **error.to_dict()}), 404

    @app.errorhandler(InvalidTransition)
    def invalid_transition(error):
        return jsonify({"success": False, **error.to_dict()}), 409

    @app.errorhandler(RefundRejected)
    def refund_rejected(error):
        return jsonify({"success": False, **error.to_dict()}), 409

    @app.errorhandler(RefundFailed)
    def refund_failed(error):
        logger.error(
            "Refund failed and was rolled back",
            extra={"event": "refund_failed", "transaction_id": error.transaction_id, "step": error.step},
        )
        return jsonify({"success": False, **error.to_dict(), "step": error.step}), 500

    @app.errorhandler(ProviderNotConfigured)
    def provider_not_configured(error):
        return jsonify({"success": False, **error.to_dict()}), 503

    @app.errorhandler(ProviderError)
    def provider_error(error):
        logger.warning(
            "Provider error returned to client",
            extra={"event": "provider_error", "provider": error.provider, "status_code": error.status_code},
        )
        return jsonify({"success": False, **error.to_dict()}), 502

    @app.errorhandler(StoreUnavailable)
    @app.errorhandler(ConcurrentUpdateError)
    def store_error(error):
        logger.error(
            "Entity store error",
            extra={"event": "store_error", "error": str(error), "error_type": type(error).__name__},
        )
        return jsonify({"success": False, "error": "store_unavailable", "message": "Try again later"}), 503

    @app.errorhandler(HTTPException)
    def http_error(error):
        code = error.name.lower().replace(" ", "_")
        return jsonify({"success": False, "error": code, "message": error.description}), error.code or 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle unexpected exceptions"""
        logger.error(
            "Unhandled exception",
            extra={"event": "unhandled_exception", "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return jsonify({"success": False, "error": "internal_error", "message": "Internal server error"}), 500
