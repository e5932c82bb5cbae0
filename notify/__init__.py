"""
Notify Flask Application

Extrajudicial notifications: drafting, payment, multi-channel delivery,
delivery tracking, refunds and conciliation meetings.
"""

from dataclasses import dataclass
from typing import Any, Optional

from flask import Flask, current_app

from notify.config.settings import Config
from notify.utils.logging_config import get_logger, setup_flask_logging

EXTENSION_KEY = "notify"


@dataclass
class NotifyServices:
    """Long-lived collaborators shared by every request of one app."""

    store: Any
    blobs: Any
    gateway: Any
    email_client: Any
    messaging_client: Any
    text_client: Any
    tracker: Any
    dispatcher: Any
    reconciler: Any
    refunds: Any
    notifications: Any
    checkout: Any
    sweeper: Optional[Any] = None

    def close(self):
        if self.sweeper is not None:
            self.sweeper.stop()
        self.dispatcher.shutdown()
        for client in (self.gateway, self.email_client, self.messaging_client, self.text_client):
            client.close()
        self.store.close()


def create_store(config_class):
    """Entity store selected by STORE_BACKEND"""
    if config_class.STORE_BACKEND == "memory":
        from notify.services.entity_store import MemoryEntityStore

        return MemoryEntityStore()

    from notify.services.database import create_postgres_store

    return create_postgres_store(config_class)


def build_services(config_class, store=None) -> NotifyServices:
    from notify.services.asaas_client import AsaasClient
    from notify.services.blob_storage import LocalBlobStore
    from notify.services.channel_tracking import ChannelTracker
    from notify.services.checkout_service import CheckoutService
    from notify.services.dispatch import DispatchOrchestrator
    from notify.services.email_client import SendGridClient
    from notify.services.messaging_client import ZApiClient
    from notify.services.notification_service import NotificationService
    from notify.services.reconciliation import WebhookReconciler
    from notify.services.refunds import RefundCoordinator
    from notify.services.scheduler import MeetingSweeper
    from notify.services.text_generation import GeminiClient

    store = store if store is not None else create_store(config_class)
    timeout = config_class.HTTP_TIMEOUT_SECONDS

    gateway = AsaasClient(config_class.ASAAS_API_KEY, config_class.ASAAS_BASE_URL, timeout=timeout)
    email_client = SendGridClient(
        config_class.SENDGRID_API_KEY, config_class.SENDGRID_FROM_EMAIL, config_class.SENDGRID_BASE_URL, timeout=timeout
    )
    messaging_client = ZApiClient(
        config_class.ZAPI_INSTANCE_ID,
        config_class.ZAPI_INSTANCE_TOKEN,
        config_class.ZAPI_CLIENT_TOKEN,
        config_class.ZAPI_BASE_URL,
        timeout=timeout,
    )
    text_client = GeminiClient(
        config_class.GEMINI_API_KEY, config_class.GEMINI_MODEL, config_class.GEMINI_BASE_URL, timeout=timeout
    )
    blobs = LocalBlobStore(config_class.BLOB_STORAGE_ROOT, config_class.BLOB_PUBLIC_BASE_URL)

    tracker = ChannelTracker(store)
    dispatcher = DispatchOrchestrator(
        store,
        tracker,
        email_client,
        messaging_client,
        timeout=config_class.DISPATCH_TIMEOUT_SECONDS,
        background=config_class.DISPATCH_IN_BACKGROUND,
        timezone=config_class.MEETING_TIMEZONE,
    )
    reconciler = WebhookReconciler(store, tracker, dispatcher, config_class.ASAAS_WEBHOOK_TOKEN)

    return NotifyServices(
        store=store,
        blobs=blobs,
        gateway=gateway,
        email_client=email_client,
        messaging_client=messaging_client,
        text_client=text_client,
        tracker=tracker,
        dispatcher=dispatcher,
        reconciler=reconciler,
        refunds=RefundCoordinator(store, config_class.REFUND_WINDOW_HOURS),
        notifications=NotificationService(
            store,
            blobs,
            text_client,
            price=config_class.NOTIFICATION_PRICE,
            meeting_link_base_url=config_class.MEETING_LINK_BASE_URL,
            timezone=config_class.MEETING_TIMEZONE,
        ),
        checkout=CheckoutService(
            store,
            gateway,
            reconciler,
            due_days=config_class.PAYMENT_DUE_DAYS,
            timezone=config_class.MEETING_TIMEZONE,
        ),
        sweeper=MeetingSweeper(
            store, config_class.MEETING_SWEEP_INTERVAL_SECONDS, config_class.MEETING_TIMEZONE
        ),
    )


def create_app(config_class=Config, store=None):
    """Application factory pattern for creating Flask app instances"""
    app = Flask(__name__)

    # Load configuration
    try:
        config_class.validate_config()
        app.config.from_object(config_class)
        app.secret_key = config_class.SECRET_KEY
    except ValueError as e:
        # Set up basic logging first for error reporting
        setup_flask_logging(app)
        logger = get_logger("notify.config")
        logger.error("Configuration validation failed", extra={"error": str(e), "config_class": config_class.__name__})
        raise

    # Set up structured logging
    setup_flask_logging(app)
    logger = get_logger("notify.init")

    try:
        services = build_services(config_class, store)
        logger.info(
            "Entity store initialized",
            extra={
                "event": "store_init_success",
                "backend": config_class.STORE_BACKEND,
                "host": config_class.DB_HOST if config_class.STORE_BACKEND == "postgres" else None,
            },
        )
    except Exception as e:
        logger.error(
            "Failed to initialize entity store",
            extra={
                "event": "store_init_failed",
                "backend": config_class.STORE_BACKEND,
                "error": str(e),
                "error_type": type(e).__name__,
                "db_config": {k: v for k, v in config_class.get_database_config().items() if k != "password"},
            },
            exc_info=True,
        )
        raise
    app.extensions[EXTENSION_KEY] = services

    # Register blueprints
    from notify.views.api import api_bp
    from notify.views.main import main_bp
    from notify.views.webhooks import webhooks_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Register error handlers
    from notify.views.errors import register_error_handlers

    register_error_handlers(app)

    from notify.utils.security import apply_security_headers

    app.after_request(apply_security_headers)

    from notify.cli import register_commands

    register_commands(app)

    if config_class.MEETING_SWEEP_ENABLED:
        services.sweeper.start()

    return app


def get_services() -> NotifyServices:
    """Get the service container of the current app"""
    return current_app.extensions[EXTENSION_KEY]
