"""
Outbound delivery of paid notifications.

The orchestrator renders one notification into an email and a WhatsApp
message and sends them concurrently. Each channel succeeds or fails on its
own; outcomes are recorded on the notification's channel fields and logged.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from jinja2 import Environment, PackageLoader, select_autoescape

from ..models.entities import NOTIFICATION
from ..utils.helpers import format_date_br, mask_document, normalize_phone
from ..utils.logging_config import get_logger
from .channel_tracking import EMAIL, MESSAGING, ChannelTracker
from .entity_store import EntityStore

SENT = "sent"
SENT_AS_TEXT = "sent_text_fallback"
FAILED = "failed"
TIMED_OUT = "timeout"
SKIPPED = "skipped"

_templates = Environment(loader=PackageLoader("notify", "templates"), autoescape=select_autoescape(["html"]))


@dataclass
class NotificationContent:
    """Channel-independent view of what is being delivered."""

    notification_id: str
    recipient_name: str
    subject: str
    sender_name: str
    sender_document: str
    document_url: Optional[str]
    issued_on: str

    @classmethod
    def from_document(cls, doc: Dict, tz: ZoneInfo) -> "NotificationContent":
        sender = doc.get("sender") or {}
        return cls(
            notification_id=doc["notification_id"],
            recipient_name=doc.get("recipient_name") or "",
            subject=doc.get("subject") or doc.get("species") or "",
            sender_name=sender.get("name") or "",
            sender_document=mask_document(sender.get("document")),
            document_url=doc.get("pdf_url"),
            issued_on=format_date_br(datetime.now(tz)),
        )

    def email_subject(self) -> str:
        return f"NOTIFICAÇÃO EXTRAJUDICIAL: {self.subject}"

    def email_html(self) -> str:
        return _templates.get_template("email/notification.html").render(content=self)

    def message_caption(self) -> str:
        sender = self.sender_name
        if self.sender_document:
            sender = f"{sender} ({self.sender_document})"
        return (
            f"Olá, {self.recipient_name}.\n\n"
            "Uma *Notificação Extrajudicial* foi emitida e registrada em nosso sistema.\n\n"
            f"*Assunto:* {self.subject}\n\n"
            "⚠️ Este documento possui validade jurídica. Recomendamos a leitura imediata.\n\n"
            f"Atenciosamente,\n*{sender}*"
        )

    def message_text_with_link(self) -> str:
        text = self.message_caption()
        if self.document_url:
            text = f"{text}\n\n📄 *ACESSE O DOCUMENTO:*\n{self.document_url}"
        return text


@dataclass
class DispatchReport:
    notification_id: str
    channels: Dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self):
        return [name for name, outcome in self.channels.items() if outcome != SKIPPED]


class DispatchOrchestrator:
    def __init__(
        self,
        store: EntityStore,
        tracker: ChannelTracker,
        email_client,
        messaging_client,
        timeout: float = 30.0,
        background: bool = True,
        timezone: str = "America/Sao_Paulo",
        max_workers: int = 4,
    ):
        self.store = store
        self.tracker = tracker
        self.email_client = email_client
        self.messaging_client = messaging_client
        self.timeout = timeout
        self.background = background
        self.tz = ZoneInfo(timezone)
        self.logger = get_logger("services.dispatch")
        self._channel_pool = ThreadPoolExecutor(max_workers=max_workers * 2, thread_name_prefix="notify-channel")
        self._background_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify-dispatch")

    def dispatch_in_background(self, notification_id: str):
        """Fire-and-forget dispatch; returns before any provider is called when running in background."""
        if not self.background:
            return self._dispatch_logged(notification_id)
        return self._background_pool.submit(self._dispatch_logged, notification_id)

    def _dispatch_logged(self, notification_id: str) -> Optional[DispatchReport]:
        try:
            return self.dispatch(notification_id)
        except Exception as e:
            self.logger.error(
                "Dispatch crashed",
                extra={
                    "event": "dispatch_error",
                    "notification_id": notification_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return None

    def dispatch(self, notification_id: str) -> DispatchReport:
        report = DispatchReport(notification_id)
        doc = self.store.get(NOTIFICATION, notification_id)
        if doc is None:
            self.logger.warning(
                "Dispatch requested for unknown notification",
                extra={"event": "dispatch_not_found", "notification_id": notification_id},
            )
            return report

        content = NotificationContent.from_document(doc, self.tz)
        tasks = {}

        email = doc.get("recipient_email")
        if email and self.email_client is not None and self.email_client.configured:
            tasks[EMAIL] = self._channel_pool.submit(self._send_email, content, email)
        else:
            report.channels[EMAIL] = SKIPPED

        phone = normalize_phone(doc.get("recipient_phone"))
        if phone and self.messaging_client is not None and self.messaging_client.configured:
            tasks[MESSAGING] = self._channel_pool.submit(self._send_message, content, phone)
        else:
            report.channels[MESSAGING] = SKIPPED

        if tasks:
            wait(list(tasks.values()), timeout=self.timeout)
        for channel, future in tasks.items():
            if not future.done():
                future.cancel()
                report.channels[channel] = TIMED_OUT
                self.logger.warning(
                    "Channel dispatch timed out",
                    extra={"event": "dispatch_timeout", "notification_id": notification_id, "channel": channel},
                )
            else:
                try:
                    report.channels[channel] = future.result()
                except Exception as e:
                    report.channels[channel] = FAILED
                    self.logger.error(
                        "Channel outcome could not be recorded",
                        extra={
                            "event": "dispatch_record_failed",
                            "notification_id": notification_id,
                            "channel": channel,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                    )

        self.logger.info(
            "Dispatch finished",
            extra={"event": "dispatch_finished", "notification_id": notification_id, "channels": report.channels},
        )
        return report

    def _send_email(self, content: NotificationContent, to: str) -> str:
        try:
            self.email_client.send(to, content.email_subject(), content.email_html(), content.notification_id)
        except Exception as e:
            self._channel_failed(content.notification_id, EMAIL, e)
            return FAILED
        self.tracker.record_sent(content.notification_id, EMAIL)
        return SENT

    def _send_message(self, content: NotificationContent, phone: str) -> str:
        outcome = SENT
        message_id = None
        if content.document_url:
            try:
                message_id = self.messaging_client.send_document(
                    phone, content.document_url, content.message_caption()
                )
            except Exception as e:
                self.logger.warning(
                    "Document send failed, falling back to text",
                    extra={
                        "event": "messaging_document_failed",
                        "notification_id": content.notification_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

        if message_id is None:
            try:
                message_id = self.messaging_client.send_text(phone, content.message_text_with_link())
            except Exception as e:
                self._channel_failed(content.notification_id, MESSAGING, e)
                return FAILED
            outcome = SENT_AS_TEXT if content.document_url else SENT

        self.tracker.record_sent(content.notification_id, MESSAGING, message_id)
        return outcome

    def _channel_failed(self, notification_id: str, channel: str, error: Exception):
        self.logger.error(
            "Channel dispatch failed",
            extra={
                "event": "dispatch_channel_failed",
                "notification_id": notification_id,
                "channel": channel,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
        self.tracker.record_failed(notification_id, channel)

    def shutdown(self, wait_for_pending: bool = True):
        self._background_pool.shutdown(wait=wait_for_pending)
        self._channel_pool.shutdown(wait=wait_for_pending)
