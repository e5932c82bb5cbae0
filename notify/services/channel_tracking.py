"""
Per-channel delivery tracking for notifications.
"""

from typing import Optional

from ..models.entities import (
    NOTIFICATION,
    EmailChannelStatus,
    MessagingChannelStatus,
    NotificationStatus,
    format_timestamp,
    utcnow,
)
from ..utils.logging_config import get_logger, log_business_event
from .entity_store import EntityStore
from .status_normalizer import (
    ChannelOutcome,
    derive_canonical_status,
    email_channel_status,
    messaging_channel_status,
    normalize_email_event,
    should_advance_channel,
)

EMAIL = "email"
MESSAGING = "messaging"

_CHANNEL_FIELDS = {EMAIL: "email_status", MESSAGING: "messaging_status"}
_CHANNEL_ENUMS = {EMAIL: EmailChannelStatus, MESSAGING: MessagingChannelStatus}


class ChannelTracker:
    """Applies channel status reports to notifications through conditional store updates."""

    def __init__(self, store: EntityStore):
        self.store = store
        self.logger = get_logger("services.channel_tracking")

    def apply_email_event(self, notification_id: str, event: str):
        """Apply one SendGrid event. Returns ``(document, changed)`` or None when unknown."""
        outcome = normalize_email_event(event)
        if outcome is None:
            return None
        return self._apply(notification_id, EMAIL, email_channel_status(event), outcome)

    def apply_messaging_outcome(self, notification_id: str, outcome: ChannelOutcome):
        return self._apply(notification_id, MESSAGING, messaging_channel_status(outcome), outcome)

    def record_sent(self, notification_id: str, channel: str, message_id: Optional[str] = None):
        """Mark a channel as handed to the provider after a successful send call."""
        sent = _CHANNEL_ENUMS[channel].SENT
        field = _CHANNEL_FIELDS[channel]

        def mutator(doc):
            change = {}
            current = _CHANNEL_ENUMS[channel].parse(doc.get(field))
            if should_advance_channel(current, sent):
                change[field] = sent.value
            if message_id and doc.get("messaging_message_id") != message_id:
                change["messaging_message_id"] = message_id
            return change or None

        return self.store.update(NOTIFICATION, notification_id, mutator)

    def record_failed(self, notification_id: str, channel: str):
        failed = EmailChannelStatus.BOUNCED if channel == EMAIL else MessagingChannelStatus.FAILED
        field = _CHANNEL_FIELDS[channel]

        def mutator(doc):
            current = _CHANNEL_ENUMS[channel].parse(doc.get(field))
            return {field: failed.value} if should_advance_channel(current, failed) else None

        return self.store.update(NOTIFICATION, notification_id, mutator)

    def _apply(self, notification_id, channel, channel_status, outcome):
        field = _CHANNEL_FIELDS[channel]
        enum_cls = _CHANNEL_ENUMS[channel]

        def mutator(doc):
            change = {}
            current_channel = enum_cls.parse(doc.get(field))
            if should_advance_channel(current_channel, channel_status):
                change[field] = channel_status.value

            current = NotificationStatus.parse(doc.get("status"))
            # Unpaid (or refunded) notifications keep their canonical status
            if current.at_least(NotificationStatus.SENT):
                target = derive_canonical_status(current, outcome)
                if target != current:
                    change["status"] = target.value
                    now = format_timestamp(utcnow())
                    change["updated_at"] = now
                    if not doc.get("delivered_at"):
                        change["delivered_at"] = now
                    if target == NotificationStatus.READ and not doc.get("read_at"):
                        change["read_at"] = now
            return change or None

        result = self.store.update(NOTIFICATION, notification_id, mutator)
        if result is None:
            return None

        document, changed = result
        if changed:
            log_business_event(
                "channel_status_applied",
                NOTIFICATION,
                notification_id,
                channel=channel,
                outcome=outcome.value,
                status=document.get("status"),
            )
        else:
            self.logger.info(
                "Channel event already reflected",
                extra={"event": "channel_event_noop", "notification_id": notification_id, "channel": channel},
            )
        return result
