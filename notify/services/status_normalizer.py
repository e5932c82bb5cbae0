"""
Translation of provider status vocabularies into canonical statuses.

Email (SendGrid), messaging (Z-API) and payment (Asaas) providers each report
progress with their own names and codes. Everything that crosses the webhook
boundary goes through the tables in this module, so only canonical enums are
ever written to the store.
"""

import re
from enum import Enum
from typing import Any, Optional

from ..models.entities import EmailChannelStatus, MessagingChannelStatus, NotificationStatus


class ChannelOutcome(str, Enum):
    """Normalized result of a delivery-channel event."""

    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


EMAIL_EVENTS = {
    "delivered": ChannelOutcome.DELIVERED,
    "open": ChannelOutcome.READ,
    "click": ChannelOutcome.READ,
    "bounce": ChannelOutcome.FAILED,
    "dropped": ChannelOutcome.FAILED,
}

# The channel field keeps the finer-grained provider distinction (opened vs clicked)
EMAIL_CHANNEL_STATUS = {
    "delivered": EmailChannelStatus.DELIVERED,
    "open": EmailChannelStatus.OPENED,
    "click": EmailChannelStatus.CLICKED,
    "bounce": EmailChannelStatus.BOUNCED,
    "dropped": EmailChannelStatus.BOUNCED,
}

MESSAGING_STATUSES = {
    "3": ChannelOutcome.DELIVERED,
    "delivered": ChannelOutcome.DELIVERED,
    "received": ChannelOutcome.DELIVERED,
    "4": ChannelOutcome.READ,
    "read": ChannelOutcome.READ,
    "played": ChannelOutcome.READ,
    "failed": ChannelOutcome.FAILED,
    "error": ChannelOutcome.FAILED,
}

MESSAGING_CHANNEL_STATUS = {
    ChannelOutcome.DELIVERED: MessagingChannelStatus.DELIVERED,
    ChannelOutcome.READ: MessagingChannelStatus.READ,
    ChannelOutcome.FAILED: MessagingChannelStatus.FAILED,
}

PAID_PAYMENT_STATUSES = frozenset(
    ["CONFIRMED", "RECEIVED", "PAYMENT_RECEIVED", "PAYMENT_CONFIRMED", "RECEIVED_IN_CASH"]
)
PAYMENT_CONFIRMED_EVENTS = frozenset(["PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"])

# Progress rank of channel statuses; failures rank below any delivery report
_EMAIL_RANK = {
    EmailChannelStatus.BOUNCED: 0,
    EmailChannelStatus.SENT: 1,
    EmailChannelStatus.DELIVERED: 2,
    EmailChannelStatus.OPENED: 3,
    EmailChannelStatus.CLICKED: 3,
}
_MESSAGING_RANK = {
    MessagingChannelStatus.FAILED: 0,
    MessagingChannelStatus.SENT: 1,
    MessagingChannelStatus.DELIVERED: 2,
    MessagingChannelStatus.READ: 3,
}
_FAILURE_STATUSES = (EmailChannelStatus.BOUNCED, MessagingChannelStatus.FAILED)

_IMPLIED_STATUS = {
    ChannelOutcome.DELIVERED: NotificationStatus.DELIVERED,
    ChannelOutcome.READ: NotificationStatus.READ,
}

REFERENCE_PATTERN = re.compile(r"Ref:\s*(\S+)")


def normalize_email_event(event: Any) -> Optional[ChannelOutcome]:
    """Map a SendGrid event name; unknown events (processed, deferred, ...) map to None."""
    if not isinstance(event, str):
        return None
    return EMAIL_EVENTS.get(event.strip().lower())


def email_channel_status(event: Any) -> Optional[EmailChannelStatus]:
    if not isinstance(event, str):
        return None
    return EMAIL_CHANNEL_STATUS.get(event.strip().lower())


def normalize_messaging_status(status: Any) -> Optional[ChannelOutcome]:
    """Map a Z-API status, which may arrive as a string name or a numeric code."""
    if status is None or isinstance(status, bool):
        return None
    return MESSAGING_STATUSES.get(str(status).strip().lower())


def messaging_channel_status(outcome: Optional[ChannelOutcome]) -> Optional[MessagingChannelStatus]:
    return MESSAGING_CHANNEL_STATUS.get(outcome) if outcome else None


def is_paid_status(status: Any) -> bool:
    return isinstance(status, str) and status.strip().upper() in PAID_PAYMENT_STATUSES


def is_payment_confirmation(event: Any) -> bool:
    return isinstance(event, str) and event.strip().upper() in PAYMENT_CONFIRMED_EVENTS


def implied_status(outcome: Optional[ChannelOutcome]) -> Optional[NotificationStatus]:
    """Canonical status implied by a channel outcome; failures imply nothing."""
    return _IMPLIED_STATUS.get(outcome) if outcome else None


def should_advance_channel(current, new) -> bool:
    """
    Decide whether a channel field may move from ``current`` to ``new``.

    Channel fields only move forward. A failure is recorded only while the
    channel has not reported any delivery, so a late bounce cannot hide a
    read receipt.
    """
    if new is None:
        return False
    if current is None:
        return True
    if current == new:
        return False
    ranks = _EMAIL_RANK if isinstance(new, EmailChannelStatus) else _MESSAGING_RANK
    if new in _FAILURE_STATUSES:
        return ranks.get(current, 0) <= 1
    return ranks[new] > ranks.get(current, 0)


def derive_canonical_status(
    current: NotificationStatus, outcome: Optional[ChannelOutcome]
) -> NotificationStatus:
    """Maximum by progress of the current status and the channel-implied status."""
    implied = implied_status(outcome)
    if implied is None or current.at_least(implied):
        return current
    return implied


def extract_reference(description: Any) -> Optional[str]:
    """Pull the notification id out of 'Notificação Extrajudicial - Ref: <id>'."""
    if not isinstance(description, str):
        return None
    match = REFERENCE_PATTERN.search(description)
    return match.group(1) if match else None
