"""
Lookups that tie notifications, meetings and transactions together.

Entities created in one delivery request share the notification id. Records
written before that link existed are matched by owner and guest identity.
"""

from typing import Any, Dict, List, Optional

from ..models.entities import MEETING, NOTIFICATION, MeetingStatus, NotificationStatus, parse_timestamp
from .entity_store import EntityStore

_EPOCH = parse_timestamp("1970-01-01T00:00:00")


def most_recent(docs: List[Dict[str, Any]], field: str = "created_at") -> Optional[Dict[str, Any]]:
    if not docs:
        return None
    return max(docs, key=lambda d: parse_timestamp(d.get(field) or d.get("created_at")) or _EPOCH)


def meeting_status(doc: Dict[str, Any]) -> Optional[MeetingStatus]:
    try:
        return MeetingStatus.parse(doc.get("status"))
    except ValueError:
        return None


def notification_status(doc: Dict[str, Any]) -> Optional[NotificationStatus]:
    try:
        return NotificationStatus.parse(doc.get("status"))
    except ValueError:
        return None


def find_linked_meeting(
    store: EntityStore, notification: Dict[str, Any], status: MeetingStatus
) -> Optional[Dict[str, Any]]:
    """
    Meeting in ``status`` linked to ``notification``.

    Meetings carrying the notification id win; otherwise the most recent
    unlinked meeting hosted by the sender for the same guest email or
    document number.
    """
    notification_id = notification.get("notification_id")
    linked = [m for m in store.query(MEETING, notification_id=notification_id) if meeting_status(m) == status]
    if linked:
        return most_recent(linked)

    sender_uid = (notification.get("sender") or {}).get("uid")
    if not sender_uid:
        return None
    email = (notification.get("recipient_email") or "").lower()
    document = notification.get("recipient_document")
    candidates = [
        m
        for m in store.query(MEETING, host_uid=sender_uid)
        if meeting_status(m) == status
        and not m.get("notification_id")
        and (
            (email and (m.get("guest_email") or "").lower() == email)
            or (document and m.get("guest_document") == document)
        )
    ]
    return most_recent(candidates)


def scan_latest_sent_notification(store: EntityStore, owner_uid: str) -> Optional[Dict[str, Any]]:
    """Most recent paid notification of an owner, for transactions without a notification id."""
    candidates = [
        n
        for n in store.query(NOTIFICATION)
        if (n.get("sender") or {}).get("uid") == owner_uid
        and (notification_status(n) or NotificationStatus.CREATED).at_least(NotificationStatus.SENT)
    ]
    return most_recent(candidates, "updated_at") if candidates else None


def scan_latest_meeting(store: EntityStore, host_uid: str, status: MeetingStatus) -> Optional[Dict[str, Any]]:
    candidates = [m for m in store.query(MEETING, host_uid=host_uid) if meeting_status(m) == status]
    return most_recent(candidates)
