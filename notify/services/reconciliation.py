"""
Webhook reconciliation for Notify.

Inbound provider callbacks (payment gateway, email provider, messaging
provider) are resolved to the notification they refer to and applied as
conditional "advance to at least X" updates, so duplicated or reordered
deliveries never move an entity backwards or trigger a second dispatch.

Payment confirmation has a single entry point, ``confirm_payment``, shared by
the push path (webhook) and the pull path (manual status check).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.entities import (
    MEETING,
    NOTIFICATION,
    TRANSACTION,
    MeetingStatus,
    NotificationStatus,
    TransactionStatus,
    format_timestamp,
    utcnow,
)
from ..utils.logging_config import get_logger, log_business_event, log_security_event
from ..utils.security import verify_webhook_token
from .channel_tracking import ChannelTracker
from .correlation import find_linked_meeting
from .entity_store import EntityStore
from .status_normalizer import extract_reference, is_payment_confirmation, normalize_messaging_status

# Statuses from which a payment confirmation may move a notification to Sent
_CONFIRMABLE = (NotificationStatus.CREATED, NotificationStatus.AWAITING_PAYMENT)
_SETTLEABLE_TRANSACTIONS = (TransactionStatus.PENDING, TransactionStatus.FAILED)


@dataclass
class PaymentConfirmation:
    notification_id: str
    payment_id: Optional[str] = None
    payment_date: Optional[str] = None
    payment_method: Optional[str] = None
    source: str = "webhook"


@dataclass
class WebhookResult:
    """Acknowledgement returned to the provider and logged."""

    processed: bool
    reason: str
    entity_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"received": True, "processed": self.processed, "reason": self.reason}
        if self.entity_id:
            data["entity_id"] = self.entity_id
        if self.details:
            data.update(self.details)
        return data


class WebhookReconciler:
    def __init__(self, store: EntityStore, tracker: ChannelTracker, dispatcher, webhook_token: Optional[str]):
        self.store = store
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.webhook_token = webhook_token
        self.logger = get_logger("services.reconciliation")

    # Payment gateway
    def handle_payment_webhook(self, payload: Any, token: Optional[str]) -> WebhookResult:
        """
        Handle an Asaas payment callback.

        Rejected tokens, irrelevant events and unknown references are all
        acknowledged without processing. Only store failures propagate.
        """
        if not verify_webhook_token(token, self.webhook_token):
            log_security_event(
                "payment_webhook_token_rejected",
                {"token_present": bool(token), "token_configured": bool(self.webhook_token)},
            )
            return self._ignored("invalid_token")

        if not isinstance(payload, dict) or not isinstance(payload.get("payment"), dict):
            return self._ignored("malformed_payload")

        event = payload.get("event")
        if not is_payment_confirmation(event):
            return self._ignored("event_ignored", payment_event=event)

        payment = payload["payment"]
        notification_id = self.resolve_payment_reference(payment)
        if not notification_id:
            return self._ignored("reference_missing", payment_id=payment.get("id"))

        return self.confirm_payment(
            PaymentConfirmation(
                notification_id=notification_id,
                payment_id=payment.get("id"),
                payment_date=payment.get("paymentDate") or payment.get("confirmedDate"),
                payment_method=payment.get("billingType"),
                source="webhook",
            )
        )

    @staticmethod
    def resolve_payment_reference(payment: Dict[str, Any]) -> Optional[str]:
        """Explicit external reference first, then the 'Ref:' token in the description."""
        reference = payment.get("externalReference")
        if isinstance(reference, str) and reference.strip():
            return reference.strip()
        return extract_reference(payment.get("description"))

    def confirm_payment(self, confirmation: PaymentConfirmation) -> WebhookResult:
        notification_id = confirmation.notification_id
        payment_date = confirmation.payment_date or utcnow().date().isoformat()

        def mark_sent(doc):
            if NotificationStatus.parse(doc.get("status")) not in _CONFIRMABLE:
                return None
            return {
                "status": NotificationStatus.SENT.value,
                "payment_id": confirmation.payment_id,
                "payment_date": payment_date,
                "payment_method": confirmation.payment_method,
                "updated_at": format_timestamp(utcnow()),
            }

        result = self.store.update(NOTIFICATION, notification_id, mark_sent)
        if result is None:
            return self._ignored("notification_not_found", entity_id=notification_id)

        document, changed = result
        if not changed:
            self.logger.info(
                "Payment already reconciled",
                extra={
                    "event": "payment_duplicate",
                    "notification_id": notification_id,
                    "status": document.get("status"),
                    "source": confirmation.source,
                },
            )
            return WebhookResult(False, "already_processed", notification_id)

        log_business_event(
            "payment_confirmed",
            NOTIFICATION,
            notification_id,
            payment_id=confirmation.payment_id,
            payment_method=confirmation.payment_method,
            source=confirmation.source,
        )

        steps = {
            "transaction": self._settle_transaction,
            "meeting": self._activate_meeting,
            "dispatch": self._start_dispatch,
        }
        outcomes = {}
        for step, action in steps.items():
            try:
                outcomes[step] = action(document, confirmation)
            except Exception as e:
                outcomes[step] = "error"
                self.logger.error(
                    "Payment confirmation step failed",
                    extra={
                        "event": "payment_step_failed",
                        "step": step,
                        "notification_id": notification_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )

        return WebhookResult(True, "payment_confirmed", notification_id, {"steps": outcomes})

    def _settle_transaction(self, notification: Dict[str, Any], confirmation: PaymentConfirmation) -> str:
        candidates = self.store.query(TRANSACTION, notification_id=confirmation.notification_id)
        if not candidates and confirmation.payment_id:
            candidates = self.store.query(TRANSACTION, payment_id=confirmation.payment_id)
        if not candidates:
            return "not_found"

        def mark_paid(doc):
            if TransactionStatus.parse(doc.get("status")) not in _SETTLEABLE_TRANSACTIONS:
                return None
            change = {"status": TransactionStatus.PAID.value, "paid_at": format_timestamp(utcnow())}
            if confirmation.payment_id:
                change["payment_id"] = confirmation.payment_id
            return change

        settled = "unchanged"
        for candidate in candidates:
            result = self.store.update(TRANSACTION, candidate["transaction_id"], mark_paid)
            if result and result[1]:
                settled = "paid"
                log_business_event("transaction_paid", TRANSACTION, candidate["transaction_id"])
        return settled

    def _activate_meeting(self, notification: Dict[str, Any], confirmation: PaymentConfirmation) -> str:
        meeting = find_linked_meeting(self.store, notification, MeetingStatus.CANCELED)
        if meeting is None:
            return "not_found"

        def schedule(doc):
            if MeetingStatus.parse(doc.get("status")) != MeetingStatus.CANCELED:
                return None
            return {"status": MeetingStatus.SCHEDULED.value}

        result = self.store.update(MEETING, meeting["meeting_id"], schedule)
        if result and result[1]:
            log_business_event(
                "meeting_scheduled", MEETING, meeting["meeting_id"], notification_id=notification.get("notification_id")
            )
            return "scheduled"
        return "unchanged"

    def _start_dispatch(self, notification: Dict[str, Any], confirmation: PaymentConfirmation) -> str:
        self.dispatcher.dispatch_in_background(notification["notification_id"])
        return "submitted"

    # Email provider
    def handle_email_events(self, events: List[Any]) -> WebhookResult:
        applied = ignored = 0
        for item in events:
            if not isinstance(item, dict):
                ignored += 1
                continue
            notification_id = item.get("notificationId") or item.get("notification_id")
            event = item.get("event")
            if not notification_id:
                ignored += 1
                continue
            result = self.tracker.apply_email_event(str(notification_id), event)
            if result is None:
                ignored += 1
                self.logger.info(
                    "Email event ignored",
                    extra={"event": "email_event_ignored", "notification_id": notification_id, "email_event": event},
                )
            elif result[1]:
                applied += 1

        return WebhookResult(applied > 0, "email_events", details={"applied": applied, "ignored": ignored})

    # Messaging provider
    def handle_messaging_event(self, payload: Dict[str, Any]) -> WebhookResult:
        message_id = payload.get("messageId")
        if not message_id and isinstance(payload.get("ids"), list) and payload["ids"]:
            message_id = payload["ids"][0]
        outcome = normalize_messaging_status(payload.get("status"))
        if not message_id or outcome is None:
            return self._ignored("event_ignored", status=payload.get("status"))

        matches = self.store.query(NOTIFICATION, messaging_message_id=str(message_id))
        if not matches:
            return self._ignored("message_not_found", message_id=message_id)
        if len(matches) > 1:
            self.logger.warning(
                "Multiple notifications share a messaging id",
                extra={"event": "messaging_id_ambiguous", "message_id": message_id, "count": len(matches)},
            )

        notification_id = matches[0]["notification_id"]
        result = self.tracker.apply_messaging_outcome(notification_id, outcome)
        if result is None:
            return self._ignored("notification_not_found", entity_id=notification_id)
        return WebhookResult(result[1], "messaging_status" if result[1] else "already_processed", notification_id)

    def handle_tracking_payload(self, payload: Any) -> WebhookResult:
        """SendGrid posts a JSON array, Z-API posts a single object."""
        if isinstance(payload, list):
            return self.handle_email_events(payload)
        if isinstance(payload, dict):
            return self.handle_messaging_event(payload)
        return self._ignored("malformed_payload")

    def _ignored(self, reason: str, entity_id: Optional[str] = None, **details) -> WebhookResult:
        self.logger.info(
            f"Webhook ignored: {reason}",
            extra={"event": "webhook_ignored", "reason": reason, "entity_id": entity_id, **details},
        )
        return WebhookResult(False, reason, entity_id, details=details)

