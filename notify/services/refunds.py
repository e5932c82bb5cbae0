"""
Refund and cancellation of paid notifications.

A refund touches three entities that are stored independently: the
transaction, the notification it paid for and the linked meeting. The
coordinator applies them in order and, if a later write fails, undoes the
earlier ones in reverse order before reporting the failure.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ..models.entities import (
    MEETING,
    NOTIFICATION,
    TRANSACTION,
    MeetingStatus,
    NotificationStatus,
    TransactionStatus,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from ..utils.logging_config import get_logger, log_business_event
from .correlation import find_linked_meeting, scan_latest_meeting, scan_latest_sent_notification
from .entity_store import EntityStore
from .exceptions import NotFoundError, RefundFailed, RefundRejected


@dataclass
class RefundResult:
    transaction_id: str
    notification_id: Optional[str] = None
    meeting_id: Optional[str] = None
    correlated: bool = True
    steps: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "transaction_id": self.transaction_id,
            "status": TransactionStatus.REFUNDED.value,
            "notification_id": self.notification_id,
            "meeting_id": self.meeting_id,
            "correlated": self.correlated,
            "steps": self.steps,
        }


class RefundCoordinator:
    def __init__(self, store: EntityStore, window_hours: int = 24):
        self.store = store
        self.window = timedelta(hours=window_hours)
        self.logger = get_logger("services.refunds")

    def check_eligibility(self, transaction: dict, now: datetime):
        """
        Raise RefundRejected unless the transaction may be refunded at ``now``.

        The window runs from settlement (``paid_at``), falling back to the
        transaction date for records paid before settlement was stamped. It is
        inclusive: a refund exactly at the window edge is accepted.
        """
        status = TransactionStatus.parse(transaction.get("status"))
        if status == TransactionStatus.REFUNDED:
            raise RefundRejected(RefundRejected.ALREADY_REFUNDED, "Transaction was already refunded")
        if status != TransactionStatus.PAID:
            raise RefundRejected(
                RefundRejected.NOT_PAID, f"Only paid transactions can be refunded (status: {status.value})"
            )

        paid_on = parse_timestamp(transaction.get("paid_at") or transaction.get("date"))
        if paid_on is None or now - paid_on > self.window:
            hours = int(self.window.total_seconds() // 3600)
            raise RefundRejected(
                RefundRejected.WINDOW_EXPIRED, f"Refunds are only accepted within {hours} hours of payment"
            )

    def refund(self, transaction_id: str, now: Optional[datetime] = None) -> RefundResult:
        now = now or utcnow()
        transaction = self.store.get(TRANSACTION, transaction_id)
        if transaction is None:
            raise NotFoundError(TRANSACTION, transaction_id)

        self.check_eligibility(transaction, now)

        notification, meeting, correlated = self._resolve_targets(transaction)
        result = RefundResult(
            transaction_id,
            notification_id=notification["notification_id"] if notification else None,
            meeting_id=meeting["meeting_id"] if meeting else None,
            correlated=correlated,
        )

        compensations: List[Tuple[str, Callable[[], None]]] = []
        step = "transaction"
        try:
            self._refund_transaction(transaction_id, now)
            compensations.append((step, lambda: self._restore_transaction(transaction_id)))
            result.steps.append(step)

            if notification:
                step = "notification"
                previous = self._revert_notification(notification["notification_id"])
                if previous is not None:
                    nid = notification["notification_id"]
                    compensations.append((step, lambda: self._restore_notification(nid, previous)))
                    result.steps.append(step)

            if meeting:
                step = "meeting"
                if self._cancel_meeting(meeting["meeting_id"]):
                    mid = meeting["meeting_id"]
                    compensations.append((step, lambda: self._restore_meeting(mid)))
                    result.steps.append(step)
        except RefundRejected:
            raise
        except Exception as e:
            self.logger.error(
                "Refund step failed, compensating",
                extra={
                    "event": "refund_step_failed",
                    "transaction_id": transaction_id,
                    "step": step,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            self._compensate(transaction_id, compensations)
            raise RefundFailed(transaction_id, step, e) from e

        log_business_event(
            "transaction_refunded",
            TRANSACTION,
            transaction_id,
            notification_id=result.notification_id,
            meeting_id=result.meeting_id,
            correlated=correlated,
        )
        return result

    def _resolve_targets(self, transaction: dict):
        notification_id = transaction.get("notification_id")
        if notification_id:
            notification = self.store.get(NOTIFICATION, notification_id)
            meeting = find_linked_meeting(self.store, notification, MeetingStatus.SCHEDULED) if notification else None
            return notification, meeting, True

        owner_uid = transaction.get("owner_uid")
        if not owner_uid:
            return None, None, False

        self.logger.warning(
            "Transaction has no notification link, matching by owner",
            extra={"event": "refund_uncorrelated", "transaction_id": transaction.get("transaction_id")},
        )
        notification = scan_latest_sent_notification(self.store, owner_uid)
        meeting = None
        if notification:
            meeting = find_linked_meeting(self.store, notification, MeetingStatus.SCHEDULED)
        if meeting is None:
            meeting = scan_latest_meeting(self.store, owner_uid, MeetingStatus.SCHEDULED)
        return notification, meeting, False

    def _refund_transaction(self, transaction_id: str, now: datetime):
        def mutator(doc):
            if TransactionStatus.parse(doc.get("status")) != TransactionStatus.PAID:
                return None
            return {"status": TransactionStatus.REFUNDED.value, "refunded_at": format_timestamp(now)}

        result = self.store.update(TRANSACTION, transaction_id, mutator)
        if result is None:
            raise NotFoundError(TRANSACTION, transaction_id)
        document, changed = result
        if not changed:
            # Lost a race with another refund or status change
            self.check_eligibility(document, now)
            raise RefundRejected(RefundRejected.NOT_PAID, "Transaction status changed during refund")

    def _restore_transaction(self, transaction_id: str):
        def mutator(doc):
            if TransactionStatus.parse(doc.get("status")) != TransactionStatus.REFUNDED:
                return None
            return {"status": TransactionStatus.PAID.value, "refunded_at": None}

        self.store.update(TRANSACTION, transaction_id, mutator)

    def _revert_notification(self, notification_id: str) -> Optional[str]:
        """Move a paid notification back to awaiting payment; returns the previous status if it changed."""
        previous = {}

        def mutator(doc):
            status = NotificationStatus.parse(doc.get("status"))
            if not status.at_least(NotificationStatus.SENT):
                return None
            previous["status"] = status.value
            return {"status": NotificationStatus.AWAITING_PAYMENT.value, "updated_at": format_timestamp(utcnow())}

        result = self.store.update(NOTIFICATION, notification_id, mutator)
        if result is None or not result[1]:
            return None
        return previous["status"]

    def _restore_notification(self, notification_id: str, previous_status: str):
        def mutator(doc):
            if NotificationStatus.parse(doc.get("status")) != NotificationStatus.AWAITING_PAYMENT:
                return None
            return {"status": previous_status}

        self.store.update(NOTIFICATION, notification_id, mutator)

    def _cancel_meeting(self, meeting_id: str) -> bool:
        def mutator(doc):
            if MeetingStatus.parse(doc.get("status")) != MeetingStatus.SCHEDULED:
                return None
            return {"status": MeetingStatus.CANCELED.value}

        result = self.store.update(MEETING, meeting_id, mutator)
        return bool(result and result[1])

    def _restore_meeting(self, meeting_id: str):
        def mutator(doc):
            if MeetingStatus.parse(doc.get("status")) != MeetingStatus.CANCELED:
                return None
            return {"status": MeetingStatus.SCHEDULED.value}

        self.store.update(MEETING, meeting_id, mutator)

    def _compensate(self, transaction_id: str, compensations):
        for step, undo in reversed(compensations):
            try:
                undo()
                self.logger.info(
                    "Refund step compensated",
                    extra={"event": "refund_compensated", "transaction_id": transaction_id, "step": step},
                )
            except Exception as e:
                self.logger.critical(
                    "Refund compensation failed, manual repair required",
                    extra={
                        "event": "refund_compensation_failed",
                        "transaction_id": transaction_id,
                        "step": step,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
