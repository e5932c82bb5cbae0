"""
Notification authoring service.

Covers the sender side of the flow: drafting, AI text generation, PDF and
evidence uploads, delivery request (which creates the pending transaction and
the optional conciliation meeting) and the sender/recipient listings.
"""

from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..models.entities import (
    MEETING,
    NOTIFICATION,
    RECIPIENT_VISIBLE_STATUSES,
    TRANSACTION,
    EvidenceItem,
    Meeting,
    MeetingStatus,
    Notification,
    NotificationStatus,
    SenderSnapshot,
    Transaction,
    TransactionStatus,
    format_timestamp,
    utcnow,
)
from ..utils.helpers import format_date_br, new_entity_id, only_digits, timestamp_millis
from ..utils.logging_config import get_logger, log_business_event
from ..utils.security import sanitize_filename
from .blob_storage import LocalBlobStore
from .correlation import meeting_status, notification_status
from .entity_store import EntityStore
from .exceptions import InvalidTransition, NotFoundError, ProviderNotConfigured
from .text_generation import build_prompt

EVIDENCE_FOLDERS = {"image": "fotos", "video": "videos", "document": "documentos"}

# Fields a sender may still edit while the notification is a draft
EDITABLE_FIELDS = (
    "recipient_name",
    "recipient_email",
    "recipient_phone",
    "recipient_document",
    "recipient_address",
    "area",
    "species",
    "subject",
    "facts",
    "content",
    "signature_base64",
)


def transaction_description(notification_id: str) -> str:
    return f"Notificação Extrajudicial - Ref: {notification_id}"


def media_type_for(content_type: Optional[str]) -> str:
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith("video/"):
        return "video"
    return "document"


class NotificationService:
    def __init__(
        self,
        store: EntityStore,
        blobs: LocalBlobStore,
        text_client=None,
        price: float = 57.92,
        meeting_link_base_url: str = "https://meet.jit.si",
        timezone: str = "America/Sao_Paulo",
    ):
        self.store = store
        self.blobs = blobs
        self.text_client = text_client
        self.price = price
        self.meeting_link_base_url = meeting_link_base_url.rstrip("/")
        self.tz = ZoneInfo(timezone)
        self.logger = get_logger("services.notifications")

    def get(self, notification_id: str) -> Dict[str, Any]:
        doc = self.store.get(NOTIFICATION, notification_id)
        if doc is None:
            raise NotFoundError(NOTIFICATION, notification_id)
        return doc

    def create_draft(self, sender: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a notification in ``created`` status with a snapshot of the sender."""
        now = utcnow()
        notification = Notification(
            notification_id=new_entity_id("NOT"),
            sender=SenderSnapshot(
                uid=sender["uid"],
                name=sender.get("name") or "",
                email=sender.get("email") or "",
                phone=sender.get("phone"),
                document=only_digits(sender.get("document")) or None,
                photo_url=sender.get("photo_url"),
            ),
            recipient_name=data.get("recipient_name") or "",
            recipient_email=data.get("recipient_email"),
            recipient_phone=data.get("recipient_phone"),
            recipient_document=only_digits(data.get("recipient_document")) or None,
            recipient_address=data.get("recipient_address"),
            area=data.get("area") or "",
            species=data.get("species") or "",
            subject=data.get("subject") or "",
            facts=data.get("facts") or "",
            content=data.get("content") or "",
            created_at=now,
            updated_at=now,
        )
        doc = self.store.put(NOTIFICATION, notification.notification_id, notification.to_dict())
        log_business_event(
            "notification_drafted", NOTIFICATION, notification.notification_id, sender_uid=notification.sender.uid
        )
        return doc

    def update_draft(self, notification_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        def mutator(doc):
            if notification_status(doc) != NotificationStatus.CREATED:
                raise InvalidTransition("Only draft notifications can be edited")
            change = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
            if "recipient_document" in change:
                change["recipient_document"] = only_digits(change["recipient_document"]) or None
            if not change:
                return None
            change["updated_at"] = format_timestamp(utcnow())
            return change

        result = self.store.update(NOTIFICATION, notification_id, mutator)
        if result is None:
            raise NotFoundError(NOTIFICATION, notification_id)
        return result[0]

    def generate_text(self, notification_id: str, tone: str = "formal", attachments=None) -> Dict[str, Any]:
        """
        Draft the notification body with the text-generation provider.

        Raises:
            ProviderNotConfigured: when no API key is configured
            ProviderError: when the provider call fails (the user may retry)
        """
        if self.text_client is None or not self.text_client.configured:
            raise ProviderNotConfigured("gemini")

        doc = self.get(notification_id)
        if notification_status(doc) != NotificationStatus.CREATED:
            raise InvalidTransition("Text can only be generated for draft notifications")
        prompt = build_prompt(
            recipient=doc.get("recipient_name") or "",
            subject=doc.get("subject") or "",
            facts=doc.get("facts") or "",
            area=doc.get("area") or "",
            species=doc.get("species") or "",
            tone=tone,
            attachment_count=len(doc.get("evidences") or []),
            current_date=format_date_br(datetime.now(self.tz)),
        )
        text = self.text_client.generate(prompt, attachments)
        updated = self.update_draft(notification_id, {"content": text})
        log_business_event("notification_text_generated", NOTIFICATION, notification_id, length=len(text))
        return updated

    def upload_pdf(self, notification_id: str, data: bytes) -> str:
        self.get(notification_id)
        url = self.blobs.upload(f"notificacoes_pdfs/{notification_id}.pdf", data)
        self.store.update(
            NOTIFICATION,
            notification_id,
            lambda doc: {"pdf_url": url, "updated_at": format_timestamp(utcnow())},
        )
        log_business_event("notification_pdf_uploaded", NOTIFICATION, notification_id, size=len(data))
        return url

    def upload_evidence(
        self, notification_id: str, filename: str, data: bytes, content_type: Optional[str] = None
    ) -> Dict[str, Any]:
        self.get(notification_id)
        media_type = media_type_for(content_type)
        folder = EVIDENCE_FOLDERS[media_type]
        name = sanitize_filename(filename or "arquivo")
        path = f"notificacoes/{notification_id}/{folder}/{timestamp_millis()}_{name}"
        url = self.blobs.upload(path, data)

        item = EvidenceItem(
            evidence_id=new_entity_id("EVD"),
            name=filename or name,
            url=url,
            media_type=media_type,
            storage_path=path,
            created_at=format_timestamp(utcnow()),
        )

        def mutator(doc):
            evidences = list(doc.get("evidences") or [])
            evidences.append(asdict(item))
            return {"evidences": evidences, "updated_at": format_timestamp(utcnow())}

        self.store.update(NOTIFICATION, notification_id, mutator)
        log_business_event(
            "evidence_uploaded", NOTIFICATION, notification_id, evidence_id=item.evidence_id, media_type=media_type
        )
        return asdict(item)

    def request_delivery(self, notification_id: str, meeting: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Move a draft to ``awaiting_payment`` and create its pending transaction.

        When ``meeting`` (date and time) is given, a canceled conciliation
        meeting linked to the notification is created too; payment
        confirmation schedules it. Requesting again for a notification that is
        already awaiting payment returns the existing records.
        """
        now = utcnow()

        def mutator(doc):
            status = notification_status(doc)
            if status == NotificationStatus.AWAITING_PAYMENT:
                return None
            if status != NotificationStatus.CREATED:
                raise InvalidTransition(f"Notification is already {status.value if status else 'invalid'}")
            return {
                "status": NotificationStatus.AWAITING_PAYMENT.value,
                "payment_amount": self.price,
                "updated_at": format_timestamp(now),
            }

        result = self.store.update(NOTIFICATION, notification_id, mutator)
        if result is None:
            raise NotFoundError(NOTIFICATION, notification_id)
        notification, changed = result

        if not changed:
            existing_tx = self._pending_transaction(notification_id)
            existing_meetings = self.store.query(MEETING, notification_id=notification_id)
            if existing_tx is not None:
                return {
                    "notification": notification,
                    "transaction": existing_tx,
                    "meeting": existing_meetings[0] if existing_meetings else None,
                }

        sender = notification.get("sender") or {}
        transaction = Transaction(
            transaction_id=new_entity_id("TX"),
            description=transaction_description(notification_id),
            amount=self.price,
            date=now,
            status=TransactionStatus.PENDING,
            owner_uid=sender.get("uid"),
            notification_id=notification_id,
            recipient_name=notification.get("recipient_name"),
        )
        tx_doc = self.store.put(TRANSACTION, transaction.transaction_id, transaction.to_dict())

        meeting_doc = None
        if meeting:
            meeting_id = new_entity_id("MEET")
            record = Meeting(
                meeting_id=meeting_id,
                host_uid=sender.get("uid") or "",
                host_name=sender.get("name") or "",
                title=f"Conciliação: {notification.get('subject') or notification_id}",
                date=meeting["date"],
                time=meeting["time"],
                meet_link=f"{self.meeting_link_base_url}/notify-{meeting_id.lower()}",
                guest_email=notification.get("recipient_email"),
                guest_document=notification.get("recipient_document"),
                notification_id=notification_id,
                created_at=now,
                status=MeetingStatus.CANCELED,
            )
            meeting_doc = self.store.put(MEETING, meeting_id, record.to_dict())

        log_business_event(
            "delivery_requested",
            NOTIFICATION,
            notification_id,
            transaction_id=transaction.transaction_id,
            meeting_id=meeting_doc["meeting_id"] if meeting_doc else None,
            amount=self.price,
        )
        return {"notification": notification, "transaction": tx_doc, "meeting": meeting_doc}

    def _pending_transaction(self, notification_id: str) -> Optional[Dict[str, Any]]:
        for tx in self.store.query(TRANSACTION, notification_id=notification_id):
            if TransactionStatus.parse(tx.get("status")) == TransactionStatus.PENDING:
                return tx
        return None

    def list_sent(self, sender_uid: str) -> List[Dict[str, Any]]:
        docs = [n for n in self.store.query(NOTIFICATION) if (n.get("sender") or {}).get("uid") == sender_uid]
        return sorted(docs, key=lambda d: d.get("created_at") or "", reverse=True)

    def list_received(self, document: str) -> List[Dict[str, Any]]:
        """Notifications addressed to a CPF/CNPJ that the recipient may see (paid ones only)."""
        digits = only_digits(document)
        if not digits:
            return []
        docs = [
            n
            for n in self.store.query(NOTIFICATION, recipient_document=digits)
            if notification_status(n) in RECIPIENT_VISIBLE_STATUSES
        ]
        return sorted(docs, key=lambda d: d.get("created_at") or "", reverse=True)

    def delete(self, notification_id: str) -> bool:
        """
        Delete an unpaid notification with its blobs, pending transaction and unscheduled meeting.

        Raises:
            InvalidTransition: if the notification was paid or has a settled or refunded transaction
        """
        doc = self.get(notification_id)
        status = notification_status(doc)
        if status is not None and status.at_least(NotificationStatus.SENT):
            raise InvalidTransition("Paid notifications cannot be deleted")
        transactions = self.store.query(TRANSACTION, notification_id=notification_id)
        if any(TransactionStatus.parse(tx.get("status")) != TransactionStatus.PENDING for tx in transactions):
            raise InvalidTransition("Notifications with payment history cannot be deleted")

        for evidence in doc.get("evidences") or []:
            self.blobs.delete(evidence.get("storage_path"))
        if doc.get("pdf_url"):
            self.blobs.delete(f"notificacoes_pdfs/{notification_id}.pdf")

        for tx in transactions:
            self.store.delete(TRANSACTION, tx["transaction_id"])
        for meeting in self.store.query(MEETING, notification_id=notification_id):
            if meeting_status(meeting) == MeetingStatus.CANCELED:
                self.store.delete(MEETING, meeting["meeting_id"])

        deleted = self.store.delete(NOTIFICATION, notification_id)
        log_business_event("notification_deleted", NOTIFICATION, notification_id)
        return deleted
