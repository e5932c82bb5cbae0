"""
Data models and entities for Notify.

Three entity kinds are persisted: notifications, meetings and transactions.
Statuses are enums; legacy stored labels are translated when a document is
read so that provider or UI vocabulary never leaks into internal state.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Entity kinds (store namespaces)
NOTIFICATION = "notification"
MEETING = "meeting"
TRANSACTION = "transaction"
ENTITY_KINDS = (NOTIFICATION, MEETING, TRANSACTION)


class NotificationStatus(str, Enum):
    """Canonical notification status, ordered by progress."""

    CREATED = "created"
    AWAITING_PAYMENT = "awaiting_payment"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _NOTIFICATION_ORDER.index(self)

    def at_least(self, other: "NotificationStatus") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "NotificationStatus":
        return _parse(cls, value, _NOTIFICATION_LEGACY)


_NOTIFICATION_ORDER = [
    NotificationStatus.CREATED,
    NotificationStatus.AWAITING_PAYMENT,
    NotificationStatus.SENT,
    NotificationStatus.DELIVERED,
    NotificationStatus.READ,
]

# Statuses a recipient may see when looking up by document number
RECIPIENT_VISIBLE_STATUSES = (NotificationStatus.SENT, NotificationStatus.DELIVERED, NotificationStatus.READ)


class MeetingStatus(str, Enum):
    CANCELED = "canceled"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Any) -> "MeetingStatus":
        return _parse(cls, value, _MEETING_LEGACY)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: Any) -> "TransactionStatus":
        return _parse(cls, value, _TRANSACTION_LEGACY)


class EmailChannelStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"

    @classmethod
    def parse(cls, value: Any) -> Optional["EmailChannelStatus"]:
        return None if value in (None, "") else _parse(cls, value, {})


class MessagingChannelStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> Optional["MessagingChannelStatus"]:
        return None if value in (None, "") else _parse(cls, value, {})


class BillingType(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    BOLETO = "BOLETO"


_NOTIFICATION_LEGACY = {
    "criada": NotificationStatus.CREATED,
    "gerando ia": NotificationStatus.CREATED,
    "draft": NotificationStatus.CREATED,
    "aguardando pagamento": NotificationStatus.AWAITING_PAYMENT,
    "pending_payment": NotificationStatus.AWAITING_PAYMENT,
    "enviada": NotificationStatus.SENT,
    "entregue": NotificationStatus.DELIVERED,
    "lida": NotificationStatus.READ,
}

_MEETING_LEGACY = {
    "cancelada": MeetingStatus.CANCELED,
    "cancelled": MeetingStatus.CANCELED,
    "agendada": MeetingStatus.SCHEDULED,
    "realizada": MeetingStatus.COMPLETED,
}

_TRANSACTION_LEGACY = {
    "pendente": TransactionStatus.PENDING,
    "pago": TransactionStatus.PAID,
    "falha": TransactionStatus.FAILED,
    "reembolsado": TransactionStatus.REFUNDED,
}


def _parse(enum_cls, value, legacy):
    if isinstance(value, enum_cls):
        return value
    if value is None:
        raise ValueError(f"Missing {enum_cls.__name__}")
    text = str(value).strip().lower()
    for member in enum_cls:
        if member.value.lower() == text:
            return member
    if text in legacy:
        return legacy[text]
    raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SenderSnapshot:
    """Sender identity captured when the notification is drafted"""

    uid: str
    name: str
    email: str
    phone: Optional[str] = None
    document: Optional[str] = None  # CPF/CNPJ digits
    photo_url: Optional[str] = None


@dataclass
class EvidenceItem:
    """Evidence attachment stored in the blob store"""

    evidence_id: str
    name: str
    url: str
    media_type: str  # image, video, document
    storage_path: str
    created_at: Optional[str] = None


@dataclass
class Notification:
    """Extrajudicial notification entity model"""

    notification_id: str
    sender: SenderSnapshot
    recipient_name: str
    recipient_email: Optional[str] = None
    recipient_phone: Optional[str] = None
    recipient_document: Optional[str] = None  # normalized CPF/CNPJ digits
    recipient_address: Optional[str] = None
    area: str = ""
    species: str = ""
    subject: str = ""
    facts: str = ""
    content: str = ""
    pdf_url: Optional[str] = None
    signature_base64: Optional[str] = None
    evidences: List[EvidenceItem] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    status: NotificationStatus = NotificationStatus.CREATED
    payment_method: Optional[str] = None
    payment_amount: Optional[float] = None
    payment_id: Optional[str] = None
    payment_date: Optional[str] = None
    email_status: Optional[EmailChannelStatus] = None
    messaging_status: Optional[MessagingChannelStatus] = None
    messaging_message_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "notification_id": self.notification_id,
            "sender": asdict(self.sender),
            "recipient_name": self.recipient_name,
            "recipient_email": self.recipient_email,
            "recipient_phone": self.recipient_phone,
            "recipient_document": self.recipient_document,
            "recipient_address": self.recipient_address,
            "area": self.area,
            "species": self.species,
            "subject": self.subject,
            "facts": self.facts,
            "content": self.content,
            "pdf_url": self.pdf_url,
            "signature_base64": self.signature_base64,
            "evidences": [asdict(e) for e in self.evidences],
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "status": self.status.value,
            "payment_method": self.payment_method,
            "payment_amount": self.payment_amount,
            "payment_id": self.payment_id,
            "payment_date": self.payment_date,
            "email_status": self.email_status.value if self.email_status else None,
            "messaging_status": self.messaging_status.value if self.messaging_status else None,
            "messaging_message_id": self.messaging_message_id,
            "delivered_at": format_timestamp(self.delivered_at),
            "read_at": format_timestamp(self.read_at),
        }


@dataclass
class Meeting:
    """Conciliation meeting entity model"""

    meeting_id: str
    host_uid: str
    host_name: str
    title: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    meet_link: str
    guest_email: Optional[str] = None
    guest_document: Optional[str] = None
    notification_id: Optional[str] = None
    created_at: Optional[datetime] = None
    status: MeetingStatus = MeetingStatus.CANCELED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "host_uid": self.host_uid,
            "host_name": self.host_name,
            "title": self.title,
            "date": self.date,
            "time": self.time,
            "meet_link": self.meet_link,
            "guest_email": self.guest_email,
            "guest_document": self.guest_document,
            "notification_id": self.notification_id,
            "created_at": format_timestamp(self.created_at),
            "status": self.status.value,
        }


@dataclass
class Transaction:
    """Payment record entity model"""

    transaction_id: str
    description: str
    amount: float
    date: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    owner_uid: Optional[str] = None
    notification_id: Optional[str] = None
    recipient_name: Optional[str] = None
    payment_id: Optional[str] = None
    billing_type: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "description": self.description,
            "amount": self.amount,
            "date": format_timestamp(self.date),
            "status": self.status.value,
            "owner_uid": self.owner_uid,
            "notification_id": self.notification_id,
            "recipient_name": self.recipient_name,
            "payment_id": self.payment_id,
            "billing_type": self.billing_type,
            "paid_at": format_timestamp(self.paid_at),
            "refunded_at": format_timestamp(self.refunded_at),
        }


# Common constants
NOTIFICATION_AREAS = [
    "Consumidor",
    "Saúde",
    "Imobiliário",
    "Trabalhista",
    "Família",
    "Contratos",
    "Bancário",
    "Outro",
]
BILLING_TYPES = [b.value for b in BillingType]
