"""
Canonical message records for replybot.

Defines:
- Message: one inbound or outbound chat message
- AutoReplyRecord: one auto-reply send attempt
- Delivery status and ack level mapping
- Contact identifier normalization
"""

import re
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class MessageDirection(str, Enum):
    """Direction of a message relative to the bot."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class MessageStatus(str, Enum):
    """Delivery status of a message."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    RECEIVED = "received"  # Inbound messages
    UNKNOWN = "unknown"


class ResponseType(str, Enum):
    """How an auto-reply text was produced."""
    LLM = "llm"
    DEFAULT = "default"
    AFTER_HOURS = "afterHours"


# Transport acknowledgement level -> delivery status.
# Level 2 (the message reached the device) maps to DELIVERED rather than a
# separate "received" state; RECEIVED is kept for inbound messages, and
# delivery-rate analytics count DELIVERED and READ as delivered.
ACK_STATUS = {
    0: MessageStatus.PENDING,
    1: MessageStatus.SENT,
    2: MessageStatus.DELIVERED,
    3: MessageStatus.READ,
    -1: MessageStatus.FAILED,
}

_TRANSPORT_SUFFIXES = ("@c.us", "@g.us", "@s.whatsapp.net", "@broadcast")
_PHONE_CHARS = re.compile(r"^[\d\s+().-]+$")


def status_from_ack(ack: int) -> MessageStatus:
    """Map a transport ack level to a delivery status."""
    return ACK_STATUS.get(ack, MessageStatus.UNKNOWN)


def normalize_contact(identifier: str | None) -> str:
    """
    Normalize a contact identifier.

    Strips transport suffixes and phone punctuation so that
    "+1 (555) 010-0000", "15550100000" and "15550100000@c.us"
    all map to "15550100000". Non-phone handles are only trimmed.

    Args:
        identifier: Raw identifier from the transport or settings.

    Returns:
        Normalized identifier, or "" for empty input.
    """
    raw = (identifier or "").strip()
    if not raw:
        return ""

    lowered = raw.lower()
    for suffix in _TRANSPORT_SUFFIXES:
        if lowered.endswith(suffix):
            raw = raw[: -len(suffix)]
            break

    if _PHONE_CHARS.match(raw):
        return re.sub(r"\D", "", raw)

    return raw


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def parse_time(value: Any) -> datetime | None:
    """Parse an ISO string (or pass a datetime through) as an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


@dataclass
class Message:
    """
    A chat message as seen by the pipeline.

    Immutable once persisted except for `status` and
    `status_updated_at`, which follow delivery acknowledgements.
    """
    id: str
    content: str
    direction: MessageDirection
    sender: str = ""
    sender_name: str = ""
    recipient: str = ""
    kind: str = "text"
    status: MessageStatus = MessageStatus.RECEIVED
    timestamp: datetime = field(default_factory=utcnow)
    is_group: bool = False
    chat_id: str = ""
    from_me: bool = False
    has_media: bool = False
    media_path: str | None = None
    error: str | None = None
    status_updated_at: datetime | None = None

    def __post_init__(self):
        self.timestamp = as_utc(self.timestamp)
        if self.status_updated_at is not None:
            self.status_updated_at = as_utc(self.status_updated_at)

    @property
    def is_incoming(self) -> bool:
        return self.direction == MessageDirection.INCOMING

    @property
    def contact(self) -> str:
        """Normalized counterpart: sender for inbound, recipient for outbound."""
        if self.is_incoming:
            return normalize_contact(self.sender or self.recipient)
        return normalize_contact(self.recipient or self.sender)

    @classmethod
    def incoming(
        cls,
        sender: str,
        content: str,
        sender_name: str = "",
        message_id: str | None = None,
        **kwargs: Any,
    ) -> "Message":
        """Build an inbound message."""
        return cls(
            id=message_id or f"msg_{uuid.uuid4().hex[:12]}",
            content=content,
            direction=MessageDirection.INCOMING,
            sender=sender,
            sender_name=sender_name or "Unknown",
            status=MessageStatus.RECEIVED,
            **kwargs,
        )

    @classmethod
    def outgoing(
        cls,
        recipient: str,
        content: str,
        message_id: str | None = None,
        status: MessageStatus = MessageStatus.SENT,
        **kwargs: Any,
    ) -> "Message":
        """Build an outbound message."""
        return cls(
            id=message_id or f"msg_{uuid.uuid4().hex[:12]}",
            content=content,
            direction=MessageDirection.OUTGOING,
            recipient=recipient,
            status=status,
            from_me=True,
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["direction"] = self.direction.value
        data["status"] = self.status.value
        data["timestamp"] = self.timestamp.isoformat()
        data["status_updated_at"] = (
            self.status_updated_at.isoformat() if self.status_updated_at else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Create from dictionary."""
        data = dict(data)
        data["direction"] = MessageDirection(data["direction"])
        data["status"] = MessageStatus(data.get("status", MessageStatus.UNKNOWN.value))
        data["timestamp"] = parse_time(data.get("timestamp")) or utcnow()
        data["status_updated_at"] = parse_time(data.get("status_updated_at"))
        return cls(**data)


@dataclass
class AutoReplyRecord:
    """One auto-reply send attempt, successful or not."""
    sender: str
    sender_name: str
    request_text: str
    response_text: str
    response_type: ResponseType
    is_group: bool = False
    is_working_hours: bool = True
    delivered: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.timestamp = as_utc(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["response_type"] = self.response_type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AutoReplyRecord":
        data = dict(data)
        data["response_type"] = ResponseType(data["response_type"])
        data["timestamp"] = parse_time(data.get("timestamp")) or utcnow()
        return cls(**data)
