"""Message records and event broadcast."""

from replybot.bus.events import (
    AutoReplyRecord,
    Message,
    MessageDirection,
    MessageStatus,
    ResponseType,
    normalize_contact,
    status_from_ack,
)
from replybot.bus.broadcast import (
    EventBroadcaster,
    FanoutBroadcaster,
    LogBroadcaster,
    Topic,
    WebhookBroadcaster,
    create_broadcaster,
)

__all__ = [
    "AutoReplyRecord",
    "Message",
    "MessageDirection",
    "MessageStatus",
    "ResponseType",
    "normalize_contact",
    "status_from_ack",
    "EventBroadcaster",
    "FanoutBroadcaster",
    "LogBroadcaster",
    "Topic",
    "WebhookBroadcaster",
    "create_broadcaster",
]
