"""Transport abstraction and connection supervision."""

from replybot.channels.base import DeliveryReceipt, TransportClient, TransportListener
from replybot.channels.supervisor import ConnectionState, ConnectionSupervisor

__all__ = [
    "DeliveryReceipt",
    "TransportClient",
    "TransportListener",
    "ConnectionState",
    "ConnectionSupervisor",
]
