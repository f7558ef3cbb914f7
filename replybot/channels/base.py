"""Base interface for chat transports."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from replybot.bus.events import Message, utcnow


@dataclass
class DeliveryReceipt:
    """Handle returned by the transport for an accepted outbound message."""
    message_id: str
    timestamp: datetime = field(default_factory=utcnow)


class TransportListener(ABC):
    """Receives lifecycle and message events from a transport client."""

    @abstractmethod
    async def on_qr(self, payload: str) -> None:
        """A pairing code was issued."""

    @abstractmethod
    async def on_authenticated(self) -> None:
        """The session authenticated."""

    @abstractmethod
    async def on_ready(self, client_info: dict[str, Any]) -> None:
        """The client can send and receive."""

    @abstractmethod
    async def on_auth_failure(self, reason: str) -> None:
        """Authentication was rejected."""

    @abstractmethod
    async def on_disconnected(self, reason: str) -> None:
        """The connection dropped."""

    @abstractmethod
    async def on_message(self, message: Message) -> None:
        """An inbound message arrived."""

    @abstractmethod
    async def on_message_ack(self, message_id: str, ack: int) -> None:
        """A delivery acknowledgement arrived for an outbound message."""


class TransportClient(ABC):
    """
    Abstract chat transport.

    Implementations wrap a protocol library: they connect, send, and
    report events to the bound listener through `emit()`. A client is
    single-use; after `destroy()` the supervisor builds a new one.
    """

    name: str = "transport"

    def __init__(self):
        self._listener: TransportListener | None = None

    def bind(self, listener: TransportListener) -> None:
        """Attach the listener that receives this client's events."""
        self._listener = listener

    @property
    def listener(self) -> TransportListener | None:
        return self._listener

    @abstractmethod
    async def connect(self) -> None:
        """Start the session. Progress is reported through events."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Tear down the session and release resources."""
        pass

    async def logout(self) -> None:
        """End the session on the server side, then tear down."""
        await self.destroy()

    @abstractmethod
    async def send(
        self,
        recipient: str,
        content: str,
        media: str | None = None,
    ) -> DeliveryReceipt:
        """
        Send a message.

        Args:
            recipient: Transport address or phone number.
            content: Text (or media caption).
            media: Optional path to a media file.

        Returns:
            Receipt with the transport's message id.
        """
        pass

    async def emit(self, event: str, *args: Any) -> None:
        """
        Deliver an event to the listener.

        Listener errors are logged and swallowed so one bad event never
        stops the transport's event loop.
        """
        if self._listener is None:
            logger.debug(f"{self.name}: no listener bound, dropping {event}")
            return

        handler = getattr(self._listener, f"on_{event}", None)
        if handler is None:
            logger.warning(f"{self.name}: unknown event {event}")
            return

        try:
            await handler(*args)
        except Exception as e:
            logger.error(f"{self.name}: error handling {event}: {e}")
