"""
Event broadcast for replybot.

Fire-and-forget delivery of pipeline events:
- Log sink (default)
- Webhook delivery over HTTP
- Fan-out to several broadcasters
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx
from loguru import logger


class Topic(str, Enum):
    """Topics emitted by the pipeline."""
    BOT_STATUS = "bot:status"
    BOT_QR = "bot:qr"
    BOT_READY = "bot:ready"
    MESSAGE_NEW = "message:new"
    MESSAGE_SENT = "message:sent"
    MESSAGE_FAILED = "message:failed"
    MESSAGE_STATUS = "message:status"
    AUTO_REPLY = "auto_reply:sent"


class EventBroadcaster(ABC):
    """
    Broadcasts events to interested listeners.

    emit() never raises and never waits for acknowledgement.
    """

    @abstractmethod
    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        """Publish an event."""

    async def close(self) -> None:
        """Release resources."""


class LogBroadcaster(EventBroadcaster):
    """Writes events to the log."""

    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Event {_topic_name(topic)}: {payload}")


class WebhookBroadcaster(EventBroadcaster):
    """
    Posts events to a webhook URL.

    Each event is delivered in its own task; failures are logged and
    dropped without retry.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: set[asyncio.Task] = set()

        # Stats
        self._sent_count = 0
        self._error_count = 0

    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            task = asyncio.get_running_loop().create_task(
                self._deliver(_topic_name(topic), payload)
            )
        except RuntimeError:
            logger.warning(f"No running event loop, dropping event {_topic_name(topic)}")
            return

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(
                self.url,
                json={"event": topic, "payload": payload},
            )
            response.raise_for_status()
            self._sent_count += 1
        except Exception as e:
            self._error_count += 1
            logger.warning(f"Webhook delivery failed for {topic}: {e}")

    async def flush(self) -> None:
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        await self._client.aclose()

    def get_stats(self) -> dict[str, Any]:
        return {
            "sent_count": self._sent_count,
            "error_count": self._error_count,
            "pending": len(self._pending),
        }


class FanoutBroadcaster(EventBroadcaster):
    """Forwards every event to several broadcasters."""

    def __init__(self, broadcasters: list[EventBroadcaster]):
        self.broadcasters = broadcasters

    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        for broadcaster in self.broadcasters:
            try:
                broadcaster.emit(topic, payload)
            except Exception as e:
                logger.error(f"Broadcaster {type(broadcaster).__name__} failed: {e}")

    async def close(self) -> None:
        for broadcaster in self.broadcasters:
            await broadcaster.close()


def _topic_name(topic: str) -> str:
    return topic.value if isinstance(topic, Topic) else str(topic)


def create_broadcaster(webhook_url: str = "", timeout: float = 10.0) -> EventBroadcaster:
    """Build the broadcaster for a configuration."""
    if not webhook_url:
        return LogBroadcaster()
    return FanoutBroadcaster([LogBroadcaster(), WebhookBroadcaster(webhook_url, timeout)])
