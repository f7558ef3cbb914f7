"""Base interface for persistence backends."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from replybot.bus.events import AutoReplyRecord, Message, MessageStatus
from replybot.config.schema import BotSettings


class Persistence(ABC):
    """
    Write-mostly store consumed by the pipeline.

    The pipeline keeps its own in-memory aggregates and never relies on
    read-after-write consistency from a backend.
    """

    @abstractmethod
    async def save_message(self, message: Message) -> None:
        """Insert or replace a message by id."""
        pass

    @abstractmethod
    async def update_message_status(self, message_id: str, status: MessageStatus) -> bool:
        """
        Update a message's delivery status.

        Returns:
            True if the message was found.
        """
        pass

    @abstractmethod
    async def get_messages(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        direction: str | None = None,
        status: str | None = None,
        contact: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages matching the filters, newest first."""
        pass

    @abstractmethod
    async def get_settings(self) -> BotSettings:
        """Current bot settings."""
        pass

    @abstractmethod
    async def update_settings(self, updates: dict[str, Any] | BotSettings) -> BotSettings:
        """
        Apply a settings update.

        Args:
            updates: Full settings, or a partial dict merged into the
                current settings (nested sections merge).

        Returns:
            The validated new settings.
        """
        pass

    @abstractmethod
    async def save_auto_reply(self, record: AutoReplyRecord) -> None:
        """Append an auto-reply record."""
        pass

    @abstractmethod
    async def get_auto_replies(self, since: datetime | None = None) -> list[AutoReplyRecord]:
        """Auto-reply records, oldest first."""
        pass

    @abstractmethod
    async def save_analytics(self, kind: str, payload: dict[str, Any]) -> None:
        """Store an analytics payload under a kind (e.g. "snapshot")."""
        pass

    @abstractmethod
    async def load_analytics(self, kind: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    async def save_data(self, key: str, value: dict[str, Any]) -> None:
        """Store an arbitrary JSON-compatible value."""
        pass

    @abstractmethod
    async def load_data(self, key: str) -> dict[str, Any] | None:
        pass

    async def flush(self) -> None:
        """Write buffered state to durable storage."""

    async def get_health(self) -> dict[str, Any]:
        return {"status": "healthy"}
