"""
Flat-file persistence for replybot.

Keeps everything in memory and, when persistence is enabled, mirrors it
to JSON files under the data directory:
- messages.json, auto_replies.json (written on flush)
- settings.json, analytics_<kind>.json, <key>.json (written immediately)
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from replybot.bus.events import (
    AutoReplyRecord,
    Message,
    MessageStatus,
    as_utc,
    normalize_contact,
    utcnow,
)
from replybot.config.schema import BotSettings
from replybot.storage.base import Persistence

MESSAGES_FILE = "messages.json"
SETTINGS_FILE = "settings.json"
AUTO_REPLIES_FILE = "auto_replies.json"


class JsonStore(Persistence):
    """
    In-memory store with optional JSON file persistence.

    Messages are kept in insertion order keyed by id; saving an existing
    id replaces the stored message.
    """

    def __init__(
        self,
        data_path: Path | None = None,
        persist: bool = False,
        settings: BotSettings | None = None,
        max_auto_replies: int = 5000,
    ):
        self.data_path = data_path
        self.persist = persist and data_path is not None
        self.max_auto_replies = max_auto_replies

        self._messages: dict[str, Message] = {}
        self._settings = settings or BotSettings()
        self._auto_replies: list[AutoReplyRecord] = []
        self._analytics: dict[str, dict[str, Any]] = {}
        self._data: dict[str, dict[str, Any]] = {}
        self._dirty = False

        if self.persist:
            self._load()

    # Messages

    async def save_message(self, message: Message) -> None:
        self._messages[message.id] = message
        self._dirty = True
        logger.debug(f"Saved message: {message.id}")

    async def update_message_status(self, message_id: str, status: MessageStatus) -> bool:
        message = self._messages.get(message_id)
        if message is None:
            logger.debug(f"Status update for unknown message {message_id}")
            return False

        message.status = status
        message.status_updated_at = utcnow()
        self._dirty = True
        logger.debug(f"Updated message {message_id} status to: {status.value}")
        return True

    async def get_message(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def get_messages(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        direction: str | None = None,
        status: str | None = None,
        contact: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        wanted_contact = normalize_contact(contact) if contact else None
        since = as_utc(since) if since else None
        until = as_utc(until) if until else None

        results = []
        for message in self._messages.values():
            if since and message.timestamp < since:
                continue
            if until and message.timestamp > until:
                continue
            if direction and message.direction.value != direction:
                continue
            if status and message.status.value != status:
                continue
            if wanted_contact and message.contact != wanted_contact:
                continue
            results.append(message)

        results.sort(key=lambda m: m.timestamp, reverse=True)
        if limit is not None:
            results = results[:limit]
        return results

    # Settings

    async def get_settings(self) -> BotSettings:
        return self._settings

    async def update_settings(self, updates: dict[str, Any] | BotSettings) -> BotSettings:
        if isinstance(updates, BotSettings):
            self._settings = updates
        else:
            self._settings = self._settings.merged(updates)

        self._write(SETTINGS_FILE, self._settings.model_dump())
        logger.info("Settings updated")
        return self._settings

    # Auto-replies

    async def save_auto_reply(self, record: AutoReplyRecord) -> None:
        self._auto_replies.append(record)
        if len(self._auto_replies) > self.max_auto_replies:
            del self._auto_replies[: len(self._auto_replies) - self.max_auto_replies]
        self._dirty = True

    async def get_auto_replies(self, since: datetime | None = None) -> list[AutoReplyRecord]:
        if since is None:
            return list(self._auto_replies)
        since = as_utc(since)
        return [r for r in self._auto_replies if r.timestamp >= since]

    # Analytics and misc data

    async def save_analytics(self, kind: str, payload: dict[str, Any]) -> None:
        self._analytics[kind] = payload
        self._write(f"analytics_{kind}.json", payload)

    async def load_analytics(self, kind: str) -> dict[str, Any] | None:
        return self._analytics.get(kind)

    async def save_data(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = value
        self._write(f"{key}.json", value)

    async def load_data(self, key: str) -> dict[str, Any] | None:
        if key in self._data:
            return self._data[key]
        value = self._read(f"{key}.json")
        if isinstance(value, dict):
            self._data[key] = value
            return value
        return None

    # Persistence

    async def flush(self) -> None:
        """Write messages and auto-replies if anything changed."""
        if not self._dirty:
            return
        self._write(MESSAGES_FILE, [m.to_dict() for m in self._messages.values()])
        self._write(AUTO_REPLIES_FILE, [r.to_dict() for r in self._auto_replies])
        self._dirty = False

    def _write(self, name: str, data: Any) -> None:
        if not self.persist:
            return
        try:
            self.data_path.mkdir(parents=True, exist_ok=True)
            with open(self.data_path / name, "w") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Error persisting {name}: {e}")

    def _read(self, name: str) -> Any:
        if not self.persist:
            return None
        path = self.data_path / name
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return None

    def _load(self) -> None:
        """Load everything persisted under the data directory."""
        for item in self._read(MESSAGES_FILE) or []:
            try:
                message = Message.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed stored message: {e}")
                continue
            self._messages[message.id] = message

        settings = self._read(SETTINGS_FILE)
        if isinstance(settings, dict):
            try:
                self._settings = self._settings.merged(settings)
            except ValidationError as e:
                logger.warning(f"Stored settings are invalid, using defaults: {e}")

        for item in self._read(AUTO_REPLIES_FILE) or []:
            try:
                self._auto_replies.append(AutoReplyRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed auto-reply record: {e}")

        for path in self.data_path.glob("analytics_*.json"):
            kind = path.stem[len("analytics_"):]
            payload = self._read(path.name)
            if isinstance(payload, dict):
                self._analytics[kind] = payload

        logger.info(
            f"Loaded {len(self._messages)} messages and "
            f"{len(self._auto_replies)} auto-replies from {self.data_path}"
        )

    async def get_health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "messages": len(self._messages),
            "auto_replies": len(self._auto_replies),
            "persist": self.persist,
            "data_path": str(self.data_path) if self.data_path else None,
            "last_checked": utcnow().isoformat(),
        }
