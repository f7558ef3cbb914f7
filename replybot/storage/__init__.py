"""Persistence backends."""

from replybot.storage.base import Persistence
from replybot.storage.json_store import JsonStore

__all__ = ["Persistence", "JsonStore"]
